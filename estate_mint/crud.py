# estate_mint/crud.py
"""Engine setup and the Property/Listing ledger."""

import logging
from datetime import datetime
from typing import Callable, List

from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlmodel import SQLModel, Session, select, create_engine

from .errors import (
    DependencyError,
    DependencyTimeoutError,
    DuplicateKeyError,
    ListingNotFoundError,
    PropertyNotFoundError,
)
from .models import Listing, Property, utcnow

log = logging.getLogger(__name__)


# ---------- Database Setup ----------
def make_engine(url: str, timeout: float = 5.0) -> Engine:
    """
    Build an engine whose connection waits are bounded by ``timeout`` seconds:
    SQLite busy timeout, or the driver connect timeout plus pool checkout.
    """
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"timeout": timeout, "check_same_thread": False})
    connect_args = {}
    backend = make_url(url).get_backend_name()
    if backend in ("postgresql", "mysql", "mariadb"):
        connect_args["connect_timeout"] = max(1, int(timeout))
    if backend == "postgresql":
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    return create_engine(url, echo=False, pool_pre_ping=True, pool_timeout=timeout, connect_args=connect_args)


def database_error(what: str, e: SQLAlchemyError) -> DependencyError:
    """Translate a SQLAlchemy failure, keeping timeouts distinguishable from outages."""
    message = f"{what}: {e}"
    if isinstance(e, PoolTimeoutError):
        return DependencyTimeoutError(message)
    if isinstance(e, OperationalError) and any(m in str(e.orig).lower() for m in ("timeout", "timed out")):
        return DependencyTimeoutError(message)
    return DependencyError(message)


def init_db(engine: Engine) -> None:
    """Create every table registered on the SQLModel metadata."""
    SQLModel.metadata.create_all(engine)


def ping(engine: Engine) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise database_error("database unreachable", e) from e


# ---------- LEDGER ----------
class Ledger:
    """Durable store of Property and Listing records."""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self._clock = clock

    def _insert(self, obj, duplicate_message: str) -> None:
        now = self._clock()
        obj.created_at = now
        obj.updated_at = now
        try:
            with Session(self.engine) as s:
                s.add(obj)
                s.commit()
                s.refresh(obj)
        except IntegrityError as e:
            raise DuplicateKeyError(duplicate_message) from e
        except SQLAlchemyError as e:
            raise database_error("ledger write failed", e) from e

    def _all(self, query) -> list:
        try:
            with Session(self.engine) as s:
                return list(s.exec(query).all())
        except SQLAlchemyError as e:
            raise database_error("ledger read failed", e) from e

    def _first(self, query):
        try:
            with Session(self.engine) as s:
                return s.exec(query).first()
        except SQLAlchemyError as e:
            raise database_error("ledger read failed", e) from e

    # properties
    def insert_property(self, prop: Property) -> None:
        self._insert(prop, f"property '{prop.property_id}' already exists")

    def get_property_by_id(self, property_id: str) -> Property:
        prop = self._first(select(Property).where(Property.property_id == property_id))
        if prop is None:
            raise PropertyNotFoundError(property_id)
        return prop

    def get_properties_by_wallet(self, wallet_address: str) -> List[Property]:
        return self._all(select(Property).where(Property.wallet_address == wallet_address))

    def list_properties(self) -> List[Property]:
        return self._all(select(Property))

    # listings
    def insert_listing(self, listing: Listing) -> None:
        self._insert(
            listing,
            f"listing for property '{listing.property_id}' and date '{listing.date}' already exists",
        )

    def get_listing_by_property_and_date(self, property_id: str, date: str) -> Listing:
        listing = self._first(
            select(Listing).where(Listing.property_id == property_id, Listing.date == date)
        )
        if listing is None:
            raise ListingNotFoundError(property_id, date)
        return listing

    def get_listings_by_property(self, property_id: str) -> List[Listing]:
        return self._all(select(Listing).where(Listing.property_id == property_id))

