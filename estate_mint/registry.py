# estate_mint/registry.py
"""Chain and contract registry backed by the ``chains`` and ``contracts`` tables."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List

from sqlalchemy.engine import Engine
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from .crud import database_error
from .errors import UnknownChainError, UnknownContractError
from .models import Chain, Contract, utcnow

log = logging.getLogger(__name__)


@dataclass
class RegistryDefaults:
    chains: List[Dict] = field(default_factory=list)
    # contract type -> address
    contracts: Dict[str, str] = field(default_factory=dict)


class RegistryStore:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self._clock = clock

    def get_chain(self, name: str) -> Chain:
        try:
            with Session(self.engine) as s:
                chain = s.exec(select(Chain).where(Chain.name == name)).first()
        except SQLAlchemyError as e:
            raise database_error("failed to get chain", e) from e
        if chain is None:
            raise UnknownChainError(name)
        return chain

    def get_contract(self, contract_type: str) -> str:
        try:
            with Session(self.engine) as s:
                contract = s.exec(select(Contract).where(Contract.type == contract_type)).first()
        except SQLAlchemyError as e:
            raise database_error("failed to get contract", e) from e
        if contract is None:
            raise UnknownContractError(contract_type)
        return contract.address

    def upsert_contract(self, contract_type: str, address: str) -> Contract:
        """Insert or replace the address for ``contract_type``, keeping ``created_at``."""
        try:
            try:
                return self._upsert_contract(contract_type, address)
            except IntegrityError:
                # a concurrent insert won the unique index; the row exists now
                return self._upsert_contract(contract_type, address)
        except SQLAlchemyError as e:
            raise database_error("failed to insert or update contract", e) from e

    def _upsert_contract(self, contract_type: str, address: str) -> Contract:
        now = self._clock()
        with Session(self.engine) as s:
            contract = s.exec(select(Contract).where(Contract.type == contract_type)).first()
            if contract is None:
                contract = Contract(type=contract_type, address=address, created_at=now, updated_at=now)
            else:
                contract.address = address
                contract.updated_at = now
            s.add(contract)
            s.commit()
            s.refresh(contract)
            return contract

    def seed_if_empty(self, defaults: RegistryDefaults) -> None:
        """Insert default chains and contracts into whichever table is empty."""
        now = self._clock()
        try:
            self._seed(defaults, now)
        except SQLAlchemyError as e:
            raise database_error("failed to seed registry", e) from e

    def _seed(self, defaults: RegistryDefaults, now: datetime) -> None:
        with Session(self.engine) as s:
            if s.exec(select(func.count()).select_from(Contract)).one() == 0 and defaults.contracts:
                for contract_type, address in defaults.contracts.items():
                    s.add(Contract(type=contract_type, address=address, created_at=now, updated_at=now))
                self._commit_seed(s, "contracts")
            if s.exec(select(func.count()).select_from(Chain)).one() == 0 and defaults.chains:
                for entry in defaults.chains:
                    s.add(Chain(created_at=now, updated_at=now, **entry))
                self._commit_seed(s, "chains")

    @staticmethod
    def _commit_seed(s: Session, table: str) -> None:
        try:
            s.commit()
            log.info("Seeded %s registry", table)
        except IntegrityError as e:
            s.rollback()
            log.warning("Skipped seeding %s, conflicting rows already present: %s", table, e.orig)
