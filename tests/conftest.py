import itertools
import json
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine
from web3 import Web3

from estate_mint.crud import Ledger, init_db
from estate_mint.encoder import TransactionEncoder, load_abi
from estate_mint.errors import ContentNotFoundError
from estate_mint.images import ImageNormalizer
from estate_mint.orchestrator import TokenizationOrchestrator
from estate_mint.registry import RegistryDefaults, RegistryStore
from estate_mint.settings import ABI_DIR

PROPERTY_CONTRACT_ADDRESS = Web3.to_checksum_address("0x" + "11" * 20)
MARKETPLACE_CONTRACT_ADDRESS = Web3.to_checksum_address("0x" + "22" * 20)
WALLET = "0x" + "ab" * 20
GATEWAY = "https://gateway.test/ipfs/"


class FakePublisher:
    """In-memory stand-in for the pinning service."""

    def __init__(self):
        self.store = {}
        self.calls = []
        self.fail = None

    def gateway_url(self, content_id):
        return f"{GATEWAY}{content_id}"

    def _pin(self, data):
        if self.fail is not None:
            raise self.fail
        cid = f"bafytest{len(self.store) + 1:04d}"
        self.store[cid] = data
        return cid

    def publish(self, data, filename=None):
        self.calls.append(("publish", filename))
        return self._pin(data)

    def publish_json(self, document, name=None):
        self.calls.append(("publish_json", name))
        return self._pin(json.dumps(document).encode())

    def fetch(self, content_id):
        if content_id not in self.store:
            raise ContentNotFoundError(content_id)
        return self.store[content_id]


class FakeBroadcaster:
    def __init__(self, fail=None):
        self.calls = []
        self.fail = fail

    def broadcast(self, chain, to, data):
        self.calls.append((chain.name, to, data))
        if self.fail is not None:
            raise self.fail
        return "0x" + "ef" * 32


class CountingProxy:
    """Wraps a collaborator and counts calls to its public methods."""

    def __init__(self, target):
        self._target = target
        self.calls = Counter()

    def __getattr__(self, name):
        attr = getattr(self._target, name)
        if callable(attr) and not name.startswith("_"):
            def counted(*args, **kwargs):
                self.calls[name] += 1
                return attr(*args, **kwargs)
            return counted
        return attr


class TickingClock:
    def __init__(self, start=datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def memory_engine(create_tables=True):
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if create_tables:
        init_db(engine)
    return engine


def default_registry_seed():
    return RegistryDefaults(
        chains=[{"name": "unichain", "rpc": "http://rpc.test", "chain_id": 1301}],
        contracts={"property": PROPERTY_CONTRACT_ADDRESS, "marketplace": MARKETPLACE_CONTRACT_ADDRESS},
    )


@pytest.fixture
def engine():
    engine = memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def broken_engine():
    # no tables: every query fails like an unreachable database would
    engine = memory_engine(create_tables=False)
    yield engine
    engine.dispose()


@pytest.fixture
def registry(engine):
    return RegistryStore(engine, clock=TickingClock())


@pytest.fixture
def seeded_registry(registry):
    registry.seed_if_empty(default_registry_seed())
    return registry


@pytest.fixture
def ledger(engine):
    return Ledger(engine, clock=TickingClock())


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def property_abi():
    return load_abi(str(ABI_DIR / "property.json"))


@pytest.fixture
def marketplace_abi():
    return load_abi(str(ABI_DIR / "marketplace.json"))


@pytest.fixture
def make_orchestrator(seeded_registry, ledger, publisher, property_abi, marketplace_abi):
    def factory(**overrides):
        counter = itertools.count(1)
        kwargs = dict(
            registry=seeded_registry,
            ledger=ledger,
            publisher=publisher,
            encoder=TransactionEncoder(),
            images=ImageNormalizer(publisher, max_bytes=1024),
            property_abi=property_abi,
            marketplace_abi=marketplace_abi,
            chain_name="unichain",
            broadcaster=None,
            id_factory=lambda: f"{next(counter):08d}",
            clock=lambda: 1700000000.0,
        )
        kwargs.update(overrides)
        return TokenizationOrchestrator(**kwargs)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()

