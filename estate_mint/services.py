# estate_mint/services.py
"""Builds the collaborators once per process and wires them into the orchestrator."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .blockchain import Web3Broadcaster
from .crud import Ledger, init_db, make_engine
from .encoder import TransactionEncoder, load_abi
from .errors import DependencyError
from .images import ImageNormalizer
from .orchestrator import MARKETPLACE_CONTRACT, PROPERTY_CONTRACT, TokenizationOrchestrator
from .pinata import PinataPublisher
from .registry import RegistryDefaults, RegistryStore
from .settings import Settings

log = logging.getLogger(__name__)


@dataclass
class Services:
    engine: Engine
    registry: RegistryStore
    ledger: Ledger
    publisher: PinataPublisher
    orchestrator: TokenizationOrchestrator
    broadcaster: Optional[Web3Broadcaster] = None


def registry_defaults(cfg: Settings) -> RegistryDefaults:
    contracts = {}
    if cfg.PROPERTY_CONTRACT_ADDRESS:
        contracts[PROPERTY_CONTRACT] = cfg.PROPERTY_CONTRACT_ADDRESS
    if cfg.MARKETPLACE_CONTRACT_ADDRESS:
        contracts[MARKETPLACE_CONTRACT] = cfg.MARKETPLACE_CONTRACT_ADDRESS
    return RegistryDefaults(
        chains=[{"name": cfg.CHAIN_NAME, "rpc": cfg.DEFAULT_CHAIN_RPC, "chain_id": cfg.DEFAULT_CHAIN_ID}],
        contracts=contracts,
    )


def build_services(cfg: Settings) -> Services:
    engine = make_engine(cfg.DATABASE_URL, timeout=cfg.REGISTRY_TIMEOUT)
    registry = RegistryStore(engine)
    ledger = Ledger(engine)
    publisher = PinataPublisher(
        jwt=cfg.PINATA_JWT,
        api_key=cfg.PINATA_API_KEY,
        api_secret=cfg.PINATA_API_SECRET,
        gateway_url=cfg.PINATA_GATEWAY_URL,
        timeout=cfg.PUBLISH_TIMEOUT,
    )
    broadcaster = None
    if cfg.PRIVATE_KEY:
        broadcaster = Web3Broadcaster(cfg.PRIVATE_KEY, timeout=cfg.RPC_TIMEOUT)
        log.info("Broadcasting enabled from %s", broadcaster.address)

    orchestrator = TokenizationOrchestrator(
        registry=registry,
        ledger=ledger,
        publisher=publisher,
        encoder=TransactionEncoder(),
        images=ImageNormalizer(publisher, max_bytes=cfg.MAX_IMAGE_BYTES, timeout=cfg.PUBLISH_TIMEOUT),
        property_abi=load_abi(cfg.PROPERTY_ABI_PATH),
        marketplace_abi=load_abi(cfg.MARKETPLACE_ABI_PATH),
        chain_name=cfg.CHAIN_NAME,
        broadcaster=broadcaster,
    )
    return Services(engine, registry, ledger, publisher, orchestrator, broadcaster)


def prepare_storage(services: Services, cfg: Settings) -> None:
    """Create tables and seed the registry; a database outage is logged, not fatal."""
    try:
        init_db(services.engine)
        services.registry.seed_if_empty(registry_defaults(cfg))
    except DependencyError as e:
        log.error("Registry seeding failed, database endpoints will report errors: %s", e)
