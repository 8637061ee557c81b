# estate_mint/orchestrator.py
"""
Tokenization workflow.

A request moves through Validating -> Publishing -> Persisting -> Resolving
-> Encoding -> (Broadcasting) -> Done. Validating and Publishing failures
abort the request by raising; once metadata is published every later stage
records its outcome on the intent instead, so the response can report the
published content id alongside whatever failed afterwards. Nothing already
published or persisted is rolled back.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from eth_utils import is_hex_address
from web3 import Web3

from .encoder import TransactionEncoder, to_hex
from .errors import EncodingError, InputError, WorkflowError
from .images import IMAGE_TYPES, ImageNormalizer
from .models import Chain, Listing, Property
from .schemas import ListingRequest, ListingResponse, MintRequest, MintResponse, TransactionData
from .validation import normalize_address, parse_property_id, parse_uint, require

log = logging.getLogger(__name__)

PROPERTY_CONTRACT = "property"
MARKETPLACE_CONTRACT = "marketplace"


class Stage(str, Enum):
    VALIDATING = "validating"
    PUBLISHING = "publishing"
    PERSISTING = "persisting"
    RESOLVING = "resolving"
    ENCODING = "encoding"
    BROADCASTING = "broadcasting"
    DONE = "done"


@dataclass
class StageResult:
    stage: Stage
    error: Optional[WorkflowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImageUpload:
    data: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class MintIntent:
    """In-flight state of one mint or listing request. Never shared across requests."""

    flow: str
    request_payload: Any
    stage: Stage = Stage.VALIDATING
    normalized_image_ref: str = ""
    content_id: str = ""
    token_uri: str = ""
    property_id: str = ""
    date: str = ""
    encoded_call_data: bytes = b""
    chain: Optional[Chain] = None
    contract_address: str = ""
    tx_hash: Optional[str] = None
    results: List[StageResult] = field(default_factory=list)

    def record(self, stage: Stage, error: Optional[WorkflowError] = None) -> None:
        self.results.append(StageResult(stage, error))

    def succeeded(self, stage: Stage) -> bool:
        return any(r.stage == stage and r.ok for r in self.results)

    @property
    def partial_errors(self) -> List[StageResult]:
        return [r for r in self.results if not r.ok]

    @property
    def failed_stage(self) -> Optional[Stage]:
        failed = self.partial_errors
        return failed[0].stage if failed else None

    @property
    def error_message(self) -> Optional[str]:
        if not self.partial_errors:
            return None
        return "; ".join(f"{r.stage.value}: {r.error.message}" for r in self.partial_errors)

    @property
    def status_code(self) -> int:
        # transaction construction failures report their own class;
        # a lost ledger write alone is a degraded success
        for r in self.partial_errors:
            if r.stage in (Stage.RESOLVING, Stage.ENCODING):
                return r.error.status_code
        if any(r.stage == Stage.PERSISTING for r in self.partial_errors):
            return 207
        return 200

    def transaction(self) -> Optional[TransactionData]:
        if not self.succeeded(Stage.ENCODING):
            return None
        return TransactionData(
            chainId=str(self.chain.chain_id),
            to=self.contract_address,
            data=to_hex(self.encoded_call_data),
            value="0x0",
        )

    def to_mint_response(self) -> MintResponse:
        return MintResponse(
            ipfs_hash=self.content_id,
            token_uri=self.token_uri,
            property_id=self.property_id,
            transaction_hash=self.tx_hash,
            transaction=self.transaction(),
            error=self.error_message,
        )

    def to_listing_response(self) -> ListingResponse:
        return ListingResponse(
            ipfs_hash=self.content_id,
            token_uri=self.token_uri,
            property_id=self.property_id,
            date=self.date,
            transaction=self.transaction(),
            error=self.error_message,
        )


def new_property_id(clock: Callable[[], int] = time.time_ns) -> str:
    """Eight-digit decimal id derived from the wall clock."""
    return f"{clock() % 10**8:08d}"


class TokenizationOrchestrator:
    def __init__(
        self,
        registry,
        ledger,
        publisher,
        encoder: TransactionEncoder,
        images: ImageNormalizer,
        property_abi: List[Dict[str, Any]],
        marketplace_abi: List[Dict[str, Any]],
        chain_name: str,
        broadcaster=None,
        id_factory: Callable[[], str] = new_property_id,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.ledger = ledger
        self.publisher = publisher
        self.encoder = encoder
        self.images = images
        self.property_abi = property_abi
        self.marketplace_abi = marketplace_abi
        self.chain_name = chain_name
        self.broadcaster = broadcaster
        self._new_id = id_factory
        self._clock = clock

    # ---------- mint flow ----------
    def mint(self, request: MintRequest, upload: Optional[ImageUpload] = None) -> MintIntent:
        intent = MintIntent(flow="mint", request_payload=request)

        # Validating: no I/O
        require({
            "property_name": request.property_name,
            "property_address": request.property_address,
            "description": request.description,
            "to": request.to,
        })
        to = normalize_address("to", request.to)
        if upload is not None:
            self._check_upload(upload)
        intent.property_id = self._new_id()
        property_id = parse_property_id(intent.property_id, "property_id")
        intent.record(Stage.VALIDATING)

        # Publishing: failure aborts the request with nothing written
        intent.stage = Stage.PUBLISHING
        if upload is not None:
            intent.normalized_image_ref = self.images.from_upload(upload.data, upload.content_type)
        else:
            intent.normalized_image_ref = self.images.normalize(request.image)
        document = self._mint_document(request, intent)
        self._publish(intent, document, f"{request.property_name}.json")

        self._attempt(intent, Stage.PERSISTING, lambda: self.ledger.insert_property(Property(
            property_id=intent.property_id,
            ipfs_hash=intent.content_id,
            wallet_address=to,
            property_name=request.property_name,
            property_address=request.property_address,
            description=request.description,
            image=intent.normalized_image_ref,
        )))

        if self._attempt(intent, Stage.RESOLVING, lambda: self._resolve(intent, PROPERTY_CONTRACT)):
            encoded = self._attempt(intent, Stage.ENCODING, lambda: self._encode(
                intent, self.property_abi, "mint", to, property_id,
            ))
            if encoded and self.broadcaster is not None:
                self._attempt(intent, Stage.BROADCASTING, lambda: self._broadcast(intent))

        intent.stage = Stage.DONE
        return intent

    def _check_upload(self, upload: ImageUpload) -> None:
        if (upload.content_type or "").lower() not in IMAGE_TYPES:
            raise InputError("Invalid file type. Only JPEG, PNG, GIF, and WebP are allowed")
        if len(upload.data) > self.images.max_bytes:
            raise InputError("File size too large")

    def _mint_document(self, request: MintRequest, intent: MintIntent) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "name": request.property_name,
            "description": request.description,
            "image": intent.normalized_image_ref,
        }
        if request.external_url:
            document["external_url"] = request.external_url
        if request.attributes:
            document["attributes"] = [a.model_dump(exclude_none=True) for a in request.attributes]
        else:
            document["attributes"] = [
                {"trait_type": "property_id", "value": intent.property_id},
                {"trait_type": "date_of_mint", "value": str(int(self._clock())), "display_type": "date"},
                {"trait_type": "property_address", "value": request.property_address},
            ]
        return document

    def _broadcast(self, intent: MintIntent) -> None:
        intent.tx_hash = self.broadcaster.broadcast(intent.chain, intent.contract_address, intent.encoded_call_data)

    # ---------- listing flow ----------
    def create_listing(self, request: ListingRequest) -> MintIntent:
        intent = MintIntent(flow="listing", request_payload=request)

        # Validating: no I/O
        property_id = parse_property_id(request.propertyId)
        date = parse_uint("date", request.date, bits=64)
        prices = [
            parse_uint(name, getattr(request, name))
            for name in ("rentPrice", "rentSecurity", "bookingPrice", "bookingSecurity")
        ]
        intent.property_id = request.propertyId
        intent.date = request.date
        intent.record(Stage.VALIDATING)

        # Publishing: the listing document embeds the stored property
        intent.stage = Stage.PUBLISHING
        prop = self.ledger.get_property_by_id(request.propertyId)
        intent.normalized_image_ref = prop.image
        document = {
            "property_name": prop.property_name,
            "description": prop.description,
            "image": prop.image,
            "date": request.date,
            "rent_price": request.rentPrice,
            "rent_security": request.rentSecurity,
            "booking_price": request.bookingPrice,
            "booking_security": request.bookingSecurity,
        }
        self._publish(intent, document, f"listing-{request.propertyId}-{request.date}.json")

        self._attempt(intent, Stage.PERSISTING, lambda: self.ledger.insert_listing(Listing(
            property_id=request.propertyId,
            date=request.date,
            ipfs_hash=intent.content_id,
        )))

        # the owner's wallet signs listings, so the payload is only returned
        if self._attempt(intent, Stage.RESOLVING, lambda: self._resolve(intent, MARKETPLACE_CONTRACT)):
            self._attempt(intent, Stage.ENCODING, lambda: self._encode(
                intent, self.marketplace_abi, "createListing", property_id, date, *prices,
            ))

        intent.stage = Stage.DONE
        return intent

    # ---------- read paths ----------
    def metadata_url(self, property_id: str, date: Optional[str] = None) -> str:
        if date is None:
            content_id = self.ledger.get_property_by_id(property_id).ipfs_hash
        else:
            content_id = self.ledger.get_listing_by_property_and_date(property_id, date).ipfs_hash
        return self.publisher.gateway_url(content_id)

    # ---------- shared stages ----------
    def _publish(self, intent: MintIntent, document: Dict[str, Any], name: str) -> None:
        intent.content_id = self.publisher.publish_json(document, name=name)
        intent.token_uri = self.publisher.gateway_url(intent.content_id)
        intent.record(Stage.PUBLISHING)
        log.info("%s flow: published metadata %s for property %s", intent.flow, intent.content_id, intent.property_id)

    def _resolve(self, intent: MintIntent, contract_type: str) -> None:
        intent.chain = self.registry.get_chain(self.chain_name)
        address = self.registry.get_contract(contract_type)
        if not is_hex_address(address):
            raise EncodingError(f"registry address for '{contract_type}' is malformed: {address!r}")
        intent.contract_address = Web3.to_checksum_address(address)

    def _encode(self, intent: MintIntent, abi, function_name: str, *args) -> None:
        intent.encoded_call_data = self.encoder.encode(abi, function_name, *args)

    def _attempt(self, intent: MintIntent, stage: Stage, step: Callable[[], None]) -> bool:
        intent.stage = stage
        try:
            step()
        except WorkflowError as e:
            log.warning("%s flow: %s failed for property %s: %s", intent.flow, stage.value, intent.property_id, e.message)
            intent.record(stage, e)
            return False
        intent.record(stage)
        return True
