# estate_mint/main.py
import json
import logging
from typing import List, Optional, Tuple, Type, TypeVar

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as StarletteUploadFile

from .crud import Ledger, ping
from .errors import InputError, ListingNotFoundError, WorkflowError
from .orchestrator import ImageUpload, TokenizationOrchestrator
from .pinata import PinataPublisher
from .registry import RegistryStore
from .schemas import (
    ChainOut,
    ContractOut,
    ContractUpsertIn,
    ErrorResponse,
    ListingOut,
    ListingRequest,
    ListingResponse,
    MintRequest,
    MintResponse,
    PropertyOut,
    UploadResponse,
)
from .services import Services, build_services, prepare_storage
from .settings import settings
from .validation import normalize_address

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

app = FastAPI(title="Estate Mint Backend")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["POST", "GET", "OPTIONS", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    services = build_services(settings)
    prepare_storage(services, settings)
    app.state.services = services


@app.on_event("shutdown")
def shutdown():
    services = getattr(app.state, "services", None)
    if services is not None:
        services.engine.dispose()


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# ---------- dependencies ----------
def get_services(request: Request) -> Services:
    return request.app.state.services


def get_orchestrator(services: Services = Depends(get_services)) -> TokenizationOrchestrator:
    return services.orchestrator


def get_ledger(services: Services = Depends(get_services)) -> Ledger:
    return services.ledger


def get_registry(services: Services = Depends(get_services)) -> RegistryStore:
    return services.registry


def get_publisher(services: Services = Depends(get_services)) -> PinataPublisher:
    return services.publisher


# ---------- request parsing ----------
def _validate(model: Type[M], body) -> M:
    if not isinstance(body, dict):
        raise InputError("Invalid request payload: expected a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        raise InputError(f"Invalid request payload: {where}: {first['msg']}") from e


async def _json_body(request: Request, model: Type[M]) -> M:
    try:
        body = await request.json()
    except ValueError as e:
        raise InputError(f"Invalid request payload: {e}") from e
    return _validate(model, body)


async def _read_mint_request(request: Request) -> Tuple[MintRequest, Optional[ImageUpload]]:
    if "multipart/form-data" not in request.headers.get("content-type", ""):
        return await _json_body(request, MintRequest), None

    form = await request.form()
    body = {
        key: form.get(key)
        for key in ("property_name", "property_address", "description", "to", "external_url")
        if isinstance(form.get(key), str)
    }
    if isinstance(form.get("attributes"), str):
        try:
            body["attributes"] = json.loads(form["attributes"])
        except ValueError as e:
            raise InputError(f"Invalid attributes: {e}") from e

    upload = None
    image = form.get("image")
    if isinstance(image, StarletteUploadFile):
        upload = ImageUpload(data=await image.read(), content_type=image.content_type, filename=image.filename)
    elif isinstance(image, str):
        body["image"] = image
    return _validate(MintRequest, body), upload


# ---------- tokenization ----------
api = APIRouter(
    prefix="/api/v1",
    responses={code: {"model": ErrorResponse} for code in (400, 404, 409, 500, 503, 504)},
)


@api.post("/create-property", response_model=MintResponse)
@api.post("/mint", response_model=MintResponse)
async def create_property(request: Request, orchestrator: TokenizationOrchestrator = Depends(get_orchestrator)):
    """
    Publish property metadata, record the property and prepare (or broadcast)
    the mint transaction. Accepts JSON or multipart with an ``image`` file part.
    """
    mint_request, upload = await _read_mint_request(request)
    intent = await run_in_threadpool(orchestrator.mint, mint_request, upload)
    return JSONResponse(
        status_code=intent.status_code,
        content=intent.to_mint_response().model_dump(exclude_none=True),
    )


@api.post("/create-listing", response_model=ListingResponse)
async def create_listing(request: Request, orchestrator: TokenizationOrchestrator = Depends(get_orchestrator)):
    listing_request = await _json_body(request, ListingRequest)
    intent = await run_in_threadpool(orchestrator.create_listing, listing_request)
    return JSONResponse(
        status_code=intent.status_code,
        content=intent.to_listing_response().model_dump(exclude_none=True),
    )


# ---------- ledger reads ----------
@api.get("/properties", response_model=List[PropertyOut])
def list_properties(wallet: Optional[str] = None, ledger: Ledger = Depends(get_ledger)):
    if wallet:
        return ledger.get_properties_by_wallet(normalize_address("wallet", wallet))
    return ledger.list_properties()


@api.get("/properties/{property_id}", response_model=PropertyOut)
def get_property(property_id: str, ledger: Ledger = Depends(get_ledger)):
    return ledger.get_property_by_id(property_id)


@api.get("/properties/{property_id}/listings", response_model=List[ListingOut])
def get_property_listings(property_id: str, ledger: Ledger = Depends(get_ledger)):
    listings = ledger.get_listings_by_property(property_id)
    if not listings:
        raise ListingNotFoundError(property_id)
    return listings


# ---------- registry ----------
@api.get("/chains/{name}", response_model=ChainOut)
def get_chain(name: str, registry: RegistryStore = Depends(get_registry)):
    return registry.get_chain(name)


@api.put("/contracts/{contract_type}", response_model=ContractOut)
def upsert_contract(contract_type: str, payload: ContractUpsertIn, registry: RegistryStore = Depends(get_registry)):
    return registry.upsert_contract(contract_type, normalize_address("contract", payload.address))


# ---------- content ----------
@api.post("/ipfs/upload", response_model=UploadResponse)
async def upload_file(file: UploadFile = File(...), publisher: PinataPublisher = Depends(get_publisher)):
    """Pin an arbitrary file and return its content id."""
    content = await file.read()
    cid = await run_in_threadpool(publisher.publish, content, file.filename)
    return UploadResponse(hash=cid, name=file.filename or cid, size=len(content), uri=publisher.gateway_url(cid))


@api.get("/ipfs/{content_id}")
def get_file(content_id: str, publisher: PinataPublisher = Depends(get_publisher)):
    content = publisher.fetch(content_id)
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{content_id}"'},
    )


@api.get("/health")
def health(services: Services = Depends(get_services)):
    ping(services.engine)
    return {"status": "ok"}


app.include_router(api)


# ---------- metadata redirects ----------
@app.get("/metadata/{property_id}")
def property_metadata(property_id: str, orchestrator: TokenizationOrchestrator = Depends(get_orchestrator)):
    return RedirectResponse(orchestrator.metadata_url(property_id), status_code=302)


@app.get("/metadata/{property_id}/{date}")
def listing_metadata(property_id: str, date: str, orchestrator: TokenizationOrchestrator = Depends(get_orchestrator)):
    return RedirectResponse(orchestrator.metadata_url(property_id, date), status_code=302)


def run():
    import uvicorn

    uvicorn.run("estate_mint.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
