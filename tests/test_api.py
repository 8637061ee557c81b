import json

import pytest
from fastapi.testclient import TestClient
from web3 import Web3

from estate_mint.crud import Ledger, make_engine
from estate_mint.errors import DependencyError
from estate_mint.main import app, get_services
from estate_mint.services import Services

from conftest import GATEWAY, MARKETPLACE_CONTRACT_ADDRESS, PROPERTY_CONTRACT_ADDRESS, WALLET

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

MINT_BODY = {
    "property_name": "Seaside Villa",
    "property_address": "1 Ocean Drive",
    "description": "Three bedrooms with a view",
    "to": WALLET,
}

LISTING_BODY = {
    "propertyId": "00000001",
    "date": "1735689600",
    "rentPrice": "1000",
    "rentSecurity": "500",
    "bookingPrice": "100",
    "bookingSecurity": "50",
}


def client_for(services):
    app.dependency_overrides[get_services] = lambda: services
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def services(engine, seeded_registry, ledger, publisher, orchestrator):
    return Services(engine, seeded_registry, ledger, publisher, orchestrator)


@pytest.fixture
def client(services):
    return client_for(services)


@pytest.fixture
def minted(client):
    res = client.post("/api/v1/create-property", json=MINT_BODY)
    assert res.status_code == 200
    return res.json()


# ---------- create-property ----------
def test_create_property_returns_metadata_and_transaction(client, publisher):
    res = client.post("/api/v1/create-property", json=MINT_BODY)

    assert res.status_code == 200
    body = res.json()
    assert body["ipfs_hash"] == "bafytest0001"
    assert body["token_uri"] == GATEWAY + "bafytest0001"
    assert body["property_id"] == "00000001"
    assert body["transaction"]["to"] == PROPERTY_CONTRACT_ADDRESS
    assert body["transaction"]["data"].startswith("0x40c10f19")
    assert "error" not in body
    assert "transaction_hash" not in body
    assert json.loads(publisher.store["bafytest0001"])["name"] == "Seaside Villa"


def test_mint_is_an_alias(client):
    res = client.post("/api/v1/mint", json=MINT_BODY)

    assert res.status_code == 200
    assert res.json()["property_id"] == "00000001"


def test_create_property_accepts_multipart_image(client, publisher):
    res = client.post(
        "/api/v1/create-property",
        data={**MINT_BODY, "attributes": json.dumps([{"trait_type": "bedrooms", "value": 3}])},
        files={"image": ("villa.png", PNG, "image/png")},
    )

    assert res.status_code == 200
    metadata = json.loads(publisher.store[res.json()["ipfs_hash"]])
    assert metadata["image"] == GATEWAY + "bafytest0001"
    assert metadata["attributes"] == [{"trait_type": "bedrooms", "value": 3}]


def test_create_property_rejects_bad_file_type(client, publisher):
    res = client.post(
        "/api/v1/create-property",
        data=MINT_BODY,
        files={"image": ("notes.pdf", b"%PDF-1.4", "application/pdf")},
    )

    assert res.status_code == 400
    assert "Invalid file type" in res.json()["error"]
    assert publisher.calls == []


@pytest.mark.parametrize("body", [
    {**MINT_BODY, "to": "0x1234"},
    {**MINT_BODY, "property_name": ""},
    {**MINT_BODY, "attributes": "three bedrooms"},
    ["not", "an", "object"],
])
def test_create_property_rejects_invalid_payloads(client, publisher, body):
    res = client.post("/api/v1/create-property", json=body)

    assert res.status_code == 400
    assert list(res.json()) == ["error"]
    assert publisher.calls == []


def test_create_property_rejects_malformed_json(client):
    res = client.post(
        "/api/v1/create-property",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert res.status_code == 400


def test_ledger_outage_returns_multi_status(services, make_orchestrator, broken_engine):
    services.orchestrator = make_orchestrator(ledger=Ledger(broken_engine))
    client = client_for(services)

    res = client.post("/api/v1/create-property", json=MINT_BODY)

    assert res.status_code == 207
    body = res.json()
    assert body["ipfs_hash"] == "bafytest0001"
    assert body["error"].startswith("persisting: ")
    assert "transaction" in body


def test_publish_failure_is_service_unavailable(client, publisher):
    publisher.fail = DependencyError("Pinata JSON upload failed")

    res = client.post("/api/v1/create-property", json=MINT_BODY)

    assert res.status_code == 503
    assert res.json() == {"error": "Pinata JSON upload failed"}


def test_json_boolean_attributes_are_kept(client, publisher):
    attributes = [{"trait_type": "furnished", "value": True}, {"trait_type": "floors", "value": 2}]

    res = client.post("/api/v1/create-property", json={**MINT_BODY, "attributes": attributes})

    assert res.status_code == 200
    published = json.loads(publisher.store[res.json()["ipfs_hash"]])["attributes"]
    assert published == attributes
    assert published[0]["value"] is True


# ---------- create-listing ----------
def test_create_listing(client, minted):
    res = client.post("/api/v1/create-listing", json=LISTING_BODY)

    assert res.status_code == 200
    body = res.json()
    assert body["property_id"] == "00000001"
    assert body["date"] == "1735689600"
    assert body["transaction"]["to"] == MARKETPLACE_CONTRACT_ADDRESS


def test_create_listing_rejects_bad_amount(client, minted, publisher):
    before = len(publisher.calls)

    res = client.post("/api/v1/create-listing", json={**LISTING_BODY, "rentPrice": "-1"})

    assert res.status_code == 400
    assert len(publisher.calls) == before


def test_create_listing_for_unknown_property(client):
    res = client.post("/api/v1/create-listing", json={**LISTING_BODY, "propertyId": "42"})

    assert res.status_code == 404
    assert res.json() == {"error": "property with ID '42' not found"}


def test_ledger_outage_before_listing_publish_is_plain_error(services, make_orchestrator, broken_engine, publisher):
    services.orchestrator = make_orchestrator(ledger=Ledger(broken_engine))
    client = client_for(services)

    res = client.post("/api/v1/create-listing", json=LISTING_BODY)

    assert res.status_code == 503
    assert list(res.json()) == ["error"]
    assert res.json()["error"].startswith("ledger read failed: ")
    assert publisher.calls == []


def test_duplicate_listing_returns_multi_status(client, minted):
    client.post("/api/v1/create-listing", json=LISTING_BODY)

    res = client.post("/api/v1/create-listing", json=LISTING_BODY)

    assert res.status_code == 207
    assert res.json()["error"].startswith("persisting: ")


# ---------- metadata ----------
def test_property_metadata_redirects_to_gateway(client, minted):
    res = client.get("/metadata/00000001", follow_redirects=False)

    assert res.status_code == 302
    assert res.headers["location"] == GATEWAY + minted["ipfs_hash"]


def test_listing_metadata_redirects_to_gateway(client, minted):
    listing = client.post("/api/v1/create-listing", json=LISTING_BODY).json()

    res = client.get("/metadata/00000001/1735689600", follow_redirects=False)

    assert res.status_code == 302
    assert res.headers["location"] == GATEWAY + listing["ipfs_hash"]


def test_metadata_for_unknown_property(client):
    res = client.get("/metadata/00000404", follow_redirects=False)

    assert res.status_code == 404


# ---------- ledger reads ----------
def test_list_properties_by_wallet(client, minted):
    res = client.get("/api/v1/properties", params={"wallet": WALLET})

    assert res.status_code == 200
    assert [p["property_id"] for p in res.json()] == ["00000001"]
    assert res.json()[0]["wallet_address"] == Web3.to_checksum_address(WALLET)

    other = client.get("/api/v1/properties", params={"wallet": "0x" + "cd" * 20})
    assert other.json() == []


def test_get_property(client, minted):
    res = client.get("/api/v1/properties/00000001")

    assert res.status_code == 200
    assert res.json()["ipfs_hash"] == minted["ipfs_hash"]


def test_property_listings(client, minted):
    assert client.get("/api/v1/properties/00000001/listings").status_code == 404

    client.post("/api/v1/create-listing", json=LISTING_BODY)
    res = client.get("/api/v1/properties/00000001/listings")

    assert res.status_code == 200
    assert [listing["date"] for listing in res.json()] == ["1735689600"]


# ---------- registry ----------
def test_get_chain(client):
    res = client.get("/api/v1/chains/unichain")

    assert res.status_code == 200
    assert res.json() == {"name": "unichain", "rpc": "http://rpc.test", "chain_id": 1301}
    assert client.get("/api/v1/chains/sepolia").status_code == 404


def test_upsert_contract(client):
    address = "0x" + "33" * 20

    res = client.put("/api/v1/contracts/marketplace", json={"address": address})

    assert res.status_code == 200
    assert res.json()["address"] == Web3.to_checksum_address(address)
    assert client.put("/api/v1/contracts/marketplace", json={"address": "0x33"}).status_code == 400


# ---------- content ----------
def test_upload_and_fetch_file(client):
    res = client.post("/api/v1/ipfs/upload", files={"file": ("deed.txt", b"title deed", "text/plain")})

    assert res.status_code == 200
    body = res.json()
    assert body == {"hash": "bafytest0001", "name": "deed.txt", "size": 10, "uri": GATEWAY + "bafytest0001"}

    fetched = client.get("/api/v1/ipfs/bafytest0001")
    assert fetched.status_code == 200
    assert fetched.content == b"title deed"
    assert client.get("/api/v1/ipfs/bafymissing").status_code == 404


def test_health(client):
    res = client.get("/api/v1/health")

    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_health_reports_database_outage(services):
    services.engine = make_engine("sqlite:////nonexistent-dir/estate.db", timeout=0.1)

    res = client_for(services).get("/api/v1/health")

    assert res.status_code == 503
