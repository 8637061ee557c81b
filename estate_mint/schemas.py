# estate_mint/schemas.py
from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Attribute(BaseModel):
    trait_type: str
    value: Union[bool, str, int, float]
    display_type: Optional[str] = None


# Request fields are optional at the schema level; presence is checked by the
# workflow so every rejection carries the same {"error": ...} shape.
class MintRequest(BaseModel):
    property_name: Optional[str] = None
    property_address: Optional[str] = None
    description: Optional[str] = None
    to: Optional[str] = None
    image: Optional[str] = None
    external_url: Optional[str] = None
    attributes: Optional[List[Attribute]] = None


class ListingRequest(BaseModel):
    propertyId: Optional[str] = None
    date: Optional[str] = None
    rentPrice: Optional[str] = None
    rentSecurity: Optional[str] = None
    bookingPrice: Optional[str] = None
    bookingSecurity: Optional[str] = None


class TransactionData(BaseModel):
    chainId: str
    to: str
    data: str
    value: str = "0x0"


class MintResponse(BaseModel):
    ipfs_hash: Optional[str] = None
    token_uri: Optional[str] = None
    property_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    transaction: Optional[TransactionData] = None
    error: Optional[str] = None


class ListingResponse(BaseModel):
    ipfs_hash: Optional[str] = None
    token_uri: Optional[str] = None
    property_id: Optional[str] = None
    date: Optional[str] = None
    transaction: Optional[TransactionData] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str


class PropertyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    property_id: str
    ipfs_hash: str
    wallet_address: str
    property_name: str
    property_address: str
    description: str
    image: str
    created_at: datetime
    updated_at: datetime


class ListingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    property_id: str
    date: str
    ipfs_hash: str
    created_at: datetime
    updated_at: datetime


class ChainOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    rpc: str
    chain_id: int


class ContractUpsertIn(BaseModel):
    address: str = Field(..., description="0x-prefixed contract address")


class ContractOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    address: str
    created_at: datetime
    updated_at: datetime


class UploadResponse(BaseModel):
    hash: str
    name: str
    size: int
    uri: str
