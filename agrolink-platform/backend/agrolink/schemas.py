# agrolink/schemas.py
from pydantic import BaseModel, ConfigDict
from typing import Any, List, Optional
from datetime import datetime


class OnchainTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tx_hash: str
    onchain_product_id: int
    buyer: Optional[str]
    seller: Optional[str]
    amount: str
    block_number: Optional[int]
    log_index: Optional[int]
    created_at: datetime


class TransactionList(BaseModel):
    count: int
    transactions: List[OnchainTransactionOut]


class EscrowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    onchain_id: Optional[int]
    escrow_status: Optional[str]
    delivery_confirmed: bool
    dispute_raised: bool
    escrow_release_time: Optional[datetime]
    buyer: Optional[str]
    seller: Optional[str]
    price: float
    onchain_price: Optional[str]


class EscrowList(BaseModel):
    count: int
    products: List[EscrowOut]


class FarmerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: Optional[str]
    wallet_address: Optional[str]
    reputation_score: float
    total_sales: int
    successful_transactions: int


class ReputationHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    previous_score: float
    new_score: float
    change_reason: str
    transaction_id: Optional[str]
    notes: Optional[str]
    created_at: datetime


class ReputationOut(BaseModel):
    farmer: FarmerOut
    score: float
    history: List[ReputationHistoryOut]


class CertificateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    certificate_hash: str
    metadata_uri: str
    image_uri: str
    product_name: str
    farmer_name: Optional[str]
    farmer_address: Optional[str]
    region: Optional[str]
    quality_grade: Optional[str]
    organic_certified: bool
    harvest_date: Optional[datetime]
    transaction_hash: Optional[str]
    owner_address: Optional[str]
    owner_id: Optional[int]
    attributes: dict
    created_at: datetime


class SupplyChainEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_type: str
    location: Optional[str]
    description: Optional[str]
    verified: bool
    details: dict
    created_at: datetime


class SupplyChainTraceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    onchain_id: Optional[int]
    farm_region: Optional[str]
    harvest_date: Optional[datetime]
    current_stage: str
    current_location: Optional[str]
    verification_hash: str
    verified_on_chains: List[Any]
    events: List[SupplyChainEventOut] = []
