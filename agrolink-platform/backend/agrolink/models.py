# agrolink/models.py
from typing import Optional, List
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    phone: str | None = None
    role: str = "farmer"
    wallet_address: str | None = Field(default=None, index=True)
    region: str | None = None
    reputation_score: float = 0.0
    total_sales: int = 0
    successful_transactions: int = 0
    dispute_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class Product(SQLModel, table=True):
    """Local mirror of one on-chain listing, keyed by onchain_id."""

    id: Optional[int] = Field(default=None, primary_key=True)
    onchain_id: Optional[int] = Field(default=None, unique=True, index=True)
    name: str
    description: str | None = None
    quantity: int = 1
    price: float = 0.0
    image_url: str | None = None
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    farmer_name: str | None = None
    farmer_phone: str | None = None

    seller: str | None = None
    buyer: str | None = None
    onchain_price: str | None = None
    metadata_uri: str | None = None
    status: str = "available"
    is_sold: bool = False

    escrow_status: str | None = None
    delivery_confirmed: bool = False
    dispute_raised: bool = False
    escrow_release_time: Optional[datetime] = None

    onchain_tx_hash: str | None = None
    onchain_log_index: Optional[int] = None
    onchain_block_number: Optional[int] = None
    # key of the Listed event that produced the current listing
    listing_tx_hash: str | None = None
    listing_log_index: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class OnchainTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tx_hash: str = Field(unique=True, index=True)
    onchain_product_id: int
    buyer: str | None = None
    seller: str | None = None
    amount: str = ""
    block_number: Optional[int] = None
    log_index: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class SupplyChainTrace(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", unique=True, index=True)
    onchain_id: Optional[int] = None
    farm_region: str | None = None
    harvest_date: Optional[datetime] = None
    current_stage: str = "harvested"
    current_location: str | None = None
    estimated_delivery: Optional[datetime] = None
    verification_hash: str
    verified_on_chains: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class SupplyChainEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    trace_id: int = Field(foreign_key="supplychaintrace.id", index=True)
    event_type: str
    location: str | None = None
    description: str | None = None
    verified: bool = False
    # "metadata" is reserved on SQLModel classes
    details: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class NFTCertificate(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", unique=True, index=True)
    certificate_hash: str = Field(index=True)
    metadata_uri: str
    image_uri: str
    product_name: str
    farmer_name: str | None = None
    farmer_address: str | None = None
    region: str | None = None
    quality_grade: str | None = None
    organic_certified: bool = False
    harvest_date: Optional[datetime] = None
    transaction_hash: str | None = None
    owner_address: str | None = None
    owner_id: Optional[int] = Field(default=None, foreign_key="user.id")
    attributes: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class FarmerReputationHistory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    farmer_id: int = Field(foreign_key="user.id", index=True)
    farmer_phone: str | None = None
    previous_score: float
    new_score: float
    change_reason: str
    transaction_id: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
