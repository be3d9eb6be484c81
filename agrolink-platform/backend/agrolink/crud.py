# agrolink/crud.py

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, select, create_engine

from agrolink.models import (
    User,
    Product,
    OnchainTransaction,
    SupplyChainTrace,
    SupplyChainEvent,
    NFTCertificate,
    FarmerReputationHistory,
    utcnow,
)
from agrolink.settings import settings

log = logging.getLogger(__name__)


# ---------- Database Setup ----------
engine = create_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)


def init_db():
    """Initialize all SQLModel tables."""
    SQLModel.metadata.create_all(engine)


def dispose():
    """Close pooled connections (watcher shutdown)."""
    engine.dispose()


def _insert(obj):
    """Insert one row; a unique-key violation means another delivery got there first."""
    with Session(engine) as s:
        s.add(obj)
        try:
            s.commit()
        except IntegrityError:
            s.rollback()
            log.info("Unique key conflict on %s insert, treating as existing row", type(obj).__name__)
            return None
        s.refresh(obj)
        return obj


# ---------- PRODUCT PROJECTION ----------
def get_product(product_id: int) -> Optional[Product]:
    with Session(engine) as s:
        return s.get(Product, product_id)


def get_product_by_onchain_id(onchain_id: int) -> Optional[Product]:
    """Find the projection row for a contract-side product id."""
    with Session(engine) as s:
        q = select(Product).where(Product.onchain_id == onchain_id)
        return s.exec(q).first()


def create_product(obj: dict) -> Optional[Product]:
    return _insert(Product(**obj))


def update_products_by_onchain_id(onchain_id: int, data: Dict[str, Any]) -> int:
    """Apply `data` to every row for `onchain_id`; returns the number of rows touched."""
    with Session(engine) as s:
        rows = s.exec(select(Product).where(Product.onchain_id == onchain_id)).all()
        for row in rows:
            for key, value in data.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            s.add(row)
        s.commit()
        return len(rows)


def list_active_escrows(status: Optional[str] = None, wallet: Optional[str] = None, limit: int = 50) -> List[Product]:
    """Sold on-chain products, optionally narrowed to an escrow status or a buyer/seller wallet."""
    with Session(engine) as s:
        q = select(Product).where(Product.is_sold == True, Product.onchain_id.is_not(None))
        if status and status != "all":
            q = q.where(Product.escrow_status == status)
        if wallet:
            w = wallet.lower()
            q = q.where(or_(func.lower(Product.buyer) == w, func.lower(Product.seller) == w))
        q = q.order_by(Product.created_at.desc()).limit(limit)
        return s.exec(q).all()


def list_sold_products_for_farmer(user: User) -> List[Product]:
    """Sold products owned by the user or listed from their wallet."""
    with Session(engine) as s:
        owner = [Product.user_id == user.id]
        if user.wallet_address:
            owner.append(func.lower(Product.seller) == user.wallet_address.lower())
        q = select(Product).where(Product.is_sold == True, or_(*owner))
        return s.exec(q).all()


# ---------- ONCHAIN TRANSACTIONS ----------
def get_onchain_transaction(tx_hash: str) -> Optional[OnchainTransaction]:
    with Session(engine) as s:
        q = select(OnchainTransaction).where(OnchainTransaction.tx_hash == tx_hash)
        return s.exec(q).first()


def create_onchain_transaction(obj: dict) -> Optional[OnchainTransaction]:
    """Returns None when a record for the hash already exists."""
    return _insert(OnchainTransaction(**obj))


def list_onchain_transactions(limit: int = 50, skip: int = 0) -> List[OnchainTransaction]:
    with Session(engine) as s:
        q = (
            select(OnchainTransaction)
            .order_by(OnchainTransaction.created_at.desc(), OnchainTransaction.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return s.exec(q).all()


# ---------- SUPPLY CHAIN ----------
def get_trace(product_id: int) -> Optional[SupplyChainTrace]:
    with Session(engine) as s:
        q = select(SupplyChainTrace).where(SupplyChainTrace.product_id == product_id)
        return s.exec(q).first()


def create_trace(trace: dict, first_event: dict) -> Optional[SupplyChainTrace]:
    """Create a trace together with its first event in one transaction."""
    with Session(engine) as s:
        row = SupplyChainTrace(**trace)
        s.add(row)
        try:
            s.flush()
            s.add(SupplyChainEvent(trace_id=row.id, **first_event))
            s.commit()
        except IntegrityError:
            s.rollback()
            log.info("Supply chain trace for product %s already exists", trace.get("product_id"))
            return None
        s.refresh(row)
        return row


def list_trace_events(trace_id: int) -> List[SupplyChainEvent]:
    with Session(engine) as s:
        q = (
            select(SupplyChainEvent)
            .where(SupplyChainEvent.trace_id == trace_id)
            .order_by(SupplyChainEvent.created_at, SupplyChainEvent.id)
        )
        return s.exec(q).all()


# ---------- NFT CERTIFICATES ----------
def get_certificate(product_id: int) -> Optional[NFTCertificate]:
    with Session(engine) as s:
        q = select(NFTCertificate).where(NFTCertificate.product_id == product_id)
        return s.exec(q).first()


def create_certificate(obj: dict) -> Optional[NFTCertificate]:
    return _insert(NFTCertificate(**obj))


def list_user_certificates(owner_id: int) -> List[NFTCertificate]:
    with Session(engine) as s:
        q = (
            select(NFTCertificate)
            .where(NFTCertificate.owner_id == owner_id)
            .order_by(NFTCertificate.created_at.desc())
        )
        return s.exec(q).all()


# ---------- USERS / REPUTATION ----------
def get_user(user_id: int) -> Optional[User]:
    with Session(engine) as s:
        return s.get(User, user_id)


def get_user_by_wallet(wallet: str) -> Optional[User]:
    """Wallet lookup ignores checksum casing."""
    with Session(engine) as s:
        q = select(User).where(func.lower(User.wallet_address) == wallet.lower())
        return s.exec(q).first()


def create_user(obj: dict) -> Optional[User]:
    return _insert(User(**obj))


def update_user(user_id: int, data: Dict[str, Any]) -> Optional[User]:
    with Session(engine) as s:
        user = s.get(User, user_id)
        if not user:
            return None
        for key, value in data.items():
            setattr(user, key, value)
        s.add(user)
        s.commit()
        s.refresh(user)
        return user


def list_top_farmers(limit: int = 10) -> List[User]:
    with Session(engine) as s:
        q = (
            select(User)
            .where(User.role == "farmer", User.reputation_score > 0)
            .order_by(User.reputation_score.desc())
            .limit(limit)
        )
        return s.exec(q).all()


def create_reputation_history(obj: dict) -> FarmerReputationHistory:
    with Session(engine) as s:
        row = FarmerReputationHistory(**obj)
        s.add(row)
        s.commit()
        s.refresh(row)
        return row


def reputation_history_exists(farmer_id: int, transaction_id: str, reason: str) -> bool:
    with Session(engine) as s:
        q = select(FarmerReputationHistory.id).where(
            FarmerReputationHistory.farmer_id == farmer_id,
            FarmerReputationHistory.transaction_id == transaction_id,
            FarmerReputationHistory.change_reason == reason,
        )
        return s.exec(q).first() is not None


def list_reputation_history(farmer_id: int, limit: int = 20) -> List[FarmerReputationHistory]:
    with Session(engine) as s:
        q = (
            select(FarmerReputationHistory)
            .where(FarmerReputationHistory.farmer_id == farmer_id)
            .order_by(FarmerReputationHistory.created_at.desc(), FarmerReputationHistory.id.desc())
            .limit(limit)
        )
        return s.exec(q).all()
