from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine, select

# FORCE model registration
import agrolink.models  # noqa

from agrolink import crud
from agrolink.normalizer import ChainEvent, EventKind
from agrolink.reconciler import Reconciler
from agrolink.settings import settings

SELLER = "0x00000000000000000000000000000000000000Aa"
BUYER = "0x00000000000000000000000000000000000000Bb"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def no_pinata(monkeypatch):
    for key in ("PINATA_JWT", "PINATA_API_KEY", "PINATA_API_SECRET"):
        monkeypatch.setattr(settings, key, None)


@pytest.fixture(scope="function")
def db(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(crud, "engine", engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def rows(db):
    def _rows(model):
        with Session(db) as s:
            return s.exec(select(model)).all()
    return _rows


@pytest.fixture
def reconciler(db):
    return Reconciler(clock=lambda: NOW)


@pytest.fixture
def farmer(db):
    return crud.create_user({
        "name": "Abebe Kebede",
        "phone": "+251911000000",
        "role": "farmer",
        # stored lowercase; events carry checksummed addresses
        "wallet_address": SELLER.lower(),
        "region": "Oromia",
    })


@pytest.fixture
def buyer_user(db):
    return crud.create_user({"name": "Buyer", "role": "buyer", "wallet_address": BUYER})


def _tx(n: int) -> str:
    return "0x" + f"{n:064x}"


@pytest.fixture
def listed():
    def _listed(pid=7, seller=SELLER, amount="1.5", tx=1, log_index=0, block=100, uri="ipfs://QmListing"):
        return ChainEvent(
            kind=EventKind.LISTED,
            product_chain_id=pid,
            actors={"seller": seller},
            amount=amount,
            tx_hash=_tx(tx) if tx is not None else None,
            log_index=log_index,
            block_number=block,
            payload={"metadata_uri": uri},
        )
    return _listed


@pytest.fixture
def bought():
    def _bought(pid=7, buyer=BUYER, seller=SELLER, amount="1.5", tx=2, log_index=0, block=101):
        return ChainEvent(
            kind=EventKind.BOUGHT,
            product_chain_id=pid,
            actors={"buyer": buyer, "seller": seller},
            amount=amount,
            tx_hash=_tx(tx) if tx is not None else None,
            log_index=log_index,
            block_number=block,
        )
    return _bought


@pytest.fixture
def escrow_event():
    def _escrow(kind, pid=7, tx=3, block=102):
        return ChainEvent(kind=kind, product_chain_id=pid, tx_hash=_tx(tx), log_index=0, block_number=block)
    return _escrow
