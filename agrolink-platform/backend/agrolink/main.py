# agrolink/main.py
"""Read-only API over the on-chain projection kept current by the watcher."""
from typing import Optional

from fastapi import FastAPI, HTTPException, Query

from . import crud
from .certificates import get_nft_certificate, get_user_certificates
from .reputation import calculate_farmer_reputation, get_reputation_history, get_top_farmers
from .schemas import (
    CertificateOut,
    EscrowList,
    EscrowOut,
    FarmerOut,
    OnchainTransactionOut,
    ReputationOut,
    SupplyChainEventOut,
    SupplyChainTraceOut,
    TransactionList,
)

app = FastAPI(title="AgroLink Marketplace Chain API")


@app.on_event("startup")
def startup():
    crud.init_db()


@app.get("/onchain/transactions", response_model=TransactionList)
def list_transactions(limit: int = Query(50, ge=1), skip: int = Query(0, ge=0)):
    rows = crud.list_onchain_transactions(limit=min(limit, 200), skip=skip)
    return {"count": len(rows), "transactions": rows}


@app.get("/onchain/transactions/{tx_hash}", response_model=OnchainTransactionOut)
def transaction_by_hash(tx_hash: str):
    tx = crud.get_onchain_transaction(tx_hash)
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return tx


@app.get("/escrow/active", response_model=EscrowList)
def active_escrows(status: Optional[str] = None, wallet: Optional[str] = None):
    """Sold on-chain products; `wallet` narrows to products where it is buyer or seller."""
    products = crud.list_active_escrows(status=status, wallet=wallet)
    return {"count": len(products), "products": products}


@app.get("/escrow/{product_id}", response_model=EscrowOut)
def escrow_status(product_id: int):
    product = crud.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    out = EscrowOut.model_validate(product)
    out.escrow_status = out.escrow_status or "pending"
    return out


@app.get("/reputation/top", response_model=list[FarmerOut])
def top_farmers(limit: int = Query(10, ge=1, le=100)):
    return get_top_farmers(limit)


@app.get("/reputation/{farmer_id}", response_model=ReputationOut)
def farmer_reputation(farmer_id: int, limit: int = Query(20, ge=1, le=100)):
    farmer = crud.get_user(farmer_id)
    if not farmer or farmer.role != "farmer":
        raise HTTPException(status_code=404, detail="Farmer not found")
    return {
        "farmer": farmer,
        "score": calculate_farmer_reputation(farmer_id),
        "history": get_reputation_history(farmer_id, limit),
    }


@app.get("/nft/owner/{owner_id}", response_model=list[CertificateOut])
def owner_certificates(owner_id: int):
    return get_user_certificates(owner_id)


@app.get("/nft/{product_id}", response_model=CertificateOut)
def product_certificate(product_id: int):
    cert = get_nft_certificate(product_id)
    if not cert:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return cert


@app.get("/supply-chain/{product_id}", response_model=SupplyChainTraceOut)
def supply_chain_trace(product_id: int):
    trace = crud.get_trace(product_id)
    if not trace:
        raise HTTPException(status_code=404, detail="Supply chain trace not found for this product")
    out = SupplyChainTraceOut.model_validate(trace)
    out.events = [SupplyChainEventOut.model_validate(e) for e in crud.list_trace_events(trace.id)]
    return out
