# agrolink/supply_chain.py
import hashlib
import json
import logging
from typing import Optional

from agrolink import crud
from agrolink.models import Product, SupplyChainTrace, User, utcnow

log = logging.getLogger(__name__)

HARVESTED = "harvested"


def verification_hash(product: Product, timestamp: str, seller: Optional[str]) -> str:
    """SHA-256 over {productId, onchainId, timestamp, seller} in that key order."""
    data = {
        "productId": product.id,
        "onchainId": product.onchain_id,
        "timestamp": timestamp,
        "seller": seller,
    }
    return hashlib.sha256(json.dumps(data, separators=(",", ":")).encode("utf-8")).hexdigest()


def initialize_trace(product: Product, farmer: Optional[User] = None) -> Optional[SupplyChainTrace]:
    """
    Create the product's trace at the harvested stage, seeded with one
    verified harvested event. Returns the existing trace if there is one.
    """
    existing = crud.get_trace(product.id)
    if existing:
        return existing

    now = utcnow()
    seller = product.seller or (farmer.wallet_address if farmer else None)
    region = farmer.name if farmer else "Unknown"
    trace = {
        "product_id": product.id,
        "onchain_id": product.onchain_id,
        "farm_region": region,
        "harvest_date": now,
        "current_stage": HARVESTED,
        "verification_hash": verification_hash(product, now.isoformat(), seller),
        "verified_on_chains": ["polkadot"],
    }
    first_event = {
        "event_type": HARVESTED,
        "location": farmer.name if farmer else "Farm",
        "description": f"Product harvested by {product.farmer_name or 'Farmer'}",
        "verified": True,
        "details": {
            "farmerName": product.farmer_name,
            "farmerPhone": product.farmer_phone,
            "productName": product.name,
        },
    }
    created = crud.create_trace(trace, first_event)
    if created is None:
        # lost a race with another delivery of the same purchase
        return crud.get_trace(product.id)
    log.info("Initialized supply chain trace %s for product %s", created.id, product.id)
    return created
