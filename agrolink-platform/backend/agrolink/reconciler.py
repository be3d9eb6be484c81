# agrolink/reconciler.py
"""
Applies ChainEvents to the local projection.

Every transition is keyed: listings by (listing_tx_hash, listing_log_index),
purchases by tx hash, escrow updates by chain id. Replaying a block range
therefore converges to the same rows, which is what lets the watcher restart
from an earlier block without double-recording purchases.
"""
import logging
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional

from agrolink import crud
from agrolink.dispatcher import SideEffectDispatcher
from agrolink.models import utcnow
from agrolink.normalizer import ChainEvent, EventKind

log = logging.getLogger(__name__)

ESCROW_HOLD = timedelta(days=7)


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    FAILED = "failed"


# escrow transitions that only flip projection flags
ESCROW_UPDATES = {
    EventKind.DELIVERY_CONFIRMED: {"delivery_confirmed": True, "escrow_status": "confirmed"},
    EventKind.ESCROW_RELEASED: {"escrow_status": "released"},
    EventKind.DISPUTE_RAISED: {"dispute_raised": True, "escrow_status": "disputed"},
    EventKind.DISPUTE_RESOLVED: {"dispute_raised": False, "escrow_status": "resolved"},
}


class Reconciler:
    def __init__(self, dispatcher: Optional[SideEffectDispatcher] = None, clock: Callable = utcnow):
        self.dispatcher = dispatcher or SideEffectDispatcher()
        self.clock = clock

    def apply(self, event: ChainEvent) -> Outcome:
        try:
            if event.kind == EventKind.LISTED:
                return self._listed(event)
            if event.kind == EventKind.BOUGHT:
                return self._bought(event)
            return self._escrow(event)
        except Exception:
            log.exception("Failed to reconcile %s", event.describe())
            return Outcome.FAILED

    def _chain_metadata(self, event: ChainEvent) -> dict:
        return {
            "onchain_tx_hash": event.tx_hash,
            "onchain_log_index": event.log_index,
            "onchain_block_number": event.block_number,
        }

    def _listing_fields(self, event: ChainEvent) -> dict:
        seller = event.actors.get("seller")
        metadata_uri = event.payload.get("metadata_uri")
        return {
            "name": f"onchain#{event.product_chain_id}",
            "quantity": 1,
            "price": float(event.amount) if event.amount is not None else 0.0,
            "description": f"On-chain listing by {seller}",
            "image_url": metadata_uri,
            "status": "available",
            "is_sold": False,
            "seller": seller,
            "onchain_price": event.amount,
            "metadata_uri": metadata_uri,
            "listing_tx_hash": event.tx_hash,
            "listing_log_index": event.log_index,
            **self._chain_metadata(event),
        }

    def _listed(self, event: ChainEvent) -> Outcome:
        pid = event.product_chain_id
        log.info("ProductListed - id:%s seller:%s price:%s tx:%s",
                 pid, event.actors.get("seller"), event.amount, event.tx_hash)

        existing = crud.get_product_by_onchain_id(pid)
        if existing is None:
            created = crud.create_product({"onchain_id": pid, **self._listing_fields(event)})
            if created is None:
                # a concurrent delivery inserted it between our read and write
                log.info("Product for onchain id %s appeared concurrently, skipping", pid)
                return Outcome.DUPLICATE
            log.info("Inserted product %s for onchain id %s", created.id, pid)
            return Outcome.CREATED

        # a hashless event cannot be told apart from a genuine relisting
        if event.tx_hash and (existing.listing_tx_hash, existing.listing_log_index) == event.dedup_key:
            log.info("Duplicate ProductListed event detected, skipping %s %s", event.tx_hash, event.log_index)
            return Outcome.DUPLICATE

        count = crud.update_products_by_onchain_id(pid, self._listing_fields(event))
        log.info("Updated existing product with onchain id %s, updatedCount=%s", pid, count)
        return Outcome.UPDATED

    def _bought(self, event: ChainEvent) -> Outcome:
        pid = event.product_chain_id
        buyer = event.actors.get("buyer")
        log.info("ProductBought - id:%s buyer:%s tx:%s", pid, buyer, event.tx_hash)

        existing = crud.get_product_by_onchain_id(pid)
        if existing is None:
            log.warning("No matching local product found to mark as sold for onchain id %s (tx %s)", pid, event.tx_hash)
            return Outcome.IGNORED

        # a redelivered purchase must not reset escrow progress made since
        already_applied = bool(event.tx_hash) and existing.is_sold and existing.onchain_tx_hash == event.tx_hash
        if already_applied:
            log.info("ProductBought %s already applied to onchain id %s", event.tx_hash, pid)
        else:
            count = crud.update_products_by_onchain_id(pid, {
                "is_sold": True,
                "status": "sold",
                "buyer": buyer,
                "escrow_status": "pending",
                "escrow_release_time": self.clock() + ESCROW_HOLD,
                "delivery_confirmed": False,
                "dispute_raised": False,
                **self._chain_metadata(event),
            })
            log.info("Marked product as sold for onchain id %s, updatedCount=%s", pid, count)

        transaction = self._record_transaction(event, existing.seller)
        if transaction is not None:
            product = crud.get_product_by_onchain_id(pid)
            self.dispatcher.dispatch(product, transaction)
        return Outcome.DUPLICATE if already_applied and transaction is None else Outcome.UPDATED

    def _record_transaction(self, event: ChainEvent, listed_seller: Optional[str]):
        """Insert the purchase ledger row; None when it cannot or need not be created."""
        if not event.tx_hash:
            log.warning("ProductBought for onchain id %s has no tx hash, transaction record not created",
                        event.product_chain_id)
            return None
        try:
            if crud.get_onchain_transaction(event.tx_hash):
                log.info("Onchain transaction already exists for tx %s", event.tx_hash)
                return None
            created = crud.create_onchain_transaction({
                "tx_hash": event.tx_hash,
                "onchain_product_id": event.product_chain_id,
                "buyer": event.actors.get("buyer"),
                "seller": listed_seller or event.actors.get("seller"),
                "amount": event.amount or "",
                "block_number": event.block_number,
                "log_index": event.log_index,
            })
        except Exception:
            log.exception("Failed creating onchain transaction record for %s", event.describe())
            return None
        if created is None:
            log.info("Onchain transaction for tx %s was recorded concurrently", event.tx_hash)
            return None
        log.info("Created onchain transaction record for tx %s", event.tx_hash)
        return created

    def _escrow(self, event: ChainEvent) -> Outcome:
        pid = event.product_chain_id
        count = crud.update_products_by_onchain_id(pid, dict(ESCROW_UPDATES[event.kind]))
        if count == 0:
            log.warning("%s for onchain id %s: projection not found", event.kind.value, pid)
            return Outcome.IGNORED
        log.info("%s applied to onchain id %s (tx %s)", event.kind.value, pid, event.tx_hash)
        return Outcome.UPDATED
