# agrolink/dispatcher.py
"""
Follow-up work for a newly recorded purchase: supply chain trace, NFT
certificate and farmer reputation. Each step is idempotent on its own key
and failures are logged per step; the purchase itself is already committed.
"""
import logging
from typing import Optional

from agrolink import crud
from agrolink.certificates import CertificateData, create_nft_certificate
from agrolink.models import OnchainTransaction, Product, User
from agrolink.reputation import TRANSACTION_COMPLETED, update_farmer_reputation
from agrolink.supply_chain import initialize_trace

log = logging.getLogger(__name__)


class SideEffectDispatcher:
    def dispatch(self, product: Product, transaction: OnchainTransaction) -> dict:
        """Run every step; returns {step: succeeded} for callers that want to report it."""
        results = {}
        farmer = self._step("farmer lookup", results, self.find_farmer, product)
        trace = self._step("supply chain trace", results, initialize_trace, product, farmer)
        self._step("nft certificate", results, self.issue_certificate, product, transaction, farmer, trace)
        self._step("reputation", results, self.credit_seller, product, transaction, farmer)
        return results

    def _step(self, name, results, fn, *args):
        try:
            value = fn(*args)
        except Exception:
            log.exception("Side effect '%s' failed for product %s", name, args[0].id)
            results[name] = False
            return None
        results[name] = True
        return value

    def find_farmer(self, product: Product) -> Optional[User]:
        if product.user_id is not None:
            farmer = crud.get_user(product.user_id)
            if farmer:
                return farmer
        if product.seller:
            return crud.get_user_by_wallet(product.seller)
        return None

    def issue_certificate(self, product, transaction, farmer, trace):
        buyer = crud.get_user_by_wallet(transaction.buyer) if transaction.buyer else None
        return create_nft_certificate(CertificateData(
            product_id=product.id,
            product_name=product.name,
            farmer_name=product.farmer_name or (farmer.name if farmer else None),
            farmer_address=product.seller,
            region=farmer.region if farmer else None,
            harvest_date=trace.harvest_date if trace else None,
            transaction_hash=transaction.tx_hash,
            image_url=product.image_url,
            owner_address=transaction.buyer,
            owner_id=buyer.id if buyer else None,
        ))

    def credit_seller(self, product, transaction, farmer):
        if farmer is None:
            log.warning("No farmer found for product %s (seller %s), reputation not updated", product.id, product.seller)
            return None
        if crud.reputation_history_exists(farmer.id, transaction.tx_hash, TRANSACTION_COMPLETED):
            log.info("Reputation already credited for tx %s", transaction.tx_hash)
            return farmer.reputation_score
        farmer = crud.update_user(farmer.id, {"total_sales": (farmer.total_sales or 0) + 1})
        return update_farmer_reputation(farmer, TRANSACTION_COMPLETED, transaction_id=transaction.tx_hash)
