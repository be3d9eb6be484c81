# agrolink/reputation.py
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from agrolink import crud
from agrolink.models import FarmerReputationHistory, User

log = logging.getLogger(__name__)

BASE_SCORE = 50.0
TRANSACTION_COMPLETED = "transaction_completed"


@dataclass(frozen=True)
class ReputationStats:
    total_transactions: int = 0
    confirmed_deliveries: int = 0
    disputes: int = 0
    released_escrows: int = 0


def summarize(products: Iterable) -> ReputationStats:
    """Count the reputation inputs over a farmer's sold products."""
    products = list(products)
    return ReputationStats(
        total_transactions=len(products),
        confirmed_deliveries=sum(1 for p in products if p.delivery_confirmed),
        disputes=sum(1 for p in products if p.dispute_raised),
        released_escrows=sum(1 for p in products if p.escrow_status in ("released", "confirmed")),
    )


def compute_reputation(stats: ReputationStats) -> float:
    """
    Score in [0, 100], rounded to 2 places.

    Base 50; with history: + min(30, total/10 * 10), + delivery rate * 20,
    + escrow release rate * 10, - dispute rate * 30; +5 each at 10, 50 and
    100 transactions.
    """
    total = stats.total_transactions
    score = BASE_SCORE

    if total > 0:
        score += min(30.0, (total / 10) * 10)
        score += (stats.confirmed_deliveries / total) * 20
        score += (stats.released_escrows / total) * 10
        score -= (stats.disputes / total) * 30

    if total >= 10:
        score += 5
    if total >= 50:
        score += 5
    if total >= 100:
        score += 5

    score = max(0.0, min(100.0, score))
    return round(score, 2)


def calculate_farmer_reputation(farmer_id: int) -> float:
    """Current score for a farmer from their sold products; 0 for an unknown farmer."""
    farmer = crud.get_user(farmer_id)
    if not farmer:
        return 0.0
    return compute_reputation(summarize(crud.list_sold_products_for_farmer(farmer)))


def update_farmer_reputation(
    farmer: User,
    reason: str,
    transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> float:
    """Recompute and store the farmer's score, appending one history row."""
    previous = farmer.reputation_score or 0.0
    new_score = calculate_farmer_reputation(farmer.id)
    crud.update_user(farmer.id, {"reputation_score": new_score})
    crud.create_reputation_history({
        "farmer_id": farmer.id,
        "farmer_phone": farmer.phone,
        "previous_score": previous,
        "new_score": new_score,
        "change_reason": reason,
        "transaction_id": transaction_id,
        "notes": notes,
    })
    log.info("Updated reputation for farmer %s: %s -> %s (%s)", farmer.id, previous, new_score, reason)
    return new_score


def get_reputation_history(farmer_id: int, limit: int = 20) -> List[FarmerReputationHistory]:
    return crud.list_reputation_history(farmer_id, limit=limit)


def get_top_farmers(limit: int = 10) -> List[User]:
    return crud.list_top_farmers(limit=limit)
