from types import SimpleNamespace

import pytest

from agrolink import crud
from agrolink.reputation import (
    ReputationStats,
    calculate_farmer_reputation,
    compute_reputation,
    summarize,
    update_farmer_reputation,
)


@pytest.mark.parametrize("stats, expected", [
    (ReputationStats(), 50.0),
    (ReputationStats(1, 1, 0, 1), 81.0),
    (ReputationStats(10, 10, 0, 10), 95.0),
    (ReputationStats(10, 0, 10, 0), 35.0),
    (ReputationStats(50, 50, 0, 50), 100.0),
    (ReputationStats(100, 100, 0, 100), 100.0),
    (ReputationStats(3, 1, 1, 2), 56.33),
])
def test_compute_reputation(stats, expected):
    assert compute_reputation(stats) == expected


def test_score_stays_within_bounds():
    for total in (1, 5, 10, 49, 50, 99, 100, 250):
        for disputes in (0, total):
            score = compute_reputation(ReputationStats(total, 0, disputes, 0))
            assert 0.0 <= score <= 100.0


def test_score_is_deterministic():
    stats = ReputationStats(7, 3, 2, 4)
    assert len({compute_reputation(stats) for _ in range(20)}) == 1


def test_summarize_counts_confirmed_escrows_as_released():
    products = [
        SimpleNamespace(delivery_confirmed=True, dispute_raised=False, escrow_status="confirmed"),
        SimpleNamespace(delivery_confirmed=False, dispute_raised=False, escrow_status="released"),
        SimpleNamespace(delivery_confirmed=False, dispute_raised=True, escrow_status="disputed"),
        SimpleNamespace(delivery_confirmed=False, dispute_raised=False, escrow_status="pending"),
    ]
    assert summarize(products) == ReputationStats(
        total_transactions=4, confirmed_deliveries=1, disputes=1, released_escrows=2,
    )


def test_unknown_farmer_scores_zero(db):
    assert calculate_farmer_reputation(12345) == 0.0


def test_farmer_products_matched_by_owner_or_wallet(db, farmer):
    crud.create_product({"name": "teff", "price": 1.0, "user_id": farmer.id, "is_sold": True,
                         "delivery_confirmed": True, "escrow_status": "confirmed"})
    crud.create_product({"name": "coffee", "price": 2.0, "seller": farmer.wallet_address.upper().replace("0X", "0x"),
                         "is_sold": True, "escrow_status": "released"})
    crud.create_product({"name": "unsold", "price": 3.0, "user_id": farmer.id})

    # 2 sales, 1 delivery, 2 releases: 50 + 2 + 10 + 10
    assert calculate_farmer_reputation(farmer.id) == 72.0


def test_update_appends_history(db, farmer):
    new_score = update_farmer_reputation(farmer, "manual_review", notes="imported")

    assert new_score == 50.0
    assert crud.get_user(farmer.id).reputation_score == 50.0
    history = crud.list_reputation_history(farmer.id)
    assert len(history) == 1
    assert history[0].change_reason == "manual_review"
    assert history[0].notes == "imported"
    assert history[0].farmer_phone == farmer.phone
