import logging

from agrolink import crud
from agrolink.dispatcher import SideEffectDispatcher
from agrolink.models import FarmerReputationHistory, NFTCertificate, OnchainTransaction, SupplyChainEvent

from conftest import BUYER, SELLER


def _sell(reconciler, listed, bought):
    reconciler.apply(listed())
    reconciler.apply(bought())
    return crud.get_product_by_onchain_id(7)


def test_certificate_failure_does_not_block_other_steps(reconciler, listed, bought, farmer, rows, monkeypatch):
    def broken(data):
        raise RuntimeError("pinning service down")

    monkeypatch.setattr("agrolink.dispatcher.create_nft_certificate", broken)

    product = _sell(reconciler, listed, bought)

    assert product.is_sold is True
    assert len(rows(OnchainTransaction)) == 1
    assert crud.get_trace(product.id) is not None
    assert rows(NFTCertificate) == []
    assert len(rows(FarmerReputationHistory)) == 1


def test_dispatch_reports_each_step(db, listed, reconciler, farmer, monkeypatch):
    reconciler.apply(listed())
    product = crud.get_product_by_onchain_id(7)
    tx = crud.create_onchain_transaction({"tx_hash": "0xabc", "onchain_product_id": 7, "buyer": BUYER, "amount": "1.5"})
    monkeypatch.setattr("agrolink.dispatcher.initialize_trace", lambda product, farmer: 1 / 0)

    results = SideEffectDispatcher().dispatch(product, tx)

    assert results == {
        "farmer lookup": True,
        "supply chain trace": False,
        "nft certificate": True,
        "reputation": True,
    }


def test_farmer_matched_by_wallet_ignoring_case(reconciler, listed, bought, farmer):
    _sell(reconciler, listed, bought)

    farmer = crud.get_user(farmer.id)
    assert farmer.total_sales == 1
    # one sale, escrow still pending: 50 + 1
    assert farmer.reputation_score == 51.0

    history = crud.list_reputation_history(farmer.id)
    assert len(history) == 1
    assert history[0].previous_score == 0.0
    assert history[0].new_score == 51.0
    assert history[0].change_reason == "transaction_completed"
    assert history[0].transaction_id == bought().tx_hash


def test_missing_farmer_skips_reputation_only(reconciler, listed, bought, rows, caplog):
    with caplog.at_level(logging.WARNING, logger="agrolink.dispatcher"):
        product = _sell(reconciler, listed, bought)

    assert crud.get_trace(product.id) is not None
    assert len(rows(NFTCertificate)) == 1
    assert rows(FarmerReputationHistory) == []
    assert "No farmer found" in caplog.text


def test_redispatch_credits_reputation_once(reconciler, listed, bought, farmer, rows):
    product = _sell(reconciler, listed, bought)
    tx = crud.get_onchain_transaction(bought().tx_hash)

    SideEffectDispatcher().dispatch(product, tx)

    assert len(rows(FarmerReputationHistory)) == 1
    assert len(rows(NFTCertificate)) == 1
    assert len(rows(SupplyChainEvent)) == 1
    assert crud.get_user(farmer.id).total_sales == 1


def test_certificate_and_trace_contents(reconciler, listed, bought, farmer, buyer_user):
    product = _sell(reconciler, listed, bought)

    cert = crud.get_certificate(product.id)
    assert cert.owner_address == BUYER
    assert cert.owner_id == buyer_user.id
    assert cert.farmer_address == SELLER
    assert cert.region == "Oromia"
    assert cert.quality_grade == "Standard"
    assert cert.transaction_hash == bought().tx_hash
    assert cert.metadata_uri == f"ipfs://metadata/{cert.certificate_hash}"
    # listing metadata URI doubles as the product image
    assert cert.image_uri == "ipfs://QmListing"
    assert cert.attributes["name"] == "AgroLink Certificate: onchain#7"

    trace = crud.get_trace(product.id)
    assert trace.current_stage == "harvested"
    assert trace.farm_region == "Abebe Kebede"
    assert trace.verified_on_chains == ["polkadot"]
    assert len(trace.verification_hash) == 64

    events = crud.list_trace_events(trace.id)
    assert [e.event_type for e in events] == ["harvested"]
    assert events[0].verified is True
    assert events[0].details["productName"] == "onchain#7"
