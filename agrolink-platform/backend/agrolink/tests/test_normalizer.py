import pytest
from hexbytes import HexBytes
from web3.datastructures import AttributeDict

from agrolink.errors import EventDecodeError
from agrolink.normalizer import EventKind, format_units, normalize, parse_product_id

SELLER = "0x00000000000000000000000000000000000000Aa"
BUYER = "0x00000000000000000000000000000000000000Bb"
ETH = 10 ** 18


def test_decoded_web3_log():
    raw = AttributeDict({
        "event": "ProductListed",
        "args": AttributeDict({"productId": 7, "seller": SELLER, "price": 15 * ETH // 10, "metadataURI": "ipfs://Qm1"}),
        "transactionHash": HexBytes("0x" + "ab" * 32),
        "logIndex": 3,
        "blockNumber": 120,
    })

    event = normalize(raw, EventKind.LISTED)

    assert event.kind == EventKind.LISTED
    assert event.product_chain_id == 7
    assert event.actors == {"seller": SELLER}
    assert event.amount == "1.5"
    assert event.tx_hash == "0x" + "ab" * 32
    assert event.log_index == 3
    assert event.block_number == 120
    assert event.payload == {"metadata_uri": "ipfs://Qm1"}
    assert event.dedup_key == ("0x" + "ab" * 32, 3)


def test_positional_args_with_nested_transaction_hash():
    raw = {"args": [10, BUYER, SELLER, 2 * ETH], "transaction": {"hash": "0xdead"}}

    event = normalize(raw, "ProductBought")

    assert event.product_chain_id == 10
    assert event.actors == {"buyer": BUYER, "seller": SELLER}
    assert event.amount == "2.0"
    assert event.tx_hash == "0xdead"
    assert event.log_index is None
    assert event.block_number is None


def test_legacy_three_argument_purchase():
    event = normalize({"args": [4, BUYER, ETH]}, EventKind.BOUGHT)

    assert event.actors == {"buyer": BUYER}
    assert event.amount == "1.0"


def test_product_id_is_decimal_not_hex():
    event = normalize({"args": {"productId": "10", "buyer": BUYER}}, EventKind.DELIVERY_CONFIRMED)
    assert event.product_chain_id == 10


def test_plain_args_mapping_without_envelope():
    event = normalize({"productId": 5, "raisedBy": BUYER}, EventKind.DISPUTE_RAISED)
    assert event.product_chain_id == 5
    assert event.actors == {"raised_by": BUYER}


def test_dispute_resolution_keeps_outcome():
    raw = {"args": {"productId": 5, "favorBuyer": True, "resolver": SELLER}, "transactionHash": "0x01", "logIndex": 0}
    event = normalize(raw, EventKind.DISPUTE_RESOLVED)
    assert event.payload == {"favor_buyer": True}
    assert event.actors == {"resolver": SELLER}


def test_escrow_release_amount():
    event = normalize({"args": {"productId": 1, "seller": SELLER, "amount": 25 * ETH // 10}}, EventKind.ESCROW_RELEASED)
    assert event.amount == "2.5"


def test_empty_tx_hash_is_missing():
    event = normalize({"args": {"productId": 1, "buyer": BUYER}, "transactionHash": ""}, EventKind.DELIVERY_CONFIRMED)
    assert event.tx_hash is None


@pytest.mark.parametrize("raw", [
    {"args": {"buyer": BUYER}},
    {"args": {"productId": "0x1f", "buyer": BUYER}},
    {"args": {"productId": "seven", "buyer": BUYER}},
])
def test_bad_product_id_raises(raw):
    with pytest.raises(EventDecodeError):
        normalize(raw, EventKind.DELIVERY_CONFIRMED)


def test_unknown_kind_raises():
    with pytest.raises(ValueError):
        normalize({"args": {"productId": 1}}, "ProductBurned")


@pytest.mark.parametrize("value, expected", [
    (0, "0.0"),
    (1, "0.000000000000000001"),
    (ETH, "1.0"),
    (15 * ETH // 10, "1.5"),
    (10 * ETH, "10.0"),
    ("2500000000000000000", "2.5"),
    (123456789 * ETH + 1, "123456789.000000000000000001"),
])
def test_format_units(value, expected):
    assert format_units(value) == expected


@pytest.mark.parametrize("value", [None, "1.5", "abc", True])
def test_format_units_rejects_non_integers(value):
    with pytest.raises(EventDecodeError):
        format_units(value)


def test_parse_product_id():
    assert parse_product_id(" 42 ") == 42
    assert parse_product_id(42) == 42
    with pytest.raises(EventDecodeError):
        parse_product_id(None)
