# agrolink/normalizer.py
"""
Turns raw contract events into ChainEvent records.

Events reach us in several shapes depending on the transport and decoding
path: web3 decoded logs (an AttributeDict with ``args``), plain mappings of
named arguments, or positional argument sequences. ``normalize`` accepts all
of them and never guesses at hex: product ids are decimal integers.
"""
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from enum import Enum
from typing import Any, Dict, Optional

from web3 import Web3

from agrolink.errors import EventDecodeError

TOKEN_DECIMALS = 18


class EventKind(str, Enum):
    LISTED = "ProductListed"
    BOUGHT = "ProductBought"
    DELIVERY_CONFIRMED = "DeliveryConfirmed"
    ESCROW_RELEASED = "EscrowReleased"
    DISPUTE_RAISED = "DisputeRaised"
    DISPUTE_RESOLVED = "DisputeResolved"


# argument order as declared in the Marketplace ABI
POSITIONAL_ARGS = {
    EventKind.LISTED: ("productId", "seller", "price", "metadataURI"),
    EventKind.BOUGHT: ("productId", "buyer", "seller", "price"),
    EventKind.DELIVERY_CONFIRMED: ("productId", "buyer"),
    EventKind.ESCROW_RELEASED: ("productId", "seller", "amount"),
    EventKind.DISPUTE_RAISED: ("productId", "raisedBy"),
    EventKind.DISPUTE_RESOLVED: ("productId", "favorBuyer", "resolver"),
}

# earlier contract builds emitted ProductBought(productId, buyer, price)
LEGACY_BOUGHT_ARGS = ("productId", "buyer", "price")

ACTOR_ARGS = {
    EventKind.LISTED: {"seller": "seller"},
    EventKind.BOUGHT: {"buyer": "buyer", "seller": "seller"},
    EventKind.DELIVERY_CONFIRMED: {"buyer": "buyer"},
    EventKind.ESCROW_RELEASED: {"seller": "seller"},
    EventKind.DISPUTE_RAISED: {"raised_by": "raisedBy"},
    EventKind.DISPUTE_RESOLVED: {"resolver": "resolver"},
}

AMOUNT_ARG = {
    EventKind.LISTED: "price",
    EventKind.BOUGHT: "price",
    EventKind.ESCROW_RELEASED: "amount",
}


@dataclass(frozen=True)
class ChainEvent:
    kind: EventKind
    product_chain_id: int
    actors: Dict[str, str] = field(default_factory=dict)
    amount: Optional[str] = None
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None
    block_number: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self):
        return (self.tx_hash, self.log_index)

    def describe(self) -> str:
        return f"{self.kind.value} id={self.product_chain_id} tx={self.tx_hash} log={self.log_index}"


def format_units(value, decimals: int = TOKEN_DECIMALS) -> str:
    """Fixed-point integer (wei) to a decimal string: 1500000000000000000 -> '1.5', 10**18 -> '1.0'."""
    if isinstance(value, bool):
        raise EventDecodeError(f"not an amount: {value!r}")
    try:
        raw = int(str(value).strip(), 10) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f"not an amount: {value!r}") from e
    with localcontext() as ctx:
        ctx.prec = 100
        text = format((Decimal(raw) / (Decimal(10) ** decimals)).normalize(), "f")
    if "." not in text:
        text += ".0"
    return text


def parse_product_id(value) -> int:
    """Decimal product id. A decimal string like '10' is 10, never 0x10."""
    if value is None or isinstance(value, bool):
        raise EventDecodeError(f"missing or invalid product id: {value!r}")
    try:
        if isinstance(value, str):
            return int(value.strip(), 10)
        return int(value)
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f"invalid product id: {value!r}") from e


def _get(obj, key):
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _optional_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _tx_hash(raw) -> Optional[str]:
    value = _get(raw, "transactionHash")
    if value is None:
        value = _get(_get(raw, "transaction"), "hash")
    if value is None or value == "" or value == b"":
        return None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value))
    return str(value)


def _arguments(raw, kind: EventKind) -> Dict[str, Any]:
    args = _get(raw, "args")
    if args is None:
        args = raw
    if isinstance(args, Mapping):
        return dict(args)
    if isinstance(args, Sequence) and not isinstance(args, (str, bytes)):
        names = POSITIONAL_ARGS[kind]
        if kind == EventKind.BOUGHT and len(args) == len(LEGACY_BOUGHT_ARGS):
            names = LEGACY_BOUGHT_ARGS
        return dict(zip(names, args))
    # attribute-style args object
    return {name: getattr(args, name) for name in POSITIONAL_ARGS[kind] if hasattr(args, name)}


def normalize(raw, kind) -> ChainEvent:
    """Build a ChainEvent from one raw event of the given kind."""
    kind = EventKind(kind)
    args = _arguments(raw, kind)

    actors = {}
    for actor, arg_name in ACTOR_ARGS[kind].items():
        if args.get(arg_name) is not None:
            actors[actor] = str(args[arg_name])

    amount = None
    amount_arg = AMOUNT_ARG.get(kind)
    if amount_arg and args.get(amount_arg) is not None:
        amount = format_units(args[amount_arg])

    payload = {}
    if kind == EventKind.LISTED:
        payload["metadata_uri"] = args.get("metadataURI")
    elif kind == EventKind.DISPUTE_RESOLVED:
        payload["favor_buyer"] = bool(args.get("favorBuyer"))

    return ChainEvent(
        kind=kind,
        product_chain_id=parse_product_id(args.get("productId")),
        actors=actors,
        amount=amount,
        tx_hash=_tx_hash(raw),
        log_index=_optional_int(_get(raw, "logIndex")),
        block_number=_optional_int(_get(raw, "blockNumber")),
        payload=payload,
    )
