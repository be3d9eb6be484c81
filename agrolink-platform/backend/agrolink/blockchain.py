# agrolink/blockchain.py
import json, os
import logging
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware
from eth_utils import event_abi_to_log_topic

from agrolink.errors import ChainConnectionError
from agrolink.normalizer import EventKind

log = logging.getLogger(__name__)

# load ABI
HERE = os.path.dirname(__file__)
ABI_PATH = os.path.join(HERE, "artifacts", "Marketplace.json")
with open(ABI_PATH) as f:
    artifact = json.load(f)
ABI = artifact.get("abi", artifact) if isinstance(artifact, dict) else artifact  # if the file is just the abi array

PUSH = "push"
PULL = "pull"


def select_transport(provider_url: str) -> str:
    """ws:// and wss:// endpoints can push log subscriptions; everything else is polled."""
    if provider_url.startswith("ws://") or provider_url.startswith("wss://"):
        return PUSH
    return PULL


def event_abi(kind: EventKind) -> dict:
    for entry in ABI:
        if entry.get("type") == "event" and entry.get("name") == kind.value:
            return entry
    raise KeyError(f"{kind.value} is not in the Marketplace ABI")


def event_topic(kind: EventKind) -> str:
    """topic0 (keccak of the event signature) as 0x-hex."""
    return Web3.to_hex(event_abi_to_log_topic(event_abi(kind)))


def connect_http(provider_url: str) -> Web3:
    """
    HTTP JSON-RPC connection for the polling transport.
    Raises ChainConnectionError if the node does not answer.
    """
    w3 = Web3(Web3.HTTPProvider(provider_url))
    # PoA chains put extra bytes in block headers
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    if not w3.is_connected():
        raise ChainConnectionError(f"Cannot connect to Ethereum node at {provider_url}")
    return w3


def marketplace_contract(w3, contract_address: str):
    return w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=ABI)


def contract_event(contract, kind: EventKind):
    """The web3 ContractEvent class for an event kind (e.g. contract.events.ProductListed)."""
    return getattr(contract.events, kind.value)
