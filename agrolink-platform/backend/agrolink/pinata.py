# agrolink/pinata.py
import requests
from .settings import settings
from typing import Optional, Dict
import json

PINATA_BASE_URL = "https://api.pinata.cloud"
PIN_JSON_URL = f"{PINATA_BASE_URL}/pinning/pinJSONToIPFS"


class PinataError(Exception):
    pass


def is_configured() -> bool:
    return bool(settings.PINATA_JWT or (settings.PINATA_API_KEY and settings.PINATA_API_SECRET))


def _auth_headers() -> Dict[str, str]:
    """
    Build authorization headers for Pinata.
    """
    headers = {}
    if settings.PINATA_JWT:
        headers["Authorization"] = f"Bearer {settings.PINATA_JWT}"
    elif settings.PINATA_API_KEY and settings.PINATA_API_SECRET:
        headers["pinata_api_key"] = settings.PINATA_API_KEY
        headers["pinata_secret_api_key"] = settings.PINATA_API_SECRET
    else:
        raise PinataError("Pinata credentials not configured")
    return headers


def pin_json(data: dict, metadata: Optional[dict] = None) -> str:
    """
    Pins JSON data to Pinata and returns its CID.
    """
    headers = _auth_headers()
    headers["Content-Type"] = "application/json"

    payload = {"pinataContent": data}
    if metadata:
        payload["pinataMetadata"] = metadata

    try:
        res = requests.post(PIN_JSON_URL, headers=headers, data=json.dumps(payload, default=str), timeout=60)
        res.raise_for_status()
        body = res.json()
    except (requests.RequestException, ValueError) as e:
        raise PinataError(f"Pinata JSON upload failed: {e}") from e

    cid = body.get("IpfsHash") or body.get("ipfsHash")
    if not cid:
        raise PinataError("Pinata did not return CID")
    return cid
