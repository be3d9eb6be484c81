# agrolink/certificates.py
import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from agrolink import crud, pinata
from agrolink.models import NFTCertificate, utcnow
from agrolink.settings import settings

log = logging.getLogger(__name__)


@dataclass
class CertificateData:
    product_id: int
    product_name: str
    farmer_name: Optional[str] = None
    farmer_address: Optional[str] = None
    region: Optional[str] = None
    quality_grade: Optional[str] = None
    organic_certified: bool = False
    harvest_date: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    image_url: Optional[str] = None
    owner_address: Optional[str] = None
    owner_id: Optional[int] = None


def generate_certificate_hash(product_id, product_name: str, farmer_address: Optional[str] = None) -> str:
    """Unique certificate hash for a product (includes creation time in ms)."""
    data = f"{product_id}-{product_name}-{farmer_address or ''}-{int(time.time() * 1000)}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def build_metadata(data: CertificateData, certificate_hash: str) -> dict:
    return {
        "name": f"AgroLink Certificate: {data.product_name}",
        "description": f"Authentic product certificate for {data.product_name} from {data.farmer_name or 'Ethiopian Farmer'}",
        "image": data.image_url or "",
        "attributes": [
            {"trait_type": "Product Name", "value": data.product_name},
            {"trait_type": "Farmer", "value": data.farmer_name or "Unknown"},
            {"trait_type": "Region", "value": data.region or "Ethiopia"},
            {"trait_type": "Quality Grade", "value": data.quality_grade or "Standard"},
            {"trait_type": "Organic Certified", "value": "Yes" if data.organic_certified else "No"},
            {"trait_type": "Harvest Date", "value": data.harvest_date.isoformat() if data.harvest_date else "N/A"},
        ],
        "certificateHash": certificate_hash,
        "transactionHash": data.transaction_hash,
        "createdAt": utcnow().isoformat(),
    }


def _metadata_uri(metadata: dict, certificate_hash: str) -> str:
    placeholder = f"ipfs://metadata/{certificate_hash}"
    if not pinata.is_configured():
        return placeholder
    try:
        cid = pinata.pin_json(metadata, metadata={"name": f"certificate-{certificate_hash[:16]}"})
    except pinata.PinataError:
        log.exception("Pinning certificate metadata failed, using placeholder URI")
        return placeholder
    return f"ipfs://{cid}"


def create_nft_certificate(data: CertificateData) -> NFTCertificate:
    """Create the certificate for a sold product; returns the existing one if already issued."""
    existing = crud.get_certificate(data.product_id)
    if existing:
        return existing

    certificate_hash = generate_certificate_hash(data.product_id, data.product_name, data.farmer_address)
    metadata = build_metadata(data, certificate_hash)

    cert = crud.create_certificate({
        "product_id": data.product_id,
        "certificate_hash": certificate_hash,
        "metadata_uri": _metadata_uri(metadata, certificate_hash),
        "image_uri": data.image_url or f"{settings.CERTIFICATE_IMAGE_BASE_URL}/{certificate_hash}.png",
        "product_name": data.product_name,
        "farmer_name": data.farmer_name,
        "farmer_address": data.farmer_address,
        "region": data.region or "Ethiopia",
        "quality_grade": data.quality_grade or "Standard",
        "organic_certified": data.organic_certified,
        "harvest_date": data.harvest_date,
        "transaction_hash": data.transaction_hash,
        "owner_address": data.owner_address,
        "owner_id": data.owner_id,
        "attributes": metadata,
    })
    if cert is None:
        return crud.get_certificate(data.product_id)
    log.info("Created NFT certificate for product %s: %s", data.product_id, certificate_hash)
    return cert


def get_nft_certificate(product_id: int) -> Optional[NFTCertificate]:
    return crud.get_certificate(product_id)


def get_user_certificates(owner_id: int) -> List[NFTCertificate]:
    return crud.list_user_certificates(owner_id)
