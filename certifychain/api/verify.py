"""Public on-chain verification."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from certifychain.api.certificate import certificate_response
from certifychain.api.models import VerifyResponse
from certifychain.chain.client import get_chain_client
from certifychain.chain.receipts import to_topic_hex
from certifychain.db.session import get_db
from certifychain.exceptions import NotFoundError
from certifychain.store.certificates import CertificateStore

log = logging.getLogger(__name__)

router = APIRouter(prefix="/verify", tags=["verify"])


@router.get("/{on_chain_id}", response_model=VerifyResponse)
async def verify(on_chain_id: str, db: Session = Depends(get_db)) -> VerifyResponse:
    """Read a certificate from the registry and cross-check the off-chain row.

    The chain is authoritative for validity; ``hash_matches`` reports
    whether the stored row carries the same hash.
    """
    topic = to_topic_hex(on_chain_id)
    row = CertificateStore(db).get_by_blockchain_id(topic)
    record = certificate_response(row) if row is not None else None

    try:
        onchain = await get_chain_client().verify_certificate(on_chain_id)
    except NotFoundError:
        log.info(f"Verification: {on_chain_id} not found on-chain")
        return VerifyResponse(on_chain_id=topic, status="not_found", record=record)

    return VerifyResponse(
        on_chain_id=topic,
        status="revoked" if onchain.is_revoked else "valid",
        certificate_hash=onchain.certificate_hash,
        issuer=onchain.issuer,
        issuer_name=onchain.issuer_name,
        issued_at=onchain.issued_at,
        metadata=onchain.metadata,
        record=record,
        hash_matches=(row.certificate_hash == onchain.certificate_hash) if row is not None else None,
    )
