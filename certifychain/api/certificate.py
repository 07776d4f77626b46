"""Certificate record endpoints.

Mutations need a signed-in wallet that owns the issuing entity; lookups
are public so anyone holding an id, an on-chain id or a hash can check a
certificate.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from certifychain.api.models import (
    AttachChainIdRequest,
    CertificateResponse,
    CertificateSearchResponse,
    CreateCertificateRequest,
    RevokeCertificateRequest,
)
from certifychain.auth.principal import Principal, get_optional_principal, require_principal
from certifychain.db.models import Certificate
from certifychain.db.session import get_db
from certifychain.exceptions import NotFoundError
from certifychain.store.certificates import CertificateStore

log = logging.getLogger(__name__)

router = APIRouter(prefix="/certificate", tags=["certificate"])


def certificate_status(cert: Certificate) -> str:
    if cert.is_revoked:
        return "revoked"
    return "valid" if cert.blockchain_id else "pending"


def certificate_response(cert: Certificate) -> CertificateResponse:
    return CertificateResponse(
        id=cert.id,
        blockchain_id=cert.blockchain_id,
        certificate_hash=cert.certificate_hash,
        recipient_name=cert.recipient_name,
        recipient_email=cert.recipient_email,
        description=cert.description,
        document_url=cert.document_url,
        is_revoked=cert.is_revoked,
        issued_at=cert.issued_at,
        revoked_at=cert.revoked_at,
        transaction_hash=cert.transaction_hash,
        revoke_tx_hash=cert.revoke_tx_hash,
        issuer_id=cert.issuer_id,
        issuer_name=cert.issuer.name if cert.issuer else None,
        status=certificate_status(cert),
    )


def _found(cert: Optional[Certificate], what: str) -> CertificateResponse:
    if cert is None:
        raise NotFoundError(f"Certificate not found: {what}")
    return certificate_response(cert)


# =============================================================================
# Mutations
# =============================================================================


@router.post("", response_model=CertificateResponse)
async def create_certificate(
    body: CreateCertificateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> CertificateResponse:
    """Create the off-chain row and compute the certificate hash."""
    store = CertificateStore(db, principal)
    cert = store.create(body, body.issuer_id)
    return certificate_response(cert)


@router.post("/{cert_id}/chain", response_model=CertificateResponse)
async def attach_chain_id(
    cert_id: int,
    body: AttachChainIdRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> CertificateResponse:
    """Record the on-chain id once the issuance transaction confirmed."""
    store = CertificateStore(db, principal)
    cert = store.attach_chain_id(cert_id, body.blockchain_id, body.transaction_hash)
    return certificate_response(cert)


@router.post("/{cert_id}/revoke", response_model=CertificateResponse)
async def revoke_certificate(
    cert_id: int,
    body: Optional[RevokeCertificateRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> CertificateResponse:
    store = CertificateStore(db, principal)
    cert = store.revoke(cert_id, body.revoke_tx_hash if body else None)
    return certificate_response(cert)


# =============================================================================
# Queries
# =============================================================================


@router.get("/me", response_model=list[CertificateResponse])
async def list_my_certificates(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> list[CertificateResponse]:
    """Certificates issued by the caller's entity, newest first."""
    store = CertificateStore(db, principal)
    return [certificate_response(c) for c in store.list_by_owner()]


@router.get("/search", response_model=CertificateSearchResponse)
async def search_certificates(
    query: Optional[str] = None,
    recipient_email: Optional[str] = None,
    is_revoked: Optional[bool] = None,
    limit: int = Query(10),
    cursor: Optional[int] = None,
    db: Session = Depends(get_db),
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> CertificateSearchResponse:
    store = CertificateStore(db, principal)
    certs, next_cursor = store.search(
        query=query,
        recipient_email=recipient_email,
        is_revoked=is_revoked,
        limit=limit,
        cursor=cursor,
    )
    return CertificateSearchResponse(
        certificates=[certificate_response(c) for c in certs],
        next_cursor=next_cursor,
    )


@router.get("/chain/{blockchain_id}", response_model=CertificateResponse)
async def get_by_blockchain_id(
    blockchain_id: str,
    db: Session = Depends(get_db),
) -> CertificateResponse:
    store = CertificateStore(db)
    return _found(store.get_by_blockchain_id(blockchain_id.lower()), blockchain_id)


@router.get("/entity/{issuer_id}", response_model=list[CertificateResponse])
async def list_entity_certificates(
    issuer_id: str,
    db: Session = Depends(get_db),
) -> list[CertificateResponse]:
    store = CertificateStore(db)
    return [certificate_response(c) for c in store.list_by_entity(issuer_id)]


@router.get("/hash/{certificate_hash}", response_model=CertificateResponse)
async def verify_hash(
    certificate_hash: str,
    db: Session = Depends(get_db),
) -> CertificateResponse:
    """Look a certificate up by its content hash."""
    store = CertificateStore(db)
    return _found(store.find_by_hash(certificate_hash.lower()), certificate_hash)


@router.get("/{cert_id}", response_model=CertificateResponse)
async def get_certificate(
    cert_id: int,
    db: Session = Depends(get_db),
) -> CertificateResponse:
    store = CertificateStore(db)
    return _found(store.get(cert_id), str(cert_id))
