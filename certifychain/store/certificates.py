"""Certificate records.

Certificates are created off-chain first so their content hash exists
before the chain transaction that embeds it. Chain linkage is attached
afterwards with ``attach_chain_id``; revocation only ever moves
``is_revoked`` from false to true.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from certifychain.api.models import CertificatePayload
from certifychain.auth.principal import Principal
from certifychain.db.models import Certificate, IssuingEntity
from certifychain.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from certifychain.store.base import BaseStore, check_page_size, keyset_page, translate_db_errors
from certifychain.store.hashing import compute_certificate_hash

log = logging.getLogger(__name__)


class CertificateStore(BaseStore):
    """CRUD for Certificate rows, ownership-checked on every mutation."""

    def __init__(
        self,
        db: Session,
        principal: Optional[Principal] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(db, principal)
        self._clock = clock

    # -------------------------------------------------------------------------
    # Ownership helpers
    # -------------------------------------------------------------------------

    def _owned_certificate(self, cert_id: int) -> Certificate:
        principal = self._require_principal()
        with translate_db_errors(self.db, "load certificate"):
            cert = self.db.get(Certificate, cert_id)
        if cert is None:
            raise NotFoundError(f"Certificate not found: {cert_id}")
        if cert.issuer.user_id != principal.user_id:
            raise UnauthorizedError("Certificate belongs to another entity")
        return cert

    def _owner_entity(self) -> Optional[IssuingEntity]:
        principal = self._require_principal()
        with translate_db_errors(self.db, "load entity"):
            return self.db.query(IssuingEntity).filter(
                IssuingEntity.user_id == principal.user_id
            ).first()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(self, payload: CertificatePayload, issuer_id: str) -> Certificate:
        """Insert a certificate and compute its hash.

        The hash covers recipient name, recipient email, issuer name and the
        current time in milliseconds; the same instant becomes ``issued_at``.
        """
        principal = self._require_principal()
        with translate_db_errors(self.db, "load entity"):
            entity = self.db.get(IssuingEntity, issuer_id)
        if entity is None:
            raise NotFoundError(f"Entity not found: {issuer_id}")
        if entity.user_id != principal.user_id:
            raise UnauthorizedError("Entity belongs to another wallet")

        timestamp_ms = int(self._clock() * 1000)
        certificate_hash = compute_certificate_hash(
            payload.recipient_name,
            payload.recipient_email,
            entity.name,
            timestamp_ms,
        )

        with translate_db_errors(self.db, "create certificate"):
            cert = Certificate(
                certificate_hash=certificate_hash,
                recipient_name=payload.recipient_name,
                recipient_email=payload.recipient_email,
                description=payload.description,
                document_url=payload.document_url,
                issued_at=datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc),
                issuer_id=entity.id,
            )
            self.db.add(cert)
            self.db.commit()
            self.db.refresh(cert)

        log.info(
            f"Certificate {cert.id} created for entity {entity.id[:8]}...",
            extra={"certificate_id": cert.id, "certificate_hash": certificate_hash},
        )
        return cert

    def attach_chain_id(
        self,
        cert_id: int,
        blockchain_id: str,
        transaction_hash: Optional[str] = None,
    ) -> Certificate:
        cert = self._owned_certificate(cert_id)
        if cert.blockchain_id and cert.blockchain_id != blockchain_id:
            raise ConflictError(
                f"Certificate {cert_id} is already linked to on-chain id {cert.blockchain_id}"
            )

        with translate_db_errors(self.db, "attach on-chain id"):
            cert.blockchain_id = blockchain_id
            cert.transaction_hash = transaction_hash or cert.transaction_hash
            self.db.commit()
            self.db.refresh(cert)

        log.info(
            f"Certificate {cert_id} linked to on-chain id {blockchain_id}",
            extra={"certificate_id": cert_id, "transaction_hash": transaction_hash},
        )
        return cert

    def revoke(self, cert_id: int, revoke_tx_hash: Optional[str] = None) -> Certificate:
        """Mark a certificate revoked. Revoking twice keeps the first timestamp."""
        cert = self._owned_certificate(cert_id)

        with translate_db_errors(self.db, "revoke certificate"):
            if not cert.is_revoked:
                cert.is_revoked = True
                cert.revoked_at = datetime.now(timezone.utc)
            if revoke_tx_hash and not cert.revoke_tx_hash:
                cert.revoke_tx_hash = revoke_tx_hash
            self.db.commit()
            self.db.refresh(cert)

        log.info(
            f"Certificate {cert_id} revoked",
            extra={"certificate_id": cert_id, "transaction_hash": revoke_tx_hash},
        )
        return cert

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, cert_id: int) -> Optional[Certificate]:
        with translate_db_errors(self.db, "load certificate"):
            return (
                self.db.query(Certificate)
                .options(joinedload(Certificate.issuer))
                .filter(Certificate.id == cert_id)
                .first()
            )

    def get_by_blockchain_id(self, blockchain_id: str) -> Optional[Certificate]:
        with translate_db_errors(self.db, "load certificate"):
            return (
                self.db.query(Certificate)
                .options(joinedload(Certificate.issuer))
                .filter(Certificate.blockchain_id == blockchain_id)
                .first()
            )

    def find_by_hash(self, certificate_hash: str) -> Optional[Certificate]:
        with translate_db_errors(self.db, "load certificate"):
            return (
                self.db.query(Certificate)
                .options(joinedload(Certificate.issuer))
                .filter(Certificate.certificate_hash == certificate_hash)
                .first()
            )

    def list_by_entity(self, issuer_id: str) -> list[Certificate]:
        with translate_db_errors(self.db, "list certificates"):
            return (
                self.db.query(Certificate)
                .options(joinedload(Certificate.issuer))
                .filter(Certificate.issuer_id == issuer_id)
                .order_by(Certificate.issued_at.desc(), Certificate.id.desc())
                .all()
            )

    def list_by_owner(self) -> list[Certificate]:
        entity = self._owner_entity()
        if entity is None:
            return []
        return self.list_by_entity(entity.id)

    def search(
        self,
        query: Optional[str] = None,
        recipient_email: Optional[str] = None,
        is_revoked: Optional[bool] = None,
        limit: int = 10,
        cursor: Optional[int] = None,
    ) -> tuple[list[Certificate], Optional[int]]:
        """Keyword search over recipient name, recipient email and hash."""
        check_page_size(limit)
        with translate_db_errors(self.db, "search certificates"):
            q = self.db.query(Certificate).options(joinedload(Certificate.issuer))
            if recipient_email:
                q = q.filter(Certificate.recipient_email == recipient_email)
            if is_revoked is not None:
                q = q.filter(Certificate.is_revoked == is_revoked)
            if query:
                q = q.filter(
                    or_(
                        Certificate.recipient_name.contains(query, autoescape=True),
                        Certificate.recipient_email.contains(query, autoescape=True),
                        Certificate.certificate_hash.contains(query, autoescape=True),
                    )
                )

            cursor_row = None
            if cursor is not None:
                cursor_row = self.db.get(Certificate, cursor)
                if cursor_row is None:
                    raise ValidationError(f"Unknown cursor: {cursor}", field="cursor")

            return keyset_page(q, Certificate, Certificate.issued_at, cursor_row, limit)
