"""SQLAlchemy models for the CertifyChain record store.

Three tables: wallet users, the issuing entities they register, and the
certificates those entities issue. Chain linkage columns (blockchain_id,
transaction_hash, revoke_tx_hash) start empty and are filled once the
matching transaction confirms.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship, validates


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    """A wallet that has signed in at least once."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    wallet_address = Column(String(42), nullable=False, unique=True, index=True)
    name = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)

    entity = relationship("IssuingEntity", back_populates="user", uselist=False)


class IssuingEntity(Base):
    """An organization allowed to issue certificates.

    May exist here before its on-chain registration is confirmed; in that
    case blockchain_id and transaction_hash are NULL.
    """
    __tablename__ = "issuing_entities"

    id = Column(String(36), primary_key=True, default=_uuid)
    wallet_address = Column(String(42), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    organization_type = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    website = Column(String(500), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    registration_number = Column(String(100), nullable=True)
    tax_id = Column(String(100), nullable=True)

    blockchain_id = Column(String(66), nullable=True)
    transaction_hash = Column(String(66), nullable=True)

    registered_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)

    user = relationship("User", back_populates="entity")
    certificates = relationship(
        "Certificate",
        back_populates="issuer",
        order_by="Certificate.issued_at.desc()",
    )

    @property
    def is_chain_linked(self) -> bool:
        return bool(self.blockchain_id or self.transaction_hash)


class Certificate(Base):
    """An issued credential, optionally anchored on-chain."""
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    blockchain_id = Column(String(66), nullable=True, unique=True, index=True)
    certificate_hash = Column(String(64), nullable=False, index=True)

    recipient_name = Column(String(255), nullable=False)
    recipient_email = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    document_url = Column(String(500), nullable=True)

    is_revoked = Column(Boolean, nullable=False, default=False)
    issued_at = Column(DateTime, nullable=False, default=_now, index=True)
    revoked_at = Column(DateTime, nullable=True)
    transaction_hash = Column(String(66), nullable=True)
    revoke_tx_hash = Column(String(66), nullable=True)

    issuer_id = Column(String(36), ForeignKey("issuing_entities.id"), nullable=False, index=True)
    issuer = relationship("IssuingEntity", back_populates="certificates")

    @validates("is_revoked")
    def _validate_is_revoked(self, key, value):
        # Revocation is terminal
        if self.is_revoked and not value:
            raise ValueError(f"Certificate {self.id} is revoked and cannot be reinstated")
        return value

    @validates("certificate_hash")
    def _validate_certificate_hash(self, key, value):
        if self.certificate_hash and value != self.certificate_hash:
            raise ValueError(f"Certificate {self.id} hash is immutable")
        return value
