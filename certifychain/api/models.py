"""Request/response models for the CertifyChain API.

Shared by the FastAPI routers and by ``certifychain.api_client`` so both
sides of the wire validate against the same contract.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, HttpUrl, TypeAdapter, field_validator, validate_email

_HTTP_URL = TypeAdapter(HttpUrl)
_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _blank_to_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


def normalize_website(value: str) -> str:
    """Prefix ``https://`` when no scheme is given and check the result is a URL."""
    url = value if _SCHEME.match(value) else f"https://{value}"
    _HTTP_URL.validate_python(url)
    return url


def normalize_address(value: str) -> str:
    """Lower-cased 0x address, or ValueError."""
    value = value.strip()
    if not _ADDRESS.match(value):
        raise ValueError(f"Not a wallet address: {value!r}")
    return value.lower()


# =============================================================================
# Auth
# =============================================================================


class SignInRequest(BaseModel):
    """Signed challenge proving control of a wallet."""

    message: str = Field(..., description="Plaintext challenge that was signed")
    signature: str = Field(..., description="0x-prefixed EIP-191 signature")
    address: str = Field(..., description="Claimed wallet address")


class SignInResponse(BaseModel):
    success: bool = Field(..., description="Whether sign-in succeeded")
    user_id: Optional[str] = Field(None, description="Internal user id")
    wallet_address: Optional[str] = Field(None, description="Lower-cased wallet address")
    name: Optional[str] = Field(None, description="Display name")
    expires_at: Optional[str] = Field(None, description="Session expiry (ISO8601)")


class AuthStatusResponse(BaseModel):
    authenticated: bool = Field(..., description="Whether currently authenticated")
    user_id: Optional[str] = None
    wallet_address: Optional[str] = None
    name: Optional[str] = None
    expires_at: Optional[str] = None


class LogoutResponse(BaseModel):
    success: bool
    message: str


# =============================================================================
# Entities
# =============================================================================


class EntityProfile(BaseModel):
    """Registration form for an issuing entity."""

    wallet_address: Optional[str] = Field(
        None, description="Wallet to register; defaults to the signed-in wallet"
    )
    name: str = Field(..., min_length=1, max_length=255, description="Entity name")
    description: Optional[str] = None
    organization_type: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = Field(None, description="Website; https:// added if missing")
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    registration_number: Optional[str] = None
    tax_id: Optional[str] = None

    @field_validator(
        "wallet_address", "description", "organization_type", "country", "website",
        "email", "phone", "address", "registration_number", "tax_id",
        mode="before",
    )
    @classmethod
    def blank_is_missing(cls, v):
        return _blank_to_none(v)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("website")
    @classmethod
    def check_website(cls, v):
        if v is None:
            return v
        return normalize_website(v)

    @field_validator("wallet_address")
    @classmethod
    def check_wallet(cls, v):
        if v is None:
            return v
        return normalize_address(v)


class RegisterEntityRequest(EntityProfile):
    """Entity row plus the chain linkage, when registration already confirmed."""

    blockchain_id: Optional[str] = Field(None, description="Registered address on-chain")
    transaction_hash: Optional[str] = Field(None, description="Registration transaction")


class EntityChainLinkRequest(BaseModel):
    blockchain_id: str = Field(..., min_length=1, description="Registered address on-chain")
    transaction_hash: Optional[str] = Field(None, description="Registration transaction")


class EntityUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class EntityResponse(BaseModel):
    id: str
    wallet_address: str
    name: str
    description: Optional[str] = None
    organization_type: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    registration_number: Optional[str] = None
    tax_id: Optional[str] = None
    blockchain_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    registered_at: datetime
    status: str = Field(..., description="active once chain-linked, else pending")
    certificate_count: Optional[int] = None


class EntityDetailResponse(EntityResponse):
    certificates: list[CertificateResponse] = Field(default_factory=list)


class EntityListResponse(BaseModel):
    entities: list[EntityResponse]
    next_cursor: Optional[str] = None


# =============================================================================
# Certificates
# =============================================================================


class CertificatePayload(BaseModel):
    """What the issuer fills in; the hash is always computed server-side."""

    recipient_name: str = Field(..., min_length=1, max_length=255)
    recipient_email: Optional[str] = Field(None, description="Hashed exactly as entered")
    description: Optional[str] = None
    document_url: Optional[str] = None

    @field_validator("recipient_email", "description", "document_url", mode="before")
    @classmethod
    def blank_is_missing(cls, v):
        return _blank_to_none(v)

    @field_validator("recipient_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("recipient_email")
    @classmethod
    def check_email(cls, v):
        if v is None:
            return v
        validate_email(v)
        return v


class CreateCertificateRequest(CertificatePayload):
    issuer_id: str = Field(..., description="Entity issuing the certificate")


class AttachChainIdRequest(BaseModel):
    blockchain_id: str = Field(..., min_length=1, description="On-chain certificate id")
    transaction_hash: Optional[str] = None


class RevokeCertificateRequest(BaseModel):
    revoke_tx_hash: Optional[str] = None


class CertificateResponse(BaseModel):
    id: int
    blockchain_id: Optional[str] = None
    certificate_hash: str
    recipient_name: str
    recipient_email: Optional[str] = None
    description: Optional[str] = None
    document_url: Optional[str] = None
    is_revoked: bool
    issued_at: datetime
    revoked_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    revoke_tx_hash: Optional[str] = None
    issuer_id: str
    issuer_name: Optional[str] = None
    status: str = Field(..., description="valid | revoked | pending")


class CertificateSearchResponse(BaseModel):
    certificates: list[CertificateResponse]
    next_cursor: Optional[int] = None


# =============================================================================
# Upload / verify
# =============================================================================


class UploadResponse(BaseModel):
    url: str


class VerifyResponse(BaseModel):
    """Public verification of an on-chain certificate id."""

    on_chain_id: str
    status: str = Field(..., description="valid | revoked | not_found")
    certificate_hash: Optional[str] = None
    issuer: Optional[str] = None
    issuer_name: Optional[str] = None
    issued_at: Optional[int] = None
    metadata: Optional[str] = None
    record: Optional[CertificateResponse] = None
    hash_matches: Optional[bool] = Field(
        None, description="Off-chain hash equals on-chain hash (None without a row)"
    )


EntityDetailResponse.model_rebuild()
