"""Certificate content fingerprint."""
import hashlib
from typing import Optional


def compute_certificate_hash(
    recipient_name: str,
    recipient_email: Optional[str],
    issuer_name: str,
    timestamp_ms: int,
) -> str:
    """SHA-256 hex digest of ``name|email|issuer|timestamp_ms``.

    A missing email contributes an empty field, so ``"Jane Doe"`` issued by
    ``"Acme University"`` hashes ``"Jane Doe||Acme University|<ms>"``.
    This string is what the registry contract stores on-chain. The email is
    used exactly as entered (only surrounding blanks are stripped), never
    case-normalized.
    """
    data = f"{recipient_name}|{recipient_email or ''}|{issuer_name}|{timestamp_ms}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
