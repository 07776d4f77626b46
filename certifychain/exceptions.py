"""CertifyChain error taxonomy.

Every failure the API or the reconciliation flow can report is one of these
classes. Each carries a stable ``code`` and the HTTP status the API answers
with, so the server can serialize it and ``ApiClient`` can rebuild the same
class on the other side.
"""
from enum import Enum


class CertifyChainError(Exception):
    """Base exception for CertifyChain errors."""

    code: str = "INTERNAL"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Caller errors (never retried)
# =============================================================================


class ValidationError(CertifyChainError):
    """Malformed input, rejected before any network call."""

    code = "VALIDATION"
    http_status = 422

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class UploadTooLargeError(ValidationError):
    """An uploaded file exceeds the size cap."""

    http_status = 413


class ConflictError(CertifyChainError):
    """A uniqueness rule would be violated."""

    code = "CONFLICT"
    http_status = 409


class DuplicateSubmissionError(ConflictError):
    """The same operation is already in flight for this target."""

    code = "DUPLICATE_SUBMISSION"


class UnauthorizedError(CertifyChainError):
    """The caller does not own the record it tries to mutate."""

    code = "UNAUTHORIZED"
    http_status = 403


class AuthenticationError(CertifyChainError):
    """No valid session."""

    code = "UNAUTHENTICATED"
    http_status = 401


class NotFoundError(CertifyChainError):
    """Missing row or missing on-chain record."""

    code = "NOT_FOUND"
    http_status = 404


# =============================================================================
# Chain errors
# =============================================================================


class RevertReason(str, Enum):
    """Why the registry contract rejected a transaction."""

    ALREADY_REGISTERED = "already_registered"
    ALREADY_REVOKED = "already_revoked"
    INSUFFICIENT_FEE = "insufficient_fee"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class ChainRejectedError(CertifyChainError):
    """The transaction reverted (or would revert at gas estimation)."""

    code = "CHAIN_REJECTED"
    http_status = 502
    retryable = True

    def __init__(
        self,
        message: str,
        reason: RevertReason = RevertReason.UNKNOWN,
        transaction_hash: str | None = None,
    ):
        self.reason = reason
        self.transaction_hash = transaction_hash
        super().__init__(message)

    @property
    def means_already_done(self) -> bool:
        """The desired chain state already exists."""
        return self.reason in (RevertReason.ALREADY_REGISTERED, RevertReason.ALREADY_REVOKED)


class ChainUnavailableError(CertifyChainError):
    """The chain endpoint could not be reached."""

    code = "CHAIN_UNAVAILABLE"
    http_status = 503
    retryable = True


class ChainTimeoutError(ChainUnavailableError):
    """A transaction was broadcast but no receipt arrived in time.

    The transaction may still be mined; its outcome is unknown.
    """

    code = "CHAIN_TIMEOUT"
    http_status = 504

    def __init__(self, message: str, transaction_hash: str | None = None):
        self.transaction_hash = transaction_hash
        super().__init__(message)


# =============================================================================
# Store errors
# =============================================================================


class StoreUnavailableError(CertifyChainError):
    """The record store could not complete a read or write."""

    code = "STORE_UNAVAILABLE"
    http_status = 503
    retryable = True


_BY_CODE: dict[str, type[CertifyChainError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        ConflictError,
        DuplicateSubmissionError,
        UnauthorizedError,
        AuthenticationError,
        NotFoundError,
        ChainRejectedError,
        ChainUnavailableError,
        ChainTimeoutError,
        StoreUnavailableError,
    )
}

_BY_STATUS: dict[int, type[CertifyChainError]] = {
    401: AuthenticationError,
    403: UnauthorizedError,
    404: NotFoundError,
    409: ConflictError,
    413: ValidationError,
    422: ValidationError,
    400: ValidationError,
}


def error_from_response(status_code: int, code: str | None, detail: str) -> CertifyChainError:
    """Rebuild an exception from an API error body."""
    cls = _BY_CODE.get(code or "") or _BY_STATUS.get(status_code)
    if cls is None:
        cls = StoreUnavailableError if status_code >= 500 else CertifyChainError
    return cls(detail)
