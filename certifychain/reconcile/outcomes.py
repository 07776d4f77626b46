"""Result types of the reconciliation flow.

Chain and record store fail independently, so every flow reports which of
the two ended up holding the change instead of raising after a partial
write.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from certifychain.exceptions import CertifyChainError, error_from_response


class FlowState(str, Enum):
    """Last step a flow reached."""

    NOT_STARTED = "not_started"
    CHAIN_PENDING = "chain_pending"
    CHAIN_CONFIRMED = "chain_confirmed"
    CHAIN_FAILED = "chain_failed"
    STORE_WRITTEN = "store_written"
    STORE_FAILED = "store_failed"
    DONE = "done"


class Outcome(str, Enum):
    """Where the change ended up."""

    CONSISTENT = "consistent"
    CHAIN_ONLY = "chain_only"    # chain holds it, the store half needs a retry
    STORE_ONLY = "store_only"    # store row exists, never anchored on-chain
    FAILED = "failed"            # nothing was written
    UNKNOWN = "unknown"          # broadcast but unconfirmed


@dataclass
class FlowResult:
    """Outcome of one register/issue/revoke run.

    ``transaction_hash`` is kept whenever a chain write was broadcast, so a
    store failure afterwards never loses it. ``profile`` and
    ``certificate_id`` carry enough context to resume the flow with
    ``Reconciler.retry_store``, ``retry_chain`` or ``resolve_unknown``.
    """

    operation: str
    state: FlowState = FlowState.NOT_STARTED
    outcome: Optional[Outcome] = None
    transaction_hash: Optional[str] = None
    on_chain_id: Optional[str] = None
    record: Any = None
    error: Optional[CertifyChainError] = None
    chain_writes: int = 0
    store_writes: int = 0
    profile: Any = None
    certificate_id: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.CONSISTENT

    @property
    def retryable(self) -> bool:
        if self.outcome in (Outcome.CHAIN_ONLY, Outcome.STORE_ONLY, Outcome.UNKNOWN):
            return True
        return self.outcome == Outcome.FAILED and self.error is not None and self.error.retryable

    def to_dict(self) -> dict:
        record = self.record.model_dump(mode="json") if hasattr(self.record, "model_dump") else self.record
        return {
            "operation": self.operation,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "transaction_hash": self.transaction_hash,
            "on_chain_id": self.on_chain_id,
            "certificate_id": self.certificate_id,
            "chain_writes": self.chain_writes,
            "store_writes": self.store_writes,
            "retryable": self.retryable,
            "error": (
                {"code": self.error.code, "message": self.error.message}
                if self.error is not None else None
            ),
            "record": record,
            "profile": self.profile.model_dump(mode="json") if self.profile is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FlowResult":
        """Rebuild a result saved with ``to_dict`` so the flow can be resumed."""
        from certifychain.api.models import CertificateResponse, EntityProfile, EntityResponse

        record_model = EntityResponse if data["operation"] == "register" else CertificateResponse
        error = data.get("error")
        return cls(
            operation=data["operation"],
            state=FlowState(data["state"]),
            outcome=Outcome(data["outcome"]) if data.get("outcome") else None,
            transaction_hash=data.get("transaction_hash"),
            on_chain_id=data.get("on_chain_id"),
            record=record_model.model_validate(data["record"]) if data.get("record") else None,
            error=error_from_response(0, error["code"], error["message"]) if error else None,
            chain_writes=data.get("chain_writes", 0),
            store_writes=data.get("store_writes", 0),
            profile=EntityProfile.model_validate(data["profile"]) if data.get("profile") else None,
            certificate_id=data.get("certificate_id"),
        )


class VerificationStatus(str, Enum):
    VALID = "valid"
    REVOKED = "revoked"
    NOT_FOUND = "not_found"


@dataclass
class VerificationResult:
    """Chain lookup of a certificate, cross-checked against its row."""

    on_chain_id: str
    status: VerificationStatus
    onchain: Any = None
    record: Any = None
    hash_matches: Optional[bool] = None

    def to_dict(self) -> dict:
        onchain = None
        if self.onchain is not None:
            onchain = {
                "id": self.onchain.id,
                "certificate_hash": self.onchain.certificate_hash,
                "issuer": self.onchain.issuer,
                "issuer_name": self.onchain.issuer_name,
                "issued_at": self.onchain.issued_at,
                "is_revoked": self.onchain.is_revoked,
                "metadata": self.onchain.metadata,
            }
        return {
            "on_chain_id": self.on_chain_id,
            "status": self.status.value,
            "onchain": onchain,
            "record": self.record.model_dump(mode="json") if self.record is not None else None,
            "hash_matches": self.hash_matches,
        }
