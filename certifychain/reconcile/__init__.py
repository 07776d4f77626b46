"""Coordinates chain writes and record-store writes into one operation."""

from certifychain.reconcile.flow import Reconciler
from certifychain.reconcile.outcomes import (
    FlowResult,
    FlowState,
    Outcome,
    VerificationResult,
    VerificationStatus,
)

__all__ = [
    "FlowResult",
    "FlowState",
    "Outcome",
    "Reconciler",
    "VerificationResult",
    "VerificationStatus",
]
