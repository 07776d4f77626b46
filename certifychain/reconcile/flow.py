"""Dual-write flows over the registry contract and the record store.

Each user action (register, issue, revoke) touches two systems with no
shared transaction. The flows order the writes so that a failure leaves a
state that can be finished later, and report it as a FlowResult:

- register: chain first, then the entity row (linked when it already exists)
- issue: certificate row first (its hash is the chain payload), then the
  chain write, then the on-chain id attached to the row
- revoke: chain first, then the row's revoked flag

Between the chain confirming a revocation and the row catching up, the
certificate still reads valid off-chain.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

import pydantic

from certifychain.api.models import CertificatePayload, EntityProfile
from certifychain.chain.receipts import to_topic_hex
from certifychain.exceptions import (
    CertifyChainError,
    ChainRejectedError,
    ChainTimeoutError,
    ConflictError,
    DuplicateSubmissionError,
    NotFoundError,
    RevertReason,
    UnauthorizedError,
    ValidationError,
)
from certifychain.reconcile.outcomes import (
    FlowResult,
    FlowState,
    Outcome,
    VerificationResult,
    VerificationStatus,
)

log = logging.getLogger(__name__)

REGISTER = "register"
ISSUE = "issue"
REVOKE = "revoke"


def _validate(model: type[pydantic.BaseModel], data):
    """Model instance from ``data``; pydantic errors become ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"{field}: {first.get('msg')}", field=field or None) from e


class Reconciler:
    """Runs the register/issue/revoke flows for one wallet.

    Args:
        wallet: The signing wallet (its address is the caller's identity).
        chain: ChainClient bound to the same wallet's account.
        records: ApiClient signed in as the same wallet.
    """

    def __init__(self, wallet, chain, records):
        self.wallet = wallet
        self.chain = chain
        self.records = records
        self._in_flight: set[tuple[str, str]] = set()

    @asynccontextmanager
    async def _guard(self, operation: str, target: str) -> AsyncIterator[None]:
        key = (operation, target)
        if key in self._in_flight:
            raise DuplicateSubmissionError(f"{operation} already in progress for {target}")
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    # -------------------------------------------------------------------------
    # Result helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _finish(result: FlowResult, outcome: Outcome, error: Optional[CertifyChainError] = None) -> FlowResult:
        result.outcome = outcome
        result.error = error
        if outcome == Outcome.CONSISTENT:
            result.state = FlowState.DONE
        log.info(
            f"{result.operation} finished: {outcome.value}",
            extra={
                "operation": result.operation,
                "outcome": outcome.value,
                "transaction_hash": result.transaction_hash,
                "error_code": error.code if error else None,
            },
        )
        return result

    def _unknown(self, result: FlowResult, error: ChainTimeoutError) -> FlowResult:
        result.transaction_hash = error.transaction_hash or result.transaction_hash
        log.warning(
            f"{result.operation} unconfirmed, transaction {result.transaction_hash} may still be mined"
        )
        return self._finish(result, Outcome.UNKNOWN, error)

    # =========================================================================
    # Registration
    # =========================================================================

    async def register_entity(
        self,
        profile: Union[EntityProfile, dict],
        fee: Optional[int] = None,
    ) -> FlowResult:
        """Register the wallet on-chain and create its entity row.

        Already-done halves are skipped, so running this for a fully
        registered entity performs no writes at all.
        """
        profile = _validate(EntityProfile, profile)
        address = self.wallet.address.lower()

        async with self._guard(REGISTER, address):
            result = FlowResult(operation=REGISTER, profile=profile)
            try:
                existing = await self.records.get_my_entity()
                registered = await self.chain.is_entity_registered(address)
            except CertifyChainError as e:
                return self._finish(result, Outcome.FAILED, e)

            result.record = existing
            if registered:
                result.state = FlowState.CHAIN_CONFIRMED
                result.on_chain_id = address
                if existing is not None and existing.blockchain_id:
                    log.info(f"Entity {address} already registered on-chain and off-chain")
                    return self._finish(result, Outcome.CONSISTENT)
                return await self._finish_registration(result)

            result.state = FlowState.CHAIN_PENDING
            try:
                tx = await self.chain.register_entity(profile.name, fee)
            except ChainTimeoutError as e:
                return self._unknown(result, e)
            except ChainRejectedError as e:
                if e.reason != RevertReason.ALREADY_REGISTERED:
                    result.state = FlowState.CHAIN_FAILED
                    return self._finish(result, Outcome.FAILED, e)
                # Registered between the pre-check and the write
                log.info(f"Entity {address} was already registered on-chain, writing row only")
                result.state = FlowState.CHAIN_CONFIRMED
                result.on_chain_id = address
            except CertifyChainError as e:
                result.state = FlowState.CHAIN_FAILED
                return self._finish(result, Outcome.FAILED, e)
            else:
                result.chain_writes += 1
                result.state = FlowState.CHAIN_CONFIRMED
                result.transaction_hash = tx.transaction_hash
                result.on_chain_id = tx.on_chain_id or address

            return await self._finish_registration(result)

    async def _finish_registration(self, result: FlowResult) -> FlowResult:
        if result.record is not None:
            # Row predates the chain registration; link it, never create a second one
            return await self._link_entity(result)
        return await self._write_entity(result)

    async def _link_entity(self, result: FlowResult) -> FlowResult:
        try:
            entity = await self.records.attach_entity_chain_link(
                result.on_chain_id, result.transaction_hash
            )
        except CertifyChainError as e:
            result.state = FlowState.STORE_FAILED
            log.warning(
                f"Entity row {result.record.id} not linked to chain registration "
                f"{result.on_chain_id}: {e.message}",
                extra={"transaction_hash": result.transaction_hash},
            )
            return self._finish(result, Outcome.CHAIN_ONLY, e)

        result.store_writes += 1
        result.state = FlowState.STORE_WRITTEN
        result.record = entity
        return self._finish(result, Outcome.CONSISTENT)

    async def _write_entity(self, result: FlowResult) -> FlowResult:
        try:
            entity = await self.records.create_entity(
                result.profile,
                blockchain_id=result.on_chain_id,
                transaction_hash=result.transaction_hash,
            )
        except ConflictError:
            log.info("Entity row created concurrently, linking it instead")
            try:
                result.record = await self.records.get_my_entity()
            except CertifyChainError as e:
                log.warning(f"Could not reload entity row: {e.message}")
                result.state = FlowState.STORE_FAILED
                return self._finish(result, Outcome.CHAIN_ONLY, e)
            if result.record is not None and not result.record.blockchain_id:
                return await self._link_entity(result)
            return self._finish(result, Outcome.CONSISTENT)
        except CertifyChainError as e:
            result.state = FlowState.STORE_FAILED
            log.warning(
                f"Entity row write failed after chain registration {result.transaction_hash}: {e.message}",
                extra={"transaction_hash": result.transaction_hash},
            )
            return self._finish(result, Outcome.CHAIN_ONLY, e)

        result.store_writes += 1
        result.state = FlowState.STORE_WRITTEN
        result.record = entity
        return self._finish(result, Outcome.CONSISTENT)

    # =========================================================================
    # Issuance
    # =========================================================================

    async def issue_certificate(
        self,
        payload: Union[CertificatePayload, dict],
        fee: Optional[int] = None,
    ) -> FlowResult:
        """Create the certificate row, anchor its hash, then record the on-chain id."""
        payload = _validate(CertificatePayload, payload)

        async with self._guard(ISSUE, payload.model_dump_json()):
            result = FlowResult(operation=ISSUE)
            try:
                entity = await self.records.get_my_entity()
            except CertifyChainError as e:
                return self._finish(result, Outcome.FAILED, e)
            if entity is None:
                return self._finish(
                    result,
                    Outcome.FAILED,
                    NotFoundError("Register an entity before issuing certificates"),
                )

            try:
                cert = await self.records.create_certificate(payload, entity.id)
            except CertifyChainError as e:
                result.state = FlowState.STORE_FAILED
                return self._finish(result, Outcome.FAILED, e)

            result.store_writes += 1
            result.state = FlowState.STORE_WRITTEN
            result.record = cert
            result.certificate_id = cert.id
            return await self._anchor(result, fee)

    async def _anchor(self, result: FlowResult, fee: Optional[int] = None) -> FlowResult:
        cert = result.record
        result.state = FlowState.CHAIN_PENDING
        try:
            tx = await self.chain.issue_certificate(cert.certificate_hash, cert.description or "", fee)
        except ChainTimeoutError as e:
            return self._unknown(result, e)
        except CertifyChainError as e:
            result.state = FlowState.CHAIN_FAILED
            log.warning(f"Certificate {cert.id} stored but not anchored: {e.message}")
            return self._finish(result, Outcome.STORE_ONLY, e)

        result.chain_writes += 1
        result.state = FlowState.CHAIN_CONFIRMED
        result.transaction_hash = tx.transaction_hash
        result.on_chain_id = tx.on_chain_id
        return await self._attach(result)

    async def _attach(self, result: FlowResult) -> FlowResult:
        if result.on_chain_id is None:
            log.warning(
                f"Issuance {result.transaction_hash} confirmed without a CertificateIssued event"
            )
            result.state = FlowState.STORE_FAILED
            return self._finish(
                result,
                Outcome.CHAIN_ONLY,
                NotFoundError(f"No certificate id in receipt of {result.transaction_hash}"),
            )

        try:
            cert = await self.records.attach_chain_id(
                result.certificate_id, result.on_chain_id, result.transaction_hash
            )
        except CertifyChainError as e:
            result.state = FlowState.STORE_FAILED
            log.warning(
                f"Certificate {result.certificate_id} anchored as {result.on_chain_id} "
                f"but the id was not saved: {e.message}",
                extra={"transaction_hash": result.transaction_hash},
            )
            return self._finish(result, Outcome.CHAIN_ONLY, e)

        result.store_writes += 1
        result.state = FlowState.STORE_WRITTEN
        result.record = cert
        return self._finish(result, Outcome.CONSISTENT)

    # =========================================================================
    # Revocation
    # =========================================================================

    async def revoke_certificate(self, cert_id: int) -> FlowResult:
        """Revoke on-chain first, then flag the row.

        Certificates that were never anchored are revoked off-chain only.
        """
        async with self._guard(REVOKE, str(cert_id)):
            result = FlowResult(operation=REVOKE, certificate_id=cert_id)
            try:
                cert = await self.records.get_certificate(cert_id)
                entity = await self.records.get_my_entity()
            except CertifyChainError as e:
                return self._finish(result, Outcome.FAILED, e)

            if cert is None:
                return self._finish(result, Outcome.FAILED, NotFoundError(f"Certificate not found: {cert_id}"))
            if entity is None or cert.issuer_id != entity.id:
                return self._finish(
                    result, Outcome.FAILED, UnauthorizedError("Certificate belongs to another entity")
                )

            result.record = cert
            result.on_chain_id = cert.blockchain_id
            if cert.is_revoked:
                return self._finish(result, Outcome.CONSISTENT)

            if not cert.blockchain_id:
                log.info(f"Certificate {cert_id} was never anchored, revoking off-chain only")
                return await self._mark_revoked(result)

            try:
                onchain = await self.chain.verify_certificate(cert.blockchain_id)
            except CertifyChainError as e:
                return self._finish(result, Outcome.FAILED, e)

            if onchain.is_revoked:
                log.info(f"Certificate {cert_id} already revoked on-chain")
                result.state = FlowState.CHAIN_CONFIRMED
                return await self._mark_revoked(result)

            result.state = FlowState.CHAIN_PENDING
            try:
                tx = await self.chain.revoke_certificate(cert.blockchain_id)
            except ChainTimeoutError as e:
                return self._unknown(result, e)
            except ChainRejectedError as e:
                if e.reason != RevertReason.ALREADY_REVOKED:
                    result.state = FlowState.CHAIN_FAILED
                    return self._finish(result, Outcome.FAILED, e)
                log.info(f"Certificate {cert_id} revoked on-chain concurrently")
            except CertifyChainError as e:
                result.state = FlowState.CHAIN_FAILED
                return self._finish(result, Outcome.FAILED, e)
            else:
                result.chain_writes += 1
                result.transaction_hash = tx.transaction_hash

            result.state = FlowState.CHAIN_CONFIRMED
            return await self._mark_revoked(result)

    async def _mark_revoked(self, result: FlowResult) -> FlowResult:
        try:
            cert = await self.records.revoke_certificate(result.certificate_id, result.transaction_hash)
        except CertifyChainError as e:
            if result.state != FlowState.CHAIN_CONFIRMED:
                # Nothing was written on-chain
                result.state = FlowState.STORE_FAILED
                return self._finish(result, Outcome.FAILED, e)
            result.state = FlowState.STORE_FAILED
            log.warning(
                f"Certificate {result.certificate_id} revoked on-chain but still valid off-chain: {e.message}",
                extra={"transaction_hash": result.transaction_hash},
            )
            return self._finish(result, Outcome.CHAIN_ONLY, e)

        result.store_writes += 1
        result.state = FlowState.STORE_WRITTEN
        result.record = cert
        return self._finish(result, Outcome.CONSISTENT)

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify_certificate(self, on_chain_id: str) -> VerificationResult:
        """Read the certificate from the chain and compare it with its row.

        A revert or an empty record is NOT_FOUND, never REVOKED.
        """
        topic = to_topic_hex(on_chain_id)

        record = None
        try:
            record = await self.records.get_certificate_by_blockchain_id(topic)
        except CertifyChainError as e:
            log.warning(f"Verification of {topic} without off-chain record: {e.message}")

        try:
            onchain = await self.chain.verify_certificate(on_chain_id)
        except NotFoundError:
            return VerificationResult(on_chain_id=topic, status=VerificationStatus.NOT_FOUND, record=record)

        status = VerificationStatus.REVOKED if onchain.is_revoked else VerificationStatus.VALID
        return VerificationResult(
            on_chain_id=topic,
            status=status,
            onchain=onchain,
            record=record,
            hash_matches=(record.certificate_hash == onchain.certificate_hash) if record else None,
        )

    # =========================================================================
    # Resuming partial results
    # =========================================================================

    async def retry_store(self, result: FlowResult) -> FlowResult:
        """Redo only the store half of a CHAIN_ONLY result.

        The chain transaction is never re-submitted.
        """
        if result.outcome != Outcome.CHAIN_ONLY:
            raise ValidationError(f"Only chain-only results can retry the store write, got {result.outcome}")

        log.info(f"Retrying store write for {result.operation} {result.transaction_hash}")
        result.state = FlowState.CHAIN_CONFIRMED
        async with self._guard(result.operation, f"retry:{result.transaction_hash or result.certificate_id}"):
            if result.operation == REGISTER:
                return await self._finish_registration(result)
            if result.operation == ISSUE:
                return await self._attach(result)
            return await self._mark_revoked(result)

    async def retry_chain(self, result: FlowResult, fee: Optional[int] = None) -> FlowResult:
        """Anchor a STORE_ONLY certificate using the hash already stored."""
        if result.outcome == Outcome.UNKNOWN:
            raise ValidationError(
                f"Transaction {result.transaction_hash} may still confirm; resolve it before retrying"
            )
        if result.outcome != Outcome.STORE_ONLY or result.operation != ISSUE:
            raise ValidationError(f"Only unanchored issuances can retry the chain write, got {result.outcome}")

        async with self._guard(ISSUE, f"retry:{result.certificate_id}"):
            return await self._anchor(result, fee)

    async def resolve_unknown(self, result: FlowResult) -> FlowResult:
        """Check a timed-out transaction again and continue the flow once mined.

        A transaction that is still pending stays UNKNOWN without waiting.
        """
        if result.outcome != Outcome.UNKNOWN or not result.transaction_hash:
            raise ValidationError("Only unconfirmed results with a transaction hash can be resolved")

        try:
            mined = await self.chain.get_receipt_status(result.transaction_hash)
        except CertifyChainError as e:
            log.warning(f"Could not check transaction {result.transaction_hash}: {e.message}")
            return self._finish(result, Outcome.UNKNOWN, e)
        if mined is None:
            return self._unknown(
                result,
                ChainTimeoutError(
                    f"Transaction {result.transaction_hash} is still pending",
                    transaction_hash=result.transaction_hash,
                ),
            )

        try:
            tx = await self.chain.wait_for_receipt(result.transaction_hash, result.operation)
        except ChainTimeoutError as e:
            return self._unknown(result, e)
        except CertifyChainError as e:
            result.state = FlowState.CHAIN_FAILED
            outcome = Outcome.STORE_ONLY if result.operation == ISSUE else Outcome.FAILED
            return self._finish(result, outcome, e)

        result.chain_writes += 1
        result.state = FlowState.CHAIN_CONFIRMED
        if result.operation == REGISTER:
            result.on_chain_id = tx.on_chain_id or self.wallet.address.lower()
            return await self._finish_registration(result)
        if result.operation == ISSUE:
            result.on_chain_id = tx.on_chain_id
            return await self._attach(result)
        return await self._mark_revoked(result)
