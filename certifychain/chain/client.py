"""Async client for the CertificateRegistry contract.

Wraps web3.py's ``AsyncWeb3`` behind a small typed surface:

- Reads (registration state, fees, certificate lookup) behind a circuit breaker
- Writes that are built, signed with the wallet's local account, broadcast,
  and awaited up to CONFIRMATION_TIMEOUT
- Contract reverts mapped to ChainRejectedError with a RevertReason
- Connectivity failures mapped to ChainUnavailableError
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import aiohttp
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    TransactionNotFound,
)

from certifychain.chain.abi import CERTIFICATE_REGISTRY_ABI
from certifychain.chain.circuit import CircuitBreaker
from certifychain.chain.receipts import (
    certificate_id_from_receipt,
    classify_revert,
    entity_address_from_receipt,
    to_certificate_number,
)
from certifychain.exceptions import (
    AuthenticationError,
    ChainRejectedError,
    ChainTimeoutError,
    ChainUnavailableError,
    NotFoundError,
    RevertReason,
)

log = logging.getLogger(__name__)

# Errors meaning the node could not be reached, as opposed to a node answer
_CONNECTIVITY_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ProviderConnectionError,
    ConnectionError,
    OSError,
)


@dataclass(frozen=True)
class TransactionResult:
    """A mined, successful transaction."""

    transaction_hash: str
    on_chain_id: Optional[str] = None
    block_number: Optional[int] = None


@dataclass(frozen=True)
class CertificateRecord:
    """``verifyCertificate`` output."""

    id: int
    certificate_hash: str
    issuer: str
    issued_at: int
    is_revoked: bool
    metadata: str
    issuer_name: str


@dataclass(frozen=True)
class EntityInfo:
    """``getEntityInfo`` output."""

    entity_address: str
    name: str
    is_active: bool
    registered_at: int
    cert_count: int


def _revert_message(error: ContractLogicError) -> str:
    return getattr(error, "message", None) or str(error)


# Maps each write to the function that pulls its identifier out of the receipt
_ID_EXTRACTORS: dict[str, Callable[[Any], Optional[str]]] = {
    "register": entity_address_from_receipt,
    "issue": certificate_id_from_receipt,
    "revoke": lambda receipt: None,
}


# =============================================================================
# Singleton
# =============================================================================

_client: Optional["ChainClient"] = None


def get_chain_client() -> "ChainClient":
    """Get or create the read-only chain client singleton used by the API."""
    global _client
    if _client is None:
        _client = ChainClient.from_config()
    return _client


def reset_chain_client() -> None:
    """Reset the singleton (for testing)."""
    global _client
    _client = None


async def close_chain_client() -> None:
    """Close the RPC session (call during shutdown)."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None


# =============================================================================
# Client
# =============================================================================


class ChainClient:
    """Typed access to one deployed CertificateRegistry.

    Args:
        w3: Connected AsyncWeb3 instance.
        contract_address: Registry address (any case).
        account: Local account used to sign writes; reads work without one.
        confirmation_timeout: Seconds to wait for a receipt.
        poll_interval: Seconds between receipt polls.
        chain_id: Set explicitly on transactions when given.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        account: Optional[LocalAccount] = None,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 1.0,
        chain_id: Optional[int] = None,
    ):
        self.w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = w3.eth.contract(address=self.contract_address, abi=CERTIFICATE_REGISTRY_ABI)
        self.account = account
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.chain_id = chain_id
        self._circuit = CircuitBreaker()

    @classmethod
    def from_config(cls, account: Optional[LocalAccount] = None) -> "ChainClient":
        from certifychain.config import (
            CHAIN_ID,
            CONFIRMATION_POLL_INTERVAL,
            CONFIRMATION_TIMEOUT,
            CONTRACT_ADDRESS,
            RPC_TIMEOUT,
            RPC_URL,
        )

        if not CONTRACT_ADDRESS:
            raise ChainUnavailableError("CERTIFYCHAIN_CONTRACT_ADDRESS is not configured")

        provider = AsyncHTTPProvider(
            RPC_URL,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=RPC_TIMEOUT)},
        )
        return cls(
            AsyncWeb3(provider),
            CONTRACT_ADDRESS,
            account=account,
            confirmation_timeout=CONFIRMATION_TIMEOUT,
            poll_interval=CONFIRMATION_POLL_INTERVAL,
            chain_id=CHAIN_ID,
        )

    async def close(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    @property
    def circuit_state(self) -> str:
        return self._circuit.state.value

    async def is_healthy(self) -> bool:
        """True if the RPC endpoint answers and the circuit is not open."""
        if not self._circuit.allow_request():
            return False
        try:
            connected = await self.w3.is_connected()
        except _CONNECTIVITY_ERRORS as e:
            log.warning(f"Chain health check failed: {e}")
            self._circuit.record_failure()
            return False
        if connected:
            self._circuit.record_success()
        else:
            self._circuit.record_failure()
        return bool(connected)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _check_circuit(self) -> None:
        if not self._circuit.allow_request():
            raise ChainUnavailableError(
                "Chain circuit breaker is open: RPC endpoint considered unavailable"
            )

    async def _call(self, name: str, *args):
        """Run a view function with connectivity and revert mapping."""
        self._check_circuit()
        try:
            result = await getattr(self.contract.functions, name)(*args).call()
        except ContractLogicError as e:
            self._circuit.record_success()
            message = _revert_message(e)
            raise ChainRejectedError(
                f"{name} reverted: {message}", reason=classify_revert(message)
            ) from e
        except _CONNECTIVITY_ERRORS as e:
            self._circuit.record_failure()
            raise ChainUnavailableError(f"Chain RPC failed during {name}: {e}") from e
        self._circuit.record_success()
        return result

    def _require_account(self) -> LocalAccount:
        if self.account is None:
            raise AuthenticationError("A wallet is required to send transactions")
        return self.account

    async def _transact(self, operation: str, function_call, value: int = 0) -> TransactionResult:
        """Build, sign, broadcast and await one contract write.

        Gas estimation happens inside ``build_transaction``, so a call that
        would revert fails here before anything is broadcast.
        """
        account = self._require_account()
        self._check_circuit()

        try:
            params: dict[str, Any] = {
                "from": account.address,
                "value": value,
                "nonce": await self.w3.eth.get_transaction_count(account.address, "pending"),
            }
            if self.chain_id is not None:
                params["chainId"] = self.chain_id
            tx = await function_call.build_transaction(params)
            signed = account.sign_transaction(tx)
            raw_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            self._circuit.record_success()
            message = _revert_message(e)
            log.warning(f"Chain {operation} rejected before broadcast: {message}")
            raise ChainRejectedError(
                f"{operation} reverted: {message}", reason=classify_revert(message)
            ) from e
        except _CONNECTIVITY_ERRORS as e:
            self._circuit.record_failure()
            raise ChainUnavailableError(f"Chain RPC failed during {operation}: {e}") from e

        self._circuit.record_success()
        tx_hash = Web3.to_hex(raw_hash)
        log.info(
            f"Chain {operation} broadcast: {tx_hash}",
            extra={"operation": operation, "transaction_hash": tx_hash},
        )
        return await self.wait_for_receipt(tx_hash, operation)

    async def wait_for_receipt(self, transaction_hash: str, operation: str = "issue") -> TransactionResult:
        """Wait for a broadcast transaction and read its result.

        Also used to resolve a transaction whose earlier wait timed out.

        Raises:
            ChainTimeoutError: No receipt within the confirmation timeout.
            ChainRejectedError: The transaction was mined but reverted.
        """
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                transaction_hash,
                timeout=self.confirmation_timeout,
                poll_latency=self.poll_interval,
            )
        except TimeExhausted as e:
            log.warning(
                f"Chain {operation} not confirmed within {self.confirmation_timeout}s: {transaction_hash}",
                extra={"operation": operation, "transaction_hash": transaction_hash},
            )
            raise ChainTimeoutError(
                f"Transaction {transaction_hash} not confirmed within {self.confirmation_timeout}s",
                transaction_hash=transaction_hash,
            ) from e
        except _CONNECTIVITY_ERRORS as e:
            self._circuit.record_failure()
            raise ChainTimeoutError(
                f"Lost connection while waiting for {transaction_hash}: {e}",
                transaction_hash=transaction_hash,
            ) from e

        if receipt["status"] != 1:
            log.warning(f"Chain {operation} reverted on-chain: {transaction_hash}")
            raise ChainRejectedError(
                f"Transaction {transaction_hash} reverted",
                reason=RevertReason.UNKNOWN,
                transaction_hash=transaction_hash,
            )

        extract = _ID_EXTRACTORS.get(operation, certificate_id_from_receipt)
        result = TransactionResult(
            transaction_hash=transaction_hash,
            on_chain_id=extract(receipt),
            block_number=receipt.get("blockNumber"),
        )
        log.info(
            f"Chain {operation} confirmed in block {result.block_number}: {transaction_hash}",
            extra={"operation": operation, "transaction_hash": transaction_hash},
        )
        return result

    async def get_receipt_status(self, transaction_hash: str) -> Optional[bool]:
        """True/False once mined (success/reverted), None while still pending."""
        self._check_circuit()
        try:
            receipt = await self.w3.eth.get_transaction_receipt(transaction_hash)
        except TransactionNotFound:
            return None
        except _CONNECTIVITY_ERRORS as e:
            self._circuit.record_failure()
            raise ChainUnavailableError(f"Chain RPC failed reading receipt: {e}") from e
        return receipt["status"] == 1

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def is_entity_registered(self, address: str) -> bool:
        return bool(await self._call("isRegisteredEntity", Web3.to_checksum_address(address)))

    async def get_registration_fee(self) -> int:
        return int(await self._call("registrationFee"))

    async def get_issuance_fee(self) -> int:
        return int(await self._call("certificateIssuanceFee"))

    async def get_entity_info(self, address: str) -> EntityInfo:
        entity_address, name, is_active, registered_at, cert_count = await self._call(
            "getEntityInfo", Web3.to_checksum_address(address)
        )
        return EntityInfo(
            entity_address=entity_address,
            name=name,
            is_active=bool(is_active),
            registered_at=int(registered_at),
            cert_count=int(cert_count),
        )

    async def get_entity_certificates(self, address: str) -> list[int]:
        ids = await self._call("getEntityCertificates", Web3.to_checksum_address(address))
        return [int(i) for i in ids]

    async def verify_certificate(self, on_chain_id: str | int) -> CertificateRecord:
        """Look up a certificate on-chain.

        Raises:
            NotFoundError: The contract reverted or returned an empty record.
        """
        number = to_certificate_number(on_chain_id)
        try:
            values = await self._call("verifyCertificate", number)
        except ChainRejectedError as e:
            raise NotFoundError(f"Certificate {on_chain_id} not found on-chain") from e

        cert_id, certificate_hash, issuer, issued_at, is_revoked, metadata, issuer_name = values
        if int(cert_id) == 0:
            raise NotFoundError(f"Certificate {on_chain_id} not found on-chain")
        return CertificateRecord(
            id=int(cert_id),
            certificate_hash=certificate_hash,
            issuer=issuer,
            issued_at=int(issued_at),
            is_revoked=bool(is_revoked),
            metadata=metadata,
            issuer_name=issuer_name,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def register_entity(self, name: str, fee: Optional[int] = None) -> TransactionResult:
        """Register the wallet as an issuing entity, paying the registration fee.

        ``on_chain_id`` of the result is the registered (lower-cased) address.
        """
        if fee is None:
            fee = await self.get_registration_fee()
        return await self._transact("register", self.contract.functions.registerEntity(name), value=fee)

    async def issue_certificate(
        self,
        certificate_hash: str,
        metadata: str = "",
        fee: Optional[int] = None,
    ) -> TransactionResult:
        """Anchor a certificate hash on-chain.

        ``on_chain_id`` of the result is the ``CertificateIssued`` id topic
        as 0x hex, or None if the receipt carried no event.
        """
        if fee is None:
            fee = await self.get_issuance_fee()
        return await self._transact(
            "issue",
            self.contract.functions.issueCertificate(certificate_hash, metadata),
            value=fee,
        )

    async def revoke_certificate(self, on_chain_id: str | int) -> TransactionResult:
        number = to_certificate_number(on_chain_id)
        return await self._transact("revoke", self.contract.functions.revokeCertificate(number))
