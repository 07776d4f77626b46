"""Tests for the registry contract client.

The AsyncWeb3 instance is a MagicMock; contract functions return objects
whose ``call``/``build_transaction`` are AsyncMocks, so no node is needed.
"""
import time
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from web3.exceptions import ContractLogicError, TimeExhausted

import certifychain.chain.client as chain_client_module
from certifychain.chain.circuit import CircuitBreaker
from certifychain.chain.client import (
    CertificateRecord,
    ChainClient,
    get_chain_client,
    reset_chain_client,
)
from certifychain.exceptions import (
    AuthenticationError,
    ChainRejectedError,
    ChainTimeoutError,
    ChainUnavailableError,
    NotFoundError,
    RevertReason,
)

CONTRACT = "0x" + "5f" * 20
SENDER = "0x" + "a1" * 20
TX_BYTES = bytes.fromhex("ab" * 32)
TX_HASH = "0x" + "ab" * 32
EVENT_SIG = bytes.fromhex("cc" * 32)


def _receipt(status=1, topic=None):
    logs = [{"topics": [EVENT_SIG, topic]}] if topic is not None else []
    return {"status": status, "blockNumber": 42, "logs": logs}


def _make_client(account=None, chain_id=None):
    """ChainClient over a mocked AsyncWeb3; returns (client, w3, functions)."""
    w3 = MagicMock()
    contract = MagicMock()
    w3.eth.contract.return_value = contract
    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.send_raw_transaction = AsyncMock(return_value=TX_BYTES)
    w3.eth.wait_for_transaction_receipt = AsyncMock(
        return_value=_receipt(topic=(3).to_bytes(32, "big"))
    )
    w3.eth.get_transaction_receipt = AsyncMock(return_value=_receipt())
    w3.is_connected = AsyncMock(return_value=True)
    w3.provider.disconnect = AsyncMock()

    client = ChainClient(
        w3, CONTRACT, account=account, confirmation_timeout=5, poll_interval=0.01, chain_id=chain_id
    )
    return client, w3, contract.functions


def _view(functions, name, return_value=None, side_effect=None):
    """Make ``functions.<name>(...).call()`` return or raise."""
    getattr(functions, name).return_value.call = AsyncMock(
        return_value=return_value, side_effect=side_effect
    )


def _write(functions, name, side_effect=None):
    """Make ``functions.<name>(...).build_transaction()`` return a tx dict or raise."""
    getattr(functions, name).return_value.build_transaction = AsyncMock(
        return_value={"to": CONTRACT, "data": "0x", "nonce": 7},
        side_effect=side_effect,
    )


@pytest.fixture
def account():
    acct = MagicMock()
    acct.address = SENDER
    acct.sign_transaction.return_value.raw_transaction = b"signed-tx"
    return acct


# =============================================================================
# Circuit breaker
# =============================================================================


class TestCircuitBreaker:

    def test_initial_state_is_closed(self):
        assert CircuitBreaker().state == "closed"

    def test_failures_at_threshold_open_circuit(self):
        cb = CircuitBreaker(failure_threshold=3)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"
        assert cb.allow_request() is False

    def test_half_open_allows_one_probe(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0.01)
        cb.record_failure()
        time.sleep(0.02)
        assert cb.allow_request() is True
        assert cb.allow_request() is False

    def test_half_open_failure_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0.01)
        cb.record_failure()
        time.sleep(0.02)
        assert cb.state == "half_open"
        cb.record_failure()
        assert cb.state == "open"

    def test_success_closes(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0.01)
        cb.record_failure()
        time.sleep(0.02)
        cb.record_success()
        assert cb.state == "closed"


# =============================================================================
# Reads
# =============================================================================


class TestReads:

    @pytest.mark.asyncio
    async def test_is_entity_registered_checksums_address(self):
        client, _, functions = _make_client()
        _view(functions, "isRegisteredEntity", True)

        assert await client.is_entity_registered(SENDER) is True
        (arg,), _ = functions.isRegisteredEntity.call_args
        assert arg.lower() == SENDER

    @pytest.mark.asyncio
    async def test_fees(self):
        client, _, functions = _make_client()
        _view(functions, "registrationFee", 10 ** 16)
        _view(functions, "certificateIssuanceFee", 10 ** 15)
        assert await client.get_registration_fee() == 10 ** 16
        assert await client.get_issuance_fee() == 10 ** 15

    @pytest.mark.asyncio
    async def test_entity_info_and_certificates(self):
        client, _, functions = _make_client()
        _view(functions, "getEntityInfo", [SENDER, "Acme University", True, 1700000000, 2])
        _view(functions, "getEntityCertificates", [1, 2])

        info = await client.get_entity_info(SENDER)
        assert info.name == "Acme University"
        assert info.is_active is True
        assert info.cert_count == 2
        assert await client.get_entity_certificates(SENDER) == [1, 2]

    @pytest.mark.asyncio
    async def test_verify_certificate(self):
        client, _, functions = _make_client()
        _view(functions, "verifyCertificate", [3, "ab" * 32, SENDER, 1700000000, False, "BSc", "Acme"])

        record = await client.verify_certificate("0x" + "00" * 31 + "03")
        assert record == CertificateRecord(
            id=3,
            certificate_hash="ab" * 32,
            issuer=SENDER,
            issued_at=1700000000,
            is_revoked=False,
            metadata="BSc",
            issuer_name="Acme",
        )
        functions.verifyCertificate.assert_called_with(3)

    @pytest.mark.asyncio
    async def test_verify_empty_record_is_not_found(self):
        client, _, functions = _make_client()
        _view(functions, "verifyCertificate", [0, "", "0x" + "00" * 20, 0, False, "", ""])
        with pytest.raises(NotFoundError):
            await client.verify_certificate(9)

    @pytest.mark.asyncio
    async def test_verify_revert_is_not_found(self):
        client, _, functions = _make_client()
        _view(
            functions,
            "verifyCertificate",
            side_effect=ContractLogicError("execution reverted: Certificate does not exist"),
        )
        with pytest.raises(NotFoundError):
            await client.verify_certificate(9)

    @pytest.mark.asyncio
    async def test_connection_failure_is_unavailable(self):
        client, _, functions = _make_client()
        _view(functions, "registrationFee", side_effect=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(ChainUnavailableError):
            await client.get_registration_fee()

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        client, _, functions = _make_client()
        _view(functions, "registrationFee", side_effect=aiohttp.ClientConnectionError("refused"))
        for _ in range(5):
            with pytest.raises(ChainUnavailableError):
                await client.get_registration_fee()
        assert client.circuit_state == "open"

        calls = functions.registrationFee.return_value.call.await_count
        with pytest.raises(ChainUnavailableError):
            await client.get_registration_fee()
        assert functions.registrationFee.return_value.call.await_count == calls

    @pytest.mark.asyncio
    async def test_revert_does_not_trip_circuit(self):
        client, _, functions = _make_client()
        _view(functions, "getEntityInfo", side_effect=ContractLogicError("execution reverted: not found"))
        for _ in range(6):
            with pytest.raises(ChainRejectedError) as exc_info:
                await client.get_entity_info(SENDER)
        assert exc_info.value.reason == RevertReason.NOT_FOUND
        assert client.circuit_state == "closed"

    @pytest.mark.asyncio
    async def test_is_healthy(self):
        client, w3, _ = _make_client()
        assert await client.is_healthy() is True
        w3.is_connected = AsyncMock(return_value=False)
        assert await client.is_healthy() is False


# =============================================================================
# Writes
# =============================================================================


class TestWrites:

    @pytest.mark.asyncio
    async def test_issue_certificate(self, account):
        client, w3, functions = _make_client(account, chain_id=31337)
        _write(functions, "issueCertificate")

        result = await client.issue_certificate("ab" * 32, "BSc", fee=100)

        assert result.transaction_hash == TX_HASH
        assert result.on_chain_id == "0x" + "00" * 31 + "03"
        assert result.block_number == 42
        functions.issueCertificate.assert_called_with("ab" * 32, "BSc")
        functions.issueCertificate.return_value.build_transaction.assert_awaited_with(
            {"from": SENDER, "value": 100, "nonce": 7, "chainId": 31337}
        )
        w3.eth.get_transaction_count.assert_awaited_with(SENDER, "pending")
        w3.eth.send_raw_transaction.assert_awaited_with(b"signed-tx")

    @pytest.mark.asyncio
    async def test_fee_read_from_contract_when_omitted(self, account):
        client, _, functions = _make_client(account)
        _view(functions, "registrationFee", 555)
        _write(functions, "registerEntity")

        await client.register_entity("Acme University")

        params = functions.registerEntity.return_value.build_transaction.await_args.args[0]
        assert params["value"] == 555
        assert "chainId" not in params

    @pytest.mark.asyncio
    async def test_register_returns_registered_address(self, account):
        client, w3, functions = _make_client(account)
        _write(functions, "registerEntity")
        w3.eth.wait_for_transaction_receipt = AsyncMock(
            return_value=_receipt(topic=bytes.fromhex("00" * 12 + "a1" * 20))
        )

        result = await client.register_entity("Acme University", fee=1)
        assert result.on_chain_id == SENDER

    @pytest.mark.asyncio
    async def test_revoke_passes_numeric_id(self, account):
        client, _, functions = _make_client(account)
        _write(functions, "revokeCertificate")

        result = await client.revoke_certificate("0x" + "00" * 31 + "03")
        functions.revokeCertificate.assert_called_with(3)
        assert result.transaction_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_revert_at_estimation_is_rejected_before_broadcast(self, account):
        client, w3, functions = _make_client(account)
        _write(
            functions,
            "registerEntity",
            side_effect=ContractLogicError("execution reverted: Entity already registered"),
        )

        with pytest.raises(ChainRejectedError) as exc_info:
            await client.register_entity("Acme University", fee=1)
        assert exc_info.value.reason == RevertReason.ALREADY_REGISTERED
        assert exc_info.value.means_already_done is True
        w3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mined_but_reverted(self, account):
        client, w3, functions = _make_client(account)
        _write(functions, "revokeCertificate")
        w3.eth.wait_for_transaction_receipt = AsyncMock(return_value=_receipt(status=0))

        with pytest.raises(ChainRejectedError) as exc_info:
            await client.revoke_certificate(3)
        assert exc_info.value.transaction_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_confirmation_timeout_keeps_hash(self, account):
        client, w3, functions = _make_client(account)
        _write(functions, "issueCertificate")
        w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=TimeExhausted("slow"))

        with pytest.raises(ChainTimeoutError) as exc_info:
            await client.issue_certificate("ab" * 32, fee=1)
        assert exc_info.value.transaction_hash == TX_HASH
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_issue_without_event_has_no_id(self, account):
        client, w3, functions = _make_client(account)
        _write(functions, "issueCertificate")
        w3.eth.wait_for_transaction_receipt = AsyncMock(return_value=_receipt())

        result = await client.issue_certificate("ab" * 32, fee=1)
        assert result.on_chain_id is None

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_unavailable(self, account):
        client, w3, functions = _make_client(account)
        _write(functions, "issueCertificate")
        w3.eth.send_raw_transaction = AsyncMock(side_effect=ConnectionError("reset"))

        with pytest.raises(ChainUnavailableError):
            await client.issue_certificate("ab" * 32, fee=1)

    @pytest.mark.asyncio
    async def test_writes_need_an_account(self):
        client, _, functions = _make_client()
        _write(functions, "issueCertificate")
        with pytest.raises(AuthenticationError):
            await client.issue_certificate("ab" * 32, fee=1)

    @pytest.mark.asyncio
    async def test_wait_for_receipt_resolves_earlier_broadcast(self):
        client, _, _ = _make_client()
        result = await client.wait_for_receipt(TX_HASH, "issue")
        assert result.on_chain_id == "0x" + "00" * 31 + "03"

    @pytest.mark.asyncio
    async def test_receipt_status(self):
        client, _, _ = _make_client()
        assert await client.get_receipt_status(TX_HASH) is True


# =============================================================================
# Singleton
# =============================================================================


class TestSingleton:

    def test_unconfigured_contract_is_unavailable(self, monkeypatch):
        import certifychain.config as config_module

        reset_chain_client()
        monkeypatch.setattr(config_module, "CONTRACT_ADDRESS", "")
        with pytest.raises(ChainUnavailableError):
            get_chain_client()
        reset_chain_client()

    def test_get_returns_installed_client(self):
        sentinel = MagicMock()
        chain_client_module._client = sentinel
        try:
            assert get_chain_client() is sentinel
        finally:
            reset_chain_client()
