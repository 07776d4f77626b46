"""Pytest fixtures for CertifyChain tests."""
import dataclasses
import importlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import certifychain.chain.client as chain_client_module
from certifychain.api_client import ApiClient
from certifychain.auth.principal import Principal
from certifychain.auth.session import reset_rate_limiter, reset_session_store
from certifychain.chain.client import CertificateRecord, TransactionResult, reset_chain_client
from certifychain.chain.receipts import to_certificate_number, to_topic_hex
from certifychain.db.models import Base
from certifychain.exceptions import ChainRejectedError, NotFoundError, RevertReason
from certifychain.reconcile.flow import Reconciler
from certifychain.store.users import find_or_create_user
from certifychain.wallet import Wallet

# Deterministic throwaway keys (never funded anywhere)
TEST_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32

ADDRESS_A = "0x" + "a1" * 20
ADDRESS_B = "0x" + "b2" * 20

# Simulated block timestamps start here
_BLOCK_TIME = 1_700_000_000


# =============================================================================
# Mock chain client
# =============================================================================


class MockChainClient:
    """In-memory CertificateRegistry standing in for ChainClient.

    Every public method is an AsyncMock wrapping a small simulation of the
    contract, so tests can both assert on calls and swap in failures:

        async def test_something(reconciler, mock_chain):
            mock_chain.issue_certificate.side_effect = ChainTimeoutError("slow", "0xabc")
            result = await reconciler.issue_certificate({...})
    """

    def __init__(self, sender: str):
        self.sender = sender.lower()
        self.registered: dict[str, str] = {}
        self.certificates: dict[int, CertificateRecord] = {}
        self.registration_fee = 10 ** 15
        self.issuance_fee = 10 ** 14
        self.circuit_state = "closed"
        self._tx_count = 0

        async def _is_entity_registered(address):
            return address.lower() in self.registered
        self.is_entity_registered = AsyncMock(side_effect=_is_entity_registered)

        async def _get_registration_fee():
            return self.registration_fee
        self.get_registration_fee = AsyncMock(side_effect=_get_registration_fee)

        async def _get_issuance_fee():
            return self.issuance_fee
        self.get_issuance_fee = AsyncMock(side_effect=_get_issuance_fee)

        async def _register_entity(name, fee=None):
            if self.sender in self.registered:
                raise ChainRejectedError(
                    "register reverted: Entity already registered",
                    reason=RevertReason.ALREADY_REGISTERED,
                )
            self.registered[self.sender] = name
            return TransactionResult(self._next_tx(), on_chain_id=self.sender, block_number=self._tx_count)
        self.register_entity = AsyncMock(side_effect=_register_entity)

        async def _issue_certificate(certificate_hash, metadata="", fee=None):
            if self.sender not in self.registered:
                raise ChainRejectedError("issue reverted: Not a registered entity")
            number = len(self.certificates) + 1
            self.certificates[number] = CertificateRecord(
                id=number,
                certificate_hash=certificate_hash,
                issuer=self.sender,
                issued_at=_BLOCK_TIME + number,
                is_revoked=False,
                metadata=metadata,
                issuer_name=self.registered[self.sender],
            )
            return TransactionResult(
                self._next_tx(), on_chain_id=to_topic_hex(number), block_number=self._tx_count
            )
        self.issue_certificate = AsyncMock(side_effect=_issue_certificate)

        async def _revoke_certificate(on_chain_id):
            number = to_certificate_number(on_chain_id)
            record = self.certificates.get(number)
            if record is None:
                raise ChainRejectedError(
                    "revoke reverted: Certificate does not exist", reason=RevertReason.NOT_FOUND
                )
            if record.is_revoked:
                raise ChainRejectedError(
                    "revoke reverted: Certificate already revoked", reason=RevertReason.ALREADY_REVOKED
                )
            self.certificates[number] = dataclasses.replace(record, is_revoked=True)
            return TransactionResult(self._next_tx(), block_number=self._tx_count)
        self.revoke_certificate = AsyncMock(side_effect=_revoke_certificate)

        async def _verify_certificate(on_chain_id):
            record = self.certificates.get(to_certificate_number(on_chain_id))
            if record is None:
                raise NotFoundError(f"Certificate {on_chain_id} not found on-chain")
            return record
        self.verify_certificate = AsyncMock(side_effect=_verify_certificate)

        async def _wait_for_receipt(transaction_hash, operation="issue"):
            return TransactionResult(transaction_hash, block_number=self._tx_count)
        self.wait_for_receipt = AsyncMock(side_effect=_wait_for_receipt)
        self.get_receipt_status = AsyncMock(return_value=True)

        self.is_healthy = AsyncMock(return_value=True)
        self.close = AsyncMock()

    def _next_tx(self) -> str:
        self._tx_count += 1
        return "0x" + format(self._tx_count, "064x")

    def anchor(self, certificate_hash: str, issuer: str = ADDRESS_A, revoked: bool = False) -> str:
        """Put a certificate on the simulated chain directly; returns its topic id."""
        number = len(self.certificates) + 1
        self.certificates[number] = CertificateRecord(
            id=number,
            certificate_hash=certificate_hash,
            issuer=issuer,
            issued_at=_BLOCK_TIME + number,
            is_revoked=revoked,
            metadata="",
            issuer_name="Registry Seed",
        )
        return to_topic_hex(number)


# =============================================================================
# Wallets
# =============================================================================


@pytest.fixture
def wallet() -> Wallet:
    return Wallet.from_private_key(TEST_KEY)


@pytest.fixture
def other_wallet() -> Wallet:
    return Wallet.from_private_key(OTHER_KEY)


@pytest.fixture
def mock_chain(wallet: Wallet) -> MockChainClient:
    """Simulated registry whose writes are sent from ``wallet``."""
    return MockChainClient(wallet.address)


# =============================================================================
# Record store (direct, in-memory SQLite)
# =============================================================================


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def make_principal(db) -> Callable[[str], Principal]:
    """Factory: Principal for a wallet address, creating its user row."""

    def _make(wallet_address: str) -> Principal:
        user = find_or_create_user(db, wallet_address.lower())
        return Principal(user_id=user.id, wallet_address=user.wallet_address, name=user.name)

    return _make


# =============================================================================
# API application
# =============================================================================


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test data."""
    path = Path(tempfile.mkdtemp(prefix="certifychain-test-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def app_module(temp_dir: Path, mock_chain: MockChainClient):
    """``certifychain.main`` reloaded against a temp data dir and the mock chain.

    ASGITransport does not run the lifespan handler, so tables are created
    here.
    """
    original_data_dir = os.environ.get("CERTIFYCHAIN_DATA_DIR")
    os.environ["CERTIFYCHAIN_DATA_DIR"] = str(temp_dir)

    reset_session_store()
    reset_rate_limiter()
    reset_chain_client()
    chain_client_module._client = mock_chain

    import certifychain.config as config_module
    importlib.reload(config_module)

    import certifychain.db.session as db_session_module
    importlib.reload(db_session_module)

    import certifychain.main as main_module
    importlib.reload(main_module)

    db_session_module.init_database()

    yield main_module

    db_session_module.engine.dispose()
    reset_session_store()
    reset_rate_limiter()
    reset_chain_client()

    if original_data_dir is not None:
        os.environ["CERTIFYCHAIN_DATA_DIR"] = original_data_dir
    else:
        os.environ.pop("CERTIFYCHAIN_DATA_DIR", None)
    importlib.reload(config_module)


async def sign_in(client: AsyncClient, wallet: Wallet) -> dict:
    response = await client.post("/auth/signin", json=await wallet.signin_payload())
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
async def client(app_module) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app_module.app),
        base_url="http://test",
    ) as async_client:
        yield async_client


@pytest.fixture
async def signed_in_client(client: AsyncClient, wallet: Wallet) -> AsyncClient:
    await sign_in(client, wallet)
    return client


@pytest.fixture
async def other_client(app_module, other_wallet: Wallet) -> AsyncGenerator[AsyncClient, None]:
    """A second browser, signed in as ``other_wallet``."""
    async with AsyncClient(
        transport=ASGITransport(app=app_module.app),
        base_url="http://test",
    ) as async_client:
        await sign_in(async_client, other_wallet)
        yield async_client


@pytest.fixture
async def entity(signed_in_client: AsyncClient) -> dict:
    """Entity row registered for ``wallet``."""
    response = await signed_in_client.post("/entity", json={"name": "Acme University"})
    assert response.status_code == 200, response.text
    return response.json()


# =============================================================================
# Reconciliation
# =============================================================================


@pytest.fixture
async def records(app_module, wallet: Wallet) -> AsyncGenerator[ApiClient, None]:
    """ApiClient talking to the in-process app, signed in as ``wallet``."""
    api = ApiClient(base_url="http://test", transport=ASGITransport(app=app_module.app))
    await api.sign_in(wallet)
    yield api
    await api.close()


@pytest.fixture
def reconciler(wallet: Wallet, mock_chain: MockChainClient, records: ApiClient) -> Reconciler:
    return Reconciler(wallet, mock_chain, records)
