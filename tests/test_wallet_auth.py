"""Tests for wallet signing and sign-in challenge verification."""
import time

import pytest

from certifychain.auth.wallet_auth import default_user_name, recover_signer, verify_signin
from certifychain.exceptions import AuthenticationError
from certifychain.wallet import SIGNIN_PREAMBLE, Wallet, build_signin_message
from tests.conftest import TEST_KEY


class TestWallet:

    def test_from_private_key(self, wallet):
        assert wallet.address.startswith("0x")
        assert len(wallet.address) == 42

    def test_missing_key(self):
        with pytest.raises(AuthenticationError):
            Wallet.from_private_key("")

    def test_invalid_key(self):
        with pytest.raises(AuthenticationError):
            Wallet.from_private_key("not-a-key")

    @pytest.mark.asyncio
    async def test_request_accounts(self, wallet):
        assert await wallet.request_accounts() == [wallet.address]

    @pytest.mark.asyncio
    async def test_signature_recovers_to_address(self, wallet):
        signature = await wallet.sign_message("hello")
        assert signature.startswith("0x")
        assert recover_signer("hello", signature) == wallet.address

    def test_signin_message_format(self):
        message = build_signin_message("0xAbC", timestamp_ms=1700000000000)
        assert message == f"{SIGNIN_PREAMBLE}\n\nWallet: 0xAbC\nTimestamp: 1700000000000"


class TestVerifySignin:

    @pytest.mark.asyncio
    async def test_valid_challenge(self, wallet):
        payload = await wallet.signin_payload()
        assert verify_signin(**payload) == wallet.address.lower()

    @pytest.mark.asyncio
    async def test_address_of_another_wallet(self, wallet, other_wallet):
        payload = await wallet.signin_payload()
        payload["address"] = other_wallet.address
        assert verify_signin(**payload) is None

    @pytest.mark.asyncio
    async def test_challenge_naming_another_wallet(self, wallet, other_wallet):
        message = build_signin_message(other_wallet.address)
        signature = await wallet.sign_message(message)
        assert verify_signin(message, signature, wallet.address) is None

    @pytest.mark.asyncio
    async def test_stale_timestamp(self, wallet):
        stale = int((time.time() - 3600) * 1000)
        payload = await wallet.signin_payload(timestamp_ms=stale)
        assert verify_signin(**payload) is None

    @pytest.mark.asyncio
    async def test_future_timestamp(self, wallet):
        future = int((time.time() + 3600) * 1000)
        payload = await wallet.signin_payload(timestamp_ms=future)
        assert verify_signin(**payload) is None

    @pytest.mark.asyncio
    async def test_explicit_clock(self, wallet):
        payload = await wallet.signin_payload(timestamp_ms=1700000000000)
        assert verify_signin(**payload, now=1700000010.0) == wallet.address.lower()

    @pytest.mark.asyncio
    async def test_message_without_timestamp(self, wallet):
        message = f"{SIGNIN_PREAMBLE}\n\nWallet: {wallet.address}"
        signature = await wallet.sign_message(message)
        assert verify_signin(message, signature, wallet.address) is None

    def test_garbage_signature(self, wallet):
        message = build_signin_message(wallet.address)
        assert verify_signin(message, "0x1234", wallet.address) is None

    def test_same_key_same_address(self, wallet):
        assert Wallet.from_private_key(TEST_KEY).address == wallet.address


def test_default_user_name():
    assert default_user_name("0x1234567890abcdef1234567890abcdef12345678") == "0x1234...5678"
