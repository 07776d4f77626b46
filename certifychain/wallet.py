"""Local wallet holding the issuer's signing key.

Stands where a browser wallet would: it exposes the account address, signs
sign-in challenges, and hands its local account to the chain client for
transaction signing.
"""
import time
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from certifychain.exceptions import AuthenticationError

SIGNIN_PREAMBLE = "Sign this message to authenticate with CertifyChain."


def build_signin_message(address: str, timestamp_ms: Optional[int] = None) -> str:
    """The challenge text a wallet signs to sign in."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{SIGNIN_PREAMBLE}\n\nWallet: {address}\nTimestamp: {timestamp_ms}"


class Wallet:
    def __init__(self, account: LocalAccount):
        self.account = account

    @classmethod
    def from_private_key(cls, private_key: str) -> "Wallet":
        if not private_key:
            raise AuthenticationError(
                "No wallet key configured (set CERTIFYCHAIN_WALLET_KEY or pass --key)"
            )
        try:
            return cls(Account.from_key(private_key))
        except (ValueError, TypeError) as e:
            raise AuthenticationError(f"Invalid wallet key: {e}") from e

    @property
    def address(self) -> str:
        """Checksummed address of the account."""
        return self.account.address

    async def request_accounts(self) -> list[str]:
        return [self.address]

    async def sign_message(self, text: str) -> str:
        """EIP-191 ``personal_sign`` signature as 0x hex."""
        signed = self.account.sign_message(encode_defunct(text=text))
        return Web3.to_hex(signed.signature)

    async def signin_payload(self, timestamp_ms: Optional[int] = None) -> dict:
        """Body for ``POST /auth/signin``."""
        message = build_signin_message(self.address, timestamp_ms)
        return {
            "message": message,
            "signature": await self.sign_message(message),
            "address": self.address,
        }
