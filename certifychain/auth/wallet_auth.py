"""Verification of signed sign-in challenges."""
import logging
import re
import time
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from certifychain import config

log = logging.getLogger(__name__)

_WALLET_LINE = re.compile(r"^Wallet: (0x[0-9a-fA-F]{40})$", re.MULTILINE)
_TIMESTAMP_LINE = re.compile(r"^Timestamp: (\d+)$", re.MULTILINE)


def recover_signer(message: str, signature: str) -> Optional[str]:
    """Address that produced an EIP-191 ``personal_sign`` signature, or None."""
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        log.info(f"Could not recover signer: {e}")
        return None


def verify_signin(
    message: str,
    signature: str,
    address: str,
    now: Optional[float] = None,
) -> Optional[str]:
    """Check a sign-in challenge and return the lower-cased wallet address.

    Accepts only when the signature recovers to ``address``, the challenge
    names that same wallet, and its timestamp is no older than
    ``SIGNIN_MAX_AGE_SECONDS`` (nor in the future by more than that).
    Returns None on any mismatch.
    """
    signer = recover_signer(message, signature)
    if signer is None or signer.lower() != address.lower():
        log.info(f"Sign-in rejected: signature does not match {address}")
        return None

    wallet = _WALLET_LINE.search(message)
    if wallet is None or wallet.group(1).lower() != address.lower():
        log.info(f"Sign-in rejected: challenge does not name {address}")
        return None

    stamp = _TIMESTAMP_LINE.search(message)
    if stamp is None:
        log.info("Sign-in rejected: challenge has no timestamp")
        return None

    now = time.time() if now is None else now
    age = now - int(stamp.group(1)) / 1000
    if abs(age) > config.SIGNIN_MAX_AGE_SECONDS:
        log.info(f"Sign-in rejected: challenge is {age:.0f}s old")
        return None

    return address.lower()


def default_user_name(address: str) -> str:
    """``0x1234...abcd`` form used as the display name of new users."""
    return f"{address[:6]}...{address[-4:]}"
