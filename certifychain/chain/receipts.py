"""Helpers for reading transaction receipts and revert messages."""
import logging
from typing import Any, Optional

from web3 import Web3

from certifychain.exceptions import RevertReason, ValidationError

log = logging.getLogger(__name__)

# Ordered: the first matching fragment wins
_REVERT_FRAGMENTS: list[tuple[str, RevertReason]] = [
    ("already registered", RevertReason.ALREADY_REGISTERED),
    ("already revoked", RevertReason.ALREADY_REVOKED),
    ("insufficient", RevertReason.INSUFFICIENT_FEE),
    ("fee", RevertReason.INSUFFICIENT_FEE),
    ("not found", RevertReason.NOT_FOUND),
    ("does not exist", RevertReason.NOT_FOUND),
    ("invalid certificate", RevertReason.NOT_FOUND),
]


def classify_revert(message: Optional[str]) -> RevertReason:
    """Map a contract revert message onto a RevertReason."""
    text = (message or "").lower()
    for fragment, reason in _REVERT_FRAGMENTS:
        if fragment in text:
            return reason
    return RevertReason.UNKNOWN


def _field(obj: Any, name: str):
    # web3 returns AttributeDicts; tests hand in plain dicts
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def first_indexed_topic(receipt: Any) -> Optional[str]:
    """``logs[0].topics[1]`` as 0x hex, or None when the receipt has no such topic."""
    logs = _field(receipt, "logs") or []
    if not logs:
        return None
    topics = _field(logs[0], "topics") or []
    if len(topics) < 2:
        return None
    topic = topics[1]
    if isinstance(topic, str):
        return topic.lower()
    return Web3.to_hex(topic).lower()


def certificate_id_from_receipt(receipt: Any) -> Optional[str]:
    """The ``CertificateIssued.certificateId`` topic as a 32-byte hex string."""
    return first_indexed_topic(receipt)


def entity_address_from_receipt(receipt: Any) -> Optional[str]:
    """The ``EntityRegistered.entity`` topic as a lower-cased address."""
    topic = first_indexed_topic(receipt)
    if topic is None:
        return None
    return "0x" + topic[-40:]


def to_certificate_number(on_chain_id: str | int) -> int:
    """On-chain certificate id as the uint256 the contract takes.

    Accepts the 0x hex topic form stored off-chain as well as decimal.
    """
    if isinstance(on_chain_id, int):
        value = on_chain_id
    else:
        text = on_chain_id.strip()
        try:
            value = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError as e:
            raise ValidationError(f"Not a certificate id: {on_chain_id!r}", field="on_chain_id") from e
    if value < 0 or value >= 2 ** 256:
        raise ValidationError(f"Certificate id out of range: {on_chain_id!r}", field="on_chain_id")
    return value


def to_topic_hex(on_chain_id: str | int) -> str:
    """Canonical off-chain form of an on-chain id: 0x + 64 lower-case hex digits."""
    return "0x" + format(to_certificate_number(on_chain_id), "064x")
