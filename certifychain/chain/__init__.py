"""Access to the CertificateRegistry contract."""

from certifychain.chain.client import (
    CertificateRecord,
    ChainClient,
    EntityInfo,
    TransactionResult,
    close_chain_client,
    get_chain_client,
    reset_chain_client,
)

__all__ = [
    "CertificateRecord",
    "ChainClient",
    "EntityInfo",
    "TransactionResult",
    "close_chain_client",
    "get_chain_client",
    "reset_chain_client",
]
