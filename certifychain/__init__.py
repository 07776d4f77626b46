"""CertifyChain: certificate issuance backed by an on-chain registry and a record store."""

__version__ = "0.1.0"
