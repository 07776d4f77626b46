"""Record store: the relational half of every certificate and entity."""

from certifychain.store.certificates import CertificateStore
from certifychain.store.entities import EntityStore
from certifychain.store.hashing import compute_certificate_hash
from certifychain.store.users import find_or_create_user

__all__ = [
    "CertificateStore",
    "EntityStore",
    "compute_certificate_hash",
    "find_or_create_user",
]
