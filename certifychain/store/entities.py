"""Issuing entity records."""
import logging
from typing import Optional

from sqlalchemy import func

from certifychain.api.models import EntityProfile, normalize_address
from certifychain.db.models import Certificate, IssuingEntity
from certifychain.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from certifychain.store.base import BaseStore, check_page_size, keyset_page, translate_db_errors

log = logging.getLogger(__name__)


class EntityStore(BaseStore):
    """CRUD for IssuingEntity rows.

    One entity per wallet address and one per user. Creation is never an
    upsert: an existing row is a ConflictError the caller has to handle.
    """

    def create(
        self,
        profile: EntityProfile,
        blockchain_id: Optional[str] = None,
        transaction_hash: Optional[str] = None,
    ) -> IssuingEntity:
        principal = self._require_principal()
        wallet = profile.wallet_address or principal.wallet_address
        if wallet != principal.wallet_address:
            raise UnauthorizedError("Entities can only be registered for the signed-in wallet")

        with translate_db_errors(self.db, "register entity"):
            existing = self.db.query(IssuingEntity).filter(
                (IssuingEntity.wallet_address == wallet)
                | (IssuingEntity.user_id == principal.user_id)
            ).first()
            if existing is not None:
                raise ConflictError("Entity with this wallet address already exists")

            entity = IssuingEntity(
                wallet_address=wallet,
                user_id=principal.user_id,
                name=profile.name,
                description=profile.description,
                organization_type=profile.organization_type,
                country=profile.country,
                website=profile.website,
                email=profile.email,
                phone=profile.phone,
                address=profile.address,
                registration_number=profile.registration_number,
                tax_id=profile.tax_id,
                blockchain_id=blockchain_id,
                transaction_hash=transaction_hash,
            )
            self.db.add(entity)
            self.db.commit()
            self.db.refresh(entity)

        log.info(
            f"Entity {entity.id[:8]}... registered for {wallet}",
            extra={"entity_id": entity.id, "transaction_hash": transaction_hash},
        )
        return entity

    def get_by_owner(self) -> Optional[IssuingEntity]:
        principal = self._require_principal()
        with translate_db_errors(self.db, "load entity"):
            return self.db.query(IssuingEntity).filter(
                IssuingEntity.user_id == principal.user_id
            ).first()

    def get_by_wallet(self, address: str) -> Optional[IssuingEntity]:
        try:
            wallet = normalize_address(address)
        except ValueError as e:
            raise ValidationError(str(e), field="wallet_address") from e
        with translate_db_errors(self.db, "load entity"):
            return self.db.query(IssuingEntity).filter(
                IssuingEntity.wallet_address == wallet
            ).first()

    def get(self, entity_id: str) -> IssuingEntity:
        with translate_db_errors(self.db, "load entity"):
            entity = self.db.get(IssuingEntity, entity_id)
        if entity is None:
            raise NotFoundError(f"Entity not found: {entity_id}")
        return entity

    def update(
        self,
        entity_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> IssuingEntity:
        principal = self._require_principal()
        entity = self.get(entity_id)
        if entity.user_id != principal.user_id:
            raise UnauthorizedError("Entity belongs to another wallet")

        with translate_db_errors(self.db, "update entity"):
            if name is not None:
                entity.name = name
            if description is not None:
                entity.description = description
            self.db.commit()
            self.db.refresh(entity)
        return entity

    def attach_chain_link(
        self,
        blockchain_id: str,
        transaction_hash: Optional[str] = None,
    ) -> IssuingEntity:
        """Link the caller's existing row to its on-chain registration.

        Only empty columns are filled; a different registration already
        recorded on the row is a ConflictError.
        """
        entity = self.get_by_owner()
        if entity is None:
            raise NotFoundError("No entity registered for this wallet")
        blockchain_id = blockchain_id.lower()
        if entity.blockchain_id and entity.blockchain_id != blockchain_id:
            raise ConflictError(f"Entity is already linked to {entity.blockchain_id}")

        with translate_db_errors(self.db, "link entity"):
            if not entity.blockchain_id:
                entity.blockchain_id = blockchain_id
            if transaction_hash and not entity.transaction_hash:
                entity.transaction_hash = transaction_hash
            self.db.commit()
            self.db.refresh(entity)

        log.info(
            f"Entity {entity.id[:8]}... linked to on-chain registration {blockchain_id}",
            extra={"entity_id": entity.id, "transaction_hash": transaction_hash},
        )
        return entity

    def list(self, limit: int = 10, cursor: Optional[str] = None):
        """Newest entities first, with their certificate counts.

        Returns ``([(entity, certificate_count), ...], next_cursor)``.
        """
        check_page_size(limit)
        with translate_db_errors(self.db, "list entities"):
            cursor_row = None
            if cursor:
                cursor_row = self.db.get(IssuingEntity, cursor)
                if cursor_row is None:
                    raise ValidationError(f"Unknown cursor: {cursor}", field="cursor")

            entities, next_cursor = keyset_page(
                self.db.query(IssuingEntity),
                IssuingEntity,
                IssuingEntity.registered_at,
                cursor_row,
                limit,
            )

            counts: dict[str, int] = {}
            if entities:
                counts = dict(
                    self.db.query(Certificate.issuer_id, func.count(Certificate.id))
                    .filter(Certificate.issuer_id.in_([e.id for e in entities]))
                    .group_by(Certificate.issuer_id)
                    .all()
                )

        return [(e, counts.get(e.id, 0)) for e in entities], next_cursor
