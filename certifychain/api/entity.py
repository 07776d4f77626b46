"""Issuing entity endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from certifychain.api.certificate import certificate_response
from certifychain.api.models import (
    EntityChainLinkRequest,
    EntityDetailResponse,
    EntityListResponse,
    EntityResponse,
    EntityUpdateRequest,
    RegisterEntityRequest,
)
from certifychain.auth.principal import Principal, require_principal
from certifychain.db.models import IssuingEntity
from certifychain.db.session import get_db
from certifychain.exceptions import NotFoundError
from certifychain.store.entities import EntityStore

log = logging.getLogger(__name__)

router = APIRouter(prefix="/entity", tags=["entity"])


def entity_response(entity: IssuingEntity, certificate_count: Optional[int] = None) -> EntityResponse:
    return EntityResponse(
        id=entity.id,
        wallet_address=entity.wallet_address,
        name=entity.name,
        description=entity.description,
        organization_type=entity.organization_type,
        country=entity.country,
        website=entity.website,
        email=entity.email,
        phone=entity.phone,
        address=entity.address,
        registration_number=entity.registration_number,
        tax_id=entity.tax_id,
        blockchain_id=entity.blockchain_id,
        transaction_hash=entity.transaction_hash,
        registered_at=entity.registered_at,
        status="active" if entity.is_chain_linked else "pending",
        certificate_count=certificate_count,
    )


@router.post("", response_model=EntityResponse)
async def register_entity(
    body: RegisterEntityRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> EntityResponse:
    """Create the caller's entity row.

    ``blockchain_id``/``transaction_hash`` are set when the on-chain
    registration already confirmed.
    """
    store = EntityStore(db, principal)
    entity = store.create(
        body,
        blockchain_id=body.blockchain_id.lower() if body.blockchain_id else None,
        transaction_hash=body.transaction_hash,
    )
    return entity_response(entity, certificate_count=0)


@router.get("/me", response_model=Optional[EntityResponse])
async def get_my_entity(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> Optional[EntityResponse]:
    """The caller's entity, or null when none is registered yet."""
    entity = EntityStore(db, principal).get_by_owner()
    if entity is None:
        return None
    return entity_response(entity, certificate_count=len(entity.certificates))


@router.post("/me/chain", response_model=EntityResponse)
async def attach_chain_link(
    body: EntityChainLinkRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> EntityResponse:
    """Record the on-chain registration on a row created before it confirmed."""
    entity = EntityStore(db, principal).attach_chain_link(body.blockchain_id, body.transaction_hash)
    return entity_response(entity, certificate_count=len(entity.certificates))


@router.get("/wallet/{address}", response_model=EntityDetailResponse)
async def get_entity_by_wallet(
    address: str,
    db: Session = Depends(get_db),
) -> EntityDetailResponse:
    """Public entity profile with its certificates, newest first."""
    entity = EntityStore(db).get_by_wallet(address)
    if entity is None:
        raise NotFoundError(f"No entity registered for {address}")
    certificates = [certificate_response(c) for c in entity.certificates]
    return EntityDetailResponse(
        **entity_response(entity, certificate_count=len(certificates)).model_dump(),
        certificates=certificates,
    )


@router.patch("/{entity_id}", response_model=EntityResponse)
async def update_entity(
    entity_id: str,
    body: EntityUpdateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
) -> EntityResponse:
    entity = EntityStore(db, principal).update(entity_id, name=body.name, description=body.description)
    return entity_response(entity)


@router.get("", response_model=EntityListResponse)
async def list_entities(
    limit: int = Query(10),
    cursor: Optional[str] = None,
    db: Session = Depends(get_db),
) -> EntityListResponse:
    rows, next_cursor = EntityStore(db).list(limit=limit, cursor=cursor)
    return EntityListResponse(
        entities=[entity_response(e, certificate_count=n) for e, n in rows],
        next_cursor=next_cursor,
    )
