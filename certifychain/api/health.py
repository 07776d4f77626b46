"""Health check endpoints.

| Endpoint    | Purpose                          | Status     |
|-------------|----------------------------------|------------|
| GET /livez  | Liveness: is the process alive?  | Always 200 |
| GET /healthz| Readiness: DB reachable?         | 200 / 503  |
| GET /readyz | Full operational: DB and chain?  | 200 / 503  |

/healthz does not probe the chain. Reads and writes that need the chain
fail individually with CHAIN_UNAVAILABLE, so the API stays in rotation
for DB-only routes while the RPC endpoint is down.
"""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from certifychain.chain.client import get_chain_client
from certifychain.db import session as db_session
from certifychain.exceptions import CertifyChainError

log = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


def _database_status() -> str:
    try:
        with db_session.get_db_session() as db:
            db.execute(text("SELECT 1"))
    except Exception as e:
        log.warning(f"Health check: DB unavailable: {e}")
        return "unavailable"
    return "connected"


async def _chain_status() -> str:
    try:
        healthy = await get_chain_client().is_healthy()
    except CertifyChainError as e:
        log.warning(f"Health check: chain unavailable: {e.message}")
        return "unavailable"
    return "connected" if healthy else "unavailable"


@router.get("/livez")
async def livez():
    """Liveness probe, always 200."""
    return {"status": "alive", "service": "certifychain"}


@router.get("/healthz")
async def healthz():
    """Readiness probe: 200 if the DB is reachable, 503 otherwise."""
    db_status = _database_status()
    body = {
        "status": "ok" if db_status == "connected" else "unhealthy",
        "database": db_status,
    }
    if db_status != "connected":
        return JSONResponse(content=body, status_code=503)
    return body


@router.get("/readyz")
async def readyz():
    """200 only when the DB and the chain RPC endpoint are both up."""
    db_status = _database_status()
    chain_status = await _chain_status()

    ready = db_status == "connected" and chain_status == "connected"
    body = {
        "ready": ready,
        "database": db_status,
        "chain": chain_status,
    }
    if not ready:
        return JSONResponse(content=body, status_code=503)
    return body
