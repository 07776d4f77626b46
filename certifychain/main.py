"""CertifyChain API FastAPI application.

Serves the record store (entities, certificates), wallet sign-in, document
uploads and public on-chain verification. The chain client is created
lazily on the first request that needs it and closed on shutdown.
"""
import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from certifychain import __version__, config
from certifychain.chain.client import close_chain_client
from certifychain.db.session import init_database
from certifychain.exceptions import CertifyChainError
from certifychain.log_config import configure_logging

configure_logging()
log = logging.getLogger("certifychain-api")

# Probed every few seconds by the orchestrator
_QUIET_ROUTES = frozenset({"/livez", "/healthz", "/readyz"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; release the RPC connection on shutdown."""
    log.info(
        f"Starting CertifyChain API {__version__} "
        f"(rpc={config.RPC_URL}, contract={config.CONTRACT_ADDRESS or 'unset'})"
    )
    try:
        init_database()
    except Exception as e:
        log.error(f"Record store unavailable at startup: {e}")
        raise
    if not config.CONTRACT_ADDRESS:
        log.warning("CERTIFYCHAIN_CONTRACT_ADDRESS is not set; /verify and /readyz will fail")

    yield

    await close_chain_client()
    log.info("CertifyChain API stopped")


app = FastAPI(
    title="CertifyChain",
    version=__version__,
    description="Certificate issuance and verification backed by an on-chain registry",
    lifespan=lifespan,
)


@app.exception_handler(CertifyChainError)
async def certifychain_error_handler(request: Request, exc: CertifyChainError):
    """Every domain error becomes ``{"detail", "code"}`` with its own status."""
    if exc.http_status >= 500:
        log.warning(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
    )


from certifychain.api import auth, certificate, entity, health, upload, verify  # noqa: E402

for module in (health, auth, entity, certificate, upload, verify):
    app.include_router(module.router)


@app.get("/version")
def version():
    """Service version and build commit."""
    git_sha = os.getenv("GIT_SHA", "unknown")
    body = {"service": "certifychain", "version": __version__, "git_sha": git_sha}
    if git_sha != "unknown":
        body["short_sha"] = git_sha[:7]
    return body


@app.middleware("http")
async def request_logging(request: Request, call_next):
    """One log line per request; health probes only at DEBUG."""
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - started) * 1000, 1)

    path = request.url.path
    level = logging.DEBUG if path in _QUIET_ROUTES else logging.INFO
    log.log(
        level,
        f"{request.method} {path} -> {response.status_code} in {duration_ms}ms",
        extra={
            "route": path,
            "method": request.method,
            "status": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response
