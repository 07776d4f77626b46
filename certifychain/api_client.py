"""CertifyChain API HTTP client.

Async client used by the reconciliation flow and the CLI to reach the
record store through the API.

Key features:
- Wallet sign-in; the session cookie is kept by the underlying client
- Retry with backoff on idempotent GETs (max 3 attempts)
- Mutating requests are never retried
- Error responses rebuilt into the CertifyChainError taxonomy
- Connectivity failures raised as StoreUnavailableError
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from certifychain.api.models import (
    AttachChainIdRequest,
    CertificatePayload,
    CertificateResponse,
    CertificateSearchResponse,
    CreateCertificateRequest,
    EntityChainLinkRequest,
    EntityDetailResponse,
    EntityListResponse,
    EntityProfile,
    EntityResponse,
    RegisterEntityRequest,
    RevokeCertificateRequest,
    SignInResponse,
    UploadResponse,
)
from certifychain.exceptions import (
    AuthenticationError,
    NotFoundError,
    StoreUnavailableError,
    UploadTooLargeError,
    ValidationError,
    error_from_response,
)
from certifychain.wallet import Wallet

log = logging.getLogger(__name__)

_CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


class ApiClient:
    """Async HTTP client for the CertifyChain API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_upload_bytes: int = 5 * 1024 * 1024,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_upload_bytes = max_upload_bytes
        self.wallet_address: Optional[str] = None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    @classmethod
    def from_config(cls) -> "ApiClient":
        from certifychain.config import API_TIMEOUT, API_URL, UPLOAD_MAX_BYTES

        return cls(base_url=API_URL, timeout=API_TIMEOUT, max_upload_bytes=UPLOAD_MAX_BYTES)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Internal request helpers
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        files: dict | None = None,
        retry: bool = False,
    ) -> httpx.Response:
        """Send a request, retrying connectivity failures and 5xx when ``retry``."""
        max_attempts = 3 if retry else 1
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                response = await self._http.request(
                    method, path, json=json, params=params, files=files
                )
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                if retry and attempt < max_attempts - 1:
                    backoff = 0.5 * (2 ** attempt)
                    log.warning(
                        f"API {method} {path} failed ({type(e).__name__}), "
                        f"retry {attempt + 1}/{max_attempts} in {backoff}s"
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise StoreUnavailableError(f"API unreachable: {e}") from e

            if response.status_code >= 500 and retry and attempt < max_attempts - 1:
                backoff = 0.5 * (2 ** attempt)
                log.warning(
                    f"API {method} {path} returned {response.status_code}, "
                    f"retry {attempt + 1}/{max_attempts} in {backoff}s"
                )
                await asyncio.sleep(backoff)
                continue

            self._handle_error_response(response)
            return response

        raise StoreUnavailableError(
            f"API request failed after {max_attempts} attempts"
        ) from last_error

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the CertifyChainError matching an error response."""
        if response.status_code < 400:
            return

        code = None
        try:
            body = response.json()
            detail = body.get("detail", response.text[:200])
            code = body.get("code")
        except Exception:
            detail = response.text[:200]
        if not isinstance(detail, str):
            detail = str(detail)

        raise error_from_response(response.status_code, code, detail)

    async def _get(self, path: str, *, params: dict | None = None) -> httpx.Response:
        """GET with retry."""
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        return await self._request("GET", path, params=params, retry=True)

    async def _post(self, path: str, *, json: dict | None = None, files: dict | None = None) -> httpx.Response:
        """POST without retry (mutating)."""
        return await self._request("POST", path, json=json, files=files)

    async def _patch(self, path: str, *, json: dict | None = None) -> httpx.Response:
        return await self._request("PATCH", path, json=json)

    # =========================================================================
    # Auth
    # =========================================================================

    async def sign_in(self, wallet: Wallet) -> SignInResponse:
        """Sign the challenge with ``wallet`` and start a session."""
        payload = await wallet.signin_payload()
        resp = await self._post("/auth/signin", json=payload)
        result = SignInResponse.model_validate(resp.json())
        if not result.success:
            raise AuthenticationError("Sign-in was refused")
        self.wallet_address = result.wallet_address
        log.info(f"Signed in as {result.wallet_address}")
        return result

    async def logout(self) -> None:
        await self._post("/auth/logout")
        self.wallet_address = None

    # =========================================================================
    # Entities
    # =========================================================================

    async def get_my_entity(self) -> EntityResponse | None:
        try:
            resp = await self._get("/entity/me")
        except NotFoundError:
            return None
        data = resp.json()
        if data is None:
            return None
        return EntityResponse.model_validate(data)

    async def create_entity(
        self,
        profile: EntityProfile,
        blockchain_id: str | None = None,
        transaction_hash: str | None = None,
    ) -> EntityResponse:
        body = RegisterEntityRequest(
            **profile.model_dump(),
            blockchain_id=blockchain_id,
            transaction_hash=transaction_hash,
        )
        resp = await self._post("/entity", json=body.model_dump(mode="json"))
        return EntityResponse.model_validate(resp.json())

    async def attach_entity_chain_link(
        self, blockchain_id: str, transaction_hash: str | None = None,
    ) -> EntityResponse:
        body = EntityChainLinkRequest(blockchain_id=blockchain_id, transaction_hash=transaction_hash)
        resp = await self._post("/entity/me/chain", json=body.model_dump())
        return EntityResponse.model_validate(resp.json())

    async def get_entity_by_wallet(self, address: str) -> EntityDetailResponse | None:
        try:
            resp = await self._get(f"/entity/wallet/{address}")
        except NotFoundError:
            return None
        return EntityDetailResponse.model_validate(resp.json())

    async def update_entity(
        self, entity_id: str, name: str | None = None, description: str | None = None,
    ) -> EntityResponse:
        resp = await self._patch(
            f"/entity/{entity_id}", json={"name": name, "description": description}
        )
        return EntityResponse.model_validate(resp.json())

    async def list_entities(self, limit: int = 10, cursor: str | None = None) -> EntityListResponse:
        resp = await self._get("/entity", params={"limit": limit, "cursor": cursor})
        return EntityListResponse.model_validate(resp.json())

    # =========================================================================
    # Certificates
    # =========================================================================

    async def create_certificate(self, payload: CertificatePayload, issuer_id: str) -> CertificateResponse:
        body = CreateCertificateRequest(**payload.model_dump(), issuer_id=issuer_id)
        resp = await self._post("/certificate", json=body.model_dump(mode="json"))
        return CertificateResponse.model_validate(resp.json())

    async def attach_chain_id(
        self, cert_id: int, blockchain_id: str, transaction_hash: str | None = None,
    ) -> CertificateResponse:
        body = AttachChainIdRequest(blockchain_id=blockchain_id, transaction_hash=transaction_hash)
        resp = await self._post(f"/certificate/{cert_id}/chain", json=body.model_dump())
        return CertificateResponse.model_validate(resp.json())

    async def revoke_certificate(self, cert_id: int, revoke_tx_hash: str | None = None) -> CertificateResponse:
        body = RevokeCertificateRequest(revoke_tx_hash=revoke_tx_hash)
        resp = await self._post(f"/certificate/{cert_id}/revoke", json=body.model_dump())
        return CertificateResponse.model_validate(resp.json())

    async def get_certificate(self, cert_id: int) -> CertificateResponse | None:
        try:
            resp = await self._get(f"/certificate/{cert_id}")
        except NotFoundError:
            return None
        return CertificateResponse.model_validate(resp.json())

    async def get_certificate_by_blockchain_id(self, blockchain_id: str) -> CertificateResponse | None:
        try:
            resp = await self._get(f"/certificate/chain/{blockchain_id}")
        except NotFoundError:
            return None
        return CertificateResponse.model_validate(resp.json())

    async def find_certificate_by_hash(self, certificate_hash: str) -> CertificateResponse | None:
        try:
            resp = await self._get(f"/certificate/hash/{certificate_hash}")
        except NotFoundError:
            return None
        return CertificateResponse.model_validate(resp.json())

    async def list_my_certificates(self) -> list[CertificateResponse]:
        resp = await self._get("/certificate/me")
        return [CertificateResponse.model_validate(c) for c in resp.json()]

    async def list_entity_certificates(self, issuer_id: str) -> list[CertificateResponse]:
        resp = await self._get(f"/certificate/entity/{issuer_id}")
        return [CertificateResponse.model_validate(c) for c in resp.json()]

    async def search_certificates(
        self,
        query: str | None = None,
        recipient_email: str | None = None,
        is_revoked: bool | None = None,
        limit: int = 10,
        cursor: int | None = None,
    ) -> CertificateSearchResponse:
        params = {
            "query": query,
            "recipient_email": recipient_email,
            "is_revoked": None if is_revoked is None else str(is_revoked).lower(),
            "limit": limit,
            "cursor": cursor,
        }
        resp = await self._get("/certificate/search", params=params)
        return CertificateSearchResponse.model_validate(resp.json())

    # =========================================================================
    # Uploads
    # =========================================================================

    async def upload(self, path: str | Path) -> str:
        """Upload an image and return its URL. Oversized files never leave the machine."""
        path = Path(path)
        content_type = _CONTENT_TYPES.get(path.suffix.lower())
        if content_type is None:
            raise ValidationError(f"Unsupported file type: {path.suffix or path.name}", field="file")
        size = path.stat().st_size
        if size > self.max_upload_bytes:
            raise UploadTooLargeError(
                f"{path.name} is {size} bytes; the limit is {self.max_upload_bytes}", field="file"
            )

        resp = await self._post(
            "/upload", files={"file": (path.name, path.read_bytes(), content_type)}
        )
        return UploadResponse.model_validate(resp.json()).url
