"""Document image upload.

Files are stored under UPLOAD_DIR with a random name and served back
from ``/uploads``. The returned URL goes into a certificate's
``document_url``.
"""
import logging
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse

from certifychain import config
from certifychain.api.models import UploadResponse
from certifychain.auth.principal import Principal, require_principal
from certifychain.exceptions import NotFoundError, UploadTooLargeError, ValidationError

log = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])

_CHUNK_SIZE = 64 * 1024

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


@router.post("/upload", response_model=UploadResponse)
async def upload(
    file: UploadFile = File(...),
    principal: Principal = Depends(require_principal),
) -> UploadResponse:
    """Store an image up to UPLOAD_MAX_BYTES; 413 when larger."""
    content_type = (file.content_type or "").lower()
    if content_type not in config.UPLOAD_ALLOWED_TYPES:
        raise ValidationError(f"Unsupported file type: {content_type or 'unknown'}", field="file")

    data = bytearray()
    while True:
        chunk = await file.read(_CHUNK_SIZE)
        if not chunk:
            break
        data.extend(chunk)
        if len(data) > config.UPLOAD_MAX_BYTES:
            raise UploadTooLargeError(
                f"File exceeds {config.UPLOAD_MAX_BYTES} bytes", field="file"
            )
    if not data:
        raise ValidationError("Empty file", field="file")

    upload_dir = Path(config.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    name = f"{uuid.uuid4().hex}{_EXTENSIONS.get(content_type, Path(file.filename or '').suffix)}"
    (upload_dir / name).write_bytes(bytes(data))

    log.info(
        f"Stored upload {name} ({len(data)} bytes) for {principal.wallet_address}",
        extra={"upload": name, "size": len(data)},
    )
    return UploadResponse(url=f"/uploads/{name}")


@router.get("/uploads/{name}")
async def get_upload(name: str) -> FileResponse:
    """Serve a previously uploaded file."""
    path = Path(config.UPLOAD_DIR) / name
    if Path(name).name != name or not path.is_file():
        raise NotFoundError(f"Upload not found: {name}")
    return FileResponse(path)
