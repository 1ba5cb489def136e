from __future__ import annotations

import logging
import secrets
import urllib.parse
from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from app.config import DOWNLOAD_CHUNK_SIZE, MAX_FILE_SIZE, UPLOAD_SECRET
from app.coordinator import AccessCoordinator
from app.core.exceptions import CapacityError, UploadRejected
from app.core.metrics import metrics
from app.services.stats import fetch_storage_totals
from app.state import get_coordinator

router = APIRouter()

logger = logging.getLogger("oneshot")


def require_upload_secret(request: Request):
    """Dependency checking the shared upload secret, when one is configured."""
    if not UPLOAD_SECRET:
        return None

    supplied = request.headers.get("x-upload-secret") or request.query_params.get("secret")
    if not supplied or not secrets.compare_digest(supplied, UPLOAD_SECRET):
        raise UploadRejected("Invalid or missing upload secret", status_code=401)

    return supplied


def _content_disposition(filename: str) -> str:
    quoted = urllib.parse.quote(filename, safe="")
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download.bin"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quoted}"


@router.post("/upload", dependencies=[Depends(require_upload_secret)])
def upload(
    file: Optional[UploadFile] = File(None),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    if file is None:
        logger.warning("event=upload_rejected reason=missing_file_field")
        raise UploadRejected("expected multipart field named 'file'")

    declared = file.size
    if declared is not None and declared > MAX_FILE_SIZE:
        logger.warning(
            "event=upload_rejected reason=max_size filename=%s size_bytes=%s limit_bytes=%s",
            file.filename,
            declared,
            MAX_FILE_SIZE,
        )
        raise CapacityError(MAX_FILE_SIZE)

    try:
        ticket = coordinator.register_upload(file.file, file.filename, file.content_type)
    except CapacityError:
        logger.warning(
            "event=upload_rejected reason=max_size filename=%s limit_bytes=%s",
            file.filename,
            MAX_FILE_SIZE,
        )
        raise

    return ticket.as_dict()


@router.get("/d/{link_id}")
def download(link_id: str, coordinator: AccessCoordinator = Depends(get_coordinator)):
    grant = coordinator.handle_download(link_id)
    entry = grant.entry
    headers = {
        "Content-Disposition": _content_disposition(entry.filename),
        "Content-Length": str(entry.size),
        "Cache-Control": "no-store",
        "X-Remaining-Downloads": str(grant.remaining),
    }
    return StreamingResponse(
        grant.iter_chunks(DOWNLOAD_CHUNK_SIZE),
        media_type=entry.content_type,
        headers=headers,
        # the body iterator may never start if the client goes away first
        background=BackgroundTask(grant.close),
    )


@router.get("/metrics")
def metrics_snapshot(coordinator: AccessCoordinator = Depends(get_coordinator)):
    stats = metrics.snapshot()
    totals = fetch_storage_totals(coordinator.registry)
    payload = {
        "uploads": stats["uploads"],
        "downloads": stats["downloads"],
        "denied": stats["denied"],
        "deleted": stats["deleted"],
        "delete_failures": stats["delete_failures"],
        "live_links": totals["live_links"],
        "storage_bytes": totals["total_bytes"],
    }
    response = JSONResponse(payload)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response


@router.get("/health")
def health(coordinator: AccessCoordinator = Depends(get_coordinator)):
    return {"status": "ok", "links": len(coordinator.registry)}
