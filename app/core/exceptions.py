from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class ShareError(Exception):
    """Base error carrying the HTTP status the API answers with."""

    status_code = 500
    detail = "internal error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class LinkNotFound(ShareError):
    status_code = 404
    detail = "file not found"

    def __init__(self, link_id: str) -> None:
        self.link_id = link_id
        super().__init__()


class LinkGone(ShareError):
    """The link existed but is expired or out of downloads.

    Answered with 404 like a missing link; the detail carries the reason.
    """

    status_code = 404

    def __init__(self, link_id: str, reason: str) -> None:
        self.link_id = link_id
        self.reason = reason
        super().__init__(f"file not found (link {reason})")


class StorageFailure(ShareError):
    status_code = 500
    detail = "internal storage error"

    def __init__(self, blob_id: str, cause: Exception | None = None) -> None:
        self.blob_id = blob_id
        self.cause = cause
        super().__init__()


class CapacityError(ShareError):
    status_code = 413

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes
        super().__init__(
            f"File too large. Maximum allowed size is {limit_bytes / (1024 * 1024):.1f} MB."
        )


class UploadRejected(ShareError):
    def __init__(self, detail: str, status_code: int = 400) -> None:
        self.status_code = status_code
        super().__init__(detail)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ShareError)
    async def share_error_handler(request: Request, exc: ShareError):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
