from __future__ import annotations

import logging
from typing import BinaryIO, Iterator, Optional

from app.core.exceptions import LinkGone, LinkNotFound, StorageFailure
from app.core.metrics import MetricsStore
from app.models import Access, LinkEntry, LinkTicket
from app.registry import LinkRegistry
from app.storage import BlobStore

logger = logging.getLogger("oneshot.coordinator")


class Grant:
    """An open blob handle handed to one successful download."""

    def __init__(self, entry: LinkEntry, handle: BinaryIO, remaining: int) -> None:
        self.entry = entry
        self.handle = handle
        self.remaining = remaining

    @property
    def last(self) -> bool:
        return self.remaining == 0

    def close(self) -> None:
        # safe to call more than once, and before any chunk was read
        self.handle.close()

    def __enter__(self) -> "Grant":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def iter_chunks(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def read(self) -> bytes:
        with self:
            return b"".join(self.iter_chunks())


class AccessCoordinator:
    def __init__(
        self,
        registry: LinkRegistry,
        blob_store: BlobStore,
        *,
        max_downloads: int,
        ttl_seconds: float,
        max_upload_bytes: Optional[int] = None,
        metrics: Optional[MetricsStore] = None,
    ) -> None:
        self.registry = registry
        self.blob_store = blob_store
        self.max_downloads = max_downloads
        self.ttl_seconds = ttl_seconds
        self.max_upload_bytes = max_upload_bytes
        self.metrics = metrics or MetricsStore()

    def register_upload(
        self,
        stream: BinaryIO,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> LinkTicket:
        blob_id = self.blob_store.new_blob_id()
        size = self.blob_store.put(blob_id, stream, max_bytes=self.max_upload_bytes)
        try:
            link_id = self.registry.create(
                blob_id,
                self.max_downloads,
                self.ttl_seconds,
                size=size,
                filename=filename or "upload.bin",
                content_type=content_type or "application/octet-stream",
            )
        except Exception:
            self._delete_blob(blob_id)
            raise

        self.metrics.record_upload(size)
        logger.info(
            "event=upload_success link_id=%s blob_id=%s size_bytes=%s content_type=%s",
            link_id,
            blob_id,
            size,
            content_type,
        )
        return LinkTicket(
            link_id=link_id,
            size=size,
            remaining_downloads=self.max_downloads,
            expires_in_seconds=int(self.ttl_seconds),
        )

    def handle_download(self, link_id: str) -> Grant:
        """Consume one download of ``link_id`` and open its blob.

        Raises LinkNotFound or LinkGone when nothing may be served, StorageFailure
        when the blob cannot be opened. A consumed download is never refunded.
        """
        outcome = self.registry.try_consume(link_id)

        if outcome.status is Access.NOT_FOUND:
            self.metrics.record_denied()
            logger.info("event=download_denied link_id=%s reason=not_found", link_id)
            raise LinkNotFound(link_id)

        if not outcome.granted:
            if outcome.needs_removal:
                self.discard(link_id, reason=outcome.status.value)
            self.metrics.record_denied()
            logger.info("event=download_denied link_id=%s reason=%s", link_id, outcome.status.value)
            raise LinkGone(link_id, outcome.status.value)

        entry = outcome.entry
        try:
            handle = self.blob_store.open(entry.blob_id)
        finally:
            # removed while we were opening: the deletion was left to us
            if self.registry.finish_open(entry):
                self._delete_blob(entry.blob_id)
            # the open handle outlives the unlink, so the last download still completes
            if outcome.last_grant:
                self.discard(link_id, reason="exhausted")

        self.metrics.record_download()
        logger.info(
            "event=download_granted link_id=%s remaining=%s", link_id, outcome.remaining
        )
        return Grant(entry, handle, outcome.remaining)

    def discard(self, link_id: str, reason: str = "expired") -> bool:
        """Remove a link and its blob. Returns True only for the caller that removed it."""
        entry = self.registry.remove(link_id)
        if entry is None:
            return False
        if self.registry.claim_blob(entry):
            self._delete_blob(entry.blob_id)
        self.metrics.record_deletions(1)
        logger.info(
            "event=link_deleted link_id=%s blob_id=%s reason=%s", link_id, entry.blob_id, reason
        )
        return True

    def _delete_blob(self, blob_id: str) -> None:
        try:
            self.blob_store.delete(blob_id)
        except StorageFailure as exc:
            self.metrics.record_delete_failure()
            logger.error("event=blob_delete_failure blob_id=%s error=%s", blob_id, exc.cause)
