from __future__ import annotations

import secrets
import threading
from time import monotonic
from typing import Callable, Dict, Iterator, Optional

from app.models import Access, LinkEntry, Outcome

_MAX_ID_ATTEMPTS = 5

NOT_FOUND = Outcome(Access.NOT_FOUND)


def _generate_link_id() -> str:
    # 128 random bits, url-safe
    return secrets.token_urlsafe(16)


class LinkRegistry:
    """In-memory table of live links.

    The table lock only guards insertion, lookup and removal of entries; the
    download counter of each entry is guarded by that entry's own lock, so
    consumes on different links never wait on each other. The table lock is
    never held while an entry lock is being acquired.

    Removing an entry and deleting its blob are separate steps: the blob may
    only be deleted once the entry is retired and every grant handed out has
    opened its handle, and ``claim_blob``/``finish_open`` hand that duty to
    exactly one caller.
    """

    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self.clock = clock
        self._entries: Dict[str, LinkEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, link_id: str) -> bool:
        with self._lock:
            return link_id in self._entries

    def create(
        self,
        blob_id: str,
        max_downloads: int,
        ttl: float,
        *,
        size: int = 0,
        filename: str = "upload.bin",
        content_type: str = "application/octet-stream",
    ) -> str:
        if max_downloads < 1:
            raise ValueError("max_downloads must be at least 1")
        expires_at = self.clock() + ttl
        with self._lock:
            for _ in range(_MAX_ID_ATTEMPTS):
                link_id = _generate_link_id()
                if link_id not in self._entries:
                    break
            else:
                raise RuntimeError("Unable to allocate a unique link id")
            self._entries[link_id] = LinkEntry(
                id=link_id,
                blob_id=blob_id,
                remaining_downloads=max_downloads,
                expires_at=expires_at,
                size=size,
                filename=filename,
                content_type=content_type,
            )
        return link_id

    def get(self, link_id: str) -> Optional[LinkEntry]:
        with self._lock:
            return self._entries.get(link_id)

    def try_consume(self, link_id: str) -> Outcome:
        """Check and decrement the download budget of one link atomically."""
        entry = self.get(link_id)
        if entry is None:
            return NOT_FOUND
        with entry.lock:
            if entry.retired:
                return NOT_FOUND
            if self.clock() >= entry.expires_at:
                return Outcome(Access.EXPIRED, entry=entry)
            if entry.remaining_downloads <= 0:
                return Outcome(Access.ALREADY_EXHAUSTED, entry=entry)
            entry.remaining_downloads -= 1
            entry.pending_opens += 1
            return Outcome(Access.GRANTED, entry=entry, remaining=entry.remaining_downloads)

    def finish_open(self, entry: LinkEntry) -> bool:
        """Record that a granted download has opened (or failed to open) its blob.

        Returns True when the caller must now delete the blob: the entry was
        removed while the open was in flight.
        """
        with entry.lock:
            entry.pending_opens -= 1
            return self._claim_blob_locked(entry)

    def claim_blob(self, entry: LinkEntry) -> bool:
        """True for exactly one caller, once the entry is removed and no grant is still opening."""
        with entry.lock:
            return self._claim_blob_locked(entry)

    @staticmethod
    def _claim_blob_locked(entry: LinkEntry) -> bool:
        if not entry.retired or entry.pending_opens > 0 or entry.blob_claimed:
            return False
        entry.blob_claimed = True
        return True

    def remove(self, link_id: str) -> Optional[LinkEntry]:
        """Drop an entry. Only the first of any number of racing callers gets it back."""
        with self._lock:
            entry = self._entries.pop(link_id, None)
        if entry is None:
            return None
        with entry.lock:
            entry.retired = True
        return entry

    def scan_expired(self, now: Optional[float] = None) -> Iterator[str]:
        """Yield ids of entries past their deadline, or left with no downloads.

        The table is snapshotted when iteration starts; each call scans anew.
        """
        if now is None:
            now = self.clock()
        with self._lock:
            snapshot = list(self._entries.values())
        for entry in snapshot:
            if entry.expires_at <= now or entry.remaining_downloads <= 0:
                yield entry.id

    def total_bytes(self) -> int:
        with self._lock:
            return sum(entry.size for entry in self._entries.values())
