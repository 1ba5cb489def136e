from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Optional


class LinkState(str, enum.Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    DELETED = "deleted"


class Access(str, enum.Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_EXHAUSTED = "exhausted"
    GRANTED = "granted"


@dataclass(eq=False)
class LinkEntry:
    id: str
    blob_id: str
    remaining_downloads: int
    expires_at: float  # registry clock, not wall time
    size: int = 0
    filename: str = "upload.bin"
    content_type: str = "application/octet-stream"
    retired: bool = False
    pending_opens: int = 0  # grants whose blob handle is not open yet
    blob_claimed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def state(self, now: float) -> LinkState:
        if self.retired:
            return LinkState.DELETED
        if now >= self.expires_at:
            return LinkState.EXPIRED
        if self.remaining_downloads <= 0:
            return LinkState.EXHAUSTED
        return LinkState.ACTIVE


@dataclass(frozen=True)
class Outcome:
    """Result of one ``try_consume`` call."""

    status: Access
    entry: Optional[LinkEntry] = None
    remaining: Optional[int] = None

    @property
    def granted(self) -> bool:
        return self.status is Access.GRANTED

    @property
    def last_grant(self) -> bool:
        return self.granted and self.remaining == 0

    @property
    def needs_removal(self) -> bool:
        # expired and exhausted entries are marked for deletion by the registry
        return self.status in (Access.EXPIRED, Access.ALREADY_EXHAUSTED)


@dataclass(frozen=True)
class LinkTicket:
    link_id: str
    size: int
    remaining_downloads: int
    expires_in_seconds: int

    @property
    def url(self) -> str:
        return f"/d/{self.link_id}"

    def as_dict(self) -> dict:
        return {
            "id": self.link_id,
            "url": self.url,
            "size": self.size,
            "remaining_downloads": self.remaining_downloads,
            "expires_in_seconds": self.expires_in_seconds,
        }
