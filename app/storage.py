from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import BinaryIO

from app.core.exceptions import CapacityError, StorageFailure

logger = logging.getLogger("oneshot.storage")

_COPY_CHUNK = 1024 * 1024


class BlobStore:
    """Stores uploaded bytes as flat files named by blob id."""

    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def new_blob_id() -> str:
        return uuid.uuid4().hex

    def _path(self, blob_id: str) -> Path:
        try:
            path = (self.root / blob_id).resolve()
            path.relative_to(self.root)
        except (ValueError, RuntimeError) as exc:
            raise StorageFailure(blob_id, exc) from exc
        if path == self.root:
            raise StorageFailure(blob_id)
        return path

    def put(self, blob_id: str, stream: BinaryIO, max_bytes: int | None = None) -> int:
        """Copy ``stream`` into the store and return the number of bytes written.

        Raises CapacityError (after removing the partial blob) when the stream is
        longer than ``max_bytes``, StorageFailure on any I/O error.
        """
        path = self._path(blob_id)
        written = 0
        created = False
        try:
            with open(path, "xb") as out:
                created = True
                while True:
                    chunk = stream.read(_COPY_CHUNK)
                    if not chunk:
                        break
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise CapacityError(max_bytes)
                    out.write(chunk)
        except CapacityError:
            path.unlink(missing_ok=True)
            raise
        except OSError as exc:
            # never remove a blob this call did not create
            if created:
                path.unlink(missing_ok=True)
            logger.error("event=blob_put_failure blob_id=%s error=%s", blob_id, exc)
            raise StorageFailure(blob_id, exc) from exc
        return written

    def open(self, blob_id: str) -> BinaryIO:
        path = self._path(blob_id)
        try:
            return open(path, "rb")
        except OSError as exc:
            logger.error("event=blob_open_failure blob_id=%s error=%s", blob_id, exc)
            raise StorageFailure(blob_id, exc) from exc

    def delete(self, blob_id: str) -> bool:
        """Unlink a blob. Returns False if it was already gone.

        Handles opened before the unlink stay readable (POSIX semantics).
        """
        path = self._path(blob_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageFailure(blob_id, exc) from exc
        return True

    def exists(self, blob_id: str) -> bool:
        return self._path(blob_id).is_file()

    def purge(self) -> int:
        """Delete every stored blob; used at boot when the registry starts empty."""
        removed = 0
        for path in self.root.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("event=orphan_delete_failure path=%s error=%s", path, exc)
        return removed
