"""Filesystem-backed blob store for kitchen board attachments."""

import asyncio
import logging
from pathlib import Path

from blueslash.core import errors


logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Store blobs under a root directory and hand out file:// URLs."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        # Guard: keep writes inside the root
        if not target.is_relative_to(self._root):
            msg = f"Blob path escapes store root: {path}"
            raise errors.ValidationError(msg)
        return target

    async def upload(self, *, path: str, content: bytes, content_type: str) -> str:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.info("Stored blob", extra={"path": path, "content_type": content_type, "size": len(content)})
        return target.as_uri()

    async def delete(self, *, path: str) -> None:
        target = self._resolve(path)
        await asyncio.to_thread(target.unlink, missing_ok=True)
        logger.info("Deleted blob", extra={"path": path})
