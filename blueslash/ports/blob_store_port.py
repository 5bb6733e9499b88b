"""Blob store port - object storage for kitchen board attachments."""

from typing import Protocol


class BlobStorePort(Protocol):
    async def upload(self, *, path: str, content: bytes, content_type: str) -> str:
        """Store ``content`` at ``path`` and return a URL for it."""
        ...

    async def delete(self, *, path: str) -> None: ...
