"""Object storage adapters and the media path convention.

Media objects are stored under:

    {folder}/{owner_id}/{resource_id}_{index}_{created_at_millis}

The resource id is unique per store, the index is unique per resource and
the owner prefix scopes access, so paths never collide across concurrent
creations.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

from society_engine.core.errors import UploadError
from society_engine.core.ids import to_millis

logger = logging.getLogger(__name__)


def media_path(
    folder: str,
    owner_id: str,
    resource_id: str,
    index: int,
    created_at: datetime,
) -> str:
    """Deterministic, collision-free object path for one media item."""
    return f"{folder}/{owner_id}/{resource_id}_{index}_{to_millis(created_at)}"


def _sanitise_part(part: str) -> str:
    safe = part.replace("\\", "_").replace("..", "_").strip().strip(".")
    return safe or "_"


class MemoryObjectStorage:
    """In-memory ``IObjectStorage`` for tests and local development.

    Args:
        fail_when: Optional predicate on the upload path; matching uploads
            raise ``UploadError``.
    """

    def __init__(self, fail_when: Callable[[str], bool] | None = None) -> None:
        self._objects: dict[str, bytes] = {}
        self._fail_when = fail_when

    async def upload(self, data: bytes, path: str) -> str:
        if self._fail_when is not None and self._fail_when(path):
            raise UploadError(path, "simulated storage failure")
        if not data:
            raise UploadError(path, "empty payload")
        self._objects[path] = bytes(data)
        return f"memory://{path}"

    def get(self, path: str) -> bytes | None:
        return self._objects.get(path)

    @property
    def paths(self) -> list[str]:
        return sorted(self._objects)

    def __len__(self) -> int:
        return len(self._objects)


class LocalObjectStorage:
    """Filesystem-backed ``IObjectStorage``. Returns ``file://`` URLs."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    async def upload(self, data: bytes, path: str) -> str:
        if not data:
            raise UploadError(path, "empty payload")
        target = self._root.joinpath(*(_sanitise_part(p) for p in path.split("/")))
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            raise UploadError(path, str(exc)) from exc
        return target.resolve().as_uri()

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


class LocalMediaReader:
    """``IMediaReader`` for local paths and ``file://`` URIs."""

    async def read(self, uri: str) -> bytes:
        parsed = urlparse(uri)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(uri)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise UploadError(uri, f"cannot read media: {exc}") from exc
