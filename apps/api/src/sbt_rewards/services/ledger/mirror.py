"""Secondary flat key-value namespace mirrored on every ledger write."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote


TEMPLATE_PREFIX = "sbt_template_"
ISSUED_TOKEN_PREFIX = "issued_sbt_"
IMAGE_PREFIX = "sbt_image_"
EVENT_PREFIX = "sbt_event_"


class MirrorStore(Protocol):
    async def put(self, key: str, document: dict[str, Any]) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def scan(self, prefix: str) -> list[dict[str, Any]]: ...


class MemoryMirrorStore:
    """Process-local mirror, used by tests and ephemeral installs."""

    def __init__(self) -> None:
        self._documents: dict[str, str] = {}

    async def put(self, key: str, document: dict[str, Any]) -> None:
        self._documents[key] = json.dumps(document)

    async def delete(self, key: str) -> None:
        self._documents.pop(key, None)

    async def scan(self, prefix: str) -> list[dict[str, Any]]:
        return [
            json.loads(raw)
            for key, raw in sorted(self._documents.items())
            if key.startswith(prefix)
        ]

    def keys(self) -> list[str]:
        return sorted(self._documents)


class FileMirrorStore:
    """One JSON document per key inside a directory; writes replace atomically."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        # Ids are free-form strings; one key, one flat file name.
        return self._root / f"{quote(key, safe='')}.json"

    def _write(self, key: str, document: dict[str, Any]) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        target = self._path_for(key)
        scratch = target.with_suffix(".json.tmp")
        scratch.write_text(json.dumps(document), encoding="utf-8")
        os.replace(scratch, target)

    def _delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def _scan(self, prefix: str) -> list[dict[str, Any]]:
        if not self._root.exists():
            return []
        documents: list[dict[str, Any]] = []
        for path in sorted(self._root.glob(f"{prefix}*.json")):
            documents.append(json.loads(path.read_text(encoding="utf-8")))
        return documents

    async def put(self, key: str, document: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, key, document)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def scan(self, prefix: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._scan, prefix)


def build_mirror_store(backend: str, path: str) -> MirrorStore:
    if backend == "memory":
        return MemoryMirrorStore()
    return FileMirrorStore(path)


__all__ = [
    "EVENT_PREFIX",
    "FileMirrorStore",
    "IMAGE_PREFIX",
    "ISSUED_TOKEN_PREFIX",
    "MemoryMirrorStore",
    "MirrorStore",
    "TEMPLATE_PREFIX",
    "build_mirror_store",
]
