"""
Local Persistent Storage

One JSON file per key inside a data directory; the on-disk counterpart
of browser local storage. Writes go to a temporary file first and are
renamed into place so a crash never leaves half a document.

InMemoryKeyValueStore has the same contract and is used in tests and for
throwaway sessions.
"""

import asyncio
import copy
import json
import os
import re
from pathlib import Path
from typing import Any, Optional

from utility_splitter.config import LocalStorageSettings, get_settings
from utility_splitter.services.storage.interface import (
    KeyValueStoreInterface,
    StorageError,
)


_SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]")


def _file_name(key: str) -> str:
    # Keys never address anything outside the data directory
    return _SAFE_KEY.sub("_", os.path.basename(key)) + ".json"


class LocalFileStore(KeyValueStoreInterface):
    """Key-value storage backed by JSON files."""

    name = "local"

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        settings: Optional[LocalStorageSettings] = None,
    ):
        if data_dir is None:
            data_dir = (settings or get_settings().local_storage).data_dir
        self._dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / _file_name(key)

    def _read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {key}: {e}")

    def _write(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(value, fh, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {key}: {e}")

    def _delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, key)

    async def keys(self) -> list[str]:
        if not self._dir.exists():
            return []
        return sorted(p.stem for p in self._dir.glob("*.json"))

    async def clear(self) -> None:
        """Remove every stored key (used by import)."""
        for key in await self.keys():
            await self.delete(key)


class InMemoryKeyValueStore(KeyValueStoreInterface):
    """Dict-backed store. Values are deep-copied in and out."""

    name = "memory"

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    async def put(self, key: str, value: Any) -> None:
        # Round-trip through JSON so non-serializable values fail here too
        try:
            self._data[key] = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {key}: {e}")

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return sorted(self._data)

    async def clear(self) -> None:
        self._data.clear()
