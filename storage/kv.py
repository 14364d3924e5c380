"""Key/value persistence backends."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """String-keyed JSON document store with prefix listing."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value, replacing any previous one."""
        pass

    @abstractmethod
    async def list(self, prefix: str = "") -> List[str]:
        """Keys starting with ``prefix``, in lexicographic order."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store; values are round-tripped through JSON."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def list(self, prefix: str = "") -> List[str]:
        return sorted(key for key in self._data if key.startswith(prefix))


class FileKeyValueStore(KeyValueStore):
    """
    One JSON file per key under a directory.

    Keys are percent-encoded into file names. Writes go to a temp file that
    is renamed over the target so readers never see a partial document.
    """

    SUFFIX = ".json"

    def __init__(self, path: str):
        self.root = Path(path)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{self.SUFFIX}"

    def _read(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        temp_path = path.with_name(path.name + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False, indent=2)
        temp_path.replace(path)

    def _list(self, prefix: str) -> List[str]:
        keys = [
            unquote(path.name[: -len(self.SUFFIX)])
            for path in self.root.glob(f"*{self.SUFFIX}")
        ]
        return sorted(key for key in keys if key.startswith(prefix))

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)
        logger.debug(f"Stored {key}")

    async def list(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._list, prefix)
