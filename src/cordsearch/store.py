"""
CordSearch Store — Key-Addressed Byte Storage
=============================================

Cords and tables persist through a BackingStore: a flat key -> bytes store
that is always read and written as a whole object.

    FileStore    one file per key below a root directory
    MemoryStore  process-local dict, for tests and volatile setups
"""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import StorageKeyNotFoundError


def join_key(base_path: str, name: str) -> str:
    """Join a base path and an object name into a store key."""
    base_path = base_path.strip("/")
    return f"{base_path}/{name}" if base_path else name


class BackingStore(ABC):
    """Key-addressed byte store with read-all/write-all semantics."""

    @abstractmethod
    def read_all(self, key: str) -> bytes:
        """
        Read the complete object stored at key.

        Raises:
            StorageKeyNotFoundError: If nothing is stored at key
        """

    @abstractmethod
    def write(self, key: str, data: bytes) -> None:
        """Replace the object stored at key."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether an object is stored at key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the object stored at key, if any."""


class FileStore(BackingStore):
    """
    Store objects as files below a root directory.

    Writes go to a temporary file that replaces the target, so readers
    never see a partially written object.

    Example:
        store = FileStore("/var/lib/cordsearch")
        store.write("tables/users.json", b"[]")
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"key '{key}' escapes the store root")
        return path

    def read_all(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            raise StorageKeyNotFoundError(key) from None

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file() and not p.name.startswith(".")
            and p.relative_to(self.root).as_posix().startswith(prefix)
        )


class MemoryStore(BackingStore):
    """Thread-safe in-memory store."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self._objects: Dict[str, bytes] = dict(objects or {})
        self._lock = threading.Lock()

    def read_all(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._objects[key]
            except KeyError:
                raise StorageKeyNotFoundError(key) from None

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._objects[key] = bytes(data)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))
