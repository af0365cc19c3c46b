"""
CordSearch Cord — Locked, Lazily Loaded Document Sequences
==========================================================

A cord is an ordered sequence of JSON objects stored as one JSON array at
one backing store key.

    - the array is loaded on first use and kept in memory
    - every operation holds the cord's mutex for its whole duration
    - mutations mark the cord dirty; commit() writes only if dirty
    - close() commits and drops the in-memory array; the next use reloads

Persistence strategies:
    VolatileCord  mutations stay in memory until commit()
    DurableCord   every mutation is committed immediately

Example:
    cord = open_cord(FileStore("/data"), "queues/crawl.json")
    cord.append({"url": "https://example.org", "status": "new"})
    cord.remove_all_where("status", "done")
    cord.commit()
"""

import json
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from .errors import DocumentSerializationError
from .store import BackingStore

if TYPE_CHECKING:
    from .tables import IndexedTable

JSONObject = Dict[str, Any]


def _is_integral(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class Cord(ABC):
    """Operations every cord supports."""

    @abstractmethod
    def append(self, value: JSONObject) -> "Cord": ...

    @abstractmethod
    def append_all(self, values: Iterable[JSONObject]) -> "Cord": ...

    @abstractmethod
    def prepend(self, value: JSONObject) -> "Cord": ...

    @abstractmethod
    def insert(self, value: JSONObject, position: int) -> "Cord": ...

    @abstractmethod
    def remove(self, position: int) -> JSONObject: ...

    @abstractmethod
    def remove_first(self) -> JSONObject: ...

    @abstractmethod
    def remove_last(self) -> JSONObject: ...

    @abstractmethod
    def remove_all_where(self, key: str, value: Any) -> List[JSONObject]: ...

    @abstractmethod
    def remove_one_where(self, key: str, value: Any) -> Optional[JSONObject]: ...

    @abstractmethod
    def commit(self) -> "Cord": ...

    @abstractmethod
    def close(self) -> None: ...


class AbstractCord(Cord):
    """
    Shared loading, locking and mutation logic.

    Subclasses decide what happens after a mutation in _changed(), which is
    always called with the mutex held.
    """

    def __init__(self, store: BackingStore, key: str):
        self.store = store
        self.key = key
        self._array: Optional[List[Any]] = None
        self._dirty = False
        self._mutex = threading.Lock()

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def loaded(self) -> bool:
        return self._array is not None

    @abstractmethod
    def _changed(self) -> None:
        """Called after each mutation, with the mutex held."""

    def _ensure_loaded(self) -> List[Any]:
        if self._array is None:
            if not self.store.exists(self.key):
                self._array = []
            else:
                data = self.store.read_all(self.key)
                try:
                    array = json.loads(data.decode("utf-8")) if data.strip() else []
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    raise DocumentSerializationError(f"cord {self.key}: {e}") from e
                if not isinstance(array, list):
                    raise DocumentSerializationError(f"cord {self.key}: stored JSON is not an array")
                self._array = array
        return self._array

    def _commit_locked(self) -> None:
        if not self._dirty:
            return
        data = json.dumps(self._array, ensure_ascii=False).encode("utf-8")
        self.store.write(self.key, data)
        self._dirty = False

    def ensure_loaded(self) -> None:
        """Load the array from the store unless it is already in memory."""
        with self._mutex:
            self._ensure_loaded()

    # reading

    def size(self) -> int:
        with self._mutex:
            return len(self._ensure_loaded())

    def __len__(self) -> int:
        return self.size()

    def get(self, position: int) -> JSONObject:
        with self._mutex:
            return self._ensure_loaded()[position]

    def snapshot(self) -> List[JSONObject]:
        """Shallow copy of the current sequence."""
        with self._mutex:
            return list(self._ensure_loaded())

    # adding

    def append(self, value: JSONObject) -> "AbstractCord":
        with self._mutex:
            self._ensure_loaded().append(value)
            self._changed()
            return self

    def append_all(self, values: Iterable[JSONObject]) -> "AbstractCord":
        with self._mutex:
            self._ensure_loaded().extend(values)
            self._changed()
            return self

    def append_table(self, table: "IndexedTable") -> "AbstractCord":
        """Append one object per table row."""
        return self.append_all(table.to_records())

    def prepend(self, value: JSONObject) -> "AbstractCord":
        return self.insert(value, 0)

    def insert(self, value: JSONObject, position: int) -> "AbstractCord":
        with self._mutex:
            array = self._ensure_loaded()
            if not 0 <= position <= len(array):
                raise IndexError(f"cord {self.key}: insert position {position} out of range")
            array.insert(position, value)
            self._changed()
            return self

    # removing

    def remove(self, position: int) -> JSONObject:
        with self._mutex:
            value = self._ensure_loaded().pop(position)
            self._changed()
            return value

    def remove_first(self) -> JSONObject:
        return self.remove(0)

    def remove_last(self) -> JSONObject:
        return self.remove(-1)

    def remove_all_where(self, key: str, value: Any) -> List[JSONObject]:
        """
        Remove every object whose field equals value.

        A str value matches string fields, an int value matches integral
        fields. Objects without the field, or with a field of another type,
        are kept.

        Returns:
            Removed objects in sequence order
        """
        with self._mutex:
            array = self._ensure_loaded()
            kept: List[Any] = []
            removed: List[JSONObject] = []
            for element in array:
                if self._matches(element, key, value):
                    removed.append(element)
                else:
                    kept.append(element)
            if removed:
                array[:] = kept
                self._changed()
            return removed

    def remove_one_where(self, key: str, value: Any) -> Optional[JSONObject]:
        """
        Remove the first object whose field equals value.

        Returns:
            The removed object, or None if nothing matched
        """
        with self._mutex:
            array = self._ensure_loaded()
            for i, element in enumerate(array):
                if self._matches(element, key, value):
                    del array[i]
                    self._changed()
                    return element
            return None

    @staticmethod
    def _matches(element: Any, key: str, value: Any) -> bool:
        if not isinstance(element, dict) or key not in element:
            return False
        field = element[key]
        if isinstance(value, str):
            return isinstance(field, str) and field == value
        if _is_integral(value):
            return _is_integral(field) and field == value
        raise TypeError(f"can only match str or int values, got {type(value).__name__}")

    # persistence

    def commit(self) -> "AbstractCord":
        """Write the sequence to the store if it changed since the last commit."""
        with self._mutex:
            self._commit_locked()
            return self

    def close(self) -> None:
        """Commit and release the in-memory sequence."""
        with self._mutex:
            self._commit_locked()
            self._array = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key!r}, loaded={self.loaded}, dirty={self._dirty})"


class VolatileCord(AbstractCord):
    """Mutations live in memory until commit()."""

    def _changed(self) -> None:
        self._dirty = True


class DurableCord(AbstractCord):
    """Every mutation is written to the store before the call returns."""

    def _changed(self) -> None:
        self._dirty = True
        self._commit_locked()


def open_cord(store: BackingStore, key: str, durable: bool = False) -> AbstractCord:
    """
    Bind a cord to a store key.

    Args:
        store: Backing store
        key: Key of the JSON array
        durable: Commit after every mutation instead of on commit()

    Returns:
        The cord; nothing is loaded until it is first used
    """
    cls = DurableCord if durable else VolatileCord
    return cls(store, key)
