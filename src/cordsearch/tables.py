"""
CordSearch Tables — Persistent Table Repository
===============================================

PersistentTables maps table names to IndexedTables and resolves a table
from, in this order:

    1. a remote table peer (GET <prefix><name>.json?where=k:v,...)
    2. the in-memory repository
    3. the backing store object <base path>/<name>.json

where() is the entry point for reading a table. It behaves the same whether
the table is hosted here or by a peer; with a peer the selection is sent
over the network instead of pulling the whole table.

Tables registered in the repository are shared: a caller that modifies a
table returned by where() without selects modifies it for every reader.
Tables from a peer or freshly loaded from the store are private copies.
"""

import json
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
import requests

from .errors import (
    ConfigurationMissingError,
    DocumentSerializationError,
    RemoteFetchError,
)
from .store import BackingStore, join_key

logger = logging.getLogger(__name__)

Rows = Iterable[Dict[str, Any]]


def parse_selects(selects: Sequence[str]) -> List[str]:
    """Accept selects as separate "key:value" strings or one comma-joined string."""
    if len(selects) == 1 and "," in selects[0]:
        selects = selects[0].split(",")
    return [s.strip() for s in selects if s.strip()]


def native(value: Any) -> Any:
    """Unbox numpy scalars into the Python value json can encode."""
    if isinstance(value, np.generic):
        return value.item()
    return value


def is_absent(value: Any) -> bool:
    """True for cells a row does not have (None, NaN, pd.NA)."""
    return value is None or value is pd.NA or (isinstance(value, float) and value != value)


def cell_text(value: Any) -> str:
    """String form of a cell as it appears in JSON (true, 3, text)."""
    value = native(value)
    if is_absent(value):
        return ""
    if pd.api.types.is_bool(value):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class IndexedTable:
    """
    An ordered sequence of rows with a stable column set.

    Rows are kept in a pandas DataFrame of object columns, so cells keep
    the Python type they were added with: a sparse integer column stays
    integral and floats keep full precision. Cells a row does not have are
    left out of the records it serializes to.

    Example:
        t = IndexedTable.from_records([{"name": "a", "tier": "gold"}])
        gold = t.where_selects(["tier:gold"])
    """

    def __init__(self, frame: Optional[pd.DataFrame] = None):
        self.frame = frame if frame is not None else pd.DataFrame()

    @classmethod
    def from_records(cls, rows: Rows) -> "IndexedTable":
        return cls(pd.DataFrame(list(rows), dtype=object))

    @classmethod
    def from_json(cls, data: Union[bytes, str], source: str = "table") -> "IndexedTable":
        """
        Build a table from a JSON array of row objects.

        Raises:
            DocumentSerializationError: If data is not a JSON array of objects
        """
        if isinstance(data, bytes):
            try:
                data = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DocumentSerializationError(f"{source}: {e}") from e
        try:
            rows = json.loads(data)
        except json.JSONDecodeError as e:
            raise DocumentSerializationError(f"{source}: {e}") from e
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise DocumentSerializationError(f"{source}: expected a JSON array of objects")
        return cls.from_records(rows)

    @property
    def columns(self) -> List[str]:
        return [str(c) for c in self.frame.columns]

    @property
    def row_count(self) -> int:
        return len(self.frame.index)

    def __len__(self) -> int:
        return self.row_count

    def append(self, other: "IndexedTable") -> "IndexedTable":
        """Append the rows of another table to this one, in place."""
        if other.row_count:
            if self.frame.empty and not len(self.frame.columns):
                self.frame = other.frame.copy()
            else:
                self.frame = pd.concat([self.frame, other.frame], ignore_index=True)
        return self

    def where_selects(self, selects: Sequence[str]) -> "IndexedTable":
        """
        Select rows matching all "column:value" equality filters.

        Cells are compared by their string form. A filter on a column the
        table does not have matches no row.

        Returns:
            A new table with the matching rows
        """
        mask = pd.Series(True, index=self.frame.index)
        for select in selects:
            column, sep, value = select.partition(":")
            if not sep:
                continue
            if column not in self.frame.columns:
                return IndexedTable(self.frame.iloc[0:0].copy())
            mask &= self.frame[column].map(cell_text) == value
        return IndexedTable(self.frame[mask].reset_index(drop=True))

    def head(self, count: int) -> "IndexedTable":
        return IndexedTable(self.frame.head(count).reset_index(drop=True))

    def to_records(self) -> List[Dict[str, Any]]:
        """Rows as dicts of Python values, without the cells a row does not have."""
        records = []
        for row in self.frame.astype(object).to_dict("records"):
            record = {}
            for column, value in row.items():
                value = native(value)
                if not is_absent(value):
                    record[str(column)] = value
            records.append(record)
        return records

    def to_json(self, indent: Optional[int] = None) -> str:
        """Serialize as a JSON array of row objects."""
        return json.dumps(self.to_records(), indent=indent, ensure_ascii=False)

    def __repr__(self) -> str:
        return f"IndexedTable({self.row_count} rows, columns={self.columns})"


TableLike = Union[IndexedTable, pd.DataFrame, List[Dict[str, Any]]]


def as_table(table: TableLike) -> IndexedTable:
    if isinstance(table, IndexedTable):
        return table
    if isinstance(table, pd.DataFrame):
        return IndexedTable(table)
    return IndexedTable.from_records(table)


class PersistentTables:
    """
    Named tables, served locally or by a remote table peer.

    Example:
        tables = PersistentTables().connect_store(FileStore("/data"), "tables")
        tables.add_table("users", [{"id": "1", "tier": "gold"}])
        tables.store_table("users")
        gold = tables.where("users", "tier:gold")
    """

    def __init__(self, peer_timeout: float = 10.0):
        self._tables: Dict[str, IndexedTable] = {}
        self._lock = threading.Lock()
        self.url_prefix: Optional[str] = None
        self.peer_timeout = peer_timeout
        self.store: Optional[BackingStore] = None
        self.base_path: Optional[str] = None

    def connect(self, url_prefix: str) -> "PersistentTables":
        """
        Read tables from a table peer first.

        Args:
            url_prefix: URL the table name plus ".json" is appended to
        """
        self.url_prefix = url_prefix
        return self

    def connect_store(self, store: BackingStore, base_path: str) -> "PersistentTables":
        """Load and store tables at <base_path>/<name>.json in a backing store."""
        self.store = store
        self.base_path = base_path
        return self

    def table_names(self) -> List[str]:
        with self._lock:
            return list(self._tables)

    def add_table(self, name: str, table: TableLike) -> "PersistentTables":
        """
        Register a table, replacing any table of the same name.

        An IndexedTable is registered as is, not copied.
        """
        with self._lock:
            self._tables[name] = as_table(table)
        return self

    def extend_table(self, name: str, table: TableLike) -> "PersistentTables":
        """Append rows to a registered table, or register the table if the name is new."""
        table = as_table(table)
        with self._lock:
            existing = self._tables.get(name)
            if existing is None:
                self._tables[name] = table
            else:
                existing.append(table)
        return self

    def _key(self, name: str) -> str:
        if self.store is None:
            raise ConfigurationMissingError("no backing store defined")
        if self.base_path is None:
            raise ConfigurationMissingError("no base path defined")
        return join_key(self.base_path, name + ".json")

    def store_table(self, name: str) -> None:
        """
        Write a registered table to <base path>/<name>.json as indented JSON.

        Unknown table names are ignored.

        Raises:
            ConfigurationMissingError: If no store or no base path is set
        """
        with self._lock:
            table = self._tables.get(name)
        if table is None:
            return
        key = self._key(name)
        self.store.write(key, table.to_json(indent=2).encode("utf-8"))
        logger.info("stored table %s with %d rows at %s", name, table.row_count, key)

    def get_table(self, name: str) -> IndexedTable:
        return self.where(name)

    def where(self, name: str, *selects: str) -> IndexedTable:
        """
        Resolve a table and apply selection filters.

        Args:
            name: Table name
            selects: "key:value" strings, or one string of comma-joined pairs

        Returns:
            The table, or a new table holding only the matching rows

        Raises:
            ConfigurationMissingError: If the table is neither registered nor loadable
            DocumentSerializationError: If the stored table is not valid JSON
        """
        selects = parse_selects(selects)

        if self.url_prefix is not None:
            try:
                return self._fetch_remote(name, selects)
            except RemoteFetchError as e:
                logger.debug("table peer failed for %s: %s", name, e, exc_info=True)

        with self._lock:
            table = self._tables.get(name)
        if table is None:
            key = self._key(name)
            table = IndexedTable.from_json(self.store.read_all(key), source=key)

        if not selects:
            return table
        return table.where_selects(selects)

    def _fetch_remote(self, name: str, selects: List[str]) -> IndexedTable:
        url = f"{self.url_prefix}{name}.json"
        params = {"where": ",".join(selects)} if selects else None
        logger.info("loading: %s%s", url, f"?where={params['where']}" if params else "")
        try:
            response = requests.get(url, params=params, timeout=self.peer_timeout)
            response.raise_for_status()
            return IndexedTable.from_json(response.content, source=url)
        except (requests.RequestException, DocumentSerializationError) as e:
            raise RemoteFetchError(f"{url}: {e}") from e

    @staticmethod
    def head(table: IndexedTable, count: int) -> IndexedTable:
        return table.head(count)
