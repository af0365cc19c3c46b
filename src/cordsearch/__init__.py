"""
CordSearch — Resilient Search Index Access and Persistent Collections
=====================================================================

Client-side access to an Elasticsearch cluster that keeps working through
cluster outages, plus two small persistence primitives built on a
key-addressed backing store.

Key Features:
- Operations retry with backoff and reconnect after transient failures
- Bulk writes with per-item results and backpressure on slow batches
- Delete-by-query via scroll, faceted search with case-folded buckets
- Cords: locked, lazily loaded JSON sequences in a backing store
- Tables: named pandas-backed tables, local or from a table peer

Layers:
    SearchIndex (facade)  →  IndexClient (retry)  →  ClusterManager (handle)

Usage:
    from cordsearch import SearchIndex

    index = SearchIndex("elastic://localhost:9200/searchlab")
    index.add("web", "_doc", "d1", {"title": "Quantum Mechanics"})
    result = index.query("web", "quantum", aggregation_fields=["year"])
"""

__version__ = "0.1.0"

from .cluster import ClusterManager
from .config import IndexConfig
from .cord import DurableCord, VolatileCord, open_cord
from .core import IndexClient
from .index import SearchIndex
from .query import IndexQuery, Sort
from .store import FileStore, MemoryStore
from .tables import IndexedTable, PersistentTables

__all__ = [
    "ClusterManager",
    "DurableCord",
    "FileStore",
    "IndexClient",
    "IndexConfig",
    "IndexQuery",
    "IndexedTable",
    "MemoryStore",
    "PersistentTables",
    "SearchIndex",
    "Sort",
    "VolatileCord",
    "open_cord",
]
