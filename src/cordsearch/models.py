"""
CordSearch Models — Documents, Bulk Writes and Query Results
============================================================

Plain data carriers exchanged between callers and the index client.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Set, Tuple


# Elasticsearch 8 has a single mapping type per index
DEFAULT_TYPE_NAME = "_doc"


class DocumentKey(NamedTuple):
    """Identifies one document in the cluster."""

    index_name: str
    type_name: str
    id: str


@dataclass
class BulkEntry:
    """One document of a bulk write. Entries without id are skipped."""

    id: Optional[str]
    type: str
    document: Dict[str, Any]

    @property
    def valid(self) -> bool:
        return self.id is not None


@dataclass
class BulkWriteResult:
    """
    Per-item outcome of a bulk write.

    created_ids holds only ids that were newly created; updated documents
    appear in neither set. The write succeeded if errors is empty.
    """

    created_ids: Set[str] = field(default_factory=set)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class QueryResult:
    """Normalized search result."""

    hit_count: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    explanations: List[str] = field(default_factory=list)
    highlights: List[Dict[str, List[str]]] = field(default_factory=list)
    aggregations: Dict[str, List[Tuple[str, int]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hit_count": self.hit_count,
            "results": self.results,
            "explanations": self.explanations,
            "highlights": self.highlights,
            "aggregations": {
                name: [[label, count] for label, count in buckets]
                for name, buckets in self.aggregations.items()
            },
        }
