"""
CordSearch Core — Resilient Elasticsearch Operations
====================================================

IndexClient wraps every cluster operation in the same loop:

    attempt against the live handle
    on a transient failure: log, wait (RetryPolicy), reconnect, retry

The loop is unbounded by default: a caller blocks until the cluster comes
back. query() is the exception; it gives up after a fixed number of
attempts and returns whatever it has.

Write path:
    - write_map: upsert of one document, reports created vs. updated
    - write_map_bulk: one bulk request, per-item outcome, and backpressure
      on the caller when the batch was slow
    - delete_by_query: scroll over all matches first, delete afterwards

Example:
    client = IndexClient.connect(IndexConfig(addresses=["localhost:9200"]))
    client.create_index_if_not_exists("web", shards=1, replicas=0)
    client.write_map("web", "_doc", "d1", {"title": "Quantum Mechanics"})
    result = client.query("web", "quantum", aggregation_fields=["year"])
"""

import json
import logging
import time
from typing import Any, Callable, Collection, Dict, List, Optional, Set, TypeVar

from elasticsearch import ApiError, Elasticsearch, TransportError

from .cluster import ClusterManager, body_of
from .config import IndexConfig
from .errors import is_transient
from .models import (
    DEFAULT_TYPE_NAME,
    BulkEntry,
    BulkWriteResult,
    DocumentKey,
    QueryResult,
)
from .query import QueryLike, Sort, as_query_dsl, merge_buckets
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCROLL_KEEP_ALIVE = "60s"
SCROLL_PAGE_SIZE = 100
HIGHLIGHT_FRAGMENT_SIZE = 140
VERSION_FIELD = "_version"


def source_map(hit: Dict[str, Any]) -> Dict[str, Any]:
    """Document of a get or search hit, with id and type filled in."""
    doc = dict(hit.get("_source") or {})
    doc.setdefault("id", hit.get("_id"))
    doc.setdefault("type", hit.get("_type", DEFAULT_TYPE_NAME))
    return doc


def total_hits(hits: Dict[str, Any]) -> int:
    total = hits.get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total or 0)


class IndexClient:
    """
    Elasticsearch operations that survive cluster outages.

    Throttling:
        After a bulk write that took longer than throttling_time_threshold_ms
        and created fewer than throttling_ops_threshold documents per second,
        the caller is held back for throttling_factor * duration.
    """

    def __init__(
        self,
        manager: ClusterManager,
        retry_policy: Optional[RetryPolicy] = None,
        query_max_attempts: int = 10,
        throttling_time_threshold_ms: int = 2000,
        throttling_ops_threshold: int = 1000,
        throttling_factor: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the client.

        Args:
            manager: Connection manager owning the live handle
            retry_policy: Backoff after transient failures (default: unbounded)
            query_max_attempts: Attempts of query() before it gives up
            throttling_time_threshold_ms: Bulk duration above which throttling may apply
            throttling_ops_threshold: Created documents/second below which throttling applies
            throttling_factor: Multiplier on the bulk duration for the throttle delay
            clock: Monotonic clock in seconds (injectable for tests)
            sleep: Sleep function used for throttling (injectable for tests)
        """
        self.manager = manager
        self.retry_policy = retry_policy or RetryPolicy()
        self.query_max_attempts = query_max_attempts
        self.throttling_time_threshold_ms = throttling_time_threshold_ms
        self.throttling_ops_threshold = throttling_ops_threshold
        self.throttling_factor = throttling_factor
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def connect(
        cls,
        config: Optional[IndexConfig] = None,
        client_factory: Callable[..., Elasticsearch] = Elasticsearch
    ) -> "IndexClient":
        """Create a connected client from a configuration."""
        config = config or IndexConfig()
        manager = ClusterManager(config, client_factory=client_factory)
        return cls(
            manager,
            retry_policy=config.retry_policy(),
            query_max_attempts=config.query_max_attempts,
            throttling_time_threshold_ms=config.throttling_time_threshold_ms,
            throttling_ops_threshold=config.throttling_ops_threshold,
            throttling_factor=config.throttling_factor
        )

    def _retry(self, name: str, operation: Callable[[Elasticsearch], T]) -> T:
        attempt = 0
        while True:
            try:
                return operation(self.manager.live_handle())
            except Exception as e:
                if not is_transient(e):
                    raise
                if self.retry_policy.exhausted(attempt):
                    logger.warning("IndexClient %s failed with %s after %d attempts", name, e, attempt + 1)
                    raise
                logger.info("IndexClient %s failed with %s, retrying to connect node...", name, e)
                self.retry_policy.pause(attempt)
                self.manager.connect()
                attempt += 1

    # administration

    def create_index_if_not_exists(self, index_name: str, shards: int = 1, replicas: int = 0) -> bool:
        return self._retry(
            "createIndex",
            lambda _: self.manager.create_index_if_not_exists(index_name, shards, replicas)
        )

    def set_mapping(self, index_name: str, mapping: Any) -> None:
        self.manager.set_mapping(index_name, mapping)

    def refresh(self, index_name: str) -> None:
        self._retry("refresh", lambda _: self.manager.refresh(index_name))

    def delete_index(self, index_name: str) -> None:
        self._retry("deleteIndex", lambda _: self.manager.delete_index(index_name))

    def cluster_ready(self) -> bool:
        return self.manager.cluster_ready()

    # counting and existence

    def count(self, index_name: str, query: QueryLike = None) -> int:
        """
        Count documents matching a query.

        Args:
            index_name: Index name
            query: Query (default: all documents)

        Returns:
            Number of matching documents
        """
        dsl = as_query_dsl(query)
        return self._retry(
            "count",
            lambda es: int(body_of(es.count(index=index_name, query=dsl))["count"])
        )

    def exist(self, index_name: str, id: str) -> bool:
        """Check whether a document with the given id exists."""
        return self._retry(
            "exist",
            lambda es: bool(body_of(es.exists(index=index_name, id=id)))
        )

    def exist_bulk(self, index_name: str, ids: Collection[str]) -> Set[str]:
        """
        Check which of the given ids exist.

        Returns:
            The subset of ids that exist
        """
        if not ids:
            return set()

        def _exist_bulk(es: Elasticsearch) -> Set[str]:
            response = body_of(es.mget(index=index_name, ids=list(ids), source=False))
            return {doc["_id"] for doc in response.get("docs", []) if doc.get("found")}

        return self._retry("existBulk", _exist_bulk)

    # reading

    def read_map(self, index_name: str, id: str) -> Optional[Dict[str, Any]]:
        """
        Read one document.

        Returns:
            The document with id and type filled in, or None if it does not exist
        """
        def _read_map(es: Elasticsearch) -> Optional[Dict[str, Any]]:
            response = body_of(es.options(ignore_status=404).get(index=index_name, id=id))
            if not response.get("found"):
                return None
            return source_map(response)

        return self._retry("readMap", _read_map)

    def read_map_bulk(self, index_name: str, ids: Collection[str]) -> Dict[str, Dict[str, Any]]:
        """
        Read several documents.

        Returns:
            Mapping id -> document for the documents that exist
        """
        if not ids:
            return {}

        def _read_map_bulk(es: Elasticsearch) -> Dict[str, Dict[str, Any]]:
            response = body_of(es.mget(index=index_name, ids=list(ids)))
            return {
                doc["_id"]: source_map(doc)
                for doc in response.get("docs", [])
                if doc.get("found")
            }

        return self._retry("readMapBulk", _read_map_bulk)

    # writing

    def write_map(self, index_name: str, type_name: str, id: str, document: Dict[str, Any]) -> bool:
        """
        Upsert one document.

        A _version field in the document is not written; the caller's dict
        is left untouched.

        Args:
            index_name: Index name
            type_name: Document type (informational, Elasticsearch 8 has no types)
            id: Unique identifier chosen by the caller
            document: Document fields

        Returns:
            True if the document was created, False if an existing one was updated
        """
        return self._retry(
            "writeMap",
            lambda es: self._write_map(es, index_name, type_name, id, document)
        )

    def _write_map(
        self,
        es: Elasticsearch,
        index_name: str,
        type_name: str,
        id: str,
        document: Dict[str, Any]
    ) -> bool:
        start = self._clock()
        version = document.get(VERSION_FIELD)
        doc = {k: v for k, v in document.items() if k != VERSION_FIELD}
        response = body_of(es.update(index=index_name, id=id, doc=doc, doc_as_upsert=True))
        created = response.get("result") == "created"
        duration_ms = max(1, int((self._clock() - start) * 1000))
        logger.info(
            "IndexClient write entry to index %s (type %s%s): %s, %d ms",
            index_name, type_name,
            "" if version is None else f", version {version}",
            "created" if created else "updated", duration_ms
        )
        return created

    def write_map_bulk(self, index_name: str, entries: List[BulkEntry]) -> BulkWriteResult:
        """
        Write documents in one bulk request.

        Entries without id are skipped. The result lists the ids that were
        created and an error message for each failed id.

        Args:
            index_name: Index name
            entries: Documents to write

        Returns:
            BulkWriteResult; the write succeeded if result.errors is empty
        """
        return self._retry("writeMapBulk", lambda es: self._write_map_bulk(es, index_name, entries))

    def _write_map_bulk(self, es: Elasticsearch, index_name: str, entries: List[BulkEntry]) -> BulkWriteResult:
        start = self._clock()
        operations: List[Dict[str, Any]] = []
        for entry in entries:
            if not entry.valid:
                continue
            operations.append({"index": {"_index": index_name, "_id": entry.id}})
            operations.append(entry.document)

        result = BulkWriteResult()
        if not operations:
            return result

        response = body_of(es.bulk(operations=operations))
        for item in response.get("items", []):
            outcome = next(iter(item.values()))
            id = outcome.get("_id")
            error = outcome.get("error")
            if error is not None:
                result.errors[id] = error.get("reason", json.dumps(error)) if isinstance(error, dict) else str(error)
            elif outcome.get("result") == "created":
                result.created_ids.add(id)

        duration_ms = max(1, int((self._clock() - start) * 1000))
        created = len(result.created_ids)
        ops = created * 1000 // duration_ms
        regulator_ms = 0
        if duration_ms > self.throttling_time_threshold_ms and ops < self.throttling_ops_threshold:
            regulator_ms = int(self.throttling_factor * duration_ms)
            self._sleep(regulator_ms / 1000.0)
        logger.info(
            "IndexClient write bulk to index %s: %d entries, %d created, %d errors, %d ms%s, %d objects/second",
            index_name, len(entries), created, len(result.errors), duration_ms,
            f", throttled with {regulator_ms} ms" if regulator_ms else "", ops
        )
        return result

    # deleting

    def delete(self, index_name: str, type_name: str, id: str) -> bool:
        """
        Delete one document.

        Returns:
            True if the document existed and was deleted
        """
        def _delete(es: Elasticsearch) -> bool:
            response = body_of(es.options(ignore_status=404).delete(index=index_name, id=id))
            return response.get("result") == "deleted"

        return self._retry("delete", _delete)

    def delete_by_query(self, index_name: str, query: QueryLike) -> int:
        """
        Delete all documents matching a query.

        The matches are collected with a scroll cursor first; deletion starts
        only after the cursor is exhausted, in a single bulk request.

        Returns:
            Number of deleted documents
        """
        dsl = as_query_dsl(query)
        return self._retry("deleteByQuery", lambda es: self._delete_by_query(es, index_name, dsl))

    def _delete_by_query(self, es: Elasticsearch, index_name: str, dsl: Dict[str, Any]) -> int:
        keys: Dict[str, str] = {}
        response = body_of(es.search(
            index=index_name,
            query=dsl,
            scroll=SCROLL_KEEP_ALIVE,
            size=SCROLL_PAGE_SIZE,
            source=False
        ))
        scroll_id = response.get("_scroll_id")
        while True:
            hits = response["hits"]["hits"]
            for hit in hits:
                keys[hit["_id"]] = hit.get("_type", DEFAULT_TYPE_NAME)
            if not hits:
                break
            response = body_of(es.scroll(scroll_id=scroll_id, scroll=SCROLL_KEEP_ALIVE))
            scroll_id = response.get("_scroll_id", scroll_id)

        if scroll_id:
            try:
                es.clear_scroll(scroll_id=scroll_id)
            except (ApiError, TransportError) as e:
                logger.debug("IndexClient could not clear scroll: %s", e)

        return self._delete_bulk(es, [DocumentKey(index_name, t, id) for id, t in keys.items()])

    def _delete_bulk(self, es: Elasticsearch, keys: List[DocumentKey]) -> int:
        if not keys:
            return 0
        es.bulk(operations=[
            {"delete": {"_index": key.index_name, "_id": key.id}}
            for key in keys
        ])
        return len(keys)

    # searching

    def query(
        self,
        index_name: str,
        query: QueryLike = None,
        post_filter: QueryLike = None,
        sort: Optional[Sort] = None,
        highlight_field: Optional[str] = None,
        timezone_offset: int = 0,
        from_: int = 0,
        size: int = 10,
        aggregation_limit: int = 10,
        explain: bool = False,
        aggregation_fields: Collection[str] = ()
    ) -> QueryResult:
        """
        Search an index.

        Args:
            index_name: Index name
            query: Primary query
            post_filter: Filter applied after aggregation (does not change facet counts)
            sort: Result ordering (default: relevance)
            highlight_field: Field to return highlight fragments for
            timezone_offset: Browser-style offset in minutes for date ranges
            from_: Offset of the first result, 0 for the first
            size: Number of results; 0 if only aggregations are wanted
            aggregation_limit: Maximum number of buckets per aggregation field
            explain: Return scoring explanations
            aggregation_fields: Fields to aggregate on

        Returns:
            QueryResult. If the cluster cannot be reached within
            query_max_attempts attempts, the (possibly empty) partial result.
        """
        request: Dict[str, Any] = {
            "index": index_name,
            "query": as_query_dsl(query, timezone_offset),
            "search_type": "dfs_query_then_fetch",
            "from_": from_,
            "size": size,
            "explain": explain,
            "track_total_hits": True
        }
        if post_filter is not None:
            request["post_filter"] = as_query_dsl(post_filter, timezone_offset)
        if sort:
            request["sort"] = sort.to_dsl()
        if highlight_field is not None:
            request["highlight"] = {
                "pre_tags": [""],
                "post_tags": [""],
                "fields": {highlight_field: {"fragment_size": HIGHLIGHT_FRAGMENT_SIZE}}
            }
        if aggregation_fields:
            request["aggs"] = {
                field: {"terms": {"field": field, "min_doc_count": 1, "size": aggregation_limit}}
                for field in aggregation_fields
            }

        result = QueryResult()
        policy = self.retry_policy.with_limit(self.query_max_attempts)
        for attempt in range(self.query_max_attempts):
            try:
                response = body_of(self.manager.live_handle().search(**request))
            except Exception as e:
                if not is_transient(e):
                    raise
                logger.warning(
                    "IndexClient query failed with %s, retrying attempt %d ...", e, attempt, exc_info=True
                )
                if policy.exhausted(attempt):
                    break
                policy.pause(attempt)
                self.manager.connect()
                continue
            self._fill_result(result, response, explain, aggregation_fields)
            return result
        return result

    @staticmethod
    def _fill_result(
        result: QueryResult,
        response: Dict[str, Any],
        explain: bool,
        aggregation_fields: Collection[str]
    ) -> None:
        hits = response["hits"]
        result.hit_count = total_hits(hits)
        for hit in hits.get("hits", []):
            result.results.append(source_map(hit))
            result.highlights.append(dict(hit.get("highlight") or {}))
            if explain:
                result.explanations.append(json.dumps(hit.get("_explanation", {})))

        aggregations = response.get("aggregations") or {}
        for field in aggregation_fields:
            buckets = aggregations.get(field, {}).get("buckets", [])
            result.aggregations[field] = merge_buckets(
                (bucket.get("key_as_string", bucket["key"]), bucket["doc_count"])
                for bucket in buckets
            )

    def close(self) -> None:
        """Close the connection to the cluster."""
        self.manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
