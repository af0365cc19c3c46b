"""
CordSearch Index — Facade for Logical Index Access
==================================================

SearchIndex is the entry point for callers that address the index by name
and do not manage cluster handles. It is configured with an address of the
form

    elastic://host:port[,host:port...][/clustername]

and connects on first use. Every call either returns a result or raises
IndexUnavailableError; a facade that was never given an address raises
ConfigurationMissingError.

Example:
    index = SearchIndex("elastic://localhost:9200/searchlab")
    index.add("web", "_doc", "d1", {"title": "Quantum Mechanics"})
    print(index.count("web", "quantum"))
"""

import dataclasses
import logging
from typing import Any, Callable, Collection, Dict, List, Optional, Set, Tuple, TypeVar

from elasticsearch import ApiError, Elasticsearch, TransportError

from .config import IndexConfig
from .core import IndexClient
from .errors import (
    ConfigurationMissingError,
    CordSearchError,
    IndexUnavailableError,
)
from .models import BulkEntry, BulkWriteResult, QueryResult
from .query import QueryLike, Sort
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROTOCOL_PREFIX = "elastic://"


def parse_address(address: str) -> Optional[Tuple[List[str], str]]:
    """
    Split an elastic:// address into host:port addresses and a cluster name.

    Returns:
        (addresses, cluster_name), or None if the address is not an elastic:// address
    """
    if not address.startswith(PROTOCOL_PREFIX):
        return None
    address = address[len(PROTOCOL_PREFIX):]
    hosts, _, cluster = address.partition("/")
    addresses = [h.strip() for h in hosts.split(",") if h.strip()]
    if not addresses:
        return None
    return addresses, cluster.strip("/")


class SearchIndex:
    """
    Index access by logical index name.

    Example:
        index = SearchIndex()
        index.connect_elasticsearch("elastic://es1:9200,es2:9200/production")
        result = index.query("web", "quantum", size=20, aggregation_fields=["year"])
    """

    def __init__(
        self,
        address: Optional[str] = None,
        config: Optional[IndexConfig] = None,
        client_factory: Callable[..., Elasticsearch] = Elasticsearch,
        connect_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize the facade; nothing is connected until first use.

        Args:
            address: elastic:// address (optional, see configure())
            config: Base configuration; addresses and cluster name come from the address
            client_factory: Builds Elasticsearch client handles
            connect_policy: Backoff between failed connection attempts (default: 5 s, unbounded)
        """
        self.config = config or IndexConfig()
        self._client_factory = client_factory
        self._connect_policy = connect_policy or RetryPolicy(initial_delay=5.0, multiplier=1.0, max_delay=5.0)
        self._address: Optional[str] = None
        self._client: Optional[IndexClient] = None
        if address is not None:
            self.configure(address)

    def configure(self, address: str) -> bool:
        """
        Remember an address to connect to on first use.

        Returns:
            False if the address is not a valid elastic:// address
        """
        if parse_address(address) is None:
            return False
        self._address = address
        return True

    def is_connected(self) -> bool:
        return self._address is not None and self._client is not None

    def connect_elasticsearch(self, address: str) -> bool:
        """
        Connect to the cluster now, retrying until a connection exists.

        Args:
            address: elastic://host:port[,host:port...][/clustername]

        Returns:
            True once connected; False if the address is invalid or the
            connect policy was cancelled
        """
        parsed = parse_address(address)
        if parsed is None:
            return False
        addresses, cluster = parsed
        config = dataclasses.replace(self.config, addresses=addresses, cluster_name=cluster)

        attempt = 0
        while not self._connect_policy.cancel.is_set():
            try:
                self._client = IndexClient.connect(config, client_factory=self._client_factory)
                self._address = address
                logger.info("Index/Client: connected to elasticsearch at %s", ",".join(addresses))
                return True
            except CordSearchError:
                logger.warning(
                    "Index/Client: trying to connect to elasticsearch at %s failed",
                    ",".join(addresses), exc_info=True
                )
                try:
                    self._connect_policy.pause(attempt)
                except CordSearchError:
                    break
                attempt += 1
        return False

    def get_client(self) -> IndexClient:
        """
        The underlying client, connecting first if necessary.

        Raises:
            ConfigurationMissingError: If no address was configured
            IndexUnavailableError: If the connection could not be established
        """
        if self._client is None and self._address is not None:
            self.connect_elasticsearch(self._address)
        if self._client is not None:
            return self._client
        if self._address is None:
            raise ConfigurationMissingError("Index/Client: no elasticsearch address configured")
        raise IndexUnavailableError(f"Index/Client: no connection to {self._address}")

    def _call(self, name: str, operation: Callable[[IndexClient], T]) -> T:
        client = self.get_client()
        try:
            return operation(client)
        except (CordSearchError, ApiError, TransportError) as e:
            logger.debug("Index/Client: %s on elastic service '%s' failed", name, self._address, exc_info=True)
            raise IndexUnavailableError(f"Index/Client: {name} failed: {e}") from e

    # administration

    def create_index_if_not_exists(self, index_name: str, shards: int = 1, replicas: int = 0) -> bool:
        return self._call("createIndex", lambda c: c.create_index_if_not_exists(index_name, shards, replicas))

    def set_mapping(self, index_name: str, mapping: Any) -> None:
        self._call("setMapping", lambda c: c.set_mapping(index_name, mapping))

    def refresh(self, index_name: str) -> None:
        self._call("refresh", lambda c: c.refresh(index_name))

    # writing

    def add(self, index_name: str, type_name: str, id: str, document: Dict[str, Any]) -> bool:
        """Write one document; True if it was created."""
        return self._call("add", lambda c: c.write_map(index_name, type_name, id, document))

    def add_bulk(self, index_name: str, type_name: str, documents: Dict[str, Dict[str, Any]]) -> BulkWriteResult:
        """Write documents given as id -> document in one bulk request."""
        entries = [BulkEntry(id, type_name, doc) for id, doc in documents.items()]
        return self._call("addBulk", lambda c: c.write_map_bulk(index_name, entries))

    # reading

    def exist(self, index_name: str, id: str) -> bool:
        return self._call("exist", lambda c: c.exist(index_name, id))

    def exist_bulk(self, index_name: str, ids: Collection[str]) -> Set[str]:
        return self._call("existBulk", lambda c: c.exist_bulk(index_name, ids))

    def count(self, index_name: str, query: QueryLike = None) -> int:
        return self._call("count", lambda c: c.count(index_name, query))

    def read(self, index_name: str, id: str) -> Optional[Dict[str, Any]]:
        return self._call("read", lambda c: c.read_map(index_name, id))

    def read_bulk(self, index_name: str, ids: Collection[str]) -> Dict[str, Dict[str, Any]]:
        return self._call("readBulk", lambda c: c.read_map_bulk(index_name, ids))

    def search(self, index_name: str, query: QueryLike, start: int = 0, count: int = 10) -> List[Dict[str, Any]]:
        """Documents matching a query, in relevance order."""
        return self._call("search", lambda c: c.query(index_name, query, from_=start, size=count).results)

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
        """Full search; see IndexClient.query."""
        return self._call("query", lambda c: c.query(
            index_name, query,
            post_filter=post_filter,
            sort=sort,
            highlight_field=highlight_field,
            timezone_offset=timezone_offset,
            from_=from_,
            size=size,
            aggregation_limit=aggregation_limit,
            explain=explain,
            aggregation_fields=aggregation_fields
        ))

    # deleting

    def delete(self, index_name: str, type_name: str, id: str) -> bool:
        return self._call("delete", lambda c: c.delete(index_name, type_name, id))

    def delete_by_query(self, index_name: str, query: QueryLike) -> int:
        return self._call("deleteByQuery", lambda c: c.delete_by_query(index_name, query))

    def close(self) -> None:
        """Stop connection attempts and close the client."""
        self._connect_policy.cancel.set()
        client, self._client = self._client, None
        if client is not None:
            client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
