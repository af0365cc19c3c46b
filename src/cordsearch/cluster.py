"""
CordSearch Cluster — Elasticsearch Connection Management
========================================================

ClusterManager owns the live client handle for one Elasticsearch cluster.

    connect()        build a new handle, retrying until it can be created,
                     swap it in and close the previous handle in the
                     background
    cluster_ready()  one-shot readiness latch: once the cluster has been
                     seen in a non-red state it is reported ready forever

Cluster-level administration (index creation, mappings, refresh, listing)
lives here as well.
"""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Set, Union

from elasticsearch import ApiError, Elasticsearch, TransportError

from .config import IndexConfig
from .errors import ConnectionFailedError, NoLiveHandleError, is_transient
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def body_of(response: Any) -> Any:
    """Plain body of a client response (responses wrap dicts and booleans)."""
    return getattr(response, "body", response)


class ClusterManager:
    """
    Live connection to an Elasticsearch cluster.

    The handle is a single shared reference. Readers take whatever handle is
    current; connect() replaces it and never mutates the old one.

    Example:
        manager = ClusterManager(IndexConfig(addresses=["localhost:9200"]))
        print(manager.cluster_ready())
        print(manager.indices())
        manager.close()
    """

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        client_factory: Callable[..., Elasticsearch] = Elasticsearch,
        connect_policy: Optional[RetryPolicy] = None,
        lazy: bool = False
    ):
        """
        Initialize the manager.

        Args:
            config: Addresses, cluster name and credentials
            client_factory: Builds a client handle from connection kwargs
            connect_policy: Backoff between failed handle constructions
            lazy: Do not connect until connect() is called
        """
        self.config = config or IndexConfig()
        self._client_factory = client_factory
        self._connect_policy = connect_policy or self.config.connect_policy()
        self._handle: Optional[Elasticsearch] = None
        self._lock = threading.Lock()
        self._ready = False
        self._teardown: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()

        logger.info(
            "ClusterManager initiated, %d address(es): %s, cluster name: %s",
            len(self.config.addresses), ", ".join(self.config.addresses),
            self.config.cluster_name or "(any)"
        )
        if not lazy:
            self.connect()

    @property
    def handle(self) -> Optional[Elasticsearch]:
        """The current client handle, or None if not connected."""
        return self._handle

    def live_handle(self) -> Elasticsearch:
        handle = self._handle
        if handle is None:
            raise NoLiveHandleError()
        return handle

    def connect(self) -> Elasticsearch:
        """
        Build a new client handle and make it the live one.

        Handle construction is retried according to the connect policy;
        with an unbounded policy this blocks until it succeeds.

        Returns:
            The new live handle

        Raises:
            ConnectionFailedError: If a bounded connect policy is exhausted
            RetryCancelledError: If the connect policy is cancelled
        """
        attempt = 0
        while True:
            try:
                new_handle = self._client_factory(**self.config.connection_kwargs())
                break
            except Exception as e:
                logger.warning("failed to create an elasticsearch client, retrying...", exc_info=True)
                if self._connect_policy.exhausted(attempt):
                    raise ConnectionFailedError(
                        f"could not create an elasticsearch client after {attempt + 1} attempts"
                    ) from e
                self._connect_policy.pause(attempt)
                attempt += 1

        for host in self.config.hosts():
            logger.info("Elasticsearch: added address %s", host)

        with self._lock:
            old_handle, self._handle = self._handle, new_handle
        if old_handle is not None:
            self._close_detached(old_handle)

        try:
            ready = self.cluster_ready()
        except (ApiError, TransportError) as e:
            logger.info("Elasticsearch: node is not ready: %s", e)
        else:
            logger.info("Elasticsearch: node is %s", "ready" if ready else "not ready")
        return new_handle

    def _close_detached(self, handle: Elasticsearch) -> None:
        with self._lock:
            if self._teardown is None:
                name = self.config.cluster_name or "elasticsearch"
                self._teardown = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"client-close-{name}"
                )
            future = self._teardown.submit(handle.close)
            self._pending.add(future)
        future.add_done_callback(self._teardown_done)

    def _teardown_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.warning("closing a replaced elasticsearch client failed: %s", exc)

    def wait_for_teardown(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until replaced handles are closed.

        Returns:
            True if no teardown is pending anymore
        """
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def cluster_ready(self) -> bool:
        """
        Check whether the cluster has ever reached a non-red health status.

        A positive answer is cached for the lifetime of the manager; a
        negative answer is re-checked on every call.
        """
        if self._ready:
            return True
        health = body_of(self.live_handle().cluster.health())
        self._ready = health.get("status") != "red"
        name = health.get("cluster_name")
        if self.config.cluster_name and name and name != self.config.cluster_name:
            logger.warning(
                "Elasticsearch: connected to cluster '%s', configured cluster name is '%s'",
                name, self.config.cluster_name
            )
        return self._ready

    def health(self) -> dict:
        """
        Get cluster health status.

        Returns:
            Dict with cluster health information
        """
        return body_of(self.live_handle().cluster.health())

    def indices(self) -> List[dict]:
        """
        List all indices with stats.

        Returns:
            List of index info dicts
        """
        cat_indices = body_of(self.live_handle().cat.indices(format="json"))
        return [
            {
                "name": idx["index"],
                "health": idx.get("health", "unknown"),
                "status": idx.get("status", "unknown"),
                "docs_count": int(idx.get("docs.count") or 0),
                "size": idx.get("store.size", "0b"),
                "pri_shards": int(idx.get("pri") or 0),
                "rep_shards": int(idx.get("rep") or 0)
            }
            for idx in cat_indices
            if not idx["index"].startswith(".")  # Skip system indices
        ]

    def create_index_if_not_exists(self, name: str, shards: int = 1, replicas: int = 0) -> bool:
        """
        Create an index unless it already exists.

        Args:
            name: Index name
            shards: Number of primary shards
            replicas: Number of replica shards

        Returns:
            True if the index was created by this call
        """
        handle = self.live_handle()
        if handle.indices.exists(index=name):
            return False
        try:
            handle.indices.create(
                index=name,
                settings={
                    "number_of_shards": shards,
                    "number_of_replicas": replicas
                }
            )
        except ApiError as e:
            if e.error == "resource_already_exists_exception":
                return False
            raise
        logger.info("Elasticsearch: created index %s (%d shards, %d replicas)", name, shards, replicas)
        return True

    def set_mapping(self, name: str, mapping: Union[Dict[str, Any], str]) -> None:
        """
        Upload a mapping for an index.

        Transient cluster failures are logged and not raised.

        Args:
            name: Index name
            mapping: Mapping as dict or JSON text
        """
        if isinstance(mapping, str):
            mapping = json.loads(mapping)
        try:
            self.live_handle().indices.put_mapping(index=name, body=mapping)
        except (ApiError, TransportError) as e:
            if not is_transient(e):
                raise
            logger.warning("Elasticsearch: setting mapping for %s failed", name, exc_info=True)

    def refresh(self, name: str) -> None:
        """Make all operations since the last refresh visible to search."""
        self.live_handle().indices.refresh(index=name)

    def delete_index(self, name: str) -> None:
        """Delete an index. Use with caution!"""
        self.live_handle().indices.delete(index=name)

    def close(self) -> None:
        """Close the live handle and wait for replaced handles to close."""
        with self._lock:
            handle, self._handle = self._handle, None
            teardown, self._teardown = self._teardown, None
        if handle is not None:
            handle.close()
        if teardown is not None:
            teardown.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
