"""
CordSearch Errors — Exception Taxonomy
======================================

Every error raised by this package derives from CordSearchError.

    TransientConnectivityError   cluster unreachable; retried, never surfaced
    ConfigurationMissingError    no store, base path or cluster address
    DocumentSerializationError   stored JSON is corrupt; never retried
    RemoteFetchError             table peer failed; swallowed by the caller
    IndexUnavailableError        terminal failure of the index facade

Elasticsearch client exceptions are not wrapped by the retry layer; they
are classified with is_transient().
"""

from elasticsearch import ApiError, ConnectionTimeout
from elasticsearch import ConnectionError as TransportConnectionError


# Elasticsearch error types that indicate an unreachable or recovering cluster
TRANSIENT_ERROR_TYPES = frozenset({
    "cluster_block_exception",
    "search_phase_execution_exception",
    "illegal_state_exception",
    "no_shard_available_action_exception",
    "unavailable_shards_exception",
})

TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})


class CordSearchError(Exception):
    """Base error for all cordsearch errors."""


class TransientConnectivityError(CordSearchError):
    """Raised when the search cluster cannot be reached right now."""


class NoLiveHandleError(TransientConnectivityError):
    """Raised when an operation runs while no cluster handle is connected."""

    def __init__(self) -> None:
        super().__init__("no live elasticsearch handle")


class ConfigurationMissingError(CordSearchError):
    """Raised when a required store, path or address was never configured."""


class DocumentSerializationError(CordSearchError):
    """Raised when stored JSON cannot be parsed into the expected shape."""


class RemoteFetchError(CordSearchError):
    """Raised when a table peer cannot deliver a table."""


class IndexUnavailableError(CordSearchError):
    """Raised by the index facade when an operation cannot be completed."""


class RetryCancelledError(CordSearchError):
    """Raised when a retry loop is cancelled while waiting."""


class ConnectionFailedError(TransientConnectivityError):
    """Raised when a bounded connect policy runs out of attempts."""


class StorageKeyNotFoundError(CordSearchError, KeyError):
    """Raised when a backing store has no object for a key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"no object stored at key '{key}'")

    def __str__(self) -> str:
        return self.args[0]


def is_transient(exc: BaseException) -> bool:
    """
    Decide whether an exception signals a transient connectivity problem.

    Args:
        exc: Exception raised by an operation against the cluster

    Returns:
        True if the operation should be retried after reconnecting
    """
    if isinstance(exc, (TransientConnectivityError, TransportConnectionError, ConnectionTimeout)):
        return True
    if isinstance(exc, ApiError):
        return exc.error in TRANSIENT_ERROR_TYPES or exc.status_code in TRANSIENT_STATUS_CODES
    return False
