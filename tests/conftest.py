"""
Pytest configuration and shared fixtures

Cluster handles are MagicMocks built by a mock client factory; retry
policies record their delays instead of sleeping.
"""
from unittest.mock import MagicMock

import pytest
from elasticsearch import ApiError

from cordsearch.cluster import ClusterManager
from cordsearch.config import IndexConfig
from cordsearch.core import IndexClient
from cordsearch.retry import RetryPolicy
from cordsearch.store import MemoryStore


def api_error(error_type: str, status: int = 400) -> ApiError:
    """An ApiError as the client raises it for an error response."""
    meta = MagicMock(status=status)
    body = {"error": {"type": error_type, "root_cause": [{"type": error_type, "reason": error_type}]}}
    return ApiError(error_type, meta=meta, body=body)


def make_handle(status: str = "green", cluster_name: str = "searchlab") -> MagicMock:
    es = MagicMock(name="Elasticsearch")
    es.cluster.health.return_value = {"status": status, "cluster_name": cluster_name}
    return es


@pytest.fixture
def es():
    """Mock Elasticsearch handle of a healthy cluster"""
    return make_handle()


@pytest.fixture
def factory(es):
    """Client factory that always returns the same handle"""
    return MagicMock(name="client_factory", return_value=es)


@pytest.fixture
def sleeps():
    """Delays requested by retry policies"""
    return []


@pytest.fixture
def policy(sleeps):
    return RetryPolicy(sleep=sleeps.append)


@pytest.fixture
def config():
    return IndexConfig(addresses=["es1:9200"], cluster_name="searchlab")


@pytest.fixture
def manager(config, factory, sleeps):
    m = ClusterManager(config, client_factory=factory, connect_policy=RetryPolicy(sleep=sleeps.append))
    yield m
    m.close()


@pytest.fixture
def throttle_sleeps():
    return []


@pytest.fixture
def client(manager, policy, throttle_sleeps):
    return IndexClient(manager, retry_policy=policy, sleep=throttle_sleeps.append)


@pytest.fixture
def store():
    return MemoryStore()
