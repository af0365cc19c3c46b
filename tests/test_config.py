"""Tests for IndexConfig"""
from cordsearch.config import IndexConfig, normalize_host


def test_normalize_host():
    assert normalize_host("es1:9200") == "http://es1:9200"
    assert normalize_host(" https://es1:9243 ") == "https://es1:9243"


def test_defaults():
    config = IndexConfig()
    assert config.hosts() == ["http://localhost:9200"]
    assert config.retry_max_attempts is None
    assert config.query_max_attempts == 10
    assert config.throttling_time_threshold_ms == 2000
    assert config.throttling_ops_threshold == 1000


def test_from_env():
    config = IndexConfig.from_env({
        "CORDSEARCH_ADDRESSES": "es1:9200, es2:9201",
        "CORDSEARCH_CLUSTER_NAME": "production",
        "CORDSEARCH_USERNAME": "elastic",
        "CORDSEARCH_PASSWORD": "secret",
        "CORDSEARCH_VERIFY_CERTS": "false",
        "CORDSEARCH_RETRY_MAX_ATTEMPTS": "5",
        "CORDSEARCH_THROTTLING_FACTOR": "0.5",
        "CORDSEARCH_STORE_PATH": "/data",
        "UNRELATED": "x",
    })
    assert config.addresses == ["es1:9200", "es2:9201"]
    assert config.cluster_name == "production"
    assert config.basic_auth == ("elastic", "secret")
    assert config.verify_certs is False
    assert config.retry_max_attempts == 5
    assert config.throttling_factor == 0.5
    assert config.store_path == "/data"


def test_from_env_empty_keeps_defaults():
    assert IndexConfig.from_env({}) == IndexConfig()


def test_connection_kwargs_prefer_api_key():
    config = IndexConfig(addresses=["es1:9200"], api_key="k", basic_auth=("u", "p"))
    assert config.connection_kwargs() == {
        "hosts": ["http://es1:9200"],
        "verify_certs": True,
        "api_key": "k",
    }


def test_policies():
    config = IndexConfig(retry_max_attempts=4, connect_initial_delay=2.0)
    assert config.retry_policy().max_attempts == 4
    assert config.connect_policy().initial_delay == 2.0
    assert config.connect_policy().max_attempts is None
