"""Tests for the SearchIndex facade"""
from unittest.mock import MagicMock

import pytest
from elasticsearch import ApiError

from cordsearch.config import IndexConfig
from cordsearch.errors import ConfigurationMissingError, IndexUnavailableError
from cordsearch.index import SearchIndex, parse_address
from cordsearch.models import BulkWriteResult
from cordsearch.retry import RetryPolicy

from conftest import api_error


@pytest.fixture
def index(factory):
    idx = SearchIndex("elastic://es1:9200,es2:9201/searchlab", client_factory=factory)
    yield idx
    idx.close()


class TestAddress:

    def test_parse_address(self):
        assert parse_address("elastic://es1:9200,es2:9201/searchlab") == (["es1:9200", "es2:9201"], "searchlab")
        assert parse_address("elastic://es1:9200") == (["es1:9200"], "")

    @pytest.mark.parametrize("address", ["http://es1:9200", "elastic://", "elastic:///searchlab"])
    def test_invalid_address(self, address):
        assert parse_address(address) is None
        assert SearchIndex().configure(address) is False


class TestConnection:

    def test_unconfigured_facade_raises(self):
        index = SearchIndex()
        with pytest.raises(ConfigurationMissingError):
            index.count("web")
        assert not index.is_connected()

    def test_connects_on_first_use(self, index, factory, es):
        factory.assert_not_called()
        assert not index.is_connected()

        es.count.return_value = {"count": 3}
        assert index.count("web") == 3

        assert index.is_connected()
        factory.assert_called_once_with(hosts=["http://es1:9200", "http://es2:9201"], verify_certs=True)
        assert index.get_client().manager.config.cluster_name == "searchlab"

    def test_connect_elasticsearch_eagerly(self, factory):
        index = SearchIndex(client_factory=factory)
        assert index.connect_elasticsearch("elastic://es1:9200/searchlab") is True
        assert index.is_connected()
        factory.assert_called_once()

    def test_connect_is_retried(self, es):
        sleeps = []
        factory = MagicMock(side_effect=[RuntimeError("refused"), es])
        index = SearchIndex(
            config=IndexConfig(connect_max_attempts=1),
            client_factory=factory,
            connect_policy=RetryPolicy(sleep=sleeps.append)
        )

        assert index.connect_elasticsearch("elastic://es1:9200") is True
        assert factory.call_count == 2
        assert sleeps == [1.0]

    def test_close_stops_connecting(self, index):
        index.close()
        assert not index.is_connected()
        with pytest.raises(IndexUnavailableError):
            index.count("web")


class TestOperations:

    def test_failures_are_wrapped(self, index, es):
        es.count.side_effect = api_error("index_not_found_exception", 404)

        with pytest.raises(IndexUnavailableError) as exc_info:
            index.count("missing")
        assert isinstance(exc_info.value.__cause__, ApiError)

    def test_add(self, index, es):
        es.update.return_value = {"result": "created"}
        assert index.add("web", "_doc", "d1", {"title": "Quantum"}) is True

    def test_add_bulk(self, index, es):
        es.bulk.return_value = {"items": [
            {"index": {"_id": "d1", "result": "created"}},
            {"index": {"_id": "d2", "result": "created"}},
        ]}
        result = index.add_bulk("web", "_doc", {"d1": {"n": 1}, "d2": {"n": 2}})
        assert result == BulkWriteResult(created_ids={"d1", "d2"})

    def test_search(self, index, es):
        es.search.return_value = {"hits": {"total": {"value": 1}, "hits": [{"_id": "d1", "_source": {"n": 1}}]}}

        assert index.search("web", "quantum", start=10, count=5) == [{"n": 1, "id": "d1", "type": "_doc"}]
        request = es.search.call_args.kwargs
        assert (request["from_"], request["size"]) == (10, 5)

    def test_query_forwards_options(self, index, es):
        es.search.return_value = {"hits": {"total": {"value": 0}, "hits": []}, "aggregations": {
            "year": {"buckets": [{"key": 2024, "doc_count": 2}]}
        }}
        result = index.query("web", None, aggregation_fields=["year"], aggregation_limit=3)
        assert result.aggregations == {"year": [("2024", 2)]}
        assert es.search.call_args.kwargs["aggs"]["year"]["terms"]["size"] == 3

    def test_read_and_delete(self, index, es):
        es.options.return_value.get.return_value = {"_id": "d1", "found": True, "_source": {"n": 1}}
        es.options.return_value.delete.return_value = {"result": "deleted"}

        assert index.read("web", "d1") == {"n": 1, "id": "d1", "type": "_doc"}
        assert index.delete("web", "_doc", "d1") is True

    def test_delete_by_query(self, index, es):
        es.search.return_value = {"_scroll_id": "s", "hits": {"hits": [{"_id": "d1"}]}}
        es.scroll.return_value = {"_scroll_id": "s", "hits": {"hits": []}}
        assert index.delete_by_query("web", "status:obsolete") == 1

    def test_create_index(self, index, es):
        es.indices.exists.return_value = False
        assert index.create_index_if_not_exists("web") is True
