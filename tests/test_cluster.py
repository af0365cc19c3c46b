"""Tests for ClusterManager: handle lifecycle, readiness and administration"""
import json
from unittest.mock import MagicMock

import pytest

from cordsearch.cluster import ClusterManager
from cordsearch.config import IndexConfig
from cordsearch.errors import ConnectionFailedError, NoLiveHandleError
from cordsearch.retry import RetryPolicy

from conftest import api_error, make_handle


class TestConnect:

    def test_connect_passes_connection_kwargs(self, manager, factory, es):
        factory.assert_called_once_with(hosts=["http://es1:9200"], verify_certs=True)
        assert manager.handle is es

    def test_lazy_manager_has_no_handle(self, config, factory):
        manager = ClusterManager(config, client_factory=factory, lazy=True)
        factory.assert_not_called()
        with pytest.raises(NoLiveHandleError):
            manager.live_handle()

    def test_failed_construction_is_retried(self, config, es):
        sleeps = []
        factory = MagicMock(side_effect=[RuntimeError("bad address"), RuntimeError("bad address"), es])
        manager = ClusterManager(
            config, client_factory=factory,
            connect_policy=RetryPolicy(initial_delay=0.5, sleep=sleeps.append)
        )
        assert manager.handle is es
        assert factory.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_bounded_connect_policy_gives_up(self, config):
        factory = MagicMock(side_effect=RuntimeError("bad address"))
        with pytest.raises(ConnectionFailedError):
            ClusterManager(
                config, client_factory=factory,
                connect_policy=RetryPolicy(max_attempts=3, sleep=lambda _: None)
            )
        assert factory.call_count == 3

    def test_reconnect_swaps_and_closes_old_handle(self, config):
        """The replaced handle is closed in the background, the new one stays open"""
        first, second = make_handle(), make_handle()
        factory = MagicMock(side_effect=[first, second])
        manager = ClusterManager(config, client_factory=factory)

        assert manager.connect() is second
        assert manager.handle is second
        assert manager.wait_for_teardown(timeout=5)
        first.close.assert_called_once()
        second.close.assert_not_called()
        manager.close()

    def test_failing_teardown_does_not_affect_new_handle(self, config):
        first, second = make_handle(), make_handle()
        first.close.side_effect = RuntimeError("already closed")
        manager = ClusterManager(config, client_factory=MagicMock(side_effect=[first, second]))

        manager.connect()
        assert manager.wait_for_teardown(timeout=5)
        assert manager.handle is second
        manager.close()

    def test_close_drops_handle(self, manager, es):
        manager.close()
        es.close.assert_called_once()
        assert manager.handle is None


class TestReadiness:

    def test_latch_stays_ready(self, config):
        es = make_handle(status="red")
        manager = ClusterManager(config, client_factory=MagicMock(return_value=es))

        assert manager.cluster_ready() is False
        es.cluster.health.return_value = {"status": "yellow"}
        assert manager.cluster_ready() is True

        es.cluster.health.return_value = {"status": "red"}
        calls = es.cluster.health.call_count
        assert manager.cluster_ready() is True
        assert es.cluster.health.call_count == calls

    def test_cluster_name_mismatch_is_logged(self, caplog):
        es = make_handle(cluster_name="other")
        manager = ClusterManager(IndexConfig(cluster_name="searchlab"), client_factory=MagicMock(return_value=es))
        assert "configured cluster name is 'searchlab'" in caplog.text
        manager.close()


class TestAdministration:

    def test_create_index(self, manager, es):
        es.indices.exists.return_value = False
        assert manager.create_index_if_not_exists("web", shards=2, replicas=1) is True
        es.indices.create.assert_called_once_with(
            index="web", settings={"number_of_shards": 2, "number_of_replicas": 1}
        )

    def test_create_existing_index(self, manager, es):
        es.indices.exists.return_value = True
        assert manager.create_index_if_not_exists("web") is False
        es.indices.create.assert_not_called()

    def test_create_race_with_other_client(self, manager, es):
        es.indices.exists.return_value = False
        es.indices.create.side_effect = api_error("resource_already_exists_exception")
        assert manager.create_index_if_not_exists("web") is False

    def test_set_mapping_from_json_text(self, manager, es):
        mapping = {"properties": {"title": {"type": "text"}}}
        manager.set_mapping("web", json.dumps(mapping))
        es.indices.put_mapping.assert_called_once_with(index="web", body=mapping)

    def test_set_mapping_transient_failure_is_logged(self, manager, es, caplog):
        es.indices.put_mapping.side_effect = api_error("cluster_block_exception", 403)
        manager.set_mapping("web", {"properties": {}})
        assert "setting mapping for web failed" in caplog.text

    def test_set_mapping_invalid_mapping_raises(self, manager, es):
        error = api_error("mapper_parsing_exception")
        es.indices.put_mapping.side_effect = error
        with pytest.raises(type(error)):
            manager.set_mapping("web", {"properties": {"x": {"type": "nonsense"}}})

    def test_indices_skip_system_indices(self, manager, es):
        es.cat.indices.return_value = [
            {"index": "web", "health": "green", "status": "open", "docs.count": "12",
             "store.size": "1kb", "pri": "1", "rep": "0"},
            {"index": ".security", "health": "green"},
        ]
        indices = manager.indices()
        assert [i["name"] for i in indices] == ["web"]
        assert indices[0]["docs_count"] == 12

    def test_refresh(self, manager, es):
        manager.refresh("web")
        es.indices.refresh.assert_called_once_with(index="web")

    def test_delete_index(self, manager, es):
        manager.delete_index("web")
        es.indices.delete.assert_called_once_with(index="web")
