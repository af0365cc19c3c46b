"""
Tests for cords

Cords run against a MemoryStore whose write() is wrapped so tests can
count how often the backing object is replaced.
"""
import json
import threading
from unittest.mock import MagicMock

import pytest

from cordsearch.cord import DurableCord, VolatileCord, open_cord
from cordsearch.errors import DocumentSerializationError
from cordsearch.store import MemoryStore
from cordsearch.tables import IndexedTable

KEY = "queues/crawl.json"


@pytest.fixture
def store():
    s = MemoryStore()
    s.write = MagicMock(wraps=s.write)
    return s


def stored(store, key=KEY):
    return json.loads(store.read_all(key))


class TestLoading:

    def test_missing_key_is_empty(self, store):
        cord = open_cord(store, KEY)
        assert not cord.loaded
        assert cord.size() == 0
        assert cord.loaded
        store.write.assert_not_called()

    def test_loads_existing_array(self, store):
        store.write(KEY, b'[{"url": "a"}, {"url": "b"}]')
        cord = open_cord(store, KEY)
        assert len(cord) == 2
        assert cord.get(1) == {"url": "b"}

    def test_corrupt_json(self, store):
        store.write(KEY, b"[{not json")
        with pytest.raises(DocumentSerializationError):
            open_cord(store, KEY).size()

    def test_json_that_is_not_an_array(self, store):
        store.write(KEY, b'{"url": "a"}')
        with pytest.raises(DocumentSerializationError):
            open_cord(store, KEY).size()


class TestVolatileCord:

    def test_changes_stay_in_memory_until_commit(self, store):
        cord = open_cord(store, KEY)
        cord.append({"url": "a"}).append({"url": "b"})

        assert cord.dirty
        assert not store.exists(KEY)

        cord.commit()
        assert not cord.dirty
        assert stored(store) == [{"url": "a"}, {"url": "b"}]

    def test_commit_without_changes_does_not_write(self, store):
        cord = open_cord(store, KEY)
        cord.append({"url": "a"})
        cord.commit()
        cord.commit()
        cord.size()
        cord.commit()
        assert store.write.call_count == 1

    def test_close_commits_and_reloads(self, store):
        cord = open_cord(store, KEY)
        cord.append({"url": "a"})
        cord.close()

        assert not cord.loaded
        assert stored(store) == [{"url": "a"}]

        store.write(KEY, b'[{"url": "x"}]')
        assert cord.snapshot() == [{"url": "x"}]

    def test_context_manager_closes(self, store):
        with open_cord(store, KEY) as cord:
            cord.append({"url": "a"})
        assert stored(store) == [{"url": "a"}]

    def test_compact_json_keeps_unicode(self, store):
        cord = open_cord(store, KEY)
        cord.append({"title": "Zürich"}).commit()
        assert store.read_all(KEY) == '[{"title": "Zürich"}]'.encode("utf-8")


class TestDurableCord:

    def test_every_mutation_is_written(self, store):
        cord = open_cord(store, KEY, durable=True)
        assert isinstance(cord, DurableCord)

        cord.append({"url": "a"})
        assert stored(store) == [{"url": "a"}]
        cord.prepend({"url": "b"})
        assert stored(store) == [{"url": "b"}, {"url": "a"}]
        cord.remove_last()
        assert stored(store) == [{"url": "b"}]
        assert store.write.call_count == 3
        assert not cord.dirty

    def test_removal_without_match_does_not_write(self, store):
        cord = open_cord(store, KEY, durable=True)
        assert cord.remove_one_where("url", "zzz") is None
        assert cord.remove_all_where("url", "zzz") == []
        store.write.assert_not_called()


class TestMutations:

    @pytest.fixture
    def cord(self, store):
        return VolatileCord(store, KEY).append_all([
            {"url": "a", "status": "done", "depth": 1},
            {"url": "b", "status": "new", "depth": 2},
            {"url": "c", "status": "done", "depth": 1},
            {"url": "d"},
        ])

    def test_positions(self, cord):
        cord.insert({"url": "x"}, 1)
        cord.prepend({"url": "first"})
        assert [e["url"] for e in cord.snapshot()] == ["first", "a", "x", "b", "c", "d"]
        assert cord.remove_first() == {"url": "first"}
        assert cord.remove(1) == {"url": "x"}
        assert cord.remove_last() == {"url": "d"}

    def test_insert_out_of_range(self, cord):
        with pytest.raises(IndexError):
            cord.insert({"url": "x"}, 10)

    def test_remove_from_empty_cord(self, store):
        with pytest.raises(IndexError):
            open_cord(store, KEY).remove_first()

    def test_remove_all_where_keeps_order(self, cord):
        removed = cord.remove_all_where("status", "done")
        assert [e["url"] for e in removed] == ["a", "c"]
        assert [e["url"] for e in cord.snapshot()] == ["b", "d"]

    def test_remove_one_where_takes_first_match(self, cord):
        assert cord.remove_one_where("depth", 1)["url"] == "a"
        assert [e["url"] for e in cord.snapshot()] == ["b", "c", "d"]

    def test_numeric_match_is_integral_only(self, store):
        cord = open_cord(store, KEY).append_all([
            {"n": True}, {"n": 1.0}, {"n": "1"}, {"n": 1},
        ])
        assert cord.remove_all_where("n", 1) == [{"n": 1}]
        assert cord.size() == 3

    def test_string_does_not_match_number(self, cord):
        assert cord.remove_all_where("depth", "1") == []

    def test_unsupported_match_value(self, cord):
        with pytest.raises(TypeError):
            cord.remove_all_where("depth", 1.5)

    def test_append_table(self, store):
        table = IndexedTable.from_records([{"url": "a", "depth": 1}, {"url": "b", "depth": 2}])
        cord = open_cord(store, KEY).append_table(table)
        assert cord.snapshot() == [{"url": "a", "depth": 1}, {"url": "b", "depth": 2}]

    def test_sparse_table_rows_match_integers(self, store):
        table = IndexedTable.from_records([{"id": "1", "n": 7}, {"id": "2"}])
        cord = open_cord(store, KEY).append_table(table)

        assert cord.snapshot() == [{"id": "1", "n": 7}, {"id": "2"}]
        assert cord.remove_all_where("n", 7) == [{"id": "1", "n": 7}]
        cord.commit()
        assert stored(store) == [{"id": "2"}]


def test_concurrent_appends(store):
    cord = open_cord(store, KEY)

    def worker(n):
        for i in range(100):
            cord.append({"worker": n, "i": i})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cord.size() == 400
    cord.commit()
    assert len(stored(store)) == 400
