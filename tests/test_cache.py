"""Tests for timestamped cache entries."""

import json
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from fap_sync.sync.cache import CacheEntry, LocalCache
from fap_sync.sync.kv_store import KeyValueStore, StorageError
from fakes import FakeClock


class TestLocalCache:
    """Tests for LocalCache."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = KeyValueStore(Path(self.temp_dir) / "store.db")
        self.clock = FakeClock()
        self.cache = LocalCache(self.store, clock=self.clock)

    def teardown_method(self):
        self.store.close()

    def test_round_trip(self):
        data = [{"monto": 50, "descripcion": "cuota"}, {"monto": 20}]

        self.cache.save_to_cache("savings_cache", data, 30)

        assert self.cache.get_from_cache("savings_cache") == data

    def test_entry_layout(self):
        """Stored value carries data, write time and TTL in ms."""
        self.cache.save_to_cache("k", {"a": 1}, 2)

        stored = json.loads(self.store.get_item("k"))
        assert stored == {"data": {"a": 1}, "timestamp": self.clock.now, "expiration": 120_000}

    def test_missing_key_returns_none(self):
        assert self.cache.get_from_cache("nope") is None

    def test_expired_entry_is_evicted_on_read(self):
        self.cache.save_to_cache("k", "value", 10)
        self.clock.advance_minutes(10.01)

        assert self.cache.get_from_cache("k") is None
        assert self.store.get_item("k") is None

    def test_entry_alive_at_exact_expiration(self):
        """Expiry requires strictly more than the TTL to have elapsed."""
        self.cache.save_to_cache("k", "value", 10)
        self.clock.advance_minutes(10)

        assert self.cache.get_from_cache("k") == "value"

    def test_save_overwrites_and_refreshes_timestamp(self):
        self.cache.save_to_cache("k", "old", 10)
        self.clock.advance_minutes(8)
        self.cache.save_to_cache("k", "new", 10)
        self.clock.advance_minutes(8)

        assert self.cache.get_from_cache("k") == "new"

    def test_unparsable_entry_returns_none(self):
        self.store.set_item("k", "not json")
        assert self.cache.get_from_cache("k") is None

        self.store.set_item("k", json.dumps({"data": 1}))
        assert self.cache.get_from_cache("k") is None

    def test_save_failure_is_logged_not_raised(self):
        store = Mock()
        store.set_item.side_effect = StorageError("disk full")
        cache = LocalCache(store, clock=self.clock)

        cache.save_to_cache("k", "value")

        store.set_item.assert_called_once()

    def test_strict_save_raises(self):
        store = Mock()
        store.set_item.side_effect = StorageError("disk full")
        cache = LocalCache(store, clock=self.clock)

        with pytest.raises(StorageError, match="disk full"):
            cache.save_to_cache("k", "value", strict=True)

    def test_read_failure_returns_none(self):
        store = Mock()
        store.get_item.side_effect = StorageError("locked")
        cache = LocalCache(store, clock=self.clock)

        assert cache.get_from_cache("k") is None


class TestCacheEntry:
    """Tests for CacheEntry."""

    def test_is_expired(self):
        entry = CacheEntry(data=None, timestamp=1000, expiration=500)

        assert entry.is_expired(1500) is False
        assert entry.is_expired(1501) is True

    def test_json_round_trip(self):
        entry = CacheEntry(data={"x": [1, 2]}, timestamp=5, expiration=10)
        assert CacheEntry.from_json(entry.to_json()) == entry
