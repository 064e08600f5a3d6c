"""Tests for the namespaced memory cache."""

import pytest

from hivestore.config import StoreConfig
from hivestore.storage.sqlite import open_coordinator


class TestStoreAndGet:

    def test_round_trip(self, coordinator):
        coordinator.store_memory("k", '{"a": 1}', namespace="ns")
        entry = coordinator.get_memory("k", "ns")
        assert entry.value == '{"a": 1}'
        assert entry.namespace == "ns"

    def test_values_come_back_unchanged(self, coordinator):
        payloads = {"num": "5", "json": '{"a": [1, 2]}', "blank": "", "text": "  spaced\n"}
        for key, payload in payloads.items():
            coordinator.store_memory(key, payload)
        for key, payload in payloads.items():
            assert coordinator.get_memory(key).value == payload

    @pytest.mark.parametrize("value", [5, {"a": 1}, ["x"], None, b"raw"])
    def test_non_string_values_rejected(self, coordinator, value):
        with pytest.raises(TypeError):
            coordinator.store_memory("k", value)
        assert coordinator.get_memory("k") is None

    def test_update_rejects_non_string(self, coordinator):
        coordinator.store_memory("k", "v")
        with pytest.raises(TypeError):
            coordinator.update_memory_entry("k", "default", 5)
        assert coordinator.get_memory("k").value == "v"

    def test_each_get_counts_one_access(self, coordinator, clock):
        coordinator.store_memory("k", "v")
        first = coordinator.get_memory("k")
        clock.advance(seconds=1)
        second = coordinator.get_memory("k")
        assert second.access_count == first.access_count + 1
        assert second.last_accessed_at > first.last_accessed_at

    def test_missing_key(self, coordinator):
        assert coordinator.get_memory("absent") is None

    def test_namespaces_are_separate(self, coordinator):
        coordinator.store_memory("k", "one", namespace="a")
        coordinator.store_memory("k", "two", namespace="b")
        assert coordinator.get_memory("k", "a").value == "one"
        assert coordinator.get_memory("k", "b").value == "two"

    def test_upsert_preserves_access_count_and_created_at(self, coordinator, clock):
        coordinator.store_memory("k", "v1")
        coordinator.get_memory("k")
        created = coordinator.memory.get("k", "default").created_at

        clock.advance(minutes=1)
        coordinator.store_memory("k", "v2", ttl=60)
        entry = coordinator.memory.get("k", "default")
        assert entry.value == "v2"
        assert entry.ttl == 60
        assert entry.access_count == 1
        assert entry.created_at == created

    def test_default_ttl_from_config(self, clock):
        coord = open_coordinator(config=StoreConfig(db_path=":memory:", default_memory_ttl=30), clock=clock)
        coord.store_memory("k", "v")
        assert coord.memory.get("k", "default").ttl == 30
        coord.close()

    def test_update_entry_never_inserts(self, coordinator):
        assert coordinator.update_memory_entry("missing", "default", "x") is False
        coordinator.store_memory("k", "v")
        assert coordinator.update_memory_entry("k", "default", "w", {"tag": 1})
        entry = coordinator.memory.get("k", "default")
        assert entry.value == "w"
        assert entry.metadata == {"tag": 1}

    def test_delete(self, coordinator):
        coordinator.store_memory("k", "v")
        assert coordinator.delete_memory("k")
        assert coordinator.delete_memory("k") is False
        assert coordinator.get_memory("k") is None


class TestRanking:
    """Frequency first, recency breaks ties."""

    def _populate(self, coordinator, clock, reads):
        for key, count in reads.items():
            coordinator.store_memory(key, f"value-{key}", namespace="rank")
            clock.advance(seconds=1)
        for key, count in reads.items():
            for _ in range(count):
                coordinator.get_memory(key, "rank")
                clock.advance(seconds=1)

    def test_list_ordered_by_frequency_then_recency(self, coordinator, clock):
        self._populate(coordinator, clock, {"a": 1, "b": 3, "c": 1, "d": 0})
        keys = [e.key for e in coordinator.list_memory("rank")]
        # c was read after a, so it wins the tie
        assert keys == ["b", "c", "a", "d"]

    def test_search_key_or_value(self, coordinator, clock):
        coordinator.store_memory("alpha", "first", namespace="s")
        coordinator.store_memory("beta", "contains alpha", namespace="s")
        coordinator.store_memory("gamma", "nothing", namespace="s")
        coordinator.get_memory("beta", "s")

        found = coordinator.search_memory("alpha", namespace="s")
        assert [e.key for e in found] == ["beta", "alpha"]

    def test_search_limit(self, coordinator):
        for i in range(5):
            coordinator.store_memory(f"key{i}", "x", namespace="s")
        assert len(coordinator.search_memory("key", namespace="s", limit=2)) == 2

    def test_search_wildcards_are_literal(self, coordinator):
        coordinator.store_memory("100%", "x", namespace="s")
        coordinator.store_memory("1000", "x", namespace="s")
        coordinator.store_memory("a_b", "x", namespace="s")
        coordinator.store_memory("axb", "x", namespace="s")
        assert [e.key for e in coordinator.search_memory("0%", namespace="s")] == ["100%"]
        assert [e.key for e in coordinator.search_memory("a_b", namespace="s")] == ["a_b"]

    def test_search_does_not_count_access(self, coordinator):
        coordinator.store_memory("k", "v", namespace="s")
        coordinator.search_memory("k", namespace="s")
        assert coordinator.memory.get("k", "s").access_count == 0


class TestTrim:

    @pytest.mark.parametrize("cap", [0, 2, 4, 10])
    def test_trim_keeps_top_n(self, coordinator, clock, cap):
        reads = {"a": 2, "b": 0, "c": 5, "d": 1}
        TestRanking()._populate(coordinator, clock, reads)
        expected = [e.key for e in coordinator.list_memory("rank")][:cap]

        deleted = coordinator.trim_namespace("rank", cap)
        remaining = [e.key for e in coordinator.list_memory("rank")]
        assert len(remaining) == min(cap, len(reads))
        assert remaining == expected
        assert deleted == len(reads) - len(remaining)

    def test_trim_only_touches_namespace(self, coordinator):
        coordinator.store_memory("k1", "v", namespace="keep")
        coordinator.store_memory("k2", "v", namespace="cut")
        coordinator.trim_namespace("cut", 0)
        assert coordinator.get_memory("k1", "keep") is not None

    def test_negative_cap_rejected(self, coordinator):
        with pytest.raises(ValueError):
            coordinator.trim_namespace("ns", -1)


class TestExpiry:

    def test_ttl_expiry_after_age(self, coordinator, clock):
        coordinator.store_memory("short", "v", namespace="t", ttl=60)
        coordinator.store_memory("long", "v", namespace="t", ttl=3600)
        coordinator.store_memory("forever", "v", namespace="t")

        clock.advance(seconds=30)
        assert coordinator.expire_memory("t") == 0

        clock.advance(seconds=31)
        assert coordinator.expire_memory("t") == 1
        assert coordinator.get_memory("short", "t") is None
        assert coordinator.get_memory("long", "t") is not None

        clock.advance(days=30)
        assert coordinator.expire_memory() == 1
        assert coordinator.get_memory("forever", "t") is not None

    def test_age_equal_to_ttl_is_kept(self, coordinator, clock):
        coordinator.store_memory("k", "v", namespace="t", ttl=60)
        clock.advance(seconds=60)
        assert coordinator.expire_memory("t") == 0
        assert coordinator.expire_memory() == 0

        clock.advance(microseconds=1)
        assert coordinator.expire_memory("t") == 1

    def test_subsecond_write_times(self, coordinator, clock):
        clock.advance(microseconds=999_999)
        coordinator.store_memory("k", "v", namespace="t", ttl=1)
        clock.advance(seconds=1)
        assert coordinator.expire_memory("t") == 0
        clock.advance(microseconds=1)
        assert coordinator.expire_memory("t") == 1

    def test_expiry_ignores_popularity(self, coordinator, clock):
        coordinator.store_memory("hot", "v", ttl=10)
        for _ in range(20):
            coordinator.get_memory("hot")
        clock.advance(seconds=11)
        assert coordinator.expire_memory() == 1

    def test_delete_old_entries(self, coordinator, clock):
        coordinator.store_memory("old", "v", namespace="n")
        clock.advance(hours=2)
        coordinator.store_memory("new", "v", namespace="n")
        assert coordinator.delete_old_entries("n", 3600) == 1
        assert [e.key for e in coordinator.list_memory("n")] == ["new"]

    def test_old_and_recent(self, coordinator, clock):
        coordinator.store_memory("ancient", "v")
        clock.advance(days=10)
        coordinator.store_memory("fresh", "v")
        assert [e.key for e in coordinator.get_old_memory(7)] == ["ancient"]
        assert [e.key for e in coordinator.get_recent_memory(1)] == ["fresh"]


class TestStatsAndBulk:

    def test_aggregate_stats(self, coordinator):
        coordinator.store_memory("a", "12345", namespace="x")
        coordinator.store_memory("b", "123", namespace="y")
        stats = coordinator.get_memory_stats()
        assert stats.total_entries == 2
        assert stats.total_size == 8
        assert stats.namespace_count == 2

    def test_namespace_stats(self, coordinator, clock):
        coordinator.store_memory("a", "1234", namespace="x", ttl=100)
        coordinator.store_memory("b", "12", namespace="x", ttl=300)
        read_at = clock.advance(seconds=5)
        coordinator.get_memory("a", "x")

        stats = coordinator.get_namespace_stats("x")
        assert stats.entry_count == 2
        assert stats.total_size == 6
        assert stats.avg_ttl == pytest.approx(200)
        assert stats.last_accessed == read_at

    def test_empty_namespace_stats(self, coordinator):
        stats = coordinator.get_namespace_stats("void")
        assert stats.entry_count == 0
        assert stats.total_size == 0

    def test_clear_by_prefix(self, coordinator):
        coordinator.store_memory("k", "v", namespace="swarm-1/decisions")
        coordinator.store_memory("k", "v", namespace="swarm-1/notes")
        coordinator.store_memory("k", "v", namespace="swarm-2/notes")
        assert coordinator.clear_memory("swarm-1") == 2
        assert coordinator.list_namespaces() == ["swarm-2/notes"]

    def test_clear_with_star(self, coordinator):
        coordinator.store_memory("k", "v", namespace="a/notes")
        coordinator.store_memory("k", "v", namespace="b/notes")
        coordinator.store_memory("k", "v", namespace="b/decisions")
        assert coordinator.clear_memory("*/notes") == 2

    def test_successful_decisions(self, coordinator):
        coordinator.store_memory("d1", '{"outcome": "success"}', namespace="swarm-1/decisions")
        coordinator.store_memory("d2", '{"outcome": "failure"}', namespace="swarm-1/decisions")
        coordinator.store_memory("n1", "success", namespace="swarm-1/notes")
        found = coordinator.get_successful_decisions("swarm-1")
        assert [e.key for e in found] == ["d1"]
