"""Tests for the TTL job registry."""
import pytest

from mtg_ingest.core.registry import TTLRegistry


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestTTLRegistry:
    """Tests for TTLRegistry."""

    def test_set_and_get(self, clock):
        """Stored values are returned until they expire."""
        registry = TTLRegistry(max_size=10, ttl=60, clock=clock)
        registry.set("job-1", "done")

        assert registry.get("job-1") == "done"
        assert "job-1" in registry
        assert len(registry) == 1

    def test_entries_expire_after_ttl(self, clock):
        """Entries disappear once their TTL has passed."""
        registry = TTLRegistry(max_size=10, ttl=60, clock=clock)
        registry.set("job-1", "done")

        clock.now = 61

        assert registry.get("job-1") is None
        assert "job-1" not in registry
        assert len(registry) == 0

    def test_per_entry_ttl_override(self, clock):
        """A ttl passed to set() wins over the registry default."""
        registry = TTLRegistry(max_size=10, ttl=60, clock=clock)
        registry.set("short", 1, ttl=5)
        registry.set("long", 2)

        clock.now = 10

        assert registry.get("short") is None
        assert registry.get("long") == 2

    def test_oldest_entry_evicted_when_full(self, clock):
        """The least recently used entry is dropped at max_size."""
        registry = TTLRegistry(max_size=2, ttl=60, clock=clock)
        registry.set("a", 1)
        registry.set("b", 2)
        registry.get("a")  # a is now most recently used
        registry.set("c", 3)

        assert registry.get("b") is None
        assert registry.get("a") == 1
        assert registry.get("c") == 3

    def test_pop_removes_entry(self, clock):
        """pop() returns the value and forgets the key."""
        registry = TTLRegistry(clock=clock)
        registry.set("job-1", "done")

        assert registry.pop("job-1") == "done"
        assert registry.pop("job-1") is None

    def test_purge_expired_counts_removed(self, clock):
        """purge_expired() reports how many entries it dropped."""
        registry = TTLRegistry(ttl=10, clock=clock)
        registry.set("a", 1)
        registry.set("b", 2, ttl=100)
        clock.now = 20

        assert registry.purge_expired() == 1
        assert registry.items() == [("b", 2)]
