"""Tests for the deduplication guard."""

import pytest

from calendar_sync.services.dedup_guard import DeduplicationGuard


@pytest.fixture
def guard(clock):
    return DeduplicationGuard(ttl_ms=300_000, sweep_interval_ms=0, clock=clock)


class TestDuplicateDetection:
    """Test is_duplicate / mark_processing."""

    def test_unseen_change_is_not_duplicate(self, guard):
        assert guard.is_duplicate("alice@example.com", "evt1") is False

    def test_marked_change_is_duplicate(self, guard, clock):
        guard.mark_processing("alice@example.com", "evt1")
        clock.advance(seconds=2)

        assert guard.is_duplicate("alice@example.com", "evt1") is True

    def test_same_change_in_other_scope_is_not_duplicate(self, guard):
        guard.mark_processing("alice@example.com", "evt1")

        assert guard.is_duplicate("bob@example.com", "evt1") is False

    def test_entry_at_exact_ttl_is_still_duplicate(self, guard, clock):
        guard.mark_processing("alice@example.com", "evt1")
        clock.advance(millis=300_000)

        assert guard.is_duplicate("alice@example.com", "evt1") is True

    def test_entry_older_than_ttl_is_evicted(self, guard, clock):
        guard.mark_processing("alice@example.com", "evt1")
        clock.advance(millis=300_001)

        assert guard.is_duplicate("alice@example.com", "evt1") is False
        assert guard.size() == 0

    def test_mark_processing_refreshes_entry(self, guard, clock):
        guard.mark_processing("alice@example.com", "evt1")
        clock.advance(minutes=4)
        guard.mark_processing("alice@example.com", "evt1")
        clock.advance(minutes=4)

        assert guard.is_duplicate("alice@example.com", "evt1") is True

    def test_invalid_ttl_rejected(self, clock):
        with pytest.raises(ValueError):
            DeduplicationGuard(ttl_ms=0, clock=clock)


class TestSweep:
    """Test stale entry removal."""

    def test_sweep_removes_only_stale_entries(self, guard, clock):
        guard.mark_processing("alice@example.com", "old")
        clock.advance(minutes=4)
        guard.mark_processing("alice@example.com", "new")
        clock.advance(minutes=2)

        assert guard.sweep() == 1
        assert guard.size() == 1
        assert guard.is_duplicate("alice@example.com", "new")

    def test_stats(self, guard):
        guard.mark_processing("alice@example.com", "evt1")
        assert guard.stats() == {"size": 1, "ttlMs": 300_000, "sweepIntervalMs": 0}

    def test_start_without_interval_does_nothing(self, guard):
        guard.start()
        guard.stop()

    def test_start_and_stop_background_sweeper(self, clock):
        guard = DeduplicationGuard(ttl_ms=1000, sweep_interval_ms=60_000, clock=clock)
        guard.start()
        try:
            assert guard._sweeper.is_running()
        finally:
            guard.stop()
        assert guard._sweeper is None
