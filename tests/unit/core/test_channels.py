"""
Unit tests for observer channels and the expiring-key registry.

Tests cover:
- Channel subscribe/emit/unsubscribe
- Listener failures never reach the emitter
- ExpiringKeyRegistry windows, per-call overrides, prune and reset
"""

import pytest

from temporalfix.channels import Channel
from temporalfix.throttle import ExpiringKeyRegistry
from tests.fixtures import BASE_INSTANT, FakeClock

# =============================================================================
# Channel
# =============================================================================


class TestChannel:
    """Tests for Channel."""

    def test_delivers_to_every_listener(self):
        channel: Channel[int] = Channel("numbers")
        first: list[int] = []
        second: list[int] = []
        channel.subscribe(first.append)
        channel.subscribe(second.append)

        delivered = channel.emit(7)

        assert delivered == 2
        assert first == [7]
        assert second == [7]

    def test_unsubscribe_callable(self):
        """Test the callable returned by subscribe() removes the listener."""
        channel: Channel[int] = Channel("numbers")
        received: list[int] = []
        unsubscribe = channel.subscribe(received.append)

        unsubscribe()
        channel.emit(1)

        assert received == []
        assert channel.listener_count == 0

    def test_unsubscribe_unknown_listener(self):
        channel: Channel[int] = Channel("numbers")

        assert channel.unsubscribe(print) is False

    def test_failing_listener_is_isolated(self, caplog: pytest.LogCaptureFixture):
        """Test a raising listener is logged and the others still receive the item."""
        channel: Channel[str] = Channel("events")
        received: list[str] = []

        def broken(item: str) -> None:
            raise RuntimeError("listener bug")

        channel.subscribe(broken)
        channel.subscribe(received.append)

        with caplog.at_level("ERROR", logger="temporalfix.channels"):
            delivered = channel.emit("hello")

        assert delivered == 1
        assert received == ["hello"]
        assert "listener bug" in caplog.text
        assert channel.stats == {"emitted": 1, "delivered": 1, "listener_errors": 1}

    def test_clear(self):
        channel: Channel[int] = Channel("numbers")
        channel.subscribe(lambda _: None)
        channel.clear()

        assert channel.emit(1) == 0


# =============================================================================
# ExpiringKeyRegistry
# =============================================================================


class TestExpiringKeyRegistry:
    """Tests for ExpiringKeyRegistry."""

    def test_first_firing_allowed_then_blocked(self, clock: FakeClock):
        registry = ExpiringKeyRegistry(1000, clock)

        assert registry.should_fire("k") is True
        assert registry.should_fire("k") is False
        assert registry.last_fired("k") == BASE_INSTANT

    def test_fires_again_after_window(self, clock: FakeClock):
        """Test a key fires again once its window has elapsed."""
        registry = ExpiringKeyRegistry(1000, clock)
        registry.should_fire("k")

        clock.advance(999)
        assert registry.should_fire("k") is False
        clock.advance(1)
        assert registry.should_fire("k") is True
        assert registry.last_fired("k") == BASE_INSTANT + 1000

    def test_blocked_attempt_does_not_extend_window(self, clock: FakeClock):
        registry = ExpiringKeyRegistry(1000, clock)
        registry.should_fire("k")
        clock.advance(500)
        registry.should_fire("k")
        clock.advance(500)

        assert registry.should_fire("k") is True

    def test_keys_are_independent(self, clock: FakeClock):
        registry = ExpiringKeyRegistry(1000, clock)

        assert registry.should_fire(("fn", "manual-string")) is True
        assert registry.should_fire(("fn", "iso-string")) is True
        assert len(registry) == 2

    def test_per_call_window(self, clock: FakeClock):
        """Test a per-call window overrides the default."""
        registry = ExpiringKeyRegistry(0, clock)
        registry.should_fire("rule", 5000)

        clock.advance(4000)
        assert registry.should_fire("rule", 5000) is False
        assert registry.should_fire("rule") is True

    def test_prune(self, clock: FakeClock):
        registry = ExpiringKeyRegistry(1000, clock)
        registry.should_fire("old")
        clock.advance(1500)
        registry.should_fire("new")

        assert registry.prune() == 1
        assert registry.last_fired("old") is None
        assert registry.last_fired("new") is not None

    def test_reset(self, clock: FakeClock):
        registry = ExpiringKeyRegistry(1000, clock)
        registry.should_fire("a")
        registry.should_fire("b")

        registry.reset("a")
        assert registry.should_fire("a") is True

        registry.reset()
        assert len(registry) == 0

    def test_rejects_negative_window(self, clock: FakeClock):
        with pytest.raises(ValueError):
            ExpiringKeyRegistry(-1, clock)
