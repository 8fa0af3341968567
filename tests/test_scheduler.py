"""Tests for the tick scheduler and debouncer."""

import pytest

from family_canvas.scheduler import Debouncer, ManualClock, TickScheduler


class TestTickScheduler:
    """Tests for the tick scheduler."""

    def test_call_later_fires_once_when_due(self, scheduler):
        """Test one-shot timers."""
        fired = []
        scheduler.call_later(100, lambda: fired.append(scheduler.now()))
        assert scheduler.advance(99) == 0
        assert scheduler.advance(1) == 1
        scheduler.advance(1000)
        assert fired == [100]

    def test_call_every_repeats(self, scheduler):
        """Test repeating timers."""
        fired = []
        scheduler.call_every(30, lambda: fired.append(scheduler.now()))
        scheduler.advance(100)
        assert fired == [30, 60, 90]

    def test_run_due_drops_missed_ticks(self, clock, scheduler):
        """Test that missed repeats collapse."""
        fired = []
        scheduler.call_every(10, lambda: fired.append(1))
        clock.set(55)
        scheduler.run_due()
        assert fired == [1]
        assert scheduler.next_due() == 65

    def test_cancel(self, scheduler):
        """Test cancelling."""
        fired = []
        handle = scheduler.call_later(10, lambda: fired.append(1))
        handle.cancel()
        scheduler.advance(20)
        assert fired == []
        assert not handle.active
        assert scheduler.pending == 0

    def test_rejects_non_positive_interval(self, scheduler):
        """Test rejecting bad intervals."""
        with pytest.raises(ValueError):
            scheduler.call_every(0, lambda: None)

    def test_advance_requires_manual_clock(self):
        """Test advance on a real clock."""
        with pytest.raises(TypeError):
            TickScheduler(lambda: 0.0).advance(10)

    def test_failing_callback_does_not_stop_others(self, scheduler):
        """Test isolation of failing callbacks."""
        fired = []

        def boom():
            raise RuntimeError("boom")

        scheduler.call_later(5, boom)
        scheduler.call_later(5, lambda: fired.append(1))
        scheduler.advance(10)
        assert fired == [1]

    def test_callbacks_run_in_due_order(self, scheduler):
        """Test due-time ordering."""
        order = []
        scheduler.call_later(20, lambda: order.append("b"))
        scheduler.call_later(10, lambda: order.append("a"))
        scheduler.call_later(20, lambda: order.append("c"))
        scheduler.advance(30)
        assert order == ["a", "b", "c"]

    def test_cancel_all(self, scheduler):
        """Test cancelling every timer."""
        scheduler.call_later(5, lambda: None)
        scheduler.call_every(5, lambda: None)
        scheduler.cancel_all()
        assert scheduler.pending == 0
        assert scheduler.next_due() is None


class TestDebouncer:
    """Tests for the debouncer."""

    def test_burst_collapses_to_one_call(self, scheduler):
        """Test that bursts produce one call."""
        calls = []
        debouncer = Debouncer(scheduler, 100, lambda: calls.append(scheduler.now()))
        debouncer.trigger()
        scheduler.advance(50)
        debouncer.trigger()
        scheduler.advance(50)
        debouncer.trigger()
        scheduler.advance(100)
        assert calls == [200]
        assert not debouncer.pending

    def test_flush(self, scheduler):
        """Test flushing a pending call."""
        calls = []
        debouncer = Debouncer(scheduler, 100, lambda: calls.append(1))
        assert debouncer.flush() is False
        debouncer.trigger()
        assert debouncer.flush() is True
        scheduler.advance(200)
        assert calls == [1]

    def test_cancel(self):
        """Test cancelling."""
        clock = ManualClock(1000)
        scheduler = TickScheduler(clock)
        calls = []
        debouncer = Debouncer(scheduler, 10, lambda: calls.append(1))
        debouncer.trigger()
        debouncer.cancel()
        scheduler.advance(50)
        assert calls == []
