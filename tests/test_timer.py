"""
Unit tests for protocol policies and retransmission timers.
"""

import pytest

from arqlink.reliability.policy import AckMode, ProtocolMode, ProtocolPolicy, RetransmitScope
from arqlink.reliability.timer import WINDOW_TIMER, AdaptiveTimeout, RetransmissionTimer


class TestProtocolPolicy:
    """Tests for the per-protocol policy table."""

    def test_stop_and_wait_forces_window_of_one(self):
        """Stop-and-Wait ignores the requested window size."""
        policy = ProtocolPolicy.for_mode(ProtocolMode.STOP_AND_WAIT, 8)

        assert policy.window_size == 1
        assert policy.ack_mode == AckMode.CUMULATIVE
        assert policy.retransmit_scope == RetransmitScope.BASE_PACKET
        assert not policy.per_packet_timers

    def test_go_back_n(self):
        """Go-Back-N: cumulative acks, whole-window retransmission."""
        policy = ProtocolPolicy.for_mode("go_back_n", 5)

        assert policy.window_size == 5
        assert policy.cumulative
        assert policy.retransmit_scope == RetransmitScope.WINDOW
        assert policy.name == "Go-Back-N"

    def test_selective_repeat(self):
        """Selective Repeat: individual acks, one timer per packet."""
        policy = ProtocolPolicy.for_mode(ProtocolMode.SELECTIVE_REPEAT, 4)

        assert not policy.cumulative
        assert policy.per_packet_timers
        assert policy.retransmit_scope == RetransmitScope.PACKET

    def test_invalid_window_rejected(self):
        """A window must hold at least one packet."""
        with pytest.raises(ValueError):
            ProtocolPolicy.for_mode(ProtocolMode.GO_BACK_N, 0)

    def test_unknown_mode_rejected(self):
        """Unknown mode names are errors."""
        with pytest.raises(ValueError):
            ProtocolPolicy.for_mode("sliding", 4)


class TestAdaptiveTimeout:
    """Tests for the bounded halving/doubling RTO."""

    def test_defaults(self):
        """Starts at one second inside [0.1, 5]."""
        timeout = AdaptiveTimeout()
        assert timeout.current == 1.0
        assert timeout.min_timeout == 0.1
        assert timeout.max_timeout == 5.0

    def test_halves_on_timely_ack(self):
        """Each timely ack halves the RTO."""
        timeout = AdaptiveTimeout(1.0)
        timeout.on_timely_ack()
        assert timeout.current == 0.5

    def test_doubles_on_timeout(self):
        """Each timeout doubles the RTO."""
        timeout = AdaptiveTimeout(1.0)
        timeout.on_timeout()
        assert timeout.current == 2.0

    def test_never_leaves_bounds(self):
        """Repeated adjustments stay clamped."""
        timeout = AdaptiveTimeout(1.0, 0.1, 5.0)
        for _ in range(20):
            timeout.on_timeout()
        assert timeout.current == 5.0
        for _ in range(20):
            timeout.on_timely_ack()
        assert timeout.current == 0.1

    def test_initial_is_clamped(self):
        """An initial value outside the bounds is pulled inside."""
        assert AdaptiveTimeout(10.0, 0.1, 5.0).current == 5.0

    def test_reset(self):
        """Reset returns to the initial value."""
        timeout = AdaptiveTimeout(1.0)
        timeout.on_timeout()
        timeout.reset()
        assert timeout.current == 1.0

    def test_invalid_bounds_rejected(self):
        """Floor above ceiling is an error."""
        with pytest.raises(ValueError):
            AdaptiveTimeout(1.0, 2.0, 1.0)


class TestRetransmissionTimer:
    """Tests for keyed countdown timers."""

    def test_expires_after_rto(self, clock):
        """A timer fires once its deadline passes, not before."""
        timer = RetransmissionTimer(AdaptiveTimeout(1.0), clock)
        timer.start(0)

        clock.advance(0.99)
        assert timer.expired() == []
        clock.advance(0.02)
        assert timer.expired() == [0]
        assert not timer.is_running(0)

    def test_expired_in_deadline_order(self, clock):
        """Several expiries come back earliest first."""
        timer = RetransmissionTimer(AdaptiveTimeout(1.0), clock)
        timer.start(2)
        clock.advance(0.1)
        timer.start(1)
        clock.advance(0.1)
        timer.start(3)

        clock.advance(5)
        assert timer.expired() == [2, 1, 3]

    def test_restart_supersedes_old_deadline(self, clock):
        """Restarting a key invalidates its earlier deadline."""
        timer = RetransmissionTimer(AdaptiveTimeout(1.0), clock)
        timer.start(WINDOW_TIMER)
        clock.advance(0.8)
        timer.start(WINDOW_TIMER)

        clock.advance(0.5)
        assert timer.expired() == []
        clock.advance(0.6)
        assert timer.expired() == [WINDOW_TIMER]

    def test_cancel(self, clock):
        """Cancelled timers never fire."""
        timer = RetransmissionTimer(AdaptiveTimeout(1.0), clock)
        timer.start(0)
        timer.start(1)
        timer.cancel(0)

        clock.advance(2)
        assert timer.expired() == [1]
        assert timer.active_count == 0

    def test_time_until_next(self, clock):
        """Reports the wait until the earliest live deadline."""
        timer = RetransmissionTimer(AdaptiveTimeout(1.0), clock)
        assert timer.time_until_next() is None

        timer.start(0)
        clock.advance(0.25)
        assert timer.time_until_next() == pytest.approx(0.75)

        timer.cancel(0)
        assert timer.next_deadline() is None

    def test_uses_current_rto(self, clock):
        """Timers started after an RTO change use the new value."""
        timeout = AdaptiveTimeout(1.0)
        timer = RetransmissionTimer(timeout, clock)
        timeout.on_timeout()

        assert timer.start(0) == pytest.approx(2.0)

    def test_clear(self, clock):
        """Clear drops every timer."""
        timer = RetransmissionTimer(AdaptiveTimeout(1.0), clock)
        timer.start(0)
        timer.start(1)
        timer.clear()

        clock.advance(10)
        assert timer.expired() == []
