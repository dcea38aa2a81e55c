"""
Unit tests for the sender sliding window.
"""

import pytest

from arqlink.channel import ScriptedLoss
from arqlink.errors import RetryBudgetExceeded
from arqlink.reliability.policy import ProtocolMode, ProtocolPolicy
from arqlink.reliability.sender import SenderWindow
from arqlink.reliability.timer import WINDOW_TIMER, AdaptiveTimeout, RetransmissionTimer


def make_window(mode, total, window_size, clock, channel,
                loss_model=None, max_send_count=10, timeout=1.0):
    policy = ProtocolPolicy.for_mode(mode, window_size)
    timer = RetransmissionTimer(AdaptiveTimeout(timeout), clock)
    payloads = [f"p{i}".encode() for i in range(total)]
    return SenderWindow(policy, payloads, channel, timer,
                        max_send_count=max_send_count, loss_model=loss_model)


class TestTrySend:
    """Tests for admitting packets into the window."""

    def test_fills_window(self, clock, channel):
        """Exactly window_size packets go out."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 3, clock, channel)

        assert window.try_send() == [0, 1, 2]
        assert channel.sent_seq_nos() == [0, 1, 2]
        assert window.next_seq == 3
        assert window.try_send() == []

    def test_stops_at_total(self, clock, channel):
        """A window larger than the session sends only what exists."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 2, 8, clock, channel)

        assert window.try_send() == [0, 1]
        assert window.stats.packets_sent == 2

    def test_stop_and_wait_one_at_a_time(self, clock, channel):
        """Stop-and-Wait holds a single outstanding packet."""
        window = make_window(ProtocolMode.STOP_AND_WAIT, 3, 8, clock, channel)

        assert window.try_send() == [0]
        assert window.try_send() == []
        window.on_ack(0)
        assert window.try_send() == [1]

    def test_window_timer_for_cumulative(self, clock, channel):
        """Go-Back-N runs one timer for the whole window."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 3, clock, channel)
        window.try_send()

        assert window.timer.is_running(WINDOW_TIMER)
        assert window.timer.active_count == 1

    def test_timer_per_packet_for_selective(self, clock, channel):
        """Selective Repeat runs one timer per packet."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 5, 3, clock, channel)
        window.try_send()

        assert window.timer.active_count == 3
        assert all(window.timer.is_running(seq) for seq in (0, 1, 2))

    def test_empty_session_is_complete(self, clock, channel):
        """Zero packets means nothing to do."""
        window = make_window(ProtocolMode.GO_BACK_N, 0, 3, clock, channel)

        assert window.complete
        assert window.try_send() == []


class TestCumulativeAck:
    """Tests for cumulative ACK handling (Stop-and-Wait, Go-Back-N)."""

    def test_ack_covers_prefix(self, clock, channel):
        """ACK n acknowledges everything up to n."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 3, clock, channel)
        window.try_send()

        assert window.on_ack(1)
        assert window.base == 2
        assert window.ack_bitmap() == [True, True, False, False, False]
        assert window.try_send() == [3, 4]

    def test_stale_acks_ignored(self, clock, channel):
        """ACKs below base or at/after next_seq change nothing."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 3, clock, channel)
        window.try_send()
        window.on_ack(0)

        assert not window.on_ack(0)
        assert not window.on_ack(3)
        assert not window.on_ack(99)
        assert window.base == 1
        assert window.stats.stale_acks == 3

    def test_timer_restarts_on_advance(self, clock, channel):
        """The window timer restarts when base moves and stops when drained."""
        window = make_window(ProtocolMode.GO_BACK_N, 3, 3, clock, channel)
        window.try_send()

        clock.advance(0.4)
        window.on_ack(0)
        # Timely ACK halved the RTO to 0.5
        assert window.timer.next_deadline() == pytest.approx(0.9)

        window.on_ack(2)
        assert not window.timer.is_running(WINDOW_TIMER)
        assert window.complete

    def test_replayed_ack_is_idempotent(self, clock, channel):
        """Replaying an ACK leaves the window exactly as the first one did."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 3, clock, channel)
        window.try_send()
        window.on_ack(1)
        before = window.snapshot()

        for _ in range(5):
            assert not window.on_ack(1)
        assert window.snapshot() == before


class TestSelectiveAck:
    """Tests for individual ACK handling (Selective Repeat)."""

    def test_out_of_order_ack_holds_base(self, clock, channel):
        """An ACK above base marks only that packet."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 4, 4, clock, channel)
        window.try_send()

        assert window.on_ack(2)
        assert window.base == 0
        assert window.ack_bitmap() == [False, False, True, False]
        assert not window.timer.is_running(2)

    def test_base_slides_over_acked_run(self, clock, channel):
        """Once the base packet is acknowledged, base skips every acknowledged slot."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 4, 4, clock, channel)
        window.try_send()
        window.on_ack(1)
        window.on_ack(2)

        window.on_ack(0)
        assert window.base == 3

    def test_duplicate_ack_ignored(self, clock, channel):
        """A second ACK for the same packet is stale."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 4, 4, clock, channel)
        window.try_send()
        window.on_ack(2)
        before = window.snapshot()

        assert not window.on_ack(2)
        assert not window.on_ack(4)
        assert window.snapshot() == before
        assert window.stats.stale_acks == 2


class TestTimeouts:
    """Tests for timer expiry and retransmission scope."""

    def test_go_back_n_resends_window(self, clock, channel):
        """Go-Back-N resends every unacknowledged packet."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 3, clock, channel)
        window.try_send()
        channel.clear()

        clock.advance(1.01)
        assert window.check_timeouts() == [0, 1, 2]
        assert channel.sent_seq_nos() == [0, 1, 2]
        assert window.stats.retransmissions == 3
        assert window.stats.timeouts == 1

    def test_stop_and_wait_resends_base(self, clock, channel):
        """Stop-and-Wait resends its single packet."""
        window = make_window(ProtocolMode.STOP_AND_WAIT, 3, 1, clock, channel)
        window.try_send()

        clock.advance(1.01)
        assert window.check_timeouts() == [0]
        assert window.records[0].send_count == 2

    def test_selective_repeat_resends_only_expired(self, clock, channel):
        """Selective Repeat resends only packets whose own timer fired."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 3, 3, clock, channel)
        window.try_send()
        window.on_ack(1)
        channel.clear()

        clock.advance(1.01)
        assert sorted(window.check_timeouts()) == [0, 2]
        assert sorted(channel.sent_seq_nos()) == [0, 2]

    def test_timeout_doubles_rto(self, clock, channel):
        """Each expiry doubles the RTO, bounded by the ceiling."""
        window = make_window(ProtocolMode.STOP_AND_WAIT, 1, 1, clock, channel, timeout=1.0)
        window.try_send()

        clock.advance(1.01)
        window.check_timeouts()
        assert window.timer.timeout.current == 2.0
        assert window.timer.next_deadline() == pytest.approx(3.01)

    def test_ack_for_retransmitted_packet_keeps_rto(self, clock, channel):
        """Only ACKs for packets sent once shrink the RTO."""
        window = make_window(ProtocolMode.STOP_AND_WAIT, 2, 1, clock, channel)
        window.try_send()
        clock.advance(1.01)
        window.check_timeouts()

        window.on_ack(0)
        assert window.timer.timeout.current == 2.0

    def test_nothing_fires_before_deadline(self, clock, channel):
        """No retransmission before the RTO elapses."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 3, clock, channel)
        window.try_send()

        clock.advance(0.5)
        assert window.check_timeouts() == []
        assert window.stats.timeouts == 0


class TestRetryBudget:
    """Tests for the per-packet transmission ceiling."""

    def test_budget_exhaustion_fails_window(self, clock, channel):
        """A packet never gets more than max_send_count transmissions."""
        window = make_window(ProtocolMode.STOP_AND_WAIT, 2, 1, clock, channel,
                             loss_model=ScriptedLoss({0: 100}), max_send_count=3)
        window.try_send()

        for _ in range(5):
            clock.advance(window.timer.timeout.max_timeout + 0.01)
            window.check_timeouts()

        assert isinstance(window.failure, RetryBudgetExceeded)
        assert window.failure.seq_no == 0
        assert window.failure.send_count == 3
        assert window.stats.retransmissions == 2
        assert window.stats.packets_lost == 3
        assert window.finished and not window.complete

    def test_failed_window_performs_no_io(self, clock, channel):
        """After failure nothing else is sent."""
        window = make_window(ProtocolMode.GO_BACK_N, 5, 2, clock, channel,
                             loss_model=ScriptedLoss({0: 100}), max_send_count=1)
        window.try_send()
        clock.advance(1.01)
        window.check_timeouts()
        sent = len(channel.sent)

        assert window.failure is not None
        assert window.try_send() == []
        assert window.check_timeouts() == []
        assert not window.on_ack(1)
        assert len(channel.sent) == sent

    def test_invalid_budget_rejected(self, clock, channel):
        """At least one transmission must be allowed."""
        with pytest.raises(ValueError):
            make_window(ProtocolMode.GO_BACK_N, 5, 2, clock, channel, max_send_count=0)


class TestLossAndTransport:
    """Tests for simulated loss and send failures."""

    def test_dropped_packets_recorded(self, clock, channel):
        """Simulated losses are counted and remembered by sequence number."""
        window = make_window(ProtocolMode.GO_BACK_N, 4, 4, clock, channel,
                             loss_model=ScriptedLoss({1: 1, 3: 1}))
        window.try_send()

        assert channel.sent_seq_nos() == [0, 2]
        assert window.stats.packets_lost == 2
        assert window.lost_packets == {1, 3}

    def test_send_failure_recovered_by_timer(self, clock, channel):
        """Transport errors on send are counted and retried on timeout."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 2, 2, clock, channel)
        channel.fail_sends = True
        assert window.try_send() == [0, 1]
        assert window.stats.transport_errors == 2
        assert channel.sent == []

        channel.fail_sends = False
        clock.advance(1.01)
        window.check_timeouts()
        assert sorted(channel.sent_seq_nos()) == [0, 1]


class TestClose:
    """Tests for shutdown."""

    def test_close_stops_timers(self, clock, channel):
        """Closed windows fire no timers and send nothing."""
        window = make_window(ProtocolMode.SELECTIVE_REPEAT, 4, 4, clock, channel)
        window.try_send()
        window.close()
        channel.clear()

        clock.advance(10)
        assert window.check_timeouts() == []
        assert window.try_send() == []
        assert channel.sent == []
        assert window.timer.active_count == 0

    def test_wait_for_timer_returns_when_closed(self, clock, channel):
        """A closed window never blocks the timer activity."""
        window = make_window(ProtocolMode.GO_BACK_N, 2, 2, clock, channel)
        window.close()
        window.wait_for_timer(5.0)
