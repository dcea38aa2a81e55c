"""
Sender Sliding Window

One window implementation for all three protocols; the ProtocolPolicy
decides ACK semantics, retransmission scope and timer layout.

Per sequence number: Unsent -> InFlight -> Acknowledged, with InFlight
looping on itself for every retransmission.

Invariant: base <= next_seq <= base + window_size.

All public methods take the window lock. The timer activity blocks in
wait_for_timer() on a condition bound to the same lock, so starting a
new timer wakes it up.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..channel import LossModel, NoLoss
from ..errors import RetryBudgetExceeded, StaleAckError, TransportError
from ..packet import Packet
from .policy import ProtocolPolicy, RetransmitScope
from .timer import WINDOW_TIMER, RetransmissionTimer

logger = logging.getLogger(__name__)

DEFAULT_MAX_SEND_COUNT = 10


@dataclass
class SenderStats:
    """Statistics for the sending side of a session."""
    packets_sent: int = 0        # first transmissions
    retransmissions: int = 0
    packets_lost: int = 0        # transmissions dropped by the loss model
    timeouts: int = 0
    acks_received: int = 0
    stale_acks: int = 0
    corrupted_acks: int = 0
    transport_errors: int = 0
    bytes_sent: int = 0
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration(self) -> float:
        if self.end_time > 0:
            return self.end_time - self.start_time
        elif self.start_time > 0:
            return time.time() - self.start_time
        return 0.0

    @property
    def efficiency(self) -> float:
        """Unique packets over total transmissions."""
        total = self.packets_sent + self.retransmissions
        if total > 0:
            return self.packets_sent / total
        return 0.0

    def to_dict(self) -> dict:
        return {
            'packets_sent': self.packets_sent,
            'retransmissions': self.retransmissions,
            'packets_lost': self.packets_lost,
            'timeouts': self.timeouts,
            'acks_received': self.acks_received,
            'stale_acks': self.stale_acks,
            'corrupted_acks': self.corrupted_acks,
            'transport_errors': self.transport_errors,
            'bytes_sent': self.bytes_sent,
            'duration': self.duration,
            'efficiency': self.efficiency
        }


@dataclass
class SendRecord:
    """Per-outstanding-packet state."""
    packet: Packet
    send_count: int = 0
    acked: bool = False
    last_sent: float = 0.0


class SenderWindow:
    """
    Sender side of the ARQ engine.

    Attributes:
        policy: Protocol policy in effect
        total: Number of packets in the session
        base: Oldest unacknowledged sequence number
        next_seq: Next sequence number to transmit
        records: SendRecords for [base, next_seq)
        failure: Set once a packet exhausts its retry budget
    """

    def __init__(self,
                 policy: ProtocolPolicy,
                 payloads: Sequence[bytes],
                 channel,
                 timer: Optional[RetransmissionTimer] = None,
                 max_send_count: int = DEFAULT_MAX_SEND_COUNT,
                 loss_model: Optional[LossModel] = None):
        if max_send_count < 1:
            raise ValueError(f"max_send_count must be >= 1, got {max_send_count}")

        self.policy = policy
        self.payloads = list(payloads)
        self.total = len(self.payloads)
        self.channel = channel
        self.timer = timer or RetransmissionTimer()
        self.max_send_count = max_send_count
        self.loss_model = loss_model or NoLoss()

        self.base = 0
        self.next_seq = 0
        self.records: Dict[int, SendRecord] = {}
        self.acked: List[bool] = [False] * self.total
        self.lost_packets: Set[int] = set()

        self.stats = SenderStats()
        self.failure: Optional[RetryBudgetExceeded] = None
        self.closed = False

        # Threading
        self.lock = threading.Lock()
        self.wakeup = threading.Condition(self.lock)

        # Callbacks, invoked with the lock held
        self.on_packet_sent: Optional[Callable[[int, int, bool], None]] = None  # seq, send_count, dropped
        self.on_ack_received: Optional[Callable[[int, bool], None]] = None      # ack, accepted
        self.on_timeout: Optional[Callable[[int], None]] = None                 # timer key

    @property
    def window_size(self) -> int:
        return self.policy.window_size

    @property
    def complete(self) -> bool:
        return self.base >= self.total

    @property
    def halted(self) -> bool:
        return self.closed or self.failure is not None

    @property
    def finished(self) -> bool:
        return self.complete or self.halted

    def try_send(self, now: Optional[float] = None) -> List[int]:
        """Transmit every packet the window admits. Returns the new sequence numbers."""
        with self.lock:
            if self.halted:
                return []
            if now is None:
                now = self.timer.now()

            sent = []
            while (self.next_seq < self.base + self.window_size and
                   self.next_seq < self.total):
                seq_no = self.next_seq
                record = SendRecord(packet=Packet.create(seq_no, self.payloads[seq_no]))
                self.records[seq_no] = record

                self._transmit(record, now)
                self.stats.packets_sent += 1
                self.stats.bytes_sent += len(record.packet.data)

                if self.policy.per_packet_timers:
                    self.timer.start(seq_no, now)
                elif not self.timer.is_running(WINDOW_TIMER):
                    self.timer.start(WINDOW_TIMER, now)

                self.next_seq += 1
                sent.append(seq_no)

            if sent:
                self.wakeup.notify_all()
            return sent

    def on_ack(self, ack_no: int, now: Optional[float] = None) -> bool:
        """
        Apply an ACK. Returns False for stale or duplicate ACKs, which
        change nothing.
        """
        with self.lock:
            if self.halted:
                return False
            if now is None:
                now = self.timer.now()

            self.stats.acks_received += 1
            if self.policy.cumulative:
                accepted = self._apply_cumulative_ack(ack_no, now)
            else:
                accepted = self._apply_selective_ack(ack_no)

            if self.on_ack_received:
                self.on_ack_received(ack_no, accepted)
            if accepted:
                self.wakeup.notify_all()
            return accepted

    def _apply_cumulative_ack(self, ack_no: int, now: float) -> bool:
        if not self.base <= ack_no < self.next_seq:
            self._stale(ack_no)
            return False

        self._note_timely(self.records[ack_no])
        for seq_no in range(self.base, ack_no + 1):
            self.acked[seq_no] = True
            del self.records[seq_no]
        self.base = ack_no + 1

        if self.base < self.next_seq:
            self.timer.start(WINDOW_TIMER, now)
        else:
            self.timer.cancel(WINDOW_TIMER)
        return True

    def _apply_selective_ack(self, ack_no: int) -> bool:
        record = self.records.get(ack_no)
        if not self.base <= ack_no < self.next_seq or record is None or record.acked:
            self._stale(ack_no)
            return False

        record.acked = True
        self.acked[ack_no] = True
        self.timer.cancel(ack_no)
        self._note_timely(record)

        while self.base < self.next_seq and self.records[self.base].acked:
            del self.records[self.base]
            self.base += 1
        return True

    def _note_timely(self, record: SendRecord):
        # Only unambiguous samples: a retransmitted packet's ACK may answer either copy
        if record.send_count == 1:
            self.timer.timeout.on_timely_ack()

    def _stale(self, ack_no: int):
        self.stats.stale_acks += 1
        logger.debug("Ignoring %s", StaleAckError(ack_no, self.base, self.next_seq))

    def check_timeouts(self, now: Optional[float] = None) -> List[int]:
        """
        Fire expired timers and retransmit per the policy scope.

        Returns the retransmitted sequence numbers. If a packet due for
        retransmission already used its whole retry budget, nothing is
        resent for that timer and the window records the failure.
        """
        with self.lock:
            if self.halted:
                return []
            if now is None:
                now = self.timer.now()

            resent = []
            for key in self.timer.expired(now):
                self.stats.timeouts += 1
                self.timer.timeout.on_timeout()
                logger.warning("Timeout for %s, rto now %.3fs",
                               'window' if key == WINDOW_TIMER else f'seq={key}',
                               self.timer.timeout.current)
                if self.on_timeout:
                    self.on_timeout(key)

                targets = self._retransmit_targets(key)
                for seq_no in targets:
                    record = self.records[seq_no]
                    if record.send_count >= self.max_send_count:
                        self._fail(RetryBudgetExceeded(seq_no, record.send_count))
                        return resent

                for seq_no in targets:
                    self._transmit(self.records[seq_no], now)
                    self.stats.retransmissions += 1
                    resent.append(seq_no)

                if targets:
                    self.timer.start(key, now)
            return resent

    def _retransmit_targets(self, key: int) -> List[int]:
        scope = self.policy.retransmit_scope
        if scope == RetransmitScope.PACKET:
            record = self.records.get(key)
            return [key] if record is not None and not record.acked else []
        if scope == RetransmitScope.WINDOW:
            return [s for s in range(self.base, self.next_seq) if not self.records[s].acked]
        return [self.base] if self.base < self.next_seq else []

    def _transmit(self, record: SendRecord, now: float):
        record.send_count += 1
        record.last_sent = now
        seq_no = record.packet.seq_no

        dropped = self.loss_model.should_drop(seq_no, record.send_count)
        if dropped:
            self.stats.packets_lost += 1
            self.lost_packets.add(seq_no)
            logger.debug("Simulated loss of seq=%d (attempt %d)", seq_no, record.send_count)
        else:
            try:
                self.channel.send(record.packet.to_bytes())
            except TransportError as e:
                # The timer recovers this packet like any other loss
                self.stats.transport_errors += 1
                logger.warning("Send of seq=%d failed: %s", seq_no, e)

        if self.on_packet_sent:
            self.on_packet_sent(seq_no, record.send_count, dropped)

    def _fail(self, error: RetryBudgetExceeded):
        self.failure = error
        self.timer.clear()
        logger.warning("Giving up: %s", error)
        self.wakeup.notify_all()

    def note_corrupted_ack(self):
        with self.lock:
            self.stats.corrupted_acks += 1

    def note_transport_error(self):
        with self.lock:
            self.stats.transport_errors += 1

    def wait_for_timer(self, max_wait: float):
        """Block until the next timer deadline, a new timer, or max_wait seconds."""
        with self.wakeup:
            if self.finished:
                return
            delay = self.timer.time_until_next()
            if delay is None or delay > max_wait:
                delay = max_wait
            if delay > 0:
                self.wakeup.wait(delay)

    def close(self):
        """Stop all timers. No I/O happens after this."""
        with self.lock:
            self.closed = True
            self.timer.clear()
            self.wakeup.notify_all()

    def ack_bitmap(self) -> List[bool]:
        with self.lock:
            return list(self.acked)

    def snapshot(self) -> dict:
        """Get current window state."""
        with self.lock:
            return {
                'protocol_mode': self.policy.mode.value,
                'base': self.base,
                'next_seq': self.next_seq,
                'window_size': self.window_size,
                'total': self.total,
                'outstanding': self.next_seq - self.base,
                'acked': sum(self.acked),
                'timeout': self.timer.timeout.current,
                'active_timers': self.timer.active_count,
                'failure': str(self.failure) if self.failure else None
            }
