"""
Receiver Sliding Window

Accepts data packets, decides which ACK (if any) to send back and hands
payloads to the application strictly in sequence order.

- Cumulative policies (Stop-and-Wait, Go-Back-N): accept only the expected
  packet; anything else is discarded and answered with the last in-order
  sequence number
- Selective Repeat: buffer anything inside [expected, expected + N), ACK it
  individually and deliver consecutive runs from expected
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..errors import CorruptionError
from ..packet import Packet, decode
from .policy import ProtocolPolicy

logger = logging.getLogger(__name__)


@dataclass
class ReceiverStats:
    """Statistics for the receiving side of a session."""
    packets_received: int = 0
    corrupted_packets: int = 0
    out_of_order: int = 0
    duplicate_packets: int = 0
    out_of_window: int = 0
    packets_delivered: int = 0
    bytes_delivered: int = 0
    acks_sent: int = 0
    acks_dropped: int = 0
    transport_errors: int = 0
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration(self) -> float:
        if self.end_time > 0:
            return self.end_time - self.start_time
        elif self.start_time > 0:
            return time.time() - self.start_time
        return 0.0

    def to_dict(self) -> dict:
        return {
            'packets_received': self.packets_received,
            'corrupted_packets': self.corrupted_packets,
            'out_of_order': self.out_of_order,
            'duplicate_packets': self.duplicate_packets,
            'out_of_window': self.out_of_window,
            'packets_delivered': self.packets_delivered,
            'bytes_delivered': self.bytes_delivered,
            'acks_sent': self.acks_sent,
            'acks_dropped': self.acks_dropped,
            'transport_errors': self.transport_errors,
            'duration': self.duration
        }


class ReceiverWindow:
    """
    Receiver side of the ARQ engine.

    Attributes:
        policy: Protocol policy in effect
        total: Number of packets in the session, if known
        expected: Next in-order sequence number
        buffer: Out-of-order payloads (Selective Repeat only)
    """

    def __init__(self,
                 policy: ProtocolPolicy,
                 total: Optional[int] = None,
                 deliver: Optional[Callable[[int, bytes], None]] = None):
        self.policy = policy
        self.total = total
        self.expected = 0
        self.buffer: Dict[int, bytes] = {}
        self.received_data: List[bytes] = []
        self.deliver = deliver or self._collect
        self.stats = ReceiverStats()

    @property
    def window_size(self) -> int:
        return self.policy.window_size

    @property
    def complete(self) -> bool:
        return self.total is not None and self.expected >= self.total

    def buffered_sequence_numbers(self) -> List[int]:
        return sorted(self.buffer)

    def on_datagram(self, raw: bytes) -> Optional[int]:
        """Decode and process one datagram. Returns the sequence number to ACK."""
        result = decode(raw)
        if isinstance(result, CorruptionError):
            self.stats.corrupted_packets += 1
            logger.debug("Dropping datagram: %s", result.reason)
            return None
        return self.on_packet_arrival(result)

    def on_packet_arrival(self, packet: Packet) -> Optional[int]:
        """Process a decoded packet. Returns the sequence number to ACK, or None."""
        if not packet.verify_checksum():
            self.stats.corrupted_packets += 1
            logger.debug("Dropping seq=%d: checksum mismatch", packet.seq_no)
            return None

        if self.total is not None and packet.seq_no >= self.total:
            self.stats.out_of_window += 1
            logger.debug("Dropping seq=%d: beyond session end %d", packet.seq_no, self.total)
            return None

        self.stats.packets_received += 1
        if self.policy.cumulative:
            return self._accept_in_order(packet)
        return self._accept_selective(packet)

    def _accept_in_order(self, packet: Packet) -> Optional[int]:
        seq_no = packet.seq_no
        if seq_no == self.expected:
            self._deliver(seq_no, packet.data)
            self.expected += 1
            return seq_no

        if seq_no > self.expected:
            self.stats.out_of_order += 1
            logger.debug("Gap: got seq=%d, expected %d", seq_no, self.expected)
        else:
            self.stats.duplicate_packets += 1

        if self.expected == 0:
            return None
        return self.expected - 1

    def _accept_selective(self, packet: Packet) -> Optional[int]:
        seq_no = packet.seq_no
        if seq_no < self.expected:
            self.stats.duplicate_packets += 1
            return seq_no

        if seq_no >= self.expected + self.window_size:
            self.stats.out_of_window += 1
            logger.debug("Dropping seq=%d: outside window [%d, %d)",
                         seq_no, self.expected, self.expected + self.window_size)
            return None

        if seq_no in self.buffer:
            self.stats.duplicate_packets += 1
            return seq_no

        if seq_no != self.expected:
            self.stats.out_of_order += 1
        self.buffer[seq_no] = packet.data

        while self.expected in self.buffer:
            self._deliver(self.expected, self.buffer.pop(self.expected))
            self.expected += 1
        return seq_no

    def _deliver(self, seq_no: int, data: bytes):
        self.deliver(seq_no, data)
        self.stats.packets_delivered += 1
        self.stats.bytes_delivered += len(data)

    def _collect(self, seq_no: int, data: bytes):
        self.received_data.append(data)

    def get_all_data(self) -> bytes:
        return b''.join(self.received_data)

    def snapshot(self) -> dict:
        return {
            'protocol_mode': self.policy.mode.value,
            'expected': self.expected,
            'window_size': self.window_size,
            'total': self.total,
            'buffered': self.buffered_sequence_numbers()
        }
