"""
Protocol Policy

The only thing that differs between the three ARQ variants:
- Stop-and-Wait: window of 1, cumulative ACKs, resend the base packet
- Go-Back-N: window of N, cumulative ACKs, resend the whole window, one timer
- Selective Repeat: window of N, individual ACKs, resend only the expired
  packet, one timer per packet
"""

from dataclasses import dataclass
from enum import Enum


class ProtocolMode(Enum):
    STOP_AND_WAIT = "stop_wait"
    GO_BACK_N = "go_back_n"
    SELECTIVE_REPEAT = "selective_repeat"


class AckMode(Enum):
    CUMULATIVE = "cumulative"    # ACK n: everything <= n accepted
    SELECTIVE = "selective"      # ACK n: exactly n accepted


class RetransmitScope(Enum):
    BASE_PACKET = "base_packet"
    WINDOW = "window"
    PACKET = "packet"


PROTOCOL_NAMES = {
    ProtocolMode.STOP_AND_WAIT: "Stop-and-Wait",
    ProtocolMode.GO_BACK_N: "Go-Back-N",
    ProtocolMode.SELECTIVE_REPEAT: "Selective Repeat",
}


@dataclass(frozen=True)
class ProtocolPolicy:
    mode: ProtocolMode
    window_size: int
    ack_mode: AckMode
    retransmit_scope: RetransmitScope

    @classmethod
    def for_mode(cls, mode, window_size: int = 1) -> 'ProtocolPolicy':
        """Build the policy for a mode. Stop-and-Wait ignores window_size."""
        mode = ProtocolMode(mode)
        if window_size < 1:
            raise ValueError(f"Window size must be >= 1, got {window_size}")

        if mode == ProtocolMode.STOP_AND_WAIT:
            return cls(mode, 1, AckMode.CUMULATIVE, RetransmitScope.BASE_PACKET)
        if mode == ProtocolMode.GO_BACK_N:
            return cls(mode, window_size, AckMode.CUMULATIVE, RetransmitScope.WINDOW)
        return cls(mode, window_size, AckMode.SELECTIVE, RetransmitScope.PACKET)

    @property
    def cumulative(self) -> bool:
        return self.ack_mode == AckMode.CUMULATIVE

    @property
    def per_packet_timers(self) -> bool:
        return self.retransmit_scope == RetransmitScope.PACKET

    @property
    def name(self) -> str:
        return PROTOCOL_NAMES[self.mode]
