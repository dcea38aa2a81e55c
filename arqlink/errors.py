"""
Error kinds for the ARQ engine.

Only RetryBudgetExceeded ends a session. The others are counted and
recovered from locally (drop, ignore, or retry on the next timer tick).
"""


class ARQError(Exception):
    """Base class for all ARQ errors."""


class CorruptionError(ARQError):
    """Checksum mismatch or malformed wire format."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class StaleAckError(ARQError):
    """Ack outside any valid window. Counted, never raised out of the window."""

    def __init__(self, ack_no: int, base: int, next_seq: int):
        super().__init__(f"stale ack {ack_no} (window [{base}, {next_seq}))")
        self.ack_no = ack_no
        self.base = base
        self.next_seq = next_seq


class TransportError(ARQError):
    """Send or receive failure at the channel boundary."""


class RetryBudgetExceeded(ARQError):
    """A packet was sent max_send_count times without being acknowledged."""

    def __init__(self, seq_no: int, send_count: int):
        super().__init__(f"packet {seq_no} unacknowledged after {send_count} transmissions")
        self.seq_no = seq_no
        self.send_count = send_count
