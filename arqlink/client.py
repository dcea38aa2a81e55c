"""
Sender session for the ARQ protocol

Responsibilities:
- Break data into fixed-size packets
- Run the sender window: admit packets, process ACKs
- Run the retransmission timer activity
- Stop on completion, retry budget exhaustion, transport failure or
  cancellation
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .cancellation import CancellationToken
from .channel import LossModel, make_loss_model
from .config import SessionConfig
from .errors import CorruptionError, TransportError
from .packet import decode_ack
from .reliability.policy import ProtocolPolicy
from .reliability.sender import SenderWindow
from .reliability.timer import WINDOW_TIMER, AdaptiveTimeout, RetransmissionTimer
from .report import SessionReport

logger = logging.getLogger(__name__)

DEFAULT_PAYLOAD = b"test"


class TransferState(Enum):
    IDLE = "idle"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


def chunk_data(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


class SenderSession:
    """
    Sending half of a session over any datagram channel.
    """

    def __init__(self,
                 channel,
                 config: Optional[SessionConfig] = None,
                 loss_model: Optional[LossModel] = None,
                 cancel: Optional[CancellationToken] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.channel = channel
        self.config = config or SessionConfig()
        self.policy = ProtocolPolicy.for_mode(self.config.protocol_mode, self.config.window_size)
        self.loss_model = loss_model or make_loss_model(
            self.config.packet_loss_rate, self.config.loss_seed)
        self.cancel = cancel or CancellationToken()
        self.clock = clock

        self.state = TransferState.IDLE
        self.window: Optional[SenderWindow] = None
        self.failure: Optional[str] = None

        # Threading
        self.timer_thread: Optional[threading.Thread] = None
        self._done = threading.Event()

        # Callbacks for UI updates
        self.on_state_change: Optional[Callable[[TransferState], None]] = None

        # Event log
        self.event_log: List[dict] = []
        self.max_log_size = 500
        self._log_lock = threading.Lock()

    def send_data(self, data: bytes) -> SessionReport:
        """Send raw bytes, split into payload_size packets."""
        return self.send_packets(chunk_data(data, self.config.payload_size))

    def send_count(self, total: Optional[int] = None) -> SessionReport:
        """Send total packets of the default payload (config.total_packets if omitted)."""
        if total is None:
            total = self.config.total_packets
        return self.send_packets([DEFAULT_PAYLOAD] * total)

    def send_packets(self, payloads: Sequence[bytes]) -> SessionReport:
        """Run a full session for the given payloads and return its report."""
        if self.state == TransferState.TRANSFERRING:
            raise RuntimeError("A transfer is already in progress")

        config = self.config
        timeout = AdaptiveTimeout(config.timeout, config.min_timeout, config.max_timeout)
        self.window = SenderWindow(
            self.policy,
            payloads,
            self.channel,
            timer=RetransmissionTimer(timeout, self.clock),
            max_send_count=config.max_send_count,
            loss_model=self.loss_model
        )
        self.window.on_packet_sent = self._on_packet_sent
        self.window.on_ack_received = self._on_ack_received
        self.window.on_timeout = self._on_timeout
        self.failure = None
        self._done.clear()

        self.window.stats.start_time = time.time()
        self._set_state(TransferState.TRANSFERRING)
        self._log_event('transfer_start',
                        f'Starting {self.policy.name} transfer: {self.window.total} packets, '
                        f'window {self.policy.window_size}')

        # Cancellation closes the window under its lock, so no timer fires after it
        unregister = self.cancel.on_cancel(self.window.close)
        self.timer_thread = threading.Thread(target=self._timer_loop, daemon=True)
        self.timer_thread.start()
        try:
            self._main_loop()
        finally:
            unregister()
            self._done.set()
            self.window.close()
            self.timer_thread.join(timeout=max(1.0, config.poll_interval * 4))
            self.window.stats.end_time = time.time()

        self._finish_transfer()
        return self.report()

    def _main_loop(self):
        """Admit packets into the window and process ACKs until the session ends."""
        window = self.window
        consecutive_errors = 0

        while not self.cancel.cancelled:
            if window.complete or window.failure is not None:
                break

            window.try_send()

            try:
                raw = self.channel.receive(self.config.poll_interval)
            except TransportError as e:
                window.note_transport_error()
                consecutive_errors += 1
                self._log_event('error', f'Receive error: {e}')
                if consecutive_errors >= self.config.max_transport_errors:
                    self.failure = f'{consecutive_errors} consecutive transport errors: {e}'
                    break
                self.cancel.wait(self.config.poll_interval)
                continue

            consecutive_errors = 0
            if raw is None:
                continue

            ack_no = decode_ack(raw)
            if isinstance(ack_no, CorruptionError):
                window.note_corrupted_ack()
                self._log_event('ack_corrupt', f'Undecodable ACK: {ack_no.reason}')
                continue
            window.on_ack(ack_no)

    def _timer_loop(self):
        """Timer thread for timeout detection."""
        window = self.window
        while not (self.cancel.cancelled or self._done.is_set()):
            window.wait_for_timer(self.config.poll_interval)
            if self.cancel.cancelled or self._done.is_set():
                break
            window.check_timeouts()

    def _finish_transfer(self):
        window = self.window
        if window.failure is not None and self.failure is None:
            self.failure = str(window.failure)

        if window.complete and self.failure is None:
            self._set_state(TransferState.COMPLETED)
            self._log_event('transfer_complete',
                            f'Transfer complete: {window.total} packets, '
                            f'{window.stats.retransmissions} retransmissions, '
                            f'{window.stats.duration:.2f}s')
            logger.info("%s transfer complete: %d packets in %.2fs",
                        self.policy.name, window.total, window.stats.duration)
        elif self.cancel.cancelled and self.failure is None:
            self._set_state(TransferState.CANCELLED)
            self._log_event('transfer_cancelled', f'Cancelled at base={window.base}')
            logger.info("Transfer cancelled at base=%d", window.base)
        else:
            self._set_state(TransferState.ERROR)
            self._log_event('error', f'Transfer failed: {self.failure}')
            logger.warning("Transfer failed: %s", self.failure)

    def report(self) -> SessionReport:
        if self.window is None:
            raise RuntimeError("No transfer has been run")
        return SessionReport.from_sender(self.window, self.failure)

    def _on_packet_sent(self, seq_no: int, send_count: int, dropped: bool):
        if dropped:
            self._log_event('packet_drop', f'Dropped outgoing seq={seq_no}')
        elif send_count > 1:
            self._log_event('retransmit', f'Retransmit seq={seq_no} (send {send_count})')
        else:
            self._log_event('packet_sent', f'DATA seq={seq_no}')

    def _on_ack_received(self, ack_no: int, accepted: bool):
        if accepted:
            self._log_event('ack_received', f'ACK {ack_no}, base={self.window.base}')
        else:
            self._log_event('ack_stale', f'Stale ACK {ack_no}')

    def _on_timeout(self, key: int):
        if key == WINDOW_TIMER:
            self._log_event('timeout', f'Timeout at base={self.window.base}')
        else:
            self._log_event('timeout', f'Timeout for seq={key}')

    def _set_state(self, state: TransferState):
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

    def _log_event(self, event_type: str, message: str):
        """Log event for UI."""
        event = {
            'timestamp': time.time(),
            'type': event_type,
            'message': message
        }
        with self._log_lock:
            self.event_log.append(event)
            if len(self.event_log) > self.max_log_size:
                self.event_log = self.event_log[-self.max_log_size:]
        logger.debug("[%s] %s", event_type, message)

    def get_status(self) -> dict:
        """Get current sender status."""
        status = {
            'state': self.state.value,
            'protocol_mode': self.policy.mode.value,
            'window_size': self.policy.window_size,
            'failure': self.failure
        }
        if self.window is not None:
            status['window'] = self.window.snapshot()
            status['stats'] = self.window.stats.to_dict()
        return status
