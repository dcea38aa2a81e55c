"""
Receiver session for the ARQ protocol

Responsibilities:
- Receive datagrams and validate them
- Send ACKs (optionally through a simulated lossy return path)
- Hand accepted payloads to a consumer through a bounded queue
- Linger after completion so lost final ACKs can be re-sent
"""

import logging
import queue
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from .cancellation import CancellationToken
from .channel import LossModel, make_loss_model
from .config import SessionConfig
from .errors import TransportError
from .packet import encode_ack
from .reliability.policy import ProtocolPolicy
from .reliability.receiver import ReceiverStats, ReceiverWindow

logger = logging.getLogger(__name__)


class DeliveryQueue:
    """
    Bounded hand-off between packet acceptance and the application.

    put() blocks while the queue is full, waking every poll_interval to
    check for cancellation.
    """

    def __init__(self, maxsize: int, cancel: CancellationToken, poll_interval: float = 0.05):
        self.queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.cancel = cancel
        self.poll_interval = poll_interval

    def put(self, seq_no: int, data: bytes) -> bool:
        """Returns False if cancelled before the item could be queued."""
        while not self.cancel.cancelled:
            try:
                self.queue.put((seq_no, data), timeout=self.poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def get(self, timeout: float) -> Optional[Tuple[int, bytes]]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def empty(self) -> bool:
        return self.queue.empty()

    def __len__(self) -> int:
        return self.queue.qsize()


class ReceiverSession:
    """
    Receiving half of a session over any datagram channel.
    """

    def __init__(self,
                 channel,
                 config: Optional[SessionConfig] = None,
                 consumer: Optional[Callable[[int, bytes], None]] = None,
                 ack_loss_model: Optional[LossModel] = None,
                 cancel: Optional[CancellationToken] = None,
                 total: Optional[int] = None):
        self.channel = channel
        self.config = config or SessionConfig()
        self.policy = ProtocolPolicy.for_mode(self.config.protocol_mode, self.config.window_size)
        self.cancel = cancel or CancellationToken()
        self.ack_loss_model = ack_loss_model or make_loss_model(
            self.config.ack_loss_rate,
            None if self.config.loss_seed is None else self.config.loss_seed + 1)

        if total is None:
            total = self.config.total_packets
        self.window = ReceiverWindow(self.policy, total=total, deliver=self._enqueue)
        self.delivery = DeliveryQueue(self.config.delivery_queue_size, self.cancel,
                                      self.config.poll_interval)

        self.consumer = consumer or self._collect
        self.received_data: List[bytes] = []
        self.failure: Optional[str] = None
        self._ack_attempts: Dict[int, int] = {}

        # Threading
        self.running = False
        self.receiver_thread: Optional[threading.Thread] = None
        self.consumer_thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._receiving_done = threading.Event()

        # Callbacks for UI updates
        self.on_transfer_complete: Optional[Callable[[ReceiverStats], None]] = None

        # Event log for UI
        self.event_log: List[dict] = []
        self.max_log_size = 500
        self._log_lock = threading.Lock()

    @property
    def stats(self) -> ReceiverStats:
        return self.window.stats

    @property
    def transfer_complete(self) -> bool:
        return self.window.complete

    def run(self) -> ReceiverStats:
        """Receive until the session ends. Blocks the calling thread."""
        self.running = True
        self.stats.start_time = time.time()
        self._log_event('receiver_start',
                        f'{self.policy.name} receiver started, window {self.policy.window_size}')

        self.consumer_thread = threading.Thread(target=self._consume_loop, daemon=True)
        self.consumer_thread.start()
        try:
            self._receive_loop()
        finally:
            self._receiving_done.set()
            self.consumer_thread.join()
            self.stats.end_time = time.time()
            self.running = False

        if self.transfer_complete:
            self._log_event('transfer_complete',
                            f'Received {self.stats.packets_delivered} packets, '
                            f'{self.stats.bytes_delivered} bytes')
            if self.on_transfer_complete:
                self.on_transfer_complete(self.stats)
        return self.stats

    def start(self) -> threading.Thread:
        """Run the receiver on a background thread."""
        self.receiver_thread = threading.Thread(target=self.run, daemon=True)
        self.receiver_thread.start()
        return self.receiver_thread

    def finish(self):
        """Stop receiving once the current datagram is handled; queued payloads are still delivered."""
        self._stop.set()

    def stop(self, timeout: float = 2.0):
        """Cancel the session and wait for the receiver thread."""
        self.cancel.cancel()
        if self.receiver_thread:
            self.receiver_thread.join(timeout=timeout)

    def _receive_loop(self):
        """Main receive loop."""
        idle_timeouts = 0
        consecutive_errors = 0

        while not (self.cancel.cancelled or self._stop.is_set()):
            try:
                raw = self.channel.receive(self.config.poll_interval)
            except TransportError as e:
                self.stats.transport_errors += 1
                consecutive_errors += 1
                self._log_event('error', f'Receive error: {e}')
                if consecutive_errors >= self.config.max_transport_errors:
                    self.failure = f'{consecutive_errors} consecutive transport errors: {e}'
                    logger.warning("Receiver giving up: %s", self.failure)
                    break
                self.cancel.wait(self.config.poll_interval)
                continue
            consecutive_errors = 0

            if raw is None:
                idle_timeouts += 1
                if self.transfer_complete and idle_timeouts >= self.config.linger_timeouts:
                    break
                if idle_timeouts >= self.config.max_idle_timeouts:
                    self._log_event('idle_timeout',
                                    f'No traffic for {idle_timeouts} receive timeouts')
                    logger.info("Receiver idle for %d timeouts, stopping", idle_timeouts)
                    break
                continue
            idle_timeouts = 0

            ack_no = self.window.on_datagram(raw)
            if ack_no is not None:
                self._send_ack(ack_no)

    def _send_ack(self, ack_no: int):
        attempt = self._ack_attempts.get(ack_no, 0) + 1
        self._ack_attempts[ack_no] = attempt
        if self.ack_loss_model.should_drop(ack_no, attempt):
            self.stats.acks_dropped += 1
            self._log_event('ack_drop', f'Dropped outgoing ACK {ack_no}')
            return
        try:
            self.channel.send(encode_ack(ack_no))
        except TransportError as e:
            self.stats.transport_errors += 1
            self._log_event('error', f'ACK {ack_no} send failed: {e}')
            return
        self.stats.acks_sent += 1
        self._log_event('ack_sent', f'ACK {ack_no}')

    def _enqueue(self, seq_no: int, data: bytes):
        if not self.delivery.put(seq_no, data):
            logger.debug("Delivery of seq=%d abandoned on cancellation", seq_no)

    def _consume_loop(self):
        """Hand queued payloads to the consumer in order."""
        while not self.cancel.cancelled:
            item = self.delivery.get(self.config.poll_interval)
            if item is None:
                if self._receiving_done.is_set() and self.delivery.empty():
                    break
                continue

            seq_no, data = item
            try:
                self.consumer(seq_no, data)
            except Exception as e:
                self.failure = f'Consumer failed on seq={seq_no}: {e}'
                self._log_event('error', self.failure)
                logger.exception("Consumer failed on seq=%d", seq_no)
                self.cancel.cancel()
                break

    def _collect(self, seq_no: int, data: bytes):
        self.received_data.append(data)

    def get_all_data(self) -> bytes:
        return b''.join(self.received_data)

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
        """Get current receiver status."""
        return {
            'running': self.running,
            'transfer_complete': self.transfer_complete,
            'failure': self.failure,
            'queued': len(self.delivery),
            'window': self.window.snapshot(),
            'stats': self.stats.to_dict()
        }
