"""
Datagram transport for the ARQ engine

Responsibilities:
- Send and receive discrete datagrams
- Bound every receive with a timeout
- Surface socket failures as TransportError
- Simulate packet loss (loss models)
"""

import logging
import queue
import random
import socket
from typing import Dict, Optional, Tuple

from .errors import TransportError
from .packet import MAX_PACKET_SIZE

logger = logging.getLogger(__name__)


class UdpChannel:
    """
    UDP transport.

    A listening channel learns its peer from the first datagram it receives;
    a connecting channel is created with its peer already known.
    """

    def __init__(self, sock: socket.socket, peer: Optional[Tuple[str, int]] = None):
        self.sock = sock
        self.peer = peer
        self.learn_peer = peer is None

    @classmethod
    def listening(cls, host: str = '0.0.0.0', port: int = 0) -> 'UdpChannel':
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise TransportError(f"Bind to {host}:{port} failed: {e}") from e
        return cls(sock)

    @classmethod
    def connecting(cls, host: str, port: int) -> 'UdpChannel':
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        return cls(sock, peer=(host, port))

    @property
    def local_address(self) -> Tuple[str, int]:
        return self.sock.getsockname()

    def send(self, data: bytes):
        if self.peer is None:
            raise TransportError("No peer address known yet")
        try:
            self.sock.sendto(data, self.peer)
        except OSError as e:
            raise TransportError(f"Send to {self.peer} failed: {e}") from e

    def receive(self, timeout: float) -> Optional[bytes]:
        """Block up to timeout seconds for one datagram. None on timeout."""
        try:
            self.sock.settimeout(timeout)
            data, addr = self.sock.recvfrom(MAX_PACKET_SIZE)
        except socket.timeout:
            return None
        except OSError as e:
            raise TransportError(f"Receive failed: {e}") from e

        if self.learn_peer and self.peer != addr:
            logger.debug("Peer is now %s", addr)
            self.peer = addr
        return data

    def close(self):
        self.sock.close()


class MemoryChannel:
    """In-process datagram channel. Use MemoryChannel.pair() to get both ends."""

    def __init__(self, inbox: queue.Queue, outbox: queue.Queue):
        self.inbox = inbox
        self.outbox = outbox
        self.closed = False

    @classmethod
    def pair(cls) -> Tuple['MemoryChannel', 'MemoryChannel']:
        a_to_b: queue.Queue = queue.Queue()
        b_to_a: queue.Queue = queue.Queue()
        return cls(inbox=b_to_a, outbox=a_to_b), cls(inbox=a_to_b, outbox=b_to_a)

    def send(self, data: bytes):
        if self.closed:
            raise TransportError("Channel closed")
        self.outbox.put(bytes(data))

    def receive(self, timeout: float) -> Optional[bytes]:
        if self.closed:
            raise TransportError("Channel closed")
        try:
            return self.inbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.closed = True


class LossModel:
    """Decides whether a given transmission is lost in transit."""

    def should_drop(self, seq_no: int, attempt: int) -> bool:
        """attempt is 1 for the first transmission of seq_no, 2 for the first retry..."""
        raise NotImplementedError


class NoLoss(LossModel):
    def should_drop(self, seq_no: int, attempt: int) -> bool:
        return False


class RandomLoss(LossModel):
    """Independent loss with a fixed probability."""

    def __init__(self, rate: float, seed: Optional[int] = None):
        if not 0.0 <= rate <= 1.0:
            raise ValueError(f"Loss rate {rate} outside [0, 1]")
        self.rate = rate
        self.rng = random.Random(seed)

    def should_drop(self, seq_no: int, attempt: int) -> bool:
        return self.rng.random() < self.rate


class ScriptedLoss(LossModel):
    """Drops the first `drops[seq_no]` transmissions of each listed sequence number."""

    def __init__(self, drops: Dict[int, int]):
        self.drops = dict(drops)

    def should_drop(self, seq_no: int, attempt: int) -> bool:
        return attempt <= self.drops.get(seq_no, 0)


def make_loss_model(rate: float, seed: Optional[int] = None) -> LossModel:
    if rate <= 0.0:
        return NoLoss()
    return RandomLoss(rate, seed)
