"""
Local sessions: both halves of a transfer in one process, over an
in-memory channel pair or UDP loopback.
"""

import logging
from typing import Callable, Optional

from .cancellation import CancellationToken
from .channel import MemoryChannel, UdpChannel
from .client import DEFAULT_PAYLOAD, SenderSession, chunk_data
from .config import SessionConfig
from .report import SessionReport
from .server import ReceiverSession

logger = logging.getLogger(__name__)

TRANSPORTS = ('memory', 'udp')


def open_channels(transport: str):
    """Return (sender_channel, receiver_channel) for the named transport."""
    if transport == 'memory':
        return MemoryChannel.pair()
    if transport == 'udp':
        receiver_channel = UdpChannel.listening('127.0.0.1', 0)
        host, port = receiver_channel.local_address
        return UdpChannel.connecting(host, port), receiver_channel
    raise ValueError(f"Unknown transport {transport!r}, expected one of {TRANSPORTS}")


def run_local_session(config: SessionConfig,
                      data: Optional[bytes] = None,
                      transport: str = 'memory',
                      consumer: Optional[Callable[[int, bytes], None]] = None,
                      cancel: Optional[CancellationToken] = None) -> SessionReport:
    """
    Run a sender and a receiver against each other and return the merged report.

    Without data, config.total_packets copies of the default payload are sent.
    """
    if data is None:
        payloads = [DEFAULT_PAYLOAD] * config.total_packets
    else:
        payloads = chunk_data(data, config.payload_size)

    cancel = cancel or CancellationToken()
    sender_channel, receiver_channel = open_channels(transport)

    receiver = ReceiverSession(receiver_channel, config, consumer=consumer,
                               cancel=cancel, total=len(payloads))
    sender = SenderSession(sender_channel, config, cancel=cancel)

    logger.info("Local %s session over %s: %d packets",
                sender.policy.name, transport, len(payloads))
    receiver_thread = receiver.start()
    try:
        report = sender.send_packets(payloads)
    finally:
        receiver.finish()
        receiver_thread.join()
        sender_channel.close()
        receiver_channel.close()

    if receiver.failure and report.failure is None:
        report.failure = receiver.failure
        report.success = False
    return report.merge_receiver(receiver.stats)
