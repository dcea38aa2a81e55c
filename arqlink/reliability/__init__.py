"""
Reliability Algorithms Package

Sliding-window ARQ engine shared by three reliable data transfer protocols:
- Stop-and-Wait: Simple, one packet at a time
- Go-Back-N: Sliding window with cumulative ACKs
- Selective Repeat: Sliding window with individual ACKs and buffering
"""

from .policy import AckMode, ProtocolMode, ProtocolPolicy, RetransmitScope, PROTOCOL_NAMES
from .timer import AdaptiveTimeout, RetransmissionTimer, WINDOW_TIMER
from .sender import SenderWindow, SenderStats, SendRecord
from .receiver import ReceiverWindow, ReceiverStats

__all__ = [
    'AckMode', 'ProtocolMode', 'ProtocolPolicy', 'RetransmitScope', 'PROTOCOL_NAMES',
    'AdaptiveTimeout', 'RetransmissionTimer', 'WINDOW_TIMER',
    'SenderWindow', 'SenderStats', 'SendRecord',
    'ReceiverWindow', 'ReceiverStats'
]
