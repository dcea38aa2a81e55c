"""
arqlink: reliable delivery over a lossy datagram channel
"""

__version__ = "1.0.0"

from .cancellation import CancellationToken
from .channel import LossModel, MemoryChannel, NoLoss, RandomLoss, ScriptedLoss, UdpChannel
from .client import SenderSession, TransferState
from .config import SessionConfig
from .errors import ARQError, CorruptionError, RetryBudgetExceeded, StaleAckError, TransportError
from .packet import Packet, decode, decode_ack, encode, encode_ack
from .reliability import ProtocolMode, ProtocolPolicy, ReceiverWindow, SenderWindow
from .report import SessionReport, generate_session_report
from .server import DeliveryQueue, ReceiverSession
from .session import run_local_session

__all__ = [
    'CancellationToken',
    'LossModel', 'MemoryChannel', 'NoLoss', 'RandomLoss', 'ScriptedLoss', 'UdpChannel',
    'SenderSession', 'TransferState', 'SessionConfig',
    'ARQError', 'CorruptionError', 'RetryBudgetExceeded', 'StaleAckError', 'TransportError',
    'Packet', 'decode', 'decode_ack', 'encode', 'encode_ack',
    'ProtocolMode', 'ProtocolPolicy', 'ReceiverWindow', 'SenderWindow',
    'SessionReport', 'generate_session_report',
    'DeliveryQueue', 'ReceiverSession', 'run_local_session'
]
