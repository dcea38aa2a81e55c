"""
Session configuration

One pydantic model shared by the sender, the receiver, local sessions and
the HTTP API.
"""

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .packet import MAX_DATA_SIZE
from .reliability.policy import ProtocolMode
from .reliability.sender import DEFAULT_MAX_SEND_COUNT
from .reliability.timer import DEFAULT_TIMEOUT, MAX_TIMEOUT, MIN_TIMEOUT

DEFAULT_WINDOW_SIZE = 4
DEFAULT_PORT = 8080
# Per-session packet ceiling. MAX_SEQ_NO stays the wire bound.
MAX_TOTAL_PACKETS = 1_000_000


class SessionConfig(BaseModel):
    protocol_mode: ProtocolMode = ProtocolMode.SELECTIVE_REPEAT
    total_packets: int = Field(10, ge=1, le=MAX_TOTAL_PACKETS)
    window_size: int = Field(DEFAULT_WINDOW_SIZE, ge=1, le=1024)

    peer_host: str = "127.0.0.1"
    peer_port: int = Field(DEFAULT_PORT, ge=0, le=65535)

    # Retransmission timeout, seconds
    timeout: float = Field(DEFAULT_TIMEOUT, gt=0.0)
    min_timeout: float = Field(MIN_TIMEOUT, gt=0.0)
    max_timeout: float = Field(MAX_TIMEOUT, gt=0.0)
    max_send_count: int = Field(DEFAULT_MAX_SEND_COUNT, ge=1)

    payload_size: int = Field(MAX_DATA_SIZE, ge=1, le=MAX_DATA_SIZE)

    # Simulated impairment
    packet_loss_rate: float = Field(0.0, ge=0.0, le=1.0)
    ack_loss_rate: float = Field(0.0, ge=0.0, le=1.0)
    loss_seed: Optional[int] = None

    # Session loops
    poll_interval: float = Field(0.05, gt=0.0, le=1.0)
    delivery_queue_size: int = Field(1000, ge=1)
    max_idle_timeouts: int = Field(200, ge=1)
    linger_timeouts: int = Field(20, ge=1)
    max_transport_errors: int = Field(50, ge=1)

    @model_validator(mode='after')
    def check_consistency(self) -> 'SessionConfig':
        if not self.min_timeout <= self.max_timeout:
            raise ValueError(
                f"min_timeout {self.min_timeout} exceeds max_timeout {self.max_timeout}")
        if not self.min_timeout <= self.timeout <= self.max_timeout:
            raise ValueError(
                f"timeout {self.timeout} outside [{self.min_timeout}, {self.max_timeout}]")
        if self.protocol_mode == ProtocolMode.STOP_AND_WAIT:
            self.window_size = 1
        return self
