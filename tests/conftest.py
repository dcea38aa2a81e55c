"""
Shared fixtures: a manual clock and a channel that records what was sent.
"""

from typing import List, Optional

import pytest

from arqlink.errors import TransportError
from arqlink.packet import decode


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingChannel:
    """Collects sent datagrams; receive() never returns anything."""

    def __init__(self):
        self.sent: List[bytes] = []
        self.fail_sends = False

    def send(self, data: bytes):
        if self.fail_sends:
            raise TransportError("link down")
        self.sent.append(data)

    def receive(self, timeout: float) -> Optional[bytes]:
        return None

    def close(self):
        pass

    def sent_seq_nos(self) -> List[int]:
        return [decode(raw).seq_no for raw in self.sent]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel():
    return RecordingChannel()
