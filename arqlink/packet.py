"""
Packet codec for the ARQ engine

Packet Format:
| Seq No (4B) | Payload Len (2B) | Checksum (4B) | Data (up to 1024B) |

The payload is length-prefixed, so any byte value (including ':') may
appear inside it. The checksum is the arithmetic sum of the payload byte
values, reduced modulo 2**32.

Ack Format:
Decimal ASCII of the acknowledged sequence number, no framing.

Decoding never raises: malformed input comes back as a CorruptionError
value instead of a Packet.
"""

import struct
from dataclasses import dataclass
from typing import Union

from .errors import CorruptionError

# Header format: seq_no(I), payload_len(H), checksum(I)
HEADER_FORMAT = '!IHI'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 10 bytes
MAX_DATA_SIZE = 1024
MAX_PACKET_SIZE = HEADER_SIZE + MAX_DATA_SIZE
MAX_SEQ_NO = 0xFFFFFFFF
CHECKSUM_MASK = 0xFFFFFFFF
MAX_ACK_SIZE = len(str(MAX_SEQ_NO))


def compute_checksum(data: bytes) -> int:
    """Sum of payload byte values, modulo 2**32."""
    return sum(data) & CHECKSUM_MASK


@dataclass(frozen=True)
class Packet:
    """A single data packet. Immutable once created."""
    seq_no: int
    data: bytes
    checksum: int

    @classmethod
    def create(cls, seq_no: int, data: bytes) -> 'Packet':
        if not 0 <= seq_no <= MAX_SEQ_NO:
            raise ValueError(f"Sequence number {seq_no} outside [0, {MAX_SEQ_NO}]")
        if len(data) > MAX_DATA_SIZE:
            raise ValueError(f"Data size {len(data)} exceeds max {MAX_DATA_SIZE}")
        return cls(seq_no=seq_no, data=bytes(data), checksum=compute_checksum(data))

    def verify_checksum(self) -> bool:
        return self.checksum == compute_checksum(self.data)

    def to_bytes(self) -> bytes:
        """Serialize packet to bytes."""
        header = struct.pack(HEADER_FORMAT, self.seq_no, len(self.data), self.checksum)
        return header + self.data

    @classmethod
    def from_bytes(cls, raw: bytes) -> Union['Packet', CorruptionError]:
        """Deserialize bytes to a packet, or a CorruptionError describing why not."""
        if len(raw) < HEADER_SIZE:
            return CorruptionError(f"datagram too short ({len(raw)} bytes)")

        seq_no, length, checksum = struct.unpack(HEADER_FORMAT, raw[:HEADER_SIZE])
        data = raw[HEADER_SIZE:]

        if len(data) != length:
            return CorruptionError(f"payload length {len(data)} != declared {length}")
        if length > MAX_DATA_SIZE:
            return CorruptionError(f"payload length {length} exceeds max {MAX_DATA_SIZE}")

        packet = cls(seq_no=seq_no, data=bytes(data), checksum=checksum)
        if not packet.verify_checksum():
            return CorruptionError(f"checksum mismatch for seq={seq_no}")
        return packet

    def __repr__(self) -> str:
        return f"Packet(seq={self.seq_no}, data_len={len(self.data)}, checksum={self.checksum})"


def encode(seq_no: int, data: bytes) -> bytes:
    return Packet.create(seq_no, data).to_bytes()


def decode(raw: bytes) -> Union[Packet, CorruptionError]:
    return Packet.from_bytes(raw)


def encode_ack(ack_no: int) -> bytes:
    if not 0 <= ack_no <= MAX_SEQ_NO:
        raise ValueError(f"Ack number {ack_no} outside [0, {MAX_SEQ_NO}]")
    return str(ack_no).encode('ascii')


def decode_ack(raw: bytes) -> Union[int, CorruptionError]:
    """Parse a decimal ASCII ack. Anything else is a CorruptionError."""
    if not raw or len(raw) > MAX_ACK_SIZE:
        return CorruptionError(f"ack of invalid length {len(raw)}")
    if not all(0x30 <= b <= 0x39 for b in raw):
        return CorruptionError(f"non-decimal ack {raw!r}")
    ack_no = int(raw.decode('ascii'))
    if ack_no > MAX_SEQ_NO:
        return CorruptionError(f"ack {ack_no} exceeds max sequence number")
    return ack_no
