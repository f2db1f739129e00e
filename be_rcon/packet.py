# be_rcon/packet.py
from __future__ import annotations

import enum
import struct
import zlib
from dataclasses import dataclass
from typing import Optional

from .errors import ProtocolError

SIGNATURE = b"BE"
MARKER = 0xFF
HEADER_SIZE = 7            # "BE" + crc32 + 0xFF
MESSAGE_OFFSET = 9         # header + type + sequence
MAX_DATAGRAM = 51_200      # largest datagram a session will accept


class PacketType(enum.IntEnum):
    LOGIN = 0x00
    COMMAND = 0x01
    SERVER_MESSAGE = 0x02


def checksum(body: bytes) -> int:
    """CRC32 (IEEE 802.3) of everything from the 0xFF marker onward."""
    return zlib.crc32(body) & 0xFFFFFFFF


def _frame(body: bytes) -> bytes:
    return SIGNATURE + struct.pack("<I", checksum(body)) + body


def _sequence_byte(sequence: int) -> bytes:
    if not 0 <= sequence <= 0xFF:
        raise ValueError(f"sequence out of range: {sequence}")
    return bytes((sequence,))


def build_login_packet(password: str) -> bytes:
    return _frame(bytes((MARKER, PacketType.LOGIN)) + password.encode("utf-8"))


def build_command_packet(sequence: int, command: str) -> bytes:
    # an empty command doubles as the keep-alive packet
    body = bytes((MARKER, PacketType.COMMAND)) + _sequence_byte(sequence)
    return _frame(body + command.encode("utf-8"))


def build_ack_packet(sequence: int) -> bytes:
    return _frame(bytes((MARKER, PacketType.SERVER_MESSAGE)) + _sequence_byte(sequence))


@dataclass(frozen=True)
class InboundPacket:
    type: int
    sequence: Optional[int]
    payload: bytes
    size: int

    @property
    def known_type(self) -> bool:
        return self.type in PacketType._value2member_map_


def parse_packet(datagram: bytes, verify: bool = True) -> InboundPacket:
    """
    Validate and split an inbound datagram.

    The checksum is compared against the stored little-endian CRC when
    `verify` is set. A login reply carries its result in the "sequence"
    slot (offset 8); callers interpret it according to `type`.
    """
    if len(datagram) < HEADER_SIZE + 1:
        raise ProtocolError(f"datagram too short ({len(datagram)} bytes)")
    if datagram[:2] != SIGNATURE:
        raise ProtocolError(f"bad signature {datagram[:2]!r}")
    if datagram[6] != MARKER:
        raise ProtocolError(f"bad marker byte 0x{datagram[6]:02x}")
    if verify:
        (stored,) = struct.unpack_from("<I", datagram, 2)
        actual = checksum(datagram[6:])
        if stored != actual:
            raise ProtocolError(f"checksum mismatch: stored {stored:08x}, computed {actual:08x}")

    sequence = datagram[8] if len(datagram) > 8 else None
    return InboundPacket(
        type=datagram[7],
        sequence=sequence,
        payload=bytes(datagram[MESSAGE_OFFSET:]),
        size=len(datagram),
    )


def decode_payload(payload: bytes) -> str:
    return payload.decode("utf-8", errors="replace")


def split_multipart(payload: bytes) -> Optional[tuple[int, int, bytes]]:
    """
    Command responses too large for one datagram arrive as
    0x00 <total> <index> <chunk>. Returns (total, index, chunk) or None.
    """
    if len(payload) < 3 or payload[0] != 0x00:
        return None
    total, index = payload[1], payload[2]
    if total == 0 or index >= total:
        raise ProtocolError(f"bad multi-part header: part {index} of {total}")
    return total, index, bytes(payload[3:])
