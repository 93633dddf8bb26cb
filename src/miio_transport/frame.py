"""Frame encoding and decoding for the miIO protocol."""

from dataclasses import dataclass

from .keys import md5_digest
from .types import (
    MAGIC,
    HEADER_SIZE,
    MAX_FRAME_SIZE,
    CHECKSUM_OFFSET,
    LENGTH_OFFSET,
    DEVICE_ID_OFFSET,
    STAMP_OFFSET,
    HandshakeResult,
    ProtocolError,
)


@dataclass
class FrameHeader:
    """Decoded 32-byte miIO frame header."""
    magic: int
    total_length: int
    reserved: bytes  # 4 bytes
    device_id: int
    server_stamp: int
    checksum: bytes  # 16 bytes


def encode_frame(token: bytes, device_id: int, server_stamp: int, body: bytes) -> bytes:
    """
    Build a complete frame around an encrypted body.

    Format (32-byte header + body):
        [0-1]    magic (0x2131)
        [2-3]    total length (32 + len(body))
        [4-7]    reserved (zero)
        [8-11]   device ID
        [12-15]  server stamp
        [16-31]  MD5(header[0:16] || token || body)
        [32+]    body (variable)

    Args:
        token: 16-byte device token
        device_id: Device ID from the handshake
        server_stamp: Server stamp from the handshake
        body: Encrypted payload

    Returns:
        Frame bytes, exactly 32 + len(body) long

    Raises:
        ProtocolError: If the frame would not fit the 16-bit length field
    """
    total_length = HEADER_SIZE + len(body)
    if total_length > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame too large: {total_length} bytes (max {MAX_FRAME_SIZE})")

    prefix = (
        MAGIC.to_bytes(2, byteorder="big")
        + total_length.to_bytes(2, byteorder="big")
        + bytes(4)
        + device_id.to_bytes(4, byteorder="big")
        + server_stamp.to_bytes(4, byteorder="big")
    )
    checksum = md5_digest(prefix, token, body)

    return prefix + checksum + body


def decode_header(frame: bytes) -> FrameHeader:
    """
    Decode the header of a frame.

    Args:
        frame: Frame bytes (header plus any body)

    Returns:
        Decoded FrameHeader

    Raises:
        ProtocolError: If the frame is shorter than the header
    """
    if len(frame) < HEADER_SIZE:
        raise ProtocolError("frame too short")

    return FrameHeader(
        magic=int.from_bytes(frame[0:LENGTH_OFFSET], byteorder="big"),
        total_length=int.from_bytes(frame[LENGTH_OFFSET:4], byteorder="big"),
        reserved=bytes(frame[4:DEVICE_ID_OFFSET]),
        device_id=int.from_bytes(frame[DEVICE_ID_OFFSET:STAMP_OFFSET], byteorder="big"),
        server_stamp=int.from_bytes(frame[STAMP_OFFSET:CHECKSUM_OFFSET], byteorder="big"),
        checksum=bytes(frame[CHECKSUM_OFFSET:HEADER_SIZE]),
    )


def verify_checksum(token: bytes, frame: bytes) -> bool:
    """
    Check the header checksum of a frame against the token.

    Args:
        token: 16-byte device token
        frame: Complete frame bytes

    Returns:
        True if the checksum matches
    """
    if len(frame) < HEADER_SIZE:
        return False

    expected = md5_digest(frame[:CHECKSUM_OFFSET], token, frame[HEADER_SIZE:])
    return expected == bytes(frame[CHECKSUM_OFFSET:HEADER_SIZE])


def parse_handshake_response(frame: bytes) -> HandshakeResult:
    """
    Extract device ID and server stamp from a handshake response.

    Args:
        frame: Response datagram, must be exactly 32 bytes

    Returns:
        HandshakeResult

    Raises:
        ProtocolError: If the response is not exactly 32 bytes
    """
    if len(frame) != HEADER_SIZE:
        raise ProtocolError(
            f"malformed handshake response: expected {HEADER_SIZE} bytes, got {len(frame)}"
        )

    return HandshakeResult(
        device_id=int.from_bytes(frame[DEVICE_ID_OFFSET:STAMP_OFFSET], byteorder="big"),
        server_stamp=int.from_bytes(frame[STAMP_OFFSET:CHECKSUM_OFFSET], byteorder="big"),
    )


def is_miio_frame(data: bytes) -> bool:
    """
    Check if data looks like a miIO frame.

    Args:
        data: Bytes to check

    Returns:
        True if data carries the magic and a consistent length field
    """
    if len(data) < HEADER_SIZE:
        return False

    header = decode_header(data)
    return header.magic == MAGIC and header.total_length == len(data)
