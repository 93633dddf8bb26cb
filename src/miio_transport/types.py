"""Type definitions for the miIO transport."""

from dataclasses import dataclass


@dataclass(frozen=True)
class HandshakeResult:
    """Identifiers learned from a handshake, echoed in every request header."""
    device_id: int  # uint32
    server_stamp: int  # uint32


# Protocol constants
MAGIC = 0x2131
HEADER_SIZE = 32
TOKEN_SIZE = 16
TOKEN_HEX_LENGTH = 32
CHECKSUM_OFFSET = 16
CHECKSUM_SIZE = 16
BLOCK_SIZE = 16  # AES block size in bytes
MAX_FRAME_SIZE = 0xFFFF  # length field is uint16

# Header field offsets (all fields big-endian)
LENGTH_OFFSET = 2
DEVICE_ID_OFFSET = 8
STAMP_OFFSET = 12

# Handshake probe: magic, length 0x0020, then 28 bytes of 0xFF
HANDSHAKE_PROBE = bytes([0x21, 0x31, 0x00, 0x20]) + bytes([0xFF] * 28)

# Transport constants
DEFAULT_PORT = 54321
DEFAULT_READ_BUFFER_SIZE = 4096


# Exception types
class MiioError(Exception):
    """Base exception for miIO transport errors."""
    pass


class InvalidTokenError(MiioError):
    """Token is not valid hex or is not 16 bytes long."""
    pass


class TransportError(MiioError):
    """Socket operation failed."""
    pass


class ConnectionClosedError(TransportError):
    """Operation attempted on a closed connection."""

    def __init__(self) -> None:
        super().__init__("connection closed")


class ProtocolError(MiioError):
    """Frame violates the wire format."""
    pass


class DecryptionError(MiioError):
    """Ciphertext is misaligned or carries invalid padding."""
    pass


class DeadlineExceeded(MiioError):
    """Blocking I/O did not complete before the deadline."""
    pass


class BufferTooSmallError(MiioError):
    """Decrypted payload does not fit the destination buffer."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Buffer too small: payload is {required} bytes, buffer holds {available}"
        )
