"""
miio-transport - Encrypted UDP transport for miIO smart-home devices

Python implementation of the miIO wire protocol: handshake, 32-byte framed
headers with MD5 checksums, and AES-128-CBC payload encryption keyed from the
device token.
"""

from .keys import DeviceKeys, decode_token, derive_device_keys, md5_digest
from .crypto import encrypt_payload, decrypt_payload
from .frame import (
    FrameHeader,
    encode_frame,
    decode_header,
    verify_checksum,
    parse_handshake_response,
    is_miio_frame,
)
from .handshake import HandshakeState, Handshake, HandshakeCache
from .connection import ConnectionConfig, Connection, connect, parse_address
from .types import (
    HandshakeResult,
    MAGIC,
    HEADER_SIZE,
    TOKEN_SIZE,
    BLOCK_SIZE,
    HANDSHAKE_PROBE,
    DEFAULT_PORT,
    DEFAULT_READ_BUFFER_SIZE,
    MiioError,
    InvalidTokenError,
    TransportError,
    ConnectionClosedError,
    ProtocolError,
    DecryptionError,
    DeadlineExceeded,
    BufferTooSmallError,
)

__version__ = "0.1.0"

__all__ = [
    # Keys
    "DeviceKeys",
    "decode_token",
    "derive_device_keys",
    "md5_digest",
    # Crypto
    "encrypt_payload",
    "decrypt_payload",
    # Frame
    "FrameHeader",
    "encode_frame",
    "decode_header",
    "verify_checksum",
    "parse_handshake_response",
    "is_miio_frame",
    # Handshake
    "HandshakeState",
    "HandshakeResult",
    "Handshake",
    "HandshakeCache",
    # Connection
    "ConnectionConfig",
    "Connection",
    "connect",
    "parse_address",
    # Constants
    "MAGIC",
    "HEADER_SIZE",
    "TOKEN_SIZE",
    "BLOCK_SIZE",
    "HANDSHAKE_PROBE",
    "DEFAULT_PORT",
    "DEFAULT_READ_BUFFER_SIZE",
    # Errors
    "MiioError",
    "InvalidTokenError",
    "TransportError",
    "ConnectionClosedError",
    "ProtocolError",
    "DecryptionError",
    "DeadlineExceeded",
    "BufferTooSmallError",
]
