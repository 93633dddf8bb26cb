"""
Connection transport for miIO devices.

A Connection wraps one connected UDP socket and hides the handshake,
framing and encryption from the caller. Writes take plaintext payloads
(normally JSON-RPC requests) and reads return decrypted payloads.

Example usage:
    ```python
    with connect("192.168.0.3", "a0b1c2d3e4f5a0b1c2d3e4f5a0b1c2d3") as conn:
        conn.set_deadline(datetime.now() + timedelta(seconds=5))
        conn.write(b'{"id": 1, "method": "miIO.info", "params": []}')
        buffer = bytearray(4096)
        n = conn.read(buffer)
        print(buffer[:n].decode("utf-8"))
    ```

The connection does not serialize access. Callers sharing a connection
between threads must hold a lock across each write-then-read round trip.
"""

import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from .crypto import encrypt_payload, decrypt_payload
from .frame import encode_frame, decode_header, verify_checksum
from .handshake import Handshake, HandshakeCache
from .keys import decode_token, derive_device_keys
from .types import (
    MAGIC,
    HEADER_SIZE,
    MAX_FRAME_SIZE,
    DEFAULT_PORT,
    DEFAULT_READ_BUFFER_SIZE,
    HandshakeResult,
    BufferTooSmallError,
    ConnectionClosedError,
    DeadlineExceeded,
    ProtocolError,
    TransportError,
)

logger = logging.getLogger(__name__)

Address = Union[str, Tuple[str, int]]


@dataclass
class ConnectionConfig:
    """Configuration for a device connection."""
    read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE
    handshake_ttl: Optional[timedelta] = None  # None: handshake on every write
    verify_checksum: bool = True

    def __post_init__(self) -> None:
        if self.read_buffer_size < HEADER_SIZE:
            raise ValueError(
                f"read_buffer_size must be at least {HEADER_SIZE}, got {self.read_buffer_size}"
            )
        if self.handshake_ttl is not None and self.handshake_ttl <= timedelta(0):
            raise ValueError(f"handshake_ttl must be positive, got {self.handshake_ttl}")


class Connection:
    """Synchronous send/receive channel to one device."""

    def __init__(
        self,
        sock: socket.socket,
        token: bytes,
        config: Optional[ConnectionConfig] = None,
    ) -> None:
        """
        Initialize a connection over an already connected datagram socket.

        Args:
            sock: Connected datagram socket, owned by the connection from now on.
            token: 16-byte device token.
            config: Optional connection configuration.

        Raises:
            InvalidTokenError: If the token is not 16 bytes.
        """
        self._keys = derive_device_keys(token)
        self._token = bytes(token)
        self._sock = sock
        self._config = config or ConnectionConfig()
        self._closed = False
        self._read_deadline: Optional[datetime] = None
        self._write_deadline: Optional[datetime] = None
        self._handshake_cache: Optional[HandshakeCache] = None
        if self._config.handshake_ttl is not None:
            self._handshake_cache = HandshakeCache(self._config.handshake_ttl)

    @property
    def token(self) -> bytes:
        """The raw 16-byte device token."""
        return self._token

    @property
    def config(self) -> ConnectionConfig:
        """The configuration this connection was opened with."""
        return self._config

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    @property
    def local_address(self) -> Tuple:
        """The local socket address."""
        self._ensure_open()
        try:
            return self._sock.getsockname()
        except OSError as e:
            raise TransportError(f"Unable to read local address: {e}") from e

    @property
    def remote_address(self) -> Tuple:
        """The device's socket address."""
        self._ensure_open()
        try:
            return self._sock.getpeername()
        except OSError as e:
            raise TransportError(f"Unable to read remote address: {e}") from e

    # MARK: - I/O

    def write(self, payload: bytes, force_handshake: bool = False) -> int:
        """
        Encrypt a payload and send it to the device as one frame.

        A handshake runs first unless a cached result is still valid. If the
        handshake fails nothing else is sent.

        Args:
            payload: Plaintext to send.
            force_handshake: Run a fresh handshake even if one is cached.

        Returns:
            Number of payload bytes written.

        Raises:
            ConnectionClosedError: If the connection is closed.
            TransportError: If the socket fails.
            ProtocolError: If the payload does not fit one frame or the handshake
                response is malformed.
            DeadlineExceeded: If a deadline elapses.
        """
        self._ensure_open()

        body = encrypt_payload(self._keys.key, self._keys.iv, payload)
        if HEADER_SIZE + len(body) > MAX_FRAME_SIZE:
            raise ProtocolError(
                f"Frame too large: {HEADER_SIZE + len(body)} bytes (max {MAX_FRAME_SIZE})"
            )

        handshake = self._handshake(force_handshake)
        frame = encode_frame(self._token, handshake.device_id, handshake.server_stamp, body)

        self._send(frame)
        logger.debug("Sent frame: %d bytes (payload %d bytes)", len(frame), len(payload))
        return len(payload)

    def read(self, buffer: Union[bytearray, memoryview]) -> int:
        """
        Receive one frame and copy its decrypted payload into buffer.

        Args:
            buffer: Writable destination buffer.

        Returns:
            Number of plaintext bytes copied into buffer.

        Raises:
            ConnectionClosedError: If the connection is closed.
            TransportError: If the socket fails.
            ProtocolError: If the frame is short, malformed or fails the checksum.
            DecryptionError: If the body cannot be decrypted.
            BufferTooSmallError: If the payload does not fit buffer.
            DeadlineExceeded: If the read deadline elapses.
        """
        self._ensure_open()

        data = self._receive()
        if len(data) < HEADER_SIZE:
            raise ProtocolError("frame too short")

        header = decode_header(data)
        if header.magic != MAGIC:
            raise ProtocolError(f"Unknown magic: {header.magic:#06x}")

        if header.total_length != len(data):
            raise ProtocolError(
                f"Length mismatch: header says {header.total_length}, received {len(data)}"
            )

        if self._config.verify_checksum and not verify_checksum(self._token, data):
            logger.warning("Checksum mismatch on frame from device %#010x", header.device_id)
            raise ProtocolError("checksum mismatch")

        body = data[HEADER_SIZE:]
        if not body:
            return 0

        plaintext = decrypt_payload(self._keys.key, self._keys.iv, body)

        view = memoryview(buffer)
        if len(plaintext) > len(view):
            logger.warning(
                "Dropping %d byte payload, buffer holds %d", len(plaintext), len(view)
            )
            raise BufferTooSmallError(len(plaintext), len(view))

        view[: len(plaintext)] = plaintext
        return len(plaintext)

    def close(self) -> None:
        """Close the socket. Further operations raise ConnectionClosedError."""
        if self._closed:
            return
        self._closed = True
        if self._handshake_cache is not None:
            self._handshake_cache.invalidate()
        self._sock.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # MARK: - Deadlines

    def set_deadline(self, deadline: Optional[datetime]) -> None:
        """Set both read and write deadlines. None means no timeout."""
        self._ensure_open()
        self._read_deadline = deadline
        self._write_deadline = deadline

    def set_read_deadline(self, deadline: Optional[datetime]) -> None:
        """Set the deadline for reads, including the handshake response."""
        self._ensure_open()
        self._read_deadline = deadline

    def set_write_deadline(self, deadline: Optional[datetime]) -> None:
        """Set the deadline for writes, including the handshake probe."""
        self._ensure_open()
        self._write_deadline = deadline

    # MARK: - Handshake

    def invalidate_handshake(self) -> None:
        """Forget the cached handshake result so the next write handshakes again."""
        if self._handshake_cache is not None:
            self._handshake_cache.invalidate()

    def _handshake(self, force: bool) -> HandshakeResult:
        cache = self._handshake_cache
        if cache is not None and not force:
            cached = cache.retrieve()
            if cached is not None:
                logger.debug("Using cached handshake for device %#010x", cached.device_id)
                return cached

        result = Handshake(send=self._send, receive=self._receive).run()
        if cache is not None:
            cache.store(result)
        return result

    # MARK: - Socket helpers

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConnectionClosedError()

    def _send(self, data: bytes) -> None:
        self._ensure_open()
        self._sock.settimeout(_remaining_seconds(self._write_deadline))
        try:
            self._sock.send(data)
        except socket.timeout as e:
            raise DeadlineExceeded("write deadline exceeded") from e
        except OSError as e:
            raise TransportError(f"Send failed: {e}") from e

    def _receive(self) -> bytes:
        self._ensure_open()
        self._sock.settimeout(_remaining_seconds(self._read_deadline))
        try:
            return self._sock.recv(self._config.read_buffer_size)
        except socket.timeout as e:
            raise DeadlineExceeded("read deadline exceeded") from e
        except OSError as e:
            raise TransportError(f"Receive failed: {e}") from e


def _remaining_seconds(deadline: Optional[datetime]) -> Optional[float]:
    """Seconds left until deadline, None for no deadline."""
    if deadline is None:
        return None

    remaining = (deadline - datetime.now(deadline.tzinfo)).total_seconds()
    if remaining <= 0:
        raise DeadlineExceeded("deadline already passed")
    return remaining


def _parse_port(port) -> int:
    try:
        value = int(port)
    except (TypeError, ValueError) as e:
        raise TransportError(f"Invalid port: {port!r}") from e

    if not 0 <= value <= 0xFFFF:
        raise TransportError(f"Invalid port: {value} is out of range")
    return value


def parse_address(address: Address) -> Tuple[str, int]:
    """
    Split an address into host and port.

    Accepts a (host, port) tuple, "host:port", "[v6-host]:port" or a bare
    host, which gets the default device port.

    Raises:
        TransportError: If the port is not an integer in 0-65535.
    """
    if isinstance(address, tuple):
        host, port = address
        return host, _parse_port(port)

    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        if rest.startswith(":"):
            return host, _parse_port(rest[1:])
        return host, DEFAULT_PORT

    if address.count(":") == 1:
        host, port = address.split(":")
        return host, _parse_port(port)

    return address, DEFAULT_PORT


def connect(
    address: Address,
    token_hex: str,
    config: Optional[ConnectionConfig] = None,
) -> Connection:
    """
    Open a connection to a device.

    Args:
        address: Device address, e.g. "192.168.0.3:54321" or ("192.168.0.3", 54321).
        token_hex: Device token as 32 hex characters.
        config: Optional connection configuration.

    Returns:
        An open Connection.

    Raises:
        InvalidTokenError: If the token is not 32 hex characters.
        TransportError: If the address is malformed, cannot be resolved, or the
            socket cannot be opened.
    """
    token = decode_token(token_hex)
    host, port = parse_address(address)

    try:
        family, type_, proto, _, sockaddr = socket.getaddrinfo(
            host, port, type=socket.SOCK_DGRAM
        )[0]
        sock = socket.socket(family, type_, proto)
    except OSError as e:
        raise TransportError(f"Unable to open socket to {host}:{port}: {e}") from e

    try:
        sock.connect(sockaddr)
    except OSError as e:
        sock.close()
        raise TransportError(f"Unable to connect to {host}:{port}: {e}") from e

    try:
        conn = Connection(sock, token, config)
    except BaseException:
        sock.close()
        raise

    logger.debug("Connected to %s:%d", host, port)
    return conn
