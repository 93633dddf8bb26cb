"""Handshake exchange that learns the device ID and server stamp."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from .frame import parse_handshake_response
from .types import HANDSHAKE_PROBE, HandshakeResult, MiioError, ProtocolError

logger = logging.getLogger(__name__)


class HandshakeState(Enum):
    """Lifecycle of a single handshake exchange."""
    IDLE = "idle"
    PROBE_SENT = "probe_sent"
    COMPLETE = "complete"
    FAILED = "failed"


class Handshake:
    """
    One probe/response exchange with a device.

    An instance runs once. Callers needing a fresh result create a new
    instance; the connection does this on every write unless a cached
    result is still valid.

    Example usage:
        ```python
        handshake = Handshake(send=sock.send, receive=lambda: sock.recv(4096))
        result = handshake.run()
        print(result.device_id, result.server_stamp)
        ```
    """

    def __init__(
        self,
        send: Callable[[bytes], None],
        receive: Callable[[], bytes],
    ) -> None:
        """
        Initialize the handshake.

        Args:
            send: Sends one datagram to the device.
            receive: Blocks for one datagram from the device and returns it.
        """
        self._send = send
        self._receive = receive
        self.state = HandshakeState.IDLE
        self.result: Optional[HandshakeResult] = None
        self.error: Optional[MiioError] = None

    def run(self) -> HandshakeResult:
        """
        Send the probe and parse the device's response.

        Returns:
            HandshakeResult with device ID and server stamp

        Raises:
            RuntimeError: If this instance has already run
            ProtocolError: If the response is not a 32-byte handshake reply
            TransportError: If sending or receiving fails
            DeadlineExceeded: If a socket deadline elapses
        """
        if self.state != HandshakeState.IDLE:
            raise RuntimeError(f"Handshake already ran (state: {self.state.value})")

        try:
            self._send(HANDSHAKE_PROBE)
            self.state = HandshakeState.PROBE_SENT
            response = self._receive()
            self.result = parse_handshake_response(response)
        except ProtocolError as e:
            self._fail(e)
            raise ProtocolError("malformed handshake response") from e
        except MiioError as e:
            self._fail(e)
            raise

        self.state = HandshakeState.COMPLETE
        logger.debug(
            "Handshake complete: device_id=%#010x server_stamp=%d",
            self.result.device_id,
            self.result.server_stamp,
        )
        return self.result

    def _fail(self, error: MiioError) -> None:
        self.state = HandshakeState.FAILED
        self.error = error
        logger.debug("Handshake failed: %s", error)


@dataclass
class _CacheEntry:
    """Cached handshake result with expiration."""
    result: HandshakeResult
    expires_at: datetime


class HandshakeCache:
    """Holds the last handshake result of one connection for a TTL."""

    def __init__(self, ttl: timedelta) -> None:
        """Creates a cache whose entries expire after ttl."""
        if ttl <= timedelta(0):
            raise ValueError(f"Handshake TTL must be positive, got {ttl}")
        self._entry: Optional[_CacheEntry] = None
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        """How long a stored result stays valid."""
        return self._ttl

    def store(self, result: HandshakeResult) -> None:
        """Store a handshake result."""
        self._entry = _CacheEntry(result=result, expires_at=datetime.now() + self._ttl)

    def retrieve(self) -> Optional[HandshakeResult]:
        """Retrieve the cached result (returns None if missing or expired)."""
        if self._entry is None:
            return None

        if self._entry.expires_at <= datetime.now():
            self._entry = None
            return None

        return self._entry.result

    def invalidate(self) -> None:
        """Drop the cached result."""
        self._entry = None
