"""Tests for the handshake exchange and its cache."""

import time
from datetime import timedelta

import pytest
from miio_transport.handshake import Handshake, HandshakeCache, HandshakeState
from miio_transport.types import (
    HANDSHAKE_PROBE,
    HandshakeResult,
    DeadlineExceeded,
    ProtocolError,
    TransportError,
)
from .fake_device import handshake_response
from .test_vectors import (
    HANDSHAKE_RESPONSE_HEX,
    HANDSHAKE_DEVICE_ID,
    HANDSHAKE_SERVER_STAMP,
)


class ScriptedChannel:
    """Records sent datagrams and replays queued responses or errors."""

    def __init__(self, *responses) -> None:
        self.sent = []
        self._responses = list(responses)

    def send(self, data: bytes) -> None:
        self.sent.append(data)

    def receive(self) -> bytes:
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestHandshake:
    """Test the probe/response state machine."""

    def test_successful_handshake(self) -> None:
        """The probe is sent and the captured response parsed."""
        channel = ScriptedChannel(bytes.fromhex(HANDSHAKE_RESPONSE_HEX))
        handshake = Handshake(send=channel.send, receive=channel.receive)
        assert handshake.state == HandshakeState.IDLE

        result = handshake.run()

        assert channel.sent == [HANDSHAKE_PROBE]
        assert result == HandshakeResult(HANDSHAKE_DEVICE_ID, HANDSHAKE_SERVER_STAMP)
        assert handshake.state == HandshakeState.COMPLETE
        assert handshake.result == result
        assert handshake.error is None

    def test_malformed_response(self) -> None:
        """A response of the wrong length fails the handshake."""
        channel = ScriptedChannel(bytes(48))
        handshake = Handshake(send=channel.send, receive=channel.receive)

        with pytest.raises(ProtocolError, match="malformed handshake response"):
            handshake.run()

        assert handshake.state == HandshakeState.FAILED
        assert isinstance(handshake.error, ProtocolError)
        assert handshake.result is None

    def test_receive_timeout(self) -> None:
        """A deadline during receive fails the handshake after the probe."""
        channel = ScriptedChannel(DeadlineExceeded("read deadline exceeded"))
        handshake = Handshake(send=channel.send, receive=channel.receive)

        with pytest.raises(DeadlineExceeded):
            handshake.run()

        assert channel.sent == [HANDSHAKE_PROBE]
        assert handshake.state == HandshakeState.FAILED

    def test_send_failure(self) -> None:
        """A transport error on send leaves the handshake failed."""
        def broken_send(data: bytes) -> None:
            raise TransportError("Send failed: network unreachable")

        handshake = Handshake(send=broken_send, receive=lambda: b"")

        with pytest.raises(TransportError):
            handshake.run()

        assert handshake.state == HandshakeState.FAILED

    def test_not_reusable(self) -> None:
        """A finished handshake cannot run again."""
        channel = ScriptedChannel(handshake_response(1, 2), handshake_response(3, 4))
        handshake = Handshake(send=channel.send, receive=channel.receive)
        handshake.run()

        with pytest.raises(RuntimeError, match="already ran"):
            handshake.run()

        assert len(channel.sent) == 1


class TestHandshakeCache:
    """Test handshake result caching."""

    def test_store_and_retrieve(self) -> None:
        """A stored result is returned while fresh."""
        cache = HandshakeCache(timedelta(minutes=1))
        result = HandshakeResult(1, 2)

        assert cache.retrieve() is None
        cache.store(result)
        assert cache.retrieve() == result

    def test_expiry(self) -> None:
        """Results expire after the TTL."""
        cache = HandshakeCache(timedelta(milliseconds=10))
        cache.store(HandshakeResult(1, 2))
        time.sleep(0.05)
        assert cache.retrieve() is None

    def test_invalidate(self) -> None:
        """Invalidation drops the result."""
        cache = HandshakeCache(timedelta(minutes=1))
        cache.store(HandshakeResult(1, 2))
        cache.invalidate()
        assert cache.retrieve() is None

    def test_reject_non_positive_ttl(self) -> None:
        """Zero or negative TTLs are rejected."""
        with pytest.raises(ValueError, match="positive"):
            HandshakeCache(timedelta(0))
