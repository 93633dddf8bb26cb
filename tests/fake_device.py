"""Fake miIO device for transport tests.

Builds device-side frames and runs a threaded UDP responder that answers
the handshake probe and echoes request IDs back in encrypted responses.
"""

import json
import socket
import threading
from typing import List, Optional

from miio_transport.crypto import encrypt_payload, decrypt_payload
from miio_transport.frame import encode_frame, decode_header, verify_checksum
from miio_transport.keys import derive_device_keys
from miio_transport.types import HANDSHAKE_PROBE, HEADER_SIZE, MAGIC


def handshake_response(device_id: int, server_stamp: int) -> bytes:
    """Build the 32-byte reply a device sends to the probe."""
    return (
        MAGIC.to_bytes(2, byteorder="big")
        + HEADER_SIZE.to_bytes(2, byteorder="big")
        + bytes(4)
        + device_id.to_bytes(4, byteorder="big")
        + server_stamp.to_bytes(4, byteorder="big")
        + bytes([0xFF] * 16)
    )


def device_frame(token: bytes, device_id: int, server_stamp: int, payload: bytes) -> bytes:
    """Build an encrypted data frame as the device would send it."""
    keys = derive_device_keys(token)
    body = encrypt_payload(keys.key, keys.iv, payload)
    return encode_frame(token, device_id, server_stamp, body)


def open_frame(token: bytes, frame: bytes) -> bytes:
    """Check and decrypt a frame sent by the client."""
    assert verify_checksum(token, frame), "client frame failed checksum"
    keys = derive_device_keys(token)
    return decrypt_payload(keys.key, keys.iv, frame[HEADER_SIZE:])


class FakeDevice:
    """Threaded UDP device on the loopback interface."""

    def __init__(self, token: bytes, device_id: int = 0x0412A7C3, server_stamp: int = 100) -> None:
        self.token = token
        self.device_id = device_id
        self.server_stamp = server_stamp
        self.requests: List[dict] = []
        self.probes = 0
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.settimeout(0.05)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self):
        return self._sock.getsockname()

    def start(self) -> "FakeDevice":
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._sock.close()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                data, peer = self._sock.recvfrom(4096)
            except socket.timeout:
                continue

            if data == HANDSHAKE_PROBE:
                self.probes += 1
                self._sock.sendto(handshake_response(self.device_id, self.server_stamp), peer)
                continue

            header = decode_header(data)
            assert header.device_id == self.device_id
            assert header.server_stamp == self.server_stamp

            request = json.loads(open_frame(self.token, data).decode("utf-8"))
            self.requests.append(request)
            reply = json.dumps({"id": request["id"], "result": ["ok"]}).encode("utf-8")
            self._sock.sendto(
                device_frame(self.token, self.device_id, self.server_stamp, reply), peer
            )
