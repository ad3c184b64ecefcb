"""Shared fakes standing in for the serial port and the UDP socket."""

from __future__ import annotations

import pytest
import serial


class FakeSerial:
    """Records writes; serves `incoming` to read() like a pyserial port with a timeout."""

    def __init__(self, incoming: bytes = b"", timeout=None):
        self.incoming = bytearray(incoming)
        self.timeout = timeout
        self.read_timeouts = []
        self.writes: list[bytes] = []
        self.closed = False

    def read(self, size: int = 1) -> bytes:
        self.read_timeouts.append(self.timeout)
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def close(self) -> None:
        self.closed = True


class DisconnectingSerial(FakeSerial):
    """A port whose device vanishes mid-read: read() and later timeout changes fail."""

    @property
    def timeout(self):
        return getattr(self, "_timeout", None)

    @timeout.setter
    def timeout(self, value):
        # set once by __init__, once for the handshake wait, then the device is gone
        self._timeout_sets = getattr(self, "_timeout_sets", 0) + 1
        if self._timeout_sets > 2:
            raise serial.SerialException("Could not configure port: device gone")
        self._timeout = value

    def read(self, size: int = 1) -> bytes:
        raise serial.SerialException("device reports readiness to read but returned no data")


class FakeSocket:
    """Hands out queued datagrams, then fails like a closed socket."""

    def __init__(self, datagrams=()):
        self.datagrams = list(datagrams)
        self.recv_sizes = []
        self.closed = False

    def recv(self, bufsize: int) -> bytes:
        self.recv_sizes.append(bufsize)
        if not self.datagrams:
            raise OSError("socket closed")
        return self.datagrams.pop(0)[:bufsize]

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False


@pytest.fixture
def fake_serial():
    return FakeSerial()


@pytest.fixture
def make_serial():
    return FakeSerial


@pytest.fixture
def disconnecting_serial():
    return DisconnectingSerial()


@pytest.fixture
def make_socket():
    return FakeSocket
