from __future__ import annotations

import io

import pytest

from rsubl.net import Channel


class KeptBytesIO(io.BytesIO):
    """BytesIO whose contents survive close() so tests can inspect them."""

    def __init__(self, data: bytes = b""):
        super().__init__(data)
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1


class FailingWriter:
    def __init__(self):
        self.writes = 0
        self.flushes = 0

    def write(self, data) -> int:
        self.writes += 1
        return len(data)

    def flush(self) -> None:
        self.flushes += 1
        raise BrokenPipeError("broken pipe")

    def close(self) -> None:
        pass


class FakeSocket:
    """Just enough of socket.socket for Channel: makefile, settimeout, shutdown, close."""

    def __init__(self, incoming: bytes = b"", writer=None):
        self.reader = KeptBytesIO(incoming)
        self.writer = writer if writer is not None else KeptBytesIO()
        self.timeouts: list = []
        self.shutdowns = 0
        self.closes = 0

    def makefile(self, mode: str, buffering: int = -1):
        return self.reader if "r" in mode else self.writer

    def settimeout(self, value) -> None:
        self.timeouts.append(value)

    def shutdown(self, how) -> None:
        self.shutdowns += 1

    def close(self) -> None:
        self.closes += 1

    @property
    def sent(self) -> bytes:
        return self.writer.getvalue()


@pytest.fixture
def make_channel():
    def _make(incoming: bytes = b"", buffer_size: int = 4096, writer=None):
        sock = FakeSocket(incoming, writer=writer)
        return Channel(sock, buffer_size=buffer_size), sock  # type: ignore[arg-type]

    return _make
