from __future__ import annotations

import contextlib
import logging
import socket
import threading
from typing import BinaryIO

from .codec import LineCodec, Reply
from .constants import (
    COPY_CHUNK_SIZE,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
)
from .errors import ChannelFatalError, ProtocolError


class FatalLatch:
    """First failure wins. Safe to share between threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._error: ChannelFatalError | None = None

    def check_and_set(self, err: ChannelFatalError) -> bool:
        """Record ``err`` unless an error is already held. Returns True if one was."""
        with self._lock:
            if self._error is not None:
                return True
            self._error = err
            return False

    @property
    def error(self) -> ChannelFatalError | None:
        with self._lock:
            return self._error


class _Discard:
    def write(self, data: bytes) -> int:
        return len(data)


class Channel:
    """Buffered duplex wrapper around a connected stream socket.

    Every I/O failure is folded into a ``FatalLatch``: the first one closes
    the socket (unblocking anyone else waiting on it) and is raised again,
    as the same exception object, by every later call.
    """

    def __init__(
        self,
        sock: socket.socket,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.sock = sock
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.latch = FatalLatch()
        self._rfile = sock.makefile("rb", buffering=buffer_size)
        self._wfile = sock.makefile("wb", buffering=buffer_size)
        self.codec = LineCodec(self._rfile, buffer_size)

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ) -> "Channel":
        sock = socket.create_connection((host, port))
        return cls(sock, read_timeout=read_timeout, write_timeout=write_timeout)

    @property
    def err(self) -> ChannelFatalError | None:
        return self.latch.error

    def _check(self) -> None:
        err = self.latch.error
        if err is not None:
            raise err

    def _close_stream(self) -> None:
        # teardown after failure; errors here are ignored
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        for f in (self._rfile, self._wfile):
            with contextlib.suppress(OSError, ValueError):
                f.close()
        with contextlib.suppress(OSError):
            self.sock.close()

    def _fatal(self, err: BaseException) -> ChannelFatalError:
        if isinstance(err, ChannelFatalError):
            fatal = err
        else:
            fatal = ChannelFatalError(str(err) or type(err).__name__)
            fatal.__cause__ = err
        if not self.latch.check_and_set(fatal):
            logging.debug("channel failed: %s; closing stream", fatal)
            self._close_stream()
        return self.latch.error or fatal

    @staticmethod
    def _timeout(value: float) -> float | None:
        return value if value > 0 else None

    def send(self, data: bytes) -> None:
        self._check()
        try:
            self.sock.settimeout(self._timeout(self.write_timeout))
            self._wfile.write(data)
        except (OSError, ValueError) as e:
            raise self._fatal(e)

    def send_string(self, s: str) -> None:
        self.send(s.encode("utf-8"))

    def send_file(self, src: BinaryIO, limit: int | None = None) -> int:
        """Copy ``src`` to the write buffer until it is exhausted or ``limit`` bytes
        have been written. Returns bytes copied."""
        self._check()
        total = 0
        try:
            self.sock.settimeout(self._timeout(self.write_timeout))
            while limit is None or total < limit:
                want = COPY_CHUNK_SIZE if limit is None else min(COPY_CHUNK_SIZE, limit - total)
                chunk = src.read(want)
                if not chunk:
                    break
                self._wfile.write(chunk)
                total += len(chunk)
        except (OSError, ValueError) as e:
            raise self._fatal(e)
        return total

    def flush(self) -> None:
        self._check()
        try:
            self.sock.settimeout(self._timeout(self.write_timeout))
            self._wfile.flush()
        except (OSError, ValueError) as e:
            raise self._fatal(e)

    def receive_line(self, timeout: float | None = None) -> Reply:
        """Read one line. ``timeout`` defaults to the channel read timeout; 0 blocks."""
        self._check()
        if timeout is None:
            timeout = self.read_timeout
        try:
            self.sock.settimeout(self._timeout(timeout))
            return self.codec.read_header_line()
        except (OSError, ValueError, ProtocolError) as e:
            raise self._fatal(e)

    def copy_n(self, sink: BinaryIO | _Discard, n: int) -> None:
        """Copy exactly ``n`` bytes from the stream into ``sink``.

        If ``sink`` fails, the rest of the ``n`` bytes is still consumed from the
        stream before the sink error is re-raised, so the next read starts on a
        command boundary.
        """
        self._check()
        remaining = n
        try:
            self.sock.settimeout(self._timeout(self.read_timeout))
        except OSError as e:
            raise self._fatal(e)
        while remaining > 0:
            try:
                chunk = self._rfile.read(min(remaining, COPY_CHUNK_SIZE))
            except (OSError, ValueError) as e:
                raise self._fatal(e)
            if not chunk:
                raise self._fatal(ChannelFatalError(f"unexpected EOF: {n - remaining} of {n} bytes copied"))
            remaining -= len(chunk)
            try:
                sink.write(chunk)
            except OSError:
                if remaining > 0:
                    self.discard(remaining)
                raise

    def discard(self, n: int) -> None:
        self.copy_n(_Discard(), n)

    def close(self) -> None:
        if not self.latch.check_and_set(ChannelFatalError("channel closed")):
            with contextlib.suppress(OSError, ValueError):
                self._wfile.flush()
            self._close_stream()

    def __enter__(self) -> "Channel":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
