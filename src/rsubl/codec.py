from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import BinaryIO

from .constants import DEFAULT_BUFFER_SIZE, LINE_TERMINATOR
from .errors import ProtocolError


class ReplyKind(enum.Enum):
    LINE = "line"
    EMPTY = "empty"
    EOF = "eof"


@dataclass(frozen=True, slots=True)
class Reply:
    kind: ReplyKind
    data: bytes = b""

    @property
    def is_line(self) -> bool:
        return self.kind is ReplyKind.LINE

    @property
    def is_empty(self) -> bool:
        return self.kind is ReplyKind.EMPTY

    @property
    def is_eof(self) -> bool:
        return self.kind is ReplyKind.EOF

    @staticmethod
    def line(data: bytes) -> "Reply":
        return Reply(kind=ReplyKind.LINE, data=data)

    @staticmethod
    def empty() -> "Reply":
        return Reply(kind=ReplyKind.EMPTY)

    @staticmethod
    def eof() -> "Reply":
        return Reply(kind=ReplyKind.EOF)


class LineCodec:
    """Splits a buffered byte stream into newline-terminated lines.

    Reads are bounded by ``buffer_size``. A line that does not fit is
    accumulated fragment by fragment into a growing buffer until its
    terminator shows up, so header values of any length come back whole.
    """

    def __init__(self, reader: BinaryIO, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.reader = reader
        self.buffer_size = max(1, buffer_size)

    def read_line(self) -> bytes | None:
        """Return the next line without its terminator, or None on a clean end of stream."""
        p = self.reader.readline(self.buffer_size)
        if not p:
            return None

        if not p.endswith(LINE_TERMINATOR) and len(p) == self.buffer_size:
            buf = bytearray(p)
            while True:
                p = self.reader.readline(self.buffer_size)
                buf += p
                if len(p) < self.buffer_size or p.endswith(LINE_TERMINATOR):
                    break
            p = bytes(buf)

        if not p.endswith(LINE_TERMINATOR):
            raise ProtocolError("bad response line terminator")
        return p[:-1]

    def read_header_line(self) -> Reply:
        line = self.read_line()
        if line is None:
            return Reply.eof()
        if not line:
            return Reply.empty()
        return Reply.line(line)
