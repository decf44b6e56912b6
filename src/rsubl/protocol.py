from __future__ import annotations

import os
from dataclasses import dataclass

from .constants import CMD_CLOSE, CMD_OPEN, CMD_SAVE, OPEN_TRAILER
from .errors import ProtocolError


@dataclass(frozen=True, slots=True)
class OpenCommand:
    display_name: str
    real_path: str
    token: str
    size: int

    def header_bytes(self) -> bytes:
        lines = [
            CMD_OPEN,
            f"display-name: {self.display_name}",
            f"real-path: {self.real_path}",
            "data-on-save: yes",
            "re-activate: yes",
            "selection: 0",
            f"token: {self.token}",
            f"data: {self.size}",
        ]
        return ("\n".join(lines) + "\n").encode("utf-8")

    @staticmethod
    def trailer() -> bytes:
        return OPEN_TRAILER


@dataclass(frozen=True, slots=True)
class SaveCommand:
    token: str
    size: int


@dataclass(frozen=True, slots=True)
class CloseCommand:
    token: str


Command = OpenCommand | SaveCommand | CloseCommand


def display_name(path: str, hostname: str | None) -> str:
    base = os.path.basename(path)
    if hostname:
        return f"{hostname}:{base}"
    return base


def command_name(line: bytes) -> str | None:
    """Return the command a line names if it is one we handle from the peer."""
    name = line.decode("utf-8", errors="replace").strip()
    if name in (CMD_SAVE, CMD_CLOSE):
        return name
    return None


def parse_header(line: bytes) -> tuple[str, str]:
    text = line.decode("utf-8", errors="replace")
    key, sep, value = text.partition(":")
    if not sep:
        raise ProtocolError(f"malformed header line: {text!r}")
    return key.strip(), value.strip()


def parse_size(value: str) -> int:
    if not value.isdigit():
        raise ProtocolError(f"bad data size: {value!r}")
    return int(value)
