from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from typing import Iterator


def canonical_path(path: str) -> str:
    return os.path.abspath(path)


def make_token(path: str) -> str:
    """Correlation token for a file: md5 hex digest of its absolute path."""
    return hashlib.md5(canonical_path(path).encode("utf-8"), usedforsecurity=False).hexdigest()


@dataclass(frozen=True, slots=True)
class Session:
    token: str
    path: str


class SessionRegistry:
    """Files currently open in the remote editor, keyed by token."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def register(self, path: str) -> Session:
        session = Session(token=make_token(path), path=canonical_path(path))
        self._sessions[session.token] = session
        return session

    def get(self, token: str) -> Session | None:
        return self._sessions.get(token)

    def remove(self, token: str) -> Session | None:
        return self._sessions.pop(token, None)

    def __contains__(self, token: object) -> bool:
        return token in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
