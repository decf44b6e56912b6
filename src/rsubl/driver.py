from __future__ import annotations

import enum
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Sequence

from .constants import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_READ_TIMEOUT, DEFAULT_WRITE_TIMEOUT
from .dispatcher import CommandDispatcher
from .errors import ChannelFatalError, CommandError
from .net import Channel
from .protocol import CloseCommand, SaveCommand
from .sessions import SessionRegistry


class Outcome(enum.Enum):
    CONNECT_FAILED = "connect_failed"
    NO_OPEN_FILES = "no_open_files"
    CONNECTION_CLOSED = "connection_closed"


@dataclass(frozen=True, slots=True)
class Config:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    write_timeout: float = DEFAULT_WRITE_TIMEOUT


@dataclass(slots=True)
class SessionStats:
    files_opened: int = 0
    open_failures: int = 0
    saves: int = 0
    bytes_saved: int = 0
    closes: int = 0
    command_errors: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)


@dataclass(frozen=True, slots=True)
class DriverResult:
    outcome: Outcome
    stats: SessionStats
    error: Exception | None = None


def local_hostname() -> str | None:
    try:
        return socket.gethostname() or None
    except OSError:
        return None


@dataclass(slots=True)
class Driver:
    """Runs one connection: greeting, one ``open`` per file, then the command loop."""

    channel: Channel
    paths: Sequence[str]
    registry: SessionRegistry = field(default_factory=SessionRegistry)
    hostname: str | None = None

    def run(self) -> DriverResult:
        stats = SessionStats()
        dispatcher = CommandDispatcher(self.channel, self.registry, hostname=self.hostname)

        try:
            greeting = self.channel.receive_line()
            if greeting.is_line:
                logging.info("response: %s", greeting.data.decode("utf-8", errors="replace"))
        except ChannelFatalError as e:
            logging.warning("no greeting from peer: %s", e)

        for path in self.paths:
            try:
                dispatcher.open(path)
            except (CommandError, ChannelFatalError) as e:
                stats.open_failures += 1
                logging.warning("send file %s error (%s)", path, e)
            else:
                stats.files_opened += 1
                logging.info("send file %s success", path)

        outcome, error = self._loop(dispatcher, stats)
        stats.end_ts = time.monotonic()
        return DriverResult(outcome=outcome, stats=stats, error=error)

    def _loop(self, dispatcher: CommandDispatcher, stats: SessionStats) -> tuple[Outcome, Exception | None]:
        if self.channel.err is not None:
            return Outcome.CONNECTION_CLOSED, self.channel.err

        while True:
            if len(self.registry) == 0:
                logging.info("exit, no open files")
                return Outcome.NO_OPEN_FILES, None

            try:
                reply = self.channel.receive_line()
            except ChannelFatalError as e:
                logging.error("connection close and exit: %s", e)
                return Outcome.CONNECTION_CLOSED, e

            if reply.is_eof:
                logging.error("connection close and exit: peer closed the stream")
                return Outcome.CONNECTION_CLOSED, None
            if reply.is_empty:
                continue

            try:
                cmd = dispatcher.handle(reply.data)
            except ChannelFatalError as e:
                logging.error("connection close and exit: %s", e)
                return Outcome.CONNECTION_CLOSED, e
            except CommandError as e:
                stats.command_errors += 1
                logging.warning("%s", e)
                continue

            if isinstance(cmd, SaveCommand):
                stats.saves += 1
                stats.bytes_saved += cmd.size
            elif isinstance(cmd, CloseCommand):
                stats.closes += 1


def run_session(config: Config, paths: Sequence[str]) -> DriverResult:
    try:
        channel = Channel.connect(
            config.host,
            config.port,
            read_timeout=config.read_timeout,
            write_timeout=config.write_timeout,
        )
    except OSError as e:
        logging.error("connect %s:%d failed: %s", config.host, config.port, e)
        return DriverResult(outcome=Outcome.CONNECT_FAILED, stats=SessionStats(end_ts=time.monotonic()), error=e)

    logging.info("connect %s:%d success", config.host, config.port)
    with channel:
        return Driver(channel, paths, hostname=local_hostname()).run()
