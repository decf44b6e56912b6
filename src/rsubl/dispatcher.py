from __future__ import annotations

import contextlib
import enum
import logging
import os
import stat
import tempfile
from dataclasses import dataclass, field

from .constants import CMD_CLOSE, CMD_SAVE
from .errors import ChannelFatalError, FilesystemError, ProtocolError, SessionError
from .net import Channel
from .protocol import (
    CloseCommand,
    Command,
    OpenCommand,
    SaveCommand,
    command_name,
    display_name,
    parse_header,
    parse_size,
)
from .sessions import SessionRegistry, canonical_path, make_token


class DispatcherState(enum.Enum):
    IDLE = "idle"
    AWAITING_COMMAND = "awaiting_command"
    HANDLING_CLOSE = "handling_close"
    HANDLING_SAVE = "handling_save"
    CLOSED = "closed"


@dataclass(slots=True)
class CommandDispatcher:
    """Protocol state machine for one connection.

    Sends ``open`` for local files and applies the ``save`` and ``close``
    commands the editor sends back. Recoverable failures are raised as
    ``CommandError`` subclasses and leave the dispatcher awaiting the next
    command; a ``ChannelFatalError`` moves it to ``CLOSED``.
    """

    channel: Channel
    registry: SessionRegistry
    hostname: str | None = None
    state: DispatcherState = field(default=DispatcherState.IDLE)

    def open(self, path: str) -> OpenCommand:
        if os.path.isdir(path):
            raise FilesystemError(f"{path}: only files can be edited")
        try:
            f = open(path, "rb") if os.path.exists(path) else open(path, "w+b")
        except OSError as e:
            raise FilesystemError(f"{path}: {e}") from e

        with f:
            try:
                size = os.fstat(f.fileno()).st_size
            except OSError as e:
                raise FilesystemError(f"{path}: {e}") from e

            cmd = OpenCommand(
                display_name=display_name(path, self.hostname),
                real_path=canonical_path(path),
                token=make_token(path),
                size=size,
            )
            logging.debug("open %s token=%s size=%d", cmd.real_path, cmd.token, size)
            with self._guard():
                self.channel.send(cmd.header_bytes())
                sent = self.channel.send_file(f, limit=size)
                if sent < size:
                    # declared length is binding; keep the frame intact
                    logging.warning("%s shrank while sending: declared %d bytes, padding %d", path, size, size - sent)
                    self.channel.send(b"\0" * (size - sent))
                self.channel.send(cmd.trailer())
                self.channel.flush()

        self.registry.register(path)
        if self.state is DispatcherState.IDLE:
            self.state = DispatcherState.AWAITING_COMMAND
        return cmd

    def handle(self, line: bytes) -> Command | None:
        """Interpret one command line from the peer. Unknown commands are ignored."""
        name = command_name(line)
        if name is None:
            logging.debug("ignoring line %r", line)
            return None

        with self._guard():
            try:
                if name == CMD_CLOSE:
                    self.state = DispatcherState.HANDLING_CLOSE
                    return self._handle_close()
                self.state = DispatcherState.HANDLING_SAVE
                return self._handle_save()
            finally:
                if self.state is not DispatcherState.CLOSED:
                    self.state = DispatcherState.AWAITING_COMMAND

    @contextlib.contextmanager
    def _guard(self):
        try:
            yield
        except ChannelFatalError:
            self.state = DispatcherState.CLOSED
            raise

    def _read_headers(
        self, command: str, stop_at: str | None = None
    ) -> tuple[dict[str, str], ProtocolError | None]:
        """Read a header block up to its blank line, or up to the ``stop_at`` key.

        Malformed lines do not stop the read; the first one is returned as an
        error so the caller can raise it once the block has been consumed.
        """
        headers: dict[str, str] = {}
        bad: ProtocolError | None = None
        while True:
            reply = self.channel.receive_line()
            if reply.is_eof:
                raise ProtocolError(f"{command}: stream ended inside header block")
            if reply.is_empty:
                return headers, bad
            try:
                key, value = parse_header(reply.data)
            except ProtocolError as e:
                bad = bad or e
                continue
            headers[key] = value
            if key == stop_at:
                return headers, bad

    def _handle_close(self) -> CloseCommand:
        headers, bad = self._read_headers(CMD_CLOSE)
        if bad is not None:
            raise bad
        token = headers.get("token")
        if not token:
            raise ProtocolError("close: missing token")

        session = self.registry.remove(token)
        if session is None:
            logging.debug("close for unknown token %s", token)
        else:
            logging.info("close file %s", session.path)
        return CloseCommand(token=token)

    def _handle_save(self) -> SaveCommand:
        headers, bad = self._read_headers(CMD_SAVE, stop_at="data")
        if "data" not in headers:
            raise bad or ProtocolError("save: missing data size")
        cmd = SaveCommand(token=headers.get("token", ""), size=parse_size(headers["data"]))
        logging.info("save file token:%s size:%d", cmd.token, cmd.size)

        if bad is not None:
            self.channel.discard(cmd.size)
            raise bad

        if not cmd.token:
            self.channel.discard(cmd.size)
            raise ProtocolError("save: missing token")

        session = self.registry.get(cmd.token)
        if session is None:
            self.channel.discard(cmd.size)
            raise SessionError(f"save file error: unknown token {cmd.token}")

        path = session.path
        try:
            mode = stat.S_IMODE(os.stat(path).st_mode)
            fd, tmp = tempfile.mkstemp(prefix=".rsubl-", dir=os.path.dirname(os.path.abspath(path)))
        except OSError as e:
            self.channel.discard(cmd.size)
            raise FilesystemError(f"save file {path} failed: {e}") from e

        replaced = False
        try:
            with os.fdopen(fd, "wb") as out:
                self.channel.copy_n(out, cmd.size)
            os.replace(tmp, path)
            replaced = True
            os.chmod(path, mode)
        except OSError as e:
            raise FilesystemError(f"save file {path} failed: {e}") from e
        finally:
            if not replaced:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)

        logging.info("save file %s %d bytes success", path, cmd.size)
        return cmd
