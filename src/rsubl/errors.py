from __future__ import annotations


class RsublError(Exception):
    pass


class ChannelFatalError(RsublError):
    """First failure seen on a channel. Latched and re-raised by every later operation."""


class CommandError(RsublError):
    """A single command failed; the connection stays usable."""


class ProtocolError(CommandError):
    pass


class SessionError(CommandError):
    pass


class FilesystemError(CommandError):
    pass
