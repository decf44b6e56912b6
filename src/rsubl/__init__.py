"""rsubl: remote editing client for rmate-compatible editors

Hands local files to an editor listening on a (usually ssh-forwarded) port
and writes back whatever the editor saves, until every file is closed.

- clear separation of line framing, channel failure handling and the
  command state machine
- one connection, one thread, blocking I/O bounded by optional timeouts
"""

from .constants import VERSION
from .driver import Config, Driver, DriverResult, Outcome, run_session
from .errors import (
    ChannelFatalError,
    CommandError,
    FilesystemError,
    ProtocolError,
    RsublError,
    SessionError,
)

__version__ = VERSION

__all__ = [
    "ChannelFatalError",
    "CommandError",
    "Config",
    "Driver",
    "DriverResult",
    "FilesystemError",
    "Outcome",
    "ProtocolError",
    "RsublError",
    "SessionError",
    "run_session",
]
