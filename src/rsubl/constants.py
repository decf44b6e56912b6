from __future__ import annotations

VERSION = "0.1.2"

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 52698
DEFAULT_READ_TIMEOUT = 0.0  # seconds, 0 = block indefinitely
DEFAULT_WRITE_TIMEOUT = 0.0

DEFAULT_BUFFER_SIZE = 4096
COPY_CHUNK_SIZE = 64 * 1024

LINE_TERMINATOR = b"\n"
OPEN_TRAILER = b"\n.\n"

CMD_OPEN = "open"
CMD_SAVE = "save"
CMD_CLOSE = "close"

EXIT_OK = 0
EXIT_CONNECT_FAILED = 86
EXIT_CONNECTION_CLOSED = 87
