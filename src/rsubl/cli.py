from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from .constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
    EXIT_CONNECT_FAILED,
    EXIT_CONNECTION_CLOSED,
    EXIT_OK,
    VERSION,
)
from .driver import Config, DriverResult, Outcome, run_session

EXIT_CODES = {
    Outcome.NO_OPEN_FILES: EXIT_OK,
    Outcome.CONNECT_FAILED: EXIT_CONNECT_FAILED,
    Outcome.CONNECTION_CLOSED: EXIT_CONNECTION_CLOSED,
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rsubl",
        description="Edit files on a remote server over ssh in Sublime 3.",
        usage="%(prog)s [options] file1 [file2 ...]",
    )
    p.add_argument("--host", default=os.getenv("RSUBL_HOST", DEFAULT_HOST), help="Connect to host.")
    p.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("RSUBL_PORT", str(DEFAULT_PORT))),
        help="Port number to use for connection.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="verbose logging messages.")
    p.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    p.add_argument("--read-timeout", type=float, default=DEFAULT_READ_TIMEOUT, help="seconds, 0 waits forever")
    p.add_argument("--write-timeout", type=float, default=DEFAULT_WRITE_TIMEOUT, help="seconds, 0 waits forever")
    p.add_argument("--json", action="store_true", help="print a JSON summary on exit")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}", help="print the version")
    p.add_argument("files", nargs="*")
    return p


def configure_logging(args: argparse.Namespace) -> None:
    level = args.log_level or ("INFO" if args.verbose else "WARNING")
    logging.basicConfig(level=getattr(logging, level), format="%(asctime)s [%(levelname)s] %(message)s")


def summarize(result: DriverResult) -> dict:
    stats = result.stats
    return {
        "outcome": result.outcome.value,
        "files_opened": stats.files_opened,
        "open_failures": stats.open_failures,
        "saves": stats.saves,
        "bytes_saved": stats.bytes_saved,
        "closes": stats.closes,
        "command_errors": stats.command_errors,
        "seconds": stats.duration_s,
    }


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.files:
        parser.print_help()
        return EXIT_OK

    configure_logging(args)
    config = Config(
        host=args.host,
        port=args.port,
        read_timeout=args.read_timeout,
        write_timeout=args.write_timeout,
    )
    result = run_session(config, args.files)

    if result.outcome is Outcome.CONNECT_FAILED:
        print(f"connect {config.host}:{config.port} failed", file=sys.stderr)
    elif result.outcome is Outcome.CONNECTION_CLOSED:
        print("connection close and exit", file=sys.stderr)

    payload = summarize(result)
    if args.json:
        print(json.dumps(payload, indent=2))
    elif args.verbose:
        print(payload)
    return EXIT_CODES[result.outcome]


if __name__ == "__main__":
    raise SystemExit(main())
