"""
=============================================================================
COMMAND-LINE INTERFACE
=============================================================================

Two tools, also reachable as subcommands of `python -m echobench`:

    # Echo responder on port 7000 with 4 worker processes
    echo-server -p 7000 -n 4

    # Same, level-triggered polling instead of edge-triggered epoll
    echo-server -p 7000 -n 4 --strategy poll

    # 1000 clients over 4 workers, "PING" echoed 1 + 2 times per
    # connection, stop after 10 seconds
    echo-client -h localhost -p 7000 -n 4 -c 1000 -d PING -r 2 -t 10000

    python -m echobench server -p 7000 -n 4
    python -m echobench client -h localhost -p 7000 -n 4 -c 1000 -d PING -r 2

Note that -h is the HOST for the client, not help; help is
--help only.

EXIT CODES
──────────
    0    normal or interrupted shutdown
    64   usage error (EX_USAGE): missing or invalid options, nothing started
    71   OS error (EX_OSERR): socket, epoll, fork or lock setup failed

=============================================================================
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from . import __version__
from .config import (
    CLIENT_STRATEGIES,
    LOG_FORMATS,
    LOG_LEVELS,
    SERVER_STRATEGIES,
    ClientConfig,
    ResponderConfig,
)
from .errors import EX_USAGE, FatalError, UsageError
from .log import setup_logging
from .supervisor import run_client, run_responder


logger = logging.getLogger(__name__)


class UsageParser(argparse.ArgumentParser):
    """ArgumentParser that exits with EX_USAGE instead of 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EX_USAGE, f"{self.prog}: error: {message}\n")


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=LOG_LEVELS,
        default=os.getenv("ECHOBENCH_LOG_LEVEL", "INFO").upper(),
        help="Logging level (default: INFO, env ECHOBENCH_LOG_LEVEL)"
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=os.getenv("ECHOBENCH_LOG_FORMAT", "text"),
        help="Log line format (default: text, env ECHOBENCH_LOG_FORMAT)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"echobench {__version__}"
    )


def build_server_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = UsageParser(
        prog=prog,
        description="TCP echo responder with forked worker processes",
    )

    parser.add_argument("--port", "-p", type=int, required=True,
                        help="Port to listen on")
    parser.add_argument("--workers", "-n", type=int, required=True,
                        help="Number of worker processes")

    parser.add_argument("--host", default="0.0.0.0",
                        help="Interface to bind (default: 0.0.0.0)")
    parser.add_argument("--strategy", choices=SERVER_STRATEGIES, default="epoll",
                        help="Connection handling per worker (default: epoll)")
    parser.add_argument("--buffer-size", type=int, default=1024,
                        help="Bytes per recv() call (default: 1024)")
    parser.add_argument("--backlog", type=int, default=1024,
                        help="Listen backlog (default: 1024)")
    parser.add_argument("--max-threads", type=int, default=64,
                        help="Accepting threads per worker, thread strategy only (default: 64)")

    _add_logging_arguments(parser)
    return parser


def build_client_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    # -h is the host, so help has to be long-form only
    parser = UsageParser(
        prog=prog,
        description="Load-generating TCP echo client with forked worker processes",
        add_help=False,
    )
    parser.add_argument("--help", action="help",
                        help="Show this help message and exit")

    parser.add_argument("--host", "-h", required=True,
                        help="Server host name or address")
    parser.add_argument("--port", "-p", type=int, required=True,
                        help="Server port")
    parser.add_argument("--workers", "-n", type=int, required=True,
                        help="Number of worker processes")
    parser.add_argument("--clients", "-c", type=int, required=True,
                        help="Total concurrent clients, split across workers")
    parser.add_argument("--data", "-d", required=True,
                        help="Payload each client sends")
    parser.add_argument("--retransmits", "-r", type=int, required=True,
                        help="Extra sends per connection after the first")
    parser.add_argument("--duration", "-t", type=int, default=None,
                        help="Run time in milliseconds (default: until interrupted)")

    parser.add_argument("--strategy", choices=CLIENT_STRATEGIES, default="epoll",
                        help="Readiness loop per worker (default: epoll)")
    parser.add_argument("--buffer-size", type=int, default=1024,
                        help="Bytes per recv() call (default: 1024)")
    parser.add_argument("--connect-attempts", type=int, default=10,
                        help="Socket creation retries per slot (default: 10)")

    _add_logging_arguments(parser)
    return parser


def parse_server_args(argv: Optional[List[str]] = None, prog: Optional[str] = None) -> ResponderConfig:
    """
    Translate command-line arguments into a validated ResponderConfig.

    Raises:
        UsageError: If the values are out of range.
        SystemExit: With EX_USAGE, if options are missing or malformed.
    """
    args = build_server_parser(prog).parse_args(argv)
    config = ResponderConfig(
        port=args.port,
        workers=args.workers,
        host=args.host,
        strategy=args.strategy,
        buffer_size=args.buffer_size,
        backlog=args.backlog,
        max_threads=args.max_threads,
        log_level=args.log_level,
        log_format=args.log_format,
    )
    config.validate()
    return config


def parse_client_args(argv: Optional[List[str]] = None, prog: Optional[str] = None) -> ClientConfig:
    """Translate command-line arguments into a validated ClientConfig."""
    args = build_client_parser(prog).parse_args(argv)
    config = ClientConfig(
        host=args.host,
        port=args.port,
        workers=args.workers,
        clients=args.clients,
        payload=args.data.encode(),
        retransmits=args.retransmits,
        duration=args.duration / 1000.0 if args.duration is not None else None,
        strategy=args.strategy,
        buffer_size=args.buffer_size,
        connect_attempts=args.connect_attempts,
        log_level=args.log_level,
        log_format=args.log_format,
    )
    config.validate()
    return config


def _run(parse, runner, argv, prog) -> int:
    try:
        config = parse(argv, prog)
    except UsageError as e:
        print(f"{prog or os.path.basename(sys.argv[0])}: error: {e}", file=sys.stderr)
        return e.exit_code

    setup_logging(config.log_level, config.log_format)

    try:
        return runner(config)
    except FatalError as e:
        logger.error(f"Fatal: {e}")
        return e.exit_code


def server_main(argv: Optional[List[str]] = None, prog: Optional[str] = None) -> int:
    """Entry point of echo-server."""
    return _run(parse_server_args, run_responder, argv, prog)


def client_main(argv: Optional[List[str]] = None, prog: Optional[str] = None) -> int:
    """Entry point of echo-client."""
    return _run(parse_client_args, run_client, argv, prog)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point of `python -m echobench {server,client} ...`.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    commands = {"server": server_main, "client": client_main}

    if not argv or argv[0] not in commands:
        print("usage: python -m echobench {server,client} [options]", file=sys.stderr)
        if argv and argv[0] in ("--help", "-h"):
            return 0
        return EX_USAGE

    command = argv.pop(0)
    return commands[command](argv, prog=f"echobench {command}")
