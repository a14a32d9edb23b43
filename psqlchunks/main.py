#!/usr/bin/env python3
"""
psqlchunks - command line entry point.

    psqlchunks list schema.sql -D users
    psqlchunks run -d mydb -U me --commit schema.sql
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from psqlchunks.config import settings
from psqlchunks.connectors.postgres_session import session_from_settings
from psqlchunks.core.chunk_runner import ChunkRunner
from psqlchunks.core.errors import DbError
from psqlchunks.core.filters import FilterChain, build_filter_chain
from psqlchunks.core.report import (
    format_chunk_listing,
    format_chunk_result,
    format_summary,
)
from psqlchunks.core.splitter import read_chunks

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CHUNK_FAILED = 1
EXIT_USAGE = 2
EXIT_DB_ERROR = 3
EXIT_INTERRUPTED = 130


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("filters")
    group.add_argument(
        "-l",
        "--lines",
        default=None,
        help="Comma separated line numbers; select chunks covering any of them.",
    )
    group.add_argument(
        "-D",
        "--description",
        default=None,
        help="Regular expression searched in the chunk description.",
    )
    group.add_argument(
        "-S",
        "--sql",
        default=None,
        help="Regular expression searched in the chunk SQL.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="psqlchunks",
        description="Run chunked SQL files against PostgreSQL, one savepoint per chunk.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More logging (repeat for debug output).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute the chunks of one or more files.")
    run.add_argument("files", nargs="+", help="SQL files ('-' for stdin).")
    run.add_argument("-H", "--host", default=None, help="Database host.")
    run.add_argument("-p", "--port", type=int, default=None, help="Database port.")
    run.add_argument("-d", "--database", default=None, help="Database name.")
    run.add_argument("-U", "--user", default=None, help="Database user.")
    run.add_argument(
        "-E",
        "--encoding",
        default=None,
        help="Client encoding (defaults to POSTGRES_CLIENT_ENCODING).",
    )
    run.add_argument(
        "-C",
        "--commit",
        action="store_true",
        help="Commit when every chunk succeeded (default is a dry run).",
    )
    _add_filter_args(run)

    lst = sub.add_parser("list", help="List the chunks of one or more files.")
    lst.add_argument("files", nargs="+", help="SQL files ('-' for stdin).")
    _add_filter_args(lst)
    return parser


def _configure_logging(verbosity: int) -> None:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.WARNING)
    if verbosity == 1:
        level = min(level, logging.INFO)
    elif verbosity > 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(settings.LOG_FILE)
            if settings.LOG_FILE
            else logging.NullHandler(),
        ],
    )
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def _filter_chain(args: argparse.Namespace) -> Optional[FilterChain]:
    chain, errors = build_filter_chain(
        lines=args.lines, description=args.description, sql=args.sql
    )
    if errors:
        for err in errors:
            print(f"psqlchunks: {err}", file=sys.stderr)
        return None
    return chain


def _list_chunks(args: argparse.Namespace, chain: FilterChain) -> int:
    for path in args.files:
        print(f"{path}:")
        for chunk in chain.select(read_chunks(path)):
            print(f"  {format_chunk_listing(chunk)}")
    return EXIT_OK


def _install_cancel_handler(runner: ChunkRunner, interrupted: asyncio.Event) -> bool:
    """
    Route SIGINT to a server-side cancel of the running chunk.

    ``interrupted`` is set so the caller stops feeding chunks.
    """
    loop = asyncio.get_running_loop()

    async def _cancel() -> None:
        ok, errmsg = await runner.cancel()
        if ok:
            logger.warning("cancel requested for the running chunk")
        else:
            logger.error(f"could not cancel running query: {errmsg}")

    pending: set[asyncio.Task] = set()

    def _on_sigint() -> None:
        interrupted.set()
        task = loop.create_task(_cancel())
        pending.add(task)
        task.add_done_callback(pending.discard)

    try:
        loop.add_signal_handler(signal.SIGINT, _on_sigint)
    except (NotImplementedError, RuntimeError):
        return False
    return True


async def _run_chunks(args: argparse.Namespace, chain: FilterChain) -> int:
    session = session_from_settings(
        host=args.host, port=args.port, database=args.database, user=args.user
    )
    encoding = args.encoding or settings.POSTGRES_CLIENT_ENCODING
    any_failed = False
    interrupted = asyncio.Event()

    async with ChunkRunner(session, do_commit=args.commit) as runner:
        if encoding and not await runner.set_encoding(encoding):
            print(
                f"psqlchunks: could not set client encoding {encoding!r}: "
                f"{runner.get_error_message().strip()}",
                file=sys.stderr,
            )
            return EXIT_USAGE

        cancel_installed = _install_cancel_handler(runner, interrupted)
        try:
            for path in args.files:
                chunks = chain.select(read_chunks(path))
                ran = []
                for chunk in chunks:
                    if interrupted.is_set():
                        break
                    await runner.run_chunk(chunk)
                    ran.append(chunk)
                    print(format_chunk_result(chunk, source=path))
                if interrupted.is_set():
                    # an interrupted run is never committed
                    runner.do_commit = False
                outcome = await runner.finalize()
                print(format_summary(ran, outcome))
                any_failed = any_failed or outcome.failed_count > 0
                if interrupted.is_set():
                    break
        finally:
            if cancel_installed:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

    if interrupted.is_set():
        print("psqlchunks: interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    return EXIT_CHUNK_FAILED if any_failed else EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    chain = _filter_chain(args)
    if chain is None:
        return EXIT_USAGE

    try:
        if args.command == "list":
            return _list_chunks(args, chain)
        return asyncio.run(_run_chunks(args, chain))
    except OSError as e:
        print(f"psqlchunks: {e}", file=sys.stderr)
        return EXIT_USAGE
    except DbError as e:
        print(f"psqlchunks: {e}", file=sys.stderr)
        return EXIT_DB_ERROR
    except KeyboardInterrupt:
        print("psqlchunks: interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
