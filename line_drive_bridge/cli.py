"""Command-line interface for the LINE to Google Drive bridge.

WHY: Operators need to run the webhook server, re-run a captured webhook
body through the archive logic (to recover from an outage, or to see
what a payload would do), and check that the Drive credentials work,
all without writing code.

HOW: argparse subcommands. ``serve`` starts uvicorn with the FastAPI app.
``replay`` parses a saved webhook body exactly like the server does and
runs it through MessageBridge: against Drive, against a local directory
with --local, or against an in-memory store with --dry-run, whose
resulting files are printed. ``check-drive`` fetches the root folder's
metadata. Async work runs via asyncio.run().

RULES:
- Status messages go to stderr; results go to stdout
- Configuration errors exit with status 1 and a one-line message
- Logging is configured once here (LOG_LEVEL, or --verbose for DEBUG)
- replay --dry-run never talks to Drive
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path
from typing import List, Optional

import jsonschema

from line_drive_bridge import __version__
from line_drive_bridge.config import LINE_CHANNEL_SECRET, LOG_LEVEL, load_drive_credentials
from line_drive_bridge.core.bridge import MessageBridge
from line_drive_bridge.core.models import EventOutcome
from line_drive_bridge.core.signature import sign
from line_drive_bridge.core.source import PARTITIONERS
from line_drive_bridge.line.client import LineClient
from line_drive_bridge.storage.base import StorageAPIError
from line_drive_bridge.storage.drive import GoogleDriveStorage
from line_drive_bridge.storage.local import LocalFileStorage
from line_drive_bridge.storage.memory import InMemoryStorage

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _status(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


def _format_outcome(outcome: EventOutcome) -> str:
    if not outcome.success:
        state = "FAILED ({})".format(outcome.error)
    elif outcome.skipped:
        state = "skipped"
    else:
        state = "ok"
    line = "#{} {}: {}".format(outcome.index, outcome.event_type, state)
    if outcome.file_name:
        line += " -> {} ({})".format(outcome.file_name, outcome.file_id)
    return line


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_serve(args: argparse.Namespace) -> None:
    from line_drive_bridge.server.app import run_api

    run_api(host=args.host, port=args.port)


async def _replay(args: argparse.Namespace) -> None:
    from line_drive_bridge.server.app import parse_webhook_body

    body_path = Path(args.body)
    if not body_path.is_file():
        _fail("File not found: {}".format(body_path))
    raw_body = body_path.read_bytes()

    if args.print_signature:
        if not LINE_CHANNEL_SECRET:
            _fail("LINE_CHANNEL_SECRET is not set")
        print(sign(raw_body, LINE_CHANNEL_SECRET))
        return

    try:
        events = parse_webhook_body(raw_body)
    except ValueError as exc:
        _fail("Invalid JSON: {}".format(exc))
    except jsonschema.ValidationError as exc:
        _fail("Malformed webhook body: {}".format(exc.message))

    _status("Replaying {} event(s) from {}".format(len(events), body_path))

    async with AsyncExitStack() as stack:
        try:
            line = await stack.enter_async_context(LineClient())
        except ValueError as exc:
            if not (args.dry_run or args.local):
                _fail(str(exc))
            _status("No LINE token configured; attachments will fail ({})".format(exc))
            line = None

        if args.dry_run:
            storage = InMemoryStorage()
            root_id = storage.root_id
        elif args.local:
            storage = await stack.enter_async_context(LocalFileStorage(args.local))
            root_id = storage.root_id
        else:
            try:
                credentials = load_drive_credentials()
            except ValueError as exc:
                _fail(str(exc))
            storage = await stack.enter_async_context(GoogleDriveStorage(credentials))
            root_id = credentials.root_folder_id

        bridge = MessageBridge(storage, root_id, line=line, partition_strategy=args.strategy)
        outcomes = await bridge.handle_events(events)

    for outcome in outcomes:
        print(_format_outcome(outcome))

    if args.dry_run:
        _print_memory_tree(storage)

    if any(not o.success for o in outcomes):
        sys.exit(1)


def _print_memory_tree(storage: InMemoryStorage) -> None:
    """Print every stored file with its folder path; text logs with content."""
    paths = {}
    for container_id, stored in storage.containers.items():
        parent = paths.get(stored.ref.parent_id, "")
        paths[container_id] = "{}/{}".format(parent, stored.ref.name) if parent else stored.ref.name

    for stored in storage.files.values():
        print("\n== {}/{} ==".format(paths.get(stored.ref.parent_id, "?"), stored.ref.name))
        if stored.ref.mime_type and stored.ref.mime_type.startswith("text/"):
            print(stored.content.decode("utf-8"), end="")
        else:
            print("<{} bytes, {}>".format(len(stored.content), stored.ref.mime_type))


async def _check_drive(args: argparse.Namespace) -> None:
    try:
        credentials = load_drive_credentials()
    except ValueError as exc:
        _fail(str(exc))

    try:
        async with GoogleDriveStorage(credentials) as drive:
            root = await drive.get_container(credentials.root_folder_id)
    except StorageAPIError as exc:
        _fail(str(exc))
    _status("Drive connection OK")
    print("Root folder: {} ({})".format(root.name, root.id))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    RULES:
    - serve: --host, --port
    - replay: body (positional), --dry-run, --local, --strategy, --print-signature
    - check-drive: no arguments
    """
    parser = argparse.ArgumentParser(
        prog="line-drive-bridge",
        description="Archive LINE messages to Google Drive.",
    )
    parser.add_argument("--version", action="version", version="%(prog)s " + __version__)
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log at DEBUG level instead of LOG_LEVEL.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the webhook server.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")

    replay = sub.add_parser("replay", help="Run a saved webhook body through the bridge.")
    replay.add_argument("body", help="Path to a JSON webhook body.")
    replay.add_argument(
        "--dry-run",
        action="store_true",
        help="Use an in-memory store and print the resulting files instead of writing to Drive.",
    )
    replay.add_argument(
        "--local",
        metavar="DIR",
        default=None,
        help="Archive into this local directory instead of Google Drive.",
    )
    replay.add_argument(
        "--strategy",
        choices=sorted(PARTITIONERS),
        default=None,
        help="Partition strategy (default: PARTITION_STRATEGY env).",
    )
    replay.add_argument(
        "--print-signature",
        action="store_true",
        help="Only print the x-line-signature value for the body and exit.",
    )

    sub.add_parser("check-drive", help="Check the Google Drive credentials and root folder.")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``python -m line_drive_bridge`` and the console script.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
    )

    if args.command == "serve":
        _cmd_serve(args)
    elif args.command == "replay":
        asyncio.run(_replay(args))
    elif args.command == "check-drive":
        asyncio.run(_check_drive(args))


if __name__ == "__main__":
    main()
