"""
Main CLI entry point for agui.

Runs a conversation turn against an AG-UI agent over HTTP and renders the
notification stream.
"""

import argparse
import logging
import sys
import uuid

from agui import __version__

from .._exceptions import AguiError
from ..coordinator import CoordinatorState
from ..session import AgentSession
from ..transport import HttpTransport
from .display import create_display
from .util import CANCELLED_EXIT, cancel_on_signal, graceful_main, parse_header

_EXIT_CODES = {
    CoordinatorState.FINISHED: 0,
    CoordinatorState.ERRORED: 1,
    CoordinatorState.CANCELLED: CANCELLED_EXIT,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agui",
        description="Client for AG-UI agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run = subparsers.add_parser("run", help="Send a message to an agent and stream its reply")
    run.add_argument("url", nargs="?", help="Agent endpoint (or set AGUI_URL environment variable)")
    run.add_argument("-m", "--message", required=True, help="User message to send")
    run.add_argument(
        "--format",
        choices=["verbose", "compact", "json"],
        default="verbose",
        help="Output format (default: verbose)",
    )
    run.add_argument(
        "-H",
        "--header",
        action="append",
        default=[],
        metavar="'Name: value'",
        help="Extra HTTP header, may be repeated",
    )
    run.add_argument("--thread-id", help="Continue an existing thread")
    run.add_argument(
        "--timeout",
        type=float,
        help="HTTP timeout in seconds (or set AGUI_TIMEOUT environment variable)",
    )
    return parser


def run_command(args: argparse.Namespace) -> int:
    """Execute ``agui run``."""
    try:
        headers = dict(parse_header(value) for value in args.header)
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    try:
        transport = HttpTransport(args.url, headers=headers, timeout=args.timeout)
        session = AgentSession(transport, thread_id=args.thread_id)
        session.add_message(
            {"id": str(uuid.uuid4()), "role": "user", "content": args.message}
        )
    except AguiError as e:
        print(f"❌ {e}")
        return 1

    display = create_display(args.format)
    display.start()
    stream = session.run()
    try:
        with stream, cancel_on_signal(stream.cancel):
            for notification in stream:
                display.on_notification(notification)
    finally:
        display.finish()

    return _EXIT_CODES.get(stream.status, 1)


def _real_main(argv: list[str]) -> int:
    """Real main CLI logic that handles command parsing and execution."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "run":
        return run_command(args)

    print(f"❌ Unknown command: {args.command}")
    return 1


def main() -> None:
    """Main CLI entry point with graceful interrupt handling."""
    code = graceful_main(_real_main, sys.argv[1:])
    raise SystemExit(code)


if __name__ == "__main__":
    main()
