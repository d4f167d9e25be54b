"""
Signal and argument helpers for the agui CLI.

A run in progress is stopped through its own cancellation path, so the
display still receives the cancelled notification and the command exits
with ``CANCELLED_EXIT``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
import contextlib
import logging
import signal
import sys
import threading
from typing import Any

logger = logging.getLogger(__name__)

CANCELLED_EXIT = 130  # POSIX: 128 + SIGINT (2)

_CANCEL_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextlib.contextmanager
def cancel_on_signal(cancel: Callable[[], Any]) -> Iterator[None]:
    """
    Route SIGINT and SIGTERM to ``cancel`` while the block runs.

    The first signal calls ``cancel`` on a helper thread, since the
    interrupted frame may be holding the session lock. A second signal
    raises KeyboardInterrupt. Previous handlers are restored on exit.

    Must be entered from the main thread.
    """
    signalled = threading.Event()

    def _handle(signum: int, _frame: Any) -> None:
        if signalled.is_set():
            raise KeyboardInterrupt()
        signalled.set()
        logger.info("Received %s, cancelling run", signal.Signals(signum).name)
        threading.Thread(target=cancel, name="agui-cancel", daemon=True).start()

    previous = {signum: signal.getsignal(signum) for signum in _CANCEL_SIGNALS}
    for signum in _CANCEL_SIGNALS:
        signal.signal(signum, _handle)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def parse_header(value: str) -> tuple[str, str]:
    """
    Split a ``Name: value`` header argument.

    Raises:
        ValueError: the argument has no colon or an empty name
    """
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise ValueError(f"Header must look like 'Name: value', got {value!r}")
    return name.strip(), header_value.strip()


def graceful_main(fn: Callable[[list[str]], int], argv: list[str]) -> int:
    """
    Run fn(argv), turning a Ctrl-C outside a run into ``CANCELLED_EXIT``.

    Returns:
        Exit code (130 for cancelled, or fn's return value)
    """
    try:
        return int(fn(argv) or 0)
    except KeyboardInterrupt:
        sys.stderr.write("\n✖ Cancelled\n")
        sys.stderr.flush()
        return CANCELLED_EXIT
