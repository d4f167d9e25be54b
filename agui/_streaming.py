"""RunStream context manager wrapping a StreamCoordinator for developer-friendly streaming."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

from ._exceptions import AguiError
from ._types import Message, Role, RunState
from .coordinator import CoordinatorState, Notification, StreamCoordinator

if TYPE_CHECKING:
    from .session import AgentSession


class RunStream:
    """Iterable stream of state-change notifications. Use as context manager or iterate directly.

    Usage:
        with session.run() as stream:
            for notification in stream:
                render(notification.state)
        print(stream.text)  # last assistant message
    """

    def __init__(self, coordinator: StreamCoordinator, session: AgentSession):
        self._coordinator = coordinator
        self._session = session
        self._last: Notification | None = None

    def __iter__(self) -> Iterator[Notification]:
        for notification in self._coordinator:
            self._last = notification
            yield notification

    def __enter__(self) -> RunStream:
        return self

    def __exit__(self, *_: object) -> None:
        self.cancel()

    def cancel(self) -> bool:
        """Cancel the run (no-op once it reached a terminal phase)."""
        return self._coordinator.cancel()

    def wait(self) -> Notification:
        """Drain the stream and return the terminal notification."""
        for _ in self:
            pass
        assert self._last is not None
        return self._last

    @property
    def status(self) -> CoordinatorState:
        return self._coordinator.phase

    @property
    def error(self) -> AguiError | None:
        return self._coordinator.error

    @property
    def state(self) -> RunState:
        return self._session.state

    @property
    def messages(self) -> list[Message]:
        return list(self.state.messages)

    @property
    def text(self) -> str:
        """Content of the most recent assistant message, or empty string."""
        for message in reversed(self.state.messages):
            if message.role == Role.ASSISTANT and message.content:
                return message.content
        return ""

    @property
    def result(self) -> object:
        """Result carried by RUN_FINISHED, if any."""
        return self.state.result
