"""
Stream coordinator: drives one run from an event source into session state.

The coordinator owns the run's phase machine

    idle -> starting -> active -> {finished, errored, cancelled}

and folds every event through the accumulator. All writes go through a
``StateStore`` so they serialize with writes made outside the run (a user
message appended while the run drains). Errors never escape iteration; they
arrive as the ``error`` of the terminal notification.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
import logging
import threading
from typing import Protocol

from ._exceptions import (
    AguiError,
    RemoteRunError,
    TransportError,
    UnexpectedEventError,
)
from ._types import RunState, RunStatus, RunWarning
from .accumulator import Reduction, apply, close_open
from .events import Event, RunErrorEvent, RunFinishedEvent, RunStartedEvent
from .transport import EventSource

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    """Phase of a single run."""

    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    FINISHED = "finished"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            CoordinatorState.FINISHED,
            CoordinatorState.ERRORED,
            CoordinatorState.CANCELLED,
        )


@dataclass
class Notification:
    """State change emitted for each applied event, plus one terminal notice.

    ``event`` is None when the change was not caused by an event (cancellation,
    transport failure, stream ending early).
    """

    event: Event | None
    status: CoordinatorState
    state: RunState
    warnings: list[RunWarning] = field(default_factory=list)
    error: AguiError | None = None

    @property
    def terminal(self) -> bool:
        return self.status.is_terminal


class StateStore(Protocol):
    """Serialized owner of a RunState."""

    @property
    def state(self) -> RunState: ...

    def commit(self, update: Callable[[RunState], Reduction]) -> Reduction:
        """Apply ``update`` under the store's lock; keep the result if it has no error."""
        ...


class StreamCoordinator:
    """Consumes one run's event source and keeps the store in sync.

    Iterate to drive the run; each step pulls exactly one event and fully folds
    it before the next is requested.
    """

    def __init__(self, source: EventSource, store: StateStore):
        self._source = source
        self._store = store
        self._phase = CoordinatorState.IDLE
        self._cancel_requested = threading.Event()
        self._error: AguiError | None = None
        self._consumed = False
        self._run_id: str | None = None

    @property
    def phase(self) -> CoordinatorState:
        return self._phase

    @property
    def error(self) -> AguiError | None:
        return self._error

    def _commit(
        self,
        update: Callable[[RunState], Reduction],
        phase: CoordinatorState | None = None,
    ) -> Reduction | None:
        """Commit an update unless the run was cancelled. Returns None if cancelled."""
        cancelled = False

        def guarded(state: RunState) -> Reduction:
            nonlocal cancelled
            if self._cancel_requested.is_set():
                cancelled = True
                return Reduction(state=state)
            reduction = update(state)
            if reduction.ok:
                if reduction.warnings:
                    reduction = replace(
                        reduction,
                        state=replace(
                            reduction.state,
                            warnings=[*reduction.state.warnings, *reduction.warnings],
                        ),
                    )
                if phase is not None:
                    self._phase = phase
            return reduction

        reduction = self._store.commit(guarded)
        return None if cancelled else reduction

    def _fail(self, event: Event | None, error: AguiError) -> Notification | None:
        def mark(state: RunState) -> Reduction:
            return Reduction(state=replace(state, status=RunStatus.ERRORED, error=error))

        reduction = self._commit(mark, phase=CoordinatorState.ERRORED)
        if reduction is None:
            return None
        self._error = error
        logger.warning("Run %s errored (%s): %s", self._run_id, error.code, error.message)
        return Notification(
            event=event,
            status=CoordinatorState.ERRORED,
            state=reduction.state,
            error=error,
        )

    def _finish(self, event: RunFinishedEvent) -> Notification | None:
        def finish(state: RunState) -> Reduction:
            closing = close_open(state)
            finished = apply(closing.state, event)
            return Reduction(
                state=replace(finished.state, status=RunStatus.FINISHED),
                warnings=closing.warnings,
            )

        reduction = self._commit(finish, phase=CoordinatorState.FINISHED)
        if reduction is None:
            return None
        for warning in reduction.warnings:
            logger.warning("Run %s: %s", self._run_id, warning.message)
        logger.info("Run %s finished", self._run_id)
        return Notification(
            event=event,
            status=CoordinatorState.FINISHED,
            state=reduction.state,
            warnings=reduction.warnings,
        )

    def _handle(self, event: Event) -> Notification | None:
        logger.debug("Run %s event %s", self._run_id, event.type.value)

        if isinstance(event, RunErrorEvent):
            return self._fail(event, RemoteRunError(event.message, code=event.code))

        if self._phase == CoordinatorState.IDLE:
            if not isinstance(event, RunStartedEvent):
                return self._fail(
                    event,
                    UnexpectedEventError(
                        f"First event must be RUN_STARTED, got {event.type.value}"
                    ),
                )
            self._run_id = event.run_id
            logger.info("Run %s started", event.run_id)
            reduction = self._commit(lambda s: apply(s, event), phase=CoordinatorState.STARTING)
            if reduction is None:
                return None
            return Notification(event=event, status=self._phase, state=reduction.state)

        if isinstance(event, RunStartedEvent):
            return self._fail(
                event,
                UnexpectedEventError(
                    f"RUN_STARTED received again while run {self._run_id} is live"
                ),
            )

        if isinstance(event, RunFinishedEvent):
            return self._finish(event)

        reduction = self._commit(lambda s: apply(s, event), phase=CoordinatorState.ACTIVE)
        if reduction is None:
            return None
        if reduction.error is not None:
            return self._fail(event, reduction.error)
        for warning in reduction.warnings:
            logger.warning("Run %s: %s", self._run_id, warning.message)
        return Notification(
            event=event,
            status=self._phase,
            state=reduction.state,
            warnings=reduction.warnings,
        )

    def _terminal_notification(self) -> Notification:
        return Notification(
            event=None,
            status=self._phase,
            state=self._store.state,
            error=self._error,
        )

    def _drive(self) -> Iterator[Notification]:
        if self._phase.is_terminal:
            yield self._terminal_notification()
            return

        events = iter(self._source)
        while True:
            try:
                event = next(events)
            except StopIteration:
                if not self._phase.is_terminal:
                    self._fail(None, TransportError("Event stream ended before RUN_FINISHED"))
                break
            except AguiError as e:
                if not self._cancel_requested.is_set():
                    self._fail(None, e)
                break
            except Exception as e:
                # Anything else raised while reading the source is a transport failure.
                if not self._cancel_requested.is_set():
                    self._fail(None, TransportError(f"{type(e).__name__}: {e}"))
                break

            notification = self._handle(event)
            if notification is None:
                break
            yield notification
            if notification.terminal:
                return
            if self._phase.is_terminal:
                # cancelled while the consumer held the notification
                break

        yield self._terminal_notification()

    def __iter__(self) -> Iterator[Notification]:
        if self._consumed:
            raise RuntimeError("A run's notification stream can only be consumed once")
        self._consumed = True
        try:
            yield from self._drive()
        finally:
            # Consumer walked away before a terminal phase: treat as cancellation.
            if not self._phase.is_terminal:
                self.cancel()
            self._source.close()

    def cancel(self) -> bool:
        """
        Stop the run: close the source and forbid further state changes.

        Returns:
            True if this call cancelled the run, False if it was already terminal
        """
        if self._phase.is_terminal:
            return False

        cancelled = False

        def mark(state: RunState) -> Reduction:
            nonlocal cancelled
            if self._phase.is_terminal:
                return Reduction(state=state)
            cancelled = True
            self._cancel_requested.set()
            self._phase = CoordinatorState.CANCELLED
            return Reduction(state=replace(state, status=RunStatus.CANCELLED))

        self._store.commit(mark)
        if cancelled:
            self._source.close()
            logger.info("Run %s cancelled", self._run_id)
        return cancelled
