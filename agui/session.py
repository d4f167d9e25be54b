"""Agent session: the caller-facing owner of conversation state."""

from __future__ import annotations

from collections.abc import Callable, Iterable
import copy
from dataclasses import replace
import logging
import threading
from typing import Any
import uuid

from ._exceptions import AlreadyRunningError, DanglingReferenceError, ValidationError
from ._streaming import RunStream
from ._types import Context, Message, Role, RunAgentInput, RunState, RunStatus, Tool
from .accumulator import Reduction
from .coordinator import StreamCoordinator
from .transport import Transport

logger = logging.getLogger(__name__)


def _coerce_message(message: Message | dict) -> Message:
    if isinstance(message, Message):
        return message
    try:
        return Message.from_dict(message)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid message payload: {e}") from e


class AgentSession:
    """Conversation with one remote agent.

    Holds the RunState, starts runs over the transport, and accepts messages
    appended by the UI between (or while draining) runs. One lock serializes
    every write, whether it comes from the active run or from the caller.

    Usage:
        session = AgentSession(HttpTransport("https://agent.example.com/agui"))
        session.add_message({"id": "u1", "role": "user", "content": "Weather in NY?"})
        with session.run() as stream:
            for notification in stream:
                ...
    """

    def __init__(
        self,
        transport: Transport,
        *,
        thread_id: str | None = None,
        messages: Iterable[Message | dict] | None = None,
        state: Any = None,
        tools: Iterable[Tool] | None = None,
        context: Iterable[Context] | None = None,
    ):
        self._transport = transport
        self._lock = threading.RLock()
        self._coordinator: StreamCoordinator | None = None
        self.tools = list(tools or [])
        self.context = list(context or [])
        self._state = RunState(
            state=state if state is not None else {},
            thread_id=thread_id or str(uuid.uuid4()),
        )
        for message in messages or []:
            self.add_message(message)

    # -- state store -------------------------------------------------------

    @property
    def state(self) -> RunState:
        """Current RunState. Treat as read-only; it is replaced, never mutated."""
        with self._lock:
            return self._state

    def commit(self, update: Callable[[RunState], Reduction]) -> Reduction:
        with self._lock:
            reduction = update(self._state)
            if reduction.ok:
                self._state = reduction.state
            return reduction

    # -- read access -------------------------------------------------------

    @property
    def thread_id(self) -> str:
        return self.state.thread_id or ""

    @property
    def messages(self) -> list[Message]:
        return list(self.state.messages)

    @property
    def status(self) -> RunStatus:
        return self.state.status

    @property
    def shared_state(self) -> Any:
        return self.state.state

    # -- external writes ---------------------------------------------------

    def add_message(self, message: Message | dict) -> Message:
        """
        Append a message outside of a run.

        Raises:
            ValidationError: message breaks the content invariant or reuses an id
            DanglingReferenceError: tool message answers a tool call never seen
        """
        message = _coerce_message(message)
        message.validate()
        with self._lock:
            if self._state.find_message(message.id) is not None:
                raise ValidationError(f"Message {message.id} already exists")
            known_call = self._state.find_tool_call(message.tool_call_id or "")
            if message.role == Role.TOOL and known_call is None:
                raise DanglingReferenceError(
                    f"Tool message {message.id} answers unknown tool call {message.tool_call_id}",
                    target_id=message.tool_call_id,
                )
            self._state = replace(self._state, messages=[*self._state.messages, message])
        logger.debug("Appended %s message %s", message.role.value, message.id)
        return message

    def add_tool_result(
        self, tool_call_id: str, content: str, *, message_id: str | None = None
    ) -> Message:
        """Append the result of a tool executed by the UI."""
        return self.add_message(
            Message(
                id=message_id or str(uuid.uuid4()),
                role=Role.TOOL,
                content=content,
                tool_call_id=tool_call_id,
            )
        )

    # -- runs ----------------------------------------------------------------

    def run(
        self,
        *,
        run_id: str | None = None,
        tools: Iterable[Tool] | None = None,
        context: Iterable[Context] | None = None,
        forwarded_props: Any = None,
    ) -> RunStream:
        """
        Start a run and return its lazy notification stream.

        Nothing is sent until the stream is iterated.

        Raises:
            AlreadyRunningError: a previous run has not reached a terminal state
        """
        with self._lock:
            if self._state.status == RunStatus.RUNNING:
                raise AlreadyRunningError(
                    f"Run {self._state.run_id} is still active; cancel it before starting another"
                )
            run_id = run_id or str(uuid.uuid4())
            run_input = RunAgentInput(
                thread_id=self.thread_id,
                run_id=run_id,
                messages=list(self._state.messages),
                state=copy.deepcopy(self._state.state),
                tools=list(tools if tools is not None else self.tools),
                context=list(context if context is not None else self.context),
                forwarded_props=forwarded_props,
            )
            # The session only turns RUNNING once a source exists to drive it.
            source = self._transport.open(run_input)
            self._state = replace(
                self._state,
                status=RunStatus.RUNNING,
                run_id=run_id,
                result=None,
                warnings=[],
                error=None,
            )
            coordinator = StreamCoordinator(source, self)
            self._coordinator = coordinator
        logger.info("Starting run %s on thread %s", run_id, run_input.thread_id)
        return RunStream(coordinator, self)

    def cancel(self) -> None:
        """Cancel the active run. No-op when nothing is running."""
        with self._lock:
            coordinator = self._coordinator
        if coordinator is not None:
            coordinator.cancel()

    def clone(self, *, thread_id: str | None = None) -> AgentSession:
        """
        Branch the conversation into an independent session.

        The clone shares the transport but no mutable state. A clone taken
        mid-run starts idle.
        """
        with self._lock:
            state = copy.deepcopy(self._state)
        if state.status == RunStatus.RUNNING:
            state = replace(state, status=RunStatus.IDLE)
        if thread_id is not None:
            state = replace(state, thread_id=thread_id)
        clone = AgentSession(self._transport, tools=self.tools, context=self.context)
        clone._state = state
        return clone
