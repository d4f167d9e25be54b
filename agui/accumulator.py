"""
Reducer that folds AG-UI events into a materialized RunState.

``apply`` is pure: it returns a new RunState and never mutates the one it is
given, so a caller can hold on to any intermediate state (for rendering or for
rollback) without copying. Protocol violations are returned as values on the
Reduction rather than raised.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
import json
import logging

from ._exceptions import (
    DanglingReferenceError,
    DuplicateIdError,
    InvalidPatchError,
    ProtocolError,
    StaleEventError,
    UnknownTargetError,
)
from ._patch import apply_patch
from ._types import (
    MALFORMED_ARGUMENTS,
    PREMATURE_END,
    Message,
    Role,
    RunState,
    RunWarning,
    ToolCall,
)
from .events import (
    Event,
    MessagesSnapshotEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)

logger = logging.getLogger(__name__)


@dataclass
class Reduction:
    """Outcome of applying one or more events."""

    state: RunState
    warnings: list[RunWarning] = field(default_factory=list)
    error: ProtocolError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _replace_message(messages: list[Message], updated: Message) -> list[Message]:
    return [updated if m.id == updated.id else m for m in messages]


def _with_tool_call(state: RunState, tool_call: ToolCall) -> list[Message]:
    """Return a message list where the tool call's copy inside its parent is updated."""
    messages = []
    for message in state.messages:
        if any(tc.id == tool_call.id for tc in message.tool_calls):
            message = replace(
                message,
                tool_calls=[
                    tool_call if tc.id == tool_call.id else tc for tc in message.tool_calls
                ],
            )
        messages.append(message)
    return messages


def _fail(state: RunState, error: ProtocolError) -> Reduction:
    logger.debug("Rejected event: %s", error.message)
    return Reduction(state=state, error=error)


def _message_start(state: RunState, event: TextMessageStartEvent) -> Reduction:
    if event.message_id in state.open_message_ids:
        return _fail(
            state,
            DuplicateIdError(
                f"Message {event.message_id} is already streaming", target_id=event.message_id
            ),
        )
    if event.message_id in state.closed_message_ids:
        return _fail(
            state,
            StaleEventError(
                f"Message {event.message_id} was already ended", target_id=event.message_id
            ),
        )
    open_ids = state.open_message_ids | {event.message_id}
    if state.find_message(event.message_id) is not None:
        # A message that never saw an end (e.g. delivered by a snapshot) can be streamed into.
        return Reduction(state=replace(state, open_message_ids=open_ids))
    message = Message(id=event.message_id, role=event.role, content="")
    return Reduction(
        state=replace(state, messages=[*state.messages, message], open_message_ids=open_ids)
    )


def _message_content(state: RunState, event: TextMessageContentEvent) -> Reduction:
    message = state.find_message(event.message_id)
    if message is None:
        return _fail(
            state,
            UnknownTargetError(
                f"Content for unknown message {event.message_id}", target_id=event.message_id
            ),
        )
    if event.message_id not in state.open_message_ids:
        return _fail(
            state,
            StaleEventError(
                f"Content for closed message {event.message_id}", target_id=event.message_id
            ),
        )
    updated = replace(message, content=(message.content or "") + event.delta)
    return Reduction(state=replace(state, messages=_replace_message(state.messages, updated)))


def _message_end(state: RunState, event: TextMessageEndEvent) -> Reduction:
    if state.find_message(event.message_id) is None:
        return _fail(
            state,
            UnknownTargetError(
                f"End for unknown message {event.message_id}", target_id=event.message_id
            ),
        )
    if event.message_id not in state.open_message_ids:
        return _fail(
            state,
            StaleEventError(
                f"Message {event.message_id} was already closed", target_id=event.message_id
            ),
        )
    return Reduction(
        state=replace(
            state,
            open_message_ids=state.open_message_ids - {event.message_id},
            closed_message_ids=state.closed_message_ids | {event.message_id},
        )
    )


def _tool_call_start(state: RunState, event: ToolCallStartEvent) -> Reduction:
    if state.find_tool_call(event.tool_call_id) is not None:
        return _fail(
            state,
            DuplicateIdError(
                f"Tool call {event.tool_call_id} was already started", target_id=event.tool_call_id
            ),
        )

    tool_call = ToolCall(
        id=event.tool_call_id,
        name=event.tool_call_name,
        parent_message_id=event.parent_message_id,
    )
    tool_calls = {**state.tool_calls, tool_call.id: tool_call}

    if event.parent_message_id is not None:
        parent = state.find_message(event.parent_message_id)
        if parent is None or parent.role != Role.ASSISTANT:
            return _fail(
                state,
                DanglingReferenceError(
                    f"Tool call {event.tool_call_id} references missing assistant message "
                    f"{event.parent_message_id}",
                    target_id=event.parent_message_id,
                ),
            )
        updated = replace(parent, tool_calls=[*parent.tool_calls, tool_call])
        messages = _replace_message(state.messages, updated)
        return Reduction(state=replace(state, messages=messages, tool_calls=tool_calls))

    # Without a parent the call gets its own assistant message, keyed by the call id.
    holder = state.find_message(event.tool_call_id)
    if holder is not None:
        if holder.role != Role.ASSISTANT:
            return _fail(
                state,
                DuplicateIdError(
                    f"Message {event.tool_call_id} already exists with role {holder.role.value}",
                    target_id=event.tool_call_id,
                ),
            )
        tool_call = replace(tool_call, parent_message_id=holder.id)
        tool_calls[tool_call.id] = tool_call
        updated = replace(holder, tool_calls=[*holder.tool_calls, tool_call])
        messages = _replace_message(state.messages, updated)
    else:
        tool_call = replace(tool_call, parent_message_id=event.tool_call_id)
        tool_calls[tool_call.id] = tool_call
        messages = [
            *state.messages,
            Message(id=event.tool_call_id, role=Role.ASSISTANT, tool_calls=[tool_call]),
        ]
    return Reduction(state=replace(state, messages=messages, tool_calls=tool_calls))


def _tool_call_lookup(state: RunState, tool_call_id: str, what: str) -> ProtocolError | None:
    if tool_call_id in state.tool_calls:
        return None
    if state.find_tool_call(tool_call_id) is not None:
        return StaleEventError(
            f"{what} for closed tool call {tool_call_id}", target_id=tool_call_id
        )
    return UnknownTargetError(
        f"{what} for unknown tool call {tool_call_id}", target_id=tool_call_id
    )


def _tool_call_args(state: RunState, event: ToolCallArgsEvent) -> Reduction:
    error = _tool_call_lookup(state, event.tool_call_id, "Arguments")
    if error is not None:
        return _fail(state, error)
    current = state.tool_calls[event.tool_call_id]
    updated = replace(current, arguments=current.arguments + event.delta)
    return Reduction(
        state=replace(
            state,
            messages=_with_tool_call(state, updated),
            tool_calls={**state.tool_calls, updated.id: updated},
        )
    )


def _close_tool_call(state: RunState, tool_call: ToolCall) -> tuple[RunState, list[RunWarning]]:
    warnings: list[RunWarning] = []
    closed = replace(tool_call, closed=True)
    if tool_call.arguments.strip():
        try:
            json.loads(tool_call.arguments)
        except json.JSONDecodeError as e:
            message = f"Tool call {tool_call.id} arguments are not valid JSON: {e}"
            logger.debug("Tool call %s closed with malformed arguments: %s", tool_call.id, e)
            closed = replace(closed, warning=message)
            warnings.append(RunWarning(MALFORMED_ARGUMENTS, message, target_id=tool_call.id))
    open_calls = {k: v for k, v in state.tool_calls.items() if k != tool_call.id}
    new_state = replace(state, messages=_with_tool_call(state, closed), tool_calls=open_calls)
    return new_state, warnings


def _tool_call_end(state: RunState, event: ToolCallEndEvent) -> Reduction:
    error = _tool_call_lookup(state, event.tool_call_id, "End")
    if error is not None:
        return _fail(state, error)
    new_state, warnings = _close_tool_call(state, state.tool_calls[event.tool_call_id])
    return Reduction(state=new_state, warnings=warnings)


def _tool_call_result(state: RunState, event: ToolCallResultEvent) -> Reduction:
    if state.find_tool_call(event.tool_call_id) is None:
        return _fail(
            state,
            DanglingReferenceError(
                f"Result references unknown tool call {event.tool_call_id}",
                target_id=event.tool_call_id,
            ),
        )
    if state.find_message(event.message_id) is not None:
        return _fail(
            state,
            DuplicateIdError(
                f"Message {event.message_id} already exists", target_id=event.message_id
            ),
        )
    message = Message(
        id=event.message_id,
        role=Role.TOOL,
        content=event.content,
        tool_call_id=event.tool_call_id,
    )
    return Reduction(state=replace(state, messages=[*state.messages, message]))


def _messages_snapshot(state: RunState, event: MessagesSnapshotEvent) -> Reduction:
    messages = list(event.messages)
    snapshot_ids = {m.id for m in messages}

    # Open entities survive only if the snapshot still carries them; their
    # content restarts from the snapshot's copy.
    open_ids = state.open_message_ids & snapshot_ids
    tool_calls: dict[str, ToolCall] = {}
    rebuilt: list[Message] = []
    for message in messages:
        calls = []
        for tool_call in message.tool_calls:
            if tool_call.id in state.tool_calls:
                tool_call = replace(tool_call, closed=False)
                tool_calls[tool_call.id] = tool_call
            calls.append(tool_call)
        rebuilt.append(replace(message, tool_calls=calls) if message.tool_calls else message)

    dropped = (state.open_message_ids - open_ids) | (set(state.tool_calls) - set(tool_calls))
    if dropped:
        logger.debug("Snapshot discarded in-flight entities: %s", sorted(dropped))
    return Reduction(
        state=replace(
            state,
            messages=rebuilt,
            open_message_ids=open_ids,
            closed_message_ids=state.closed_message_ids & snapshot_ids,
            tool_calls=tool_calls,
        )
    )


def _state_delta(state: RunState, event: StateDeltaEvent) -> Reduction:
    try:
        new_value = apply_patch(state.state, event.delta)
    except InvalidPatchError as e:
        return _fail(state, e)
    return Reduction(state=replace(state, state=new_value))


def apply(state: RunState, event: Event) -> Reduction:
    """
    Fold one event into ``state``.

    Args:
        state: Current state; left untouched.
        event: Event to apply.

    Returns:
        Reduction with the new state, any non-fatal warnings, and the
        protocol error if the event was rejected (in which case ``state`` is
        the input state).
    """
    if isinstance(event, TextMessageStartEvent):
        return _message_start(state, event)
    elif isinstance(event, TextMessageContentEvent):
        return _message_content(state, event)
    elif isinstance(event, TextMessageEndEvent):
        return _message_end(state, event)
    elif isinstance(event, ToolCallStartEvent):
        return _tool_call_start(state, event)
    elif isinstance(event, ToolCallArgsEvent):
        return _tool_call_args(state, event)
    elif isinstance(event, ToolCallEndEvent):
        return _tool_call_end(state, event)
    elif isinstance(event, ToolCallResultEvent):
        return _tool_call_result(state, event)
    elif isinstance(event, MessagesSnapshotEvent):
        return _messages_snapshot(state, event)
    elif isinstance(event, StateSnapshotEvent):
        return Reduction(state=replace(state, state=event.snapshot))
    elif isinstance(event, StateDeltaEvent):
        return _state_delta(state, event)
    elif isinstance(event, RunStartedEvent):
        return Reduction(
            state=replace(state, run_id=event.run_id, thread_id=event.thread_id or state.thread_id)
        )
    elif isinstance(event, RunFinishedEvent):
        return Reduction(state=replace(state, result=event.result))

    # Run errors, steps, raw, custom and unknown events carry no conversation state.
    return Reduction(state=state)


def close_open(state: RunState) -> Reduction:
    """Force-close every open message and tool call, recording premature_end warnings."""
    warnings: list[RunWarning] = []
    for message_id in sorted(state.open_message_ids):
        warnings.append(
            RunWarning(PREMATURE_END, f"Message {message_id} was never ended", target_id=message_id)
        )
    new_state = replace(
        state,
        open_message_ids=set(),
        closed_message_ids=state.closed_message_ids | state.open_message_ids,
    )

    for tool_call_id in list(state.tool_calls):
        warnings.append(
            RunWarning(
                PREMATURE_END, f"Tool call {tool_call_id} was never ended", target_id=tool_call_id
            )
        )
        new_state, tool_warnings = _close_tool_call(new_state, new_state.tool_calls[tool_call_id])
        warnings.extend(tool_warnings)
    return Reduction(state=new_state, warnings=warnings)


def fold(events: Iterable[Event], state: RunState | None = None) -> Reduction:
    """Apply events in order, stopping at the first protocol error."""
    current = state if state is not None else RunState()
    warnings: list[RunWarning] = []
    for event in events:
        reduction = apply(current, event)
        warnings.extend(reduction.warnings)
        if reduction.error is not None:
            return Reduction(state=current, warnings=warnings, error=reduction.error)
        current = reduction.state
    return Reduction(state=current, warnings=warnings)
