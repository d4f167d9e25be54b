"""
AG-UI wire events and SSE stream parser.

Events are JSON objects discriminated by ``type`` with camelCase fields,
delivered over Server-Sent Events by HTTP agents.

Protocol: https://docs.ag-ui.com/concepts/events
"""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass, field
from enum import Enum
import json
import logging
from typing import Any, ClassVar

from ._exceptions import EventDecodeError
from ._types import Message, Role

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """AG-UI event types."""

    # Lifecycle events
    RUN_STARTED = "RUN_STARTED"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_ERROR = "RUN_ERROR"
    STEP_STARTED = "STEP_STARTED"
    STEP_FINISHED = "STEP_FINISHED"

    # Text message events
    TEXT_MESSAGE_START = "TEXT_MESSAGE_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TEXT_MESSAGE_END = "TEXT_MESSAGE_END"

    # Tool call events
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS = "TOOL_CALL_ARGS"
    TOOL_CALL_END = "TOOL_CALL_END"
    TOOL_CALL_RESULT = "TOOL_CALL_RESULT"

    # State events
    MESSAGES_SNAPSHOT = "MESSAGES_SNAPSHOT"
    STATE_SNAPSHOT = "STATE_SNAPSHOT"
    STATE_DELTA = "STATE_DELTA"

    # Passthrough events
    RAW = "RAW"
    CUSTOM = "CUSTOM"

    # Types this client does not know about
    UNKNOWN = "UNKNOWN"


def _require(data: dict[str, Any], key: str) -> Any:
    if data.get(key) is None:
        raise EventDecodeError(f"{data.get('type')} event is missing required field '{key}'")
    return data[key]


def _require_str(data: dict[str, Any], key: str) -> str:
    value = _require(data, key)
    if not isinstance(value, str):
        raise EventDecodeError(f"{data.get('type')} field '{key}' must be a string")
    return value


@dataclass
class Event:
    """Base class for all wire events."""

    type: ClassVar[EventType] = EventType.UNKNOWN
    # attribute name -> wire key, in wire order
    wire_fields: ClassVar[dict[str, str]] = {}

    raw: dict[str, Any] = field(default_factory=dict, kw_only=True, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Encode to the wire format. None-valued optional fields are omitted."""
        data: dict[str, Any] = {"type": self.type.value}
        for attr, key in self.wire_fields.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, Role):
                value = value.value
            elif attr == "messages":
                value = [m.to_dict() for m in value]
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Event:
        """Decode one wire payload.

        Raises:
            EventDecodeError: payload is not an object, or a required field is
                missing or has the wrong shape.
        """
        if not isinstance(data, dict):
            raise EventDecodeError(
                f"Event payload must be a JSON object, got {type(data).__name__}"
            )

        type_str = data.get("type")
        try:
            event_type = EventType(type_str)
        except ValueError:
            event_type = EventType.UNKNOWN

        event: Event

        if event_type == EventType.RUN_STARTED:
            event = RunStartedEvent(
                run_id=_require_str(data, "runId"),
                thread_id=data.get("threadId"),
                raw=data,
            )
        elif event_type == EventType.RUN_FINISHED:
            event = RunFinishedEvent(
                run_id=_require_str(data, "runId"),
                thread_id=data.get("threadId"),
                result=data.get("result"),
                raw=data,
            )
        elif event_type == EventType.RUN_ERROR:
            event = RunErrorEvent(
                message=_require_str(data, "message"),
                code=data.get("code"),
                raw=data,
            )
        elif event_type == EventType.STEP_STARTED:
            event = StepStartedEvent(step_name=_require_str(data, "stepName"), raw=data)
        elif event_type == EventType.STEP_FINISHED:
            event = StepFinishedEvent(step_name=_require_str(data, "stepName"), raw=data)
        elif event_type == EventType.TEXT_MESSAGE_START:
            try:
                role = Role(data.get("role") or Role.ASSISTANT.value)
            except ValueError as e:
                raise EventDecodeError(f"Unknown message role: {data.get('role')!r}") from e
            event = TextMessageStartEvent(
                message_id=_require_str(data, "messageId"),
                role=role,
                raw=data,
            )
        elif event_type == EventType.TEXT_MESSAGE_CONTENT:
            event = TextMessageContentEvent(
                message_id=_require_str(data, "messageId"),
                delta=_require_str(data, "delta"),
                raw=data,
            )
        elif event_type == EventType.TEXT_MESSAGE_END:
            event = TextMessageEndEvent(message_id=_require_str(data, "messageId"), raw=data)
        elif event_type == EventType.TOOL_CALL_START:
            event = ToolCallStartEvent(
                tool_call_id=_require_str(data, "toolCallId"),
                tool_call_name=_require_str(data, "toolCallName"),
                parent_message_id=data.get("parentMessageId"),
                raw=data,
            )
        elif event_type == EventType.TOOL_CALL_ARGS:
            event = ToolCallArgsEvent(
                tool_call_id=_require_str(data, "toolCallId"),
                delta=_require_str(data, "delta"),
                raw=data,
            )
        elif event_type == EventType.TOOL_CALL_END:
            event = ToolCallEndEvent(tool_call_id=_require_str(data, "toolCallId"), raw=data)
        elif event_type == EventType.TOOL_CALL_RESULT:
            event = ToolCallResultEvent(
                message_id=_require_str(data, "messageId"),
                tool_call_id=_require_str(data, "toolCallId"),
                content=_require_str(data, "content"),
                raw=data,
            )
        elif event_type == EventType.MESSAGES_SNAPSHOT:
            payload = _require(data, "messages")
            if not isinstance(payload, list):
                raise EventDecodeError("MESSAGES_SNAPSHOT field 'messages' must be a list")
            try:
                messages = [Message.from_dict(m) for m in payload]
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise EventDecodeError(f"Invalid message in MESSAGES_SNAPSHOT: {e}") from e
            event = MessagesSnapshotEvent(messages=messages, raw=data)
        elif event_type == EventType.STATE_SNAPSHOT:
            # "state" is accepted as an alias of the AG-UI "snapshot" key
            snapshot = data["snapshot"] if "snapshot" in data else data.get("state")
            event = StateSnapshotEvent(snapshot=snapshot, raw=data)
        elif event_type == EventType.STATE_DELTA:
            delta = _require(data, "delta")
            if not isinstance(delta, list) or not all(isinstance(op, dict) for op in delta):
                raise EventDecodeError("STATE_DELTA field 'delta' must be a list of operations")
            event = StateDeltaEvent(delta=delta, raw=data)
        elif event_type == EventType.RAW:
            event = RawEvent(event=data.get("event"), source=data.get("source"), raw=data)
        elif event_type == EventType.CUSTOM:
            event = CustomEvent(
                name=_require_str(data, "name"),
                value=data.get("value"),
                raw=data,
            )
        else:
            logger.debug("Passing through unknown event type: %r", type_str)
            event = UnknownEvent(type_name=str(type_str), raw=data)

        return event


@dataclass
class RunStartedEvent(Event):
    """Agent accepted the run."""

    type: ClassVar[EventType] = EventType.RUN_STARTED
    wire_fields: ClassVar[dict[str, str]] = {"thread_id": "threadId", "run_id": "runId"}

    run_id: str
    thread_id: str | None = None


@dataclass
class RunFinishedEvent(Event):
    """Agent completed the run."""

    type: ClassVar[EventType] = EventType.RUN_FINISHED
    wire_fields: ClassVar[dict[str, str]] = {
        "thread_id": "threadId",
        "run_id": "runId",
        "result": "result",
    }

    run_id: str
    thread_id: str | None = None
    result: Any = None


@dataclass
class RunErrorEvent(Event):
    """Agent aborted the run."""

    type: ClassVar[EventType] = EventType.RUN_ERROR
    wire_fields: ClassVar[dict[str, str]] = {"message": "message", "code": "code"}

    message: str
    code: str | None = None


@dataclass
class StepStartedEvent(Event):
    """Agent entered a named step."""

    type: ClassVar[EventType] = EventType.STEP_STARTED
    wire_fields: ClassVar[dict[str, str]] = {"step_name": "stepName"}

    step_name: str


@dataclass
class StepFinishedEvent(Event):
    """Agent left a named step."""

    type: ClassVar[EventType] = EventType.STEP_FINISHED
    wire_fields: ClassVar[dict[str, str]] = {"step_name": "stepName"}

    step_name: str


@dataclass
class TextMessageStartEvent(Event):
    """New message begins."""

    type: ClassVar[EventType] = EventType.TEXT_MESSAGE_START
    wire_fields: ClassVar[dict[str, str]] = {"message_id": "messageId", "role": "role"}

    message_id: str
    role: Role = Role.ASSISTANT


@dataclass
class TextMessageContentEvent(Event):
    """Incremental text chunk."""

    type: ClassVar[EventType] = EventType.TEXT_MESSAGE_CONTENT
    wire_fields: ClassVar[dict[str, str]] = {"message_id": "messageId", "delta": "delta"}

    message_id: str
    delta: str


@dataclass
class TextMessageEndEvent(Event):
    """Message is complete."""

    type: ClassVar[EventType] = EventType.TEXT_MESSAGE_END
    wire_fields: ClassVar[dict[str, str]] = {"message_id": "messageId"}

    message_id: str


@dataclass
class ToolCallStartEvent(Event):
    """Tool call begins."""

    type: ClassVar[EventType] = EventType.TOOL_CALL_START
    wire_fields: ClassVar[dict[str, str]] = {
        "tool_call_id": "toolCallId",
        "tool_call_name": "toolCallName",
        "parent_message_id": "parentMessageId",
    }

    tool_call_id: str
    tool_call_name: str
    parent_message_id: str | None = None


@dataclass
class ToolCallArgsEvent(Event):
    """Incremental tool call arguments."""

    type: ClassVar[EventType] = EventType.TOOL_CALL_ARGS
    wire_fields: ClassVar[dict[str, str]] = {"tool_call_id": "toolCallId", "delta": "delta"}

    tool_call_id: str
    delta: str


@dataclass
class ToolCallEndEvent(Event):
    """Tool call arguments are complete."""

    type: ClassVar[EventType] = EventType.TOOL_CALL_END
    wire_fields: ClassVar[dict[str, str]] = {"tool_call_id": "toolCallId"}

    tool_call_id: str


@dataclass
class ToolCallResultEvent(Event):
    """Result of a tool executed on the agent side."""

    type: ClassVar[EventType] = EventType.TOOL_CALL_RESULT
    wire_fields: ClassVar[dict[str, str]] = {
        "message_id": "messageId",
        "tool_call_id": "toolCallId",
        "content": "content",
    }

    message_id: str
    tool_call_id: str
    content: str


@dataclass
class MessagesSnapshotEvent(Event):
    """Authoritative replacement of the message list."""

    type: ClassVar[EventType] = EventType.MESSAGES_SNAPSHOT
    wire_fields: ClassVar[dict[str, str]] = {"messages": "messages"}

    messages: list[Message]


@dataclass
class StateSnapshotEvent(Event):
    """Authoritative replacement of the shared state."""

    type: ClassVar[EventType] = EventType.STATE_SNAPSHOT
    wire_fields: ClassVar[dict[str, str]] = {"snapshot": "snapshot"}

    snapshot: Any

    def to_dict(self) -> dict[str, Any]:
        # a null snapshot is meaningful, keep it on the wire
        return {"type": self.type.value, "snapshot": self.snapshot}


@dataclass
class StateDeltaEvent(Event):
    """JSON Patch operations against the shared state."""

    type: ClassVar[EventType] = EventType.STATE_DELTA
    wire_fields: ClassVar[dict[str, str]] = {"delta": "delta"}

    delta: list[dict[str, Any]]


@dataclass
class RawEvent(Event):
    """Event forwarded verbatim from an upstream system."""

    type: ClassVar[EventType] = EventType.RAW
    wire_fields: ClassVar[dict[str, str]] = {"event": "event", "source": "source"}

    event: Any
    source: str | None = None


@dataclass
class CustomEvent(Event):
    """Application-defined event."""

    type: ClassVar[EventType] = EventType.CUSTOM
    wire_fields: ClassVar[dict[str, str]] = {"name": "name", "value": "value"}

    name: str
    value: Any = None


@dataclass
class UnknownEvent(Event):
    """Event with a type this client does not handle."""

    type_name: str = "UNKNOWN"

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw) if self.raw else {"type": self.type_name}


def encode_sse(event: Event | dict[str, Any]) -> str:
    """Render one event as an SSE frame, including the blank-line terminator."""
    payload = event.to_dict() if isinstance(event, Event) else event
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"


class EventStreamParser:
    """
    Parser for AG-UI Server-Sent Events bodies.

    Each SSE frame carries one JSON-encoded event in its ``data:`` lines.
    """

    @staticmethod
    def parse_sse_frame(frame: str) -> list[Event]:
        """
        Parse a single SSE frame into events.

        Args:
            frame: SSE frame content (one or more lines, without trailing blank line)

        Returns:
            List with the decoded event, or empty if the frame carries no data

        Raises:
            EventDecodeError: the data payload is not valid JSON or not a valid event
        """
        if not frame or not frame.strip():
            return []

        data_lines: list[str] = []
        for raw_line in frame.splitlines():
            stripped = raw_line.strip()
            if not stripped or stripped.startswith(":"):
                continue
            if raw_line.startswith("data:"):
                data_lines.append(raw_line[5:].lstrip(" "))

        if not data_lines:
            return []

        payload = "\n".join(data_lines).strip()
        if not payload:
            return []

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse SSE JSON: %s", payload[:200])
            raise EventDecodeError(f"SSE payload is not valid JSON: {e}") from e
        return [Event.from_dict(data)]

    @staticmethod
    def parse_stream(
        response: object, decode_unicode: bool = True
    ) -> Generator[Event, None, None]:
        """
        Parse SSE stream from HTTP response.

        Args:
            response: requests.Response object with streaming enabled
            decode_unicode: Decode lines as unicode

        Yields:
            Event objects in arrival order
        """
        frame_lines: list[str] = []
        for line in response.iter_lines(decode_unicode=decode_unicode):  # type: ignore[attr-defined]
            if isinstance(line, bytes):
                line = line.decode("utf-8", errors="replace")

            # Empty line terminates an SSE frame.
            if line == "":
                if frame_lines:
                    frame = "\n".join(frame_lines)
                    frame_lines = []
                    yield from EventStreamParser.parse_sse_frame(frame)
                continue

            frame_lines.append(line)

        # Flush trailing frame if stream ended without a final blank line.
        if frame_lines:
            yield from EventStreamParser.parse_sse_frame("\n".join(frame_lines))
