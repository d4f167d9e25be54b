"""Dataclass models for conversation state and the run request body."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Any

from ._exceptions import IncompleteToolCallError, MalformedArgumentsError, ValidationError


class Role(str, Enum):
    """Conversation roles."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"
    DEVELOPER = "developer"


class RunStatus(str, Enum):
    """Lifecycle of the session's current run."""

    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.FINISHED, RunStatus.CANCELLED, RunStatus.ERRORED)


# Warning codes attached to runs and tool calls.
MALFORMED_ARGUMENTS = "malformed_arguments"
PREMATURE_END = "premature_end"


@dataclass
class RunWarning:
    """Non-fatal problem recorded while folding a run."""

    code: str
    message: str
    target_id: str | None = None


@dataclass
class ToolCall:
    """A tool invocation requested by the assistant.

    ``arguments`` is the raw text built from argument deltas. It is only
    guaranteed to be JSON once ``closed`` is set; use :meth:`parse_arguments`
    to bind it.
    """

    id: str
    name: str
    arguments: str = ""
    parent_message_id: str | None = None
    closed: bool = False
    warning: str | None = None

    def parse_arguments(self) -> Any:
        """Parse the argument buffer. Empty arguments parse to ``{}``."""
        if not self.closed:
            raise IncompleteToolCallError(f"Tool call {self.id} is still streaming arguments")
        if not self.arguments.strip():
            return {}
        try:
            return json.loads(self.arguments)
        except json.JSONDecodeError as e:
            raise MalformedArgumentsError(
                f"Tool call {self.id} arguments are not valid JSON: {e}"
            ) from e

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict, parent_message_id: str | None = None) -> ToolCall:
        function = data.get("function") or {}
        return cls(
            id=data["id"],
            name=function.get("name", ""),
            arguments=function.get("arguments", ""),
            parent_message_id=parent_message_id,
            closed=True,
        )


@dataclass
class Message:
    """One conversation turn."""

    id: str
    role: Role
    content: str | None = None
    name: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    def validate(self) -> None:
        """Raise ValidationError if the message breaks the content invariant."""
        if self.role == Role.ASSISTANT:
            if self.content is None and not self.tool_calls:
                raise ValidationError(
                    f"Assistant message {self.id} needs content or at least one tool call"
                )
            return
        if self.content is None:
            raise ValidationError(f"{self.role.value} message {self.id} requires content")
        if self.tool_calls:
            raise ValidationError(f"Only assistant messages carry tool calls ({self.id})")
        if self.role == Role.TOOL and not self.tool_call_id:
            raise ValidationError(f"Tool message {self.id} requires toolCallId")

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"id": self.id, "role": self.role.value}
        if self.content is not None:
            data["content"] = self.content
        if self.name is not None:
            data["name"] = self.name
        if self.tool_calls:
            data["toolCalls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["toolCallId"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        message_id = data["id"]
        return cls(
            id=message_id,
            role=Role(data["role"]),
            content=data.get("content"),
            name=data.get("name"),
            tool_calls=[
                ToolCall.from_dict(tc, parent_message_id=message_id)
                for tc in data.get("toolCalls") or []
            ],
            tool_call_id=data.get("toolCallId"),
        )


@dataclass
class RunState:
    """Materialized conversation owned by one session.

    Treated as copy-on-write: the accumulator returns new instances and never
    mutates the one it was given.
    """

    messages: list[Message] = field(default_factory=list)
    tool_calls: dict[str, ToolCall] = field(default_factory=dict)
    open_message_ids: set[str] = field(default_factory=set)
    closed_message_ids: set[str] = field(default_factory=set)
    state: Any = None
    status: RunStatus = RunStatus.IDLE
    thread_id: str | None = None
    run_id: str | None = None
    result: Any = None
    warnings: list[RunWarning] = field(default_factory=list)
    error: Exception | None = None

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def find_tool_call(self, tool_call_id: str) -> ToolCall | None:
        """Look up a tool call, open or closed, anywhere in the conversation."""
        if tool_call_id in self.tool_calls:
            return self.tool_calls[tool_call_id]
        for message in self.messages:
            for tool_call in message.tool_calls:
                if tool_call.id == tool_call_id:
                    return tool_call
        return None


@dataclass
class Tool:
    """Tool definition offered to the agent."""

    name: str
    description: str
    parameters: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass
class Context:
    """Extra context item passed along with a run."""

    description: str
    value: str

    def to_dict(self) -> dict:
        return {"description": self.description, "value": self.value}


@dataclass
class RunAgentInput:
    """Request body that starts a run on the agent."""

    thread_id: str
    run_id: str
    messages: list[Message]
    state: Any = None
    tools: list[Tool] = field(default_factory=list)
    context: list[Context] = field(default_factory=list)
    forwarded_props: Any = None

    def to_dict(self) -> dict:
        return {
            "threadId": self.thread_id,
            "runId": self.run_id,
            "messages": [m.to_dict() for m in self.messages],
            "state": self.state if self.state is not None else {},
            "tools": [t.to_dict() for t in self.tools],
            "context": [c.to_dict() for c in self.context],
            "forwardedProps": self.forwarded_props if self.forwarded_props is not None else {},
        }
