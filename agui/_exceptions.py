"""Typed error hierarchy for protocol, transport and session failures."""


class AguiError(Exception):
    """Base exception for all agui errors."""

    code = "agui_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ProtocolError(AguiError):
    """The event stream broke the wire contract."""

    code = "protocol_violation"

    def __init__(self, message: str, code: str | None = None, target_id: str | None = None):
        super().__init__(message, code=code)
        self.target_id = target_id


class UnknownTargetError(ProtocolError):
    """Delta or end event for an id that was never started."""

    code = "unknown_target"


class DanglingReferenceError(ProtocolError):
    """Reference to a message or tool call that does not exist."""

    code = "dangling_reference"


class StaleEventError(ProtocolError):
    """Event for a message or tool call that is already closed."""

    code = "stale_event"


class DuplicateIdError(ProtocolError):
    """Start event for an id that is already in use."""

    code = "duplicate_id"


class InvalidPatchError(ProtocolError):
    """State delta operation could not be applied."""

    code = "invalid_patch"


class UnexpectedEventError(ProtocolError):
    """Event arrived in a run phase that does not accept it."""

    code = "unexpected_event"


class EventDecodeError(ProtocolError):
    """Wire payload could not be decoded into an event."""

    code = "malformed_event"


class AlreadyRunningError(AguiError):
    """A run was requested while another one is still active."""

    code = "already_running"


class RemoteRunError(AguiError):
    """The agent reported a RUN_ERROR."""

    code = "run_error"


class TransportError(AguiError):
    """Connection drop, timeout, or HTTP failure while streaming a run."""

    code = "transport_failure"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        method: str | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.method = method
        self.url = url


class ConfigurationError(AguiError):
    """Missing or invalid client configuration."""

    code = "configuration"


class ValidationError(AguiError):
    """Externally supplied message breaks a conversation invariant."""

    code = "invalid_message"


class ToolCallError(AguiError):
    """Base for tool call argument access errors."""


class IncompleteToolCallError(ToolCallError):
    """Arguments requested before the tool call was closed."""

    code = "incomplete_tool_call"


class MalformedArgumentsError(ToolCallError):
    """Closed tool call arguments are not valid JSON."""

    code = "malformed_arguments"
