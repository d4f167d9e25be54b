"""
agui - Python client for AG-UI agents

Reconciles an agent's event stream into a consistent conversation state.
"""

__version__ = "0.1.0"

from ._exceptions import (
    AguiError,
    AlreadyRunningError,
    ConfigurationError,
    DanglingReferenceError,
    DuplicateIdError,
    EventDecodeError,
    IncompleteToolCallError,
    InvalidPatchError,
    MalformedArgumentsError,
    ProtocolError,
    RemoteRunError,
    StaleEventError,
    ToolCallError,
    TransportError,
    UnexpectedEventError,
    UnknownTargetError,
    ValidationError,
)
from ._streaming import RunStream
from ._types import (
    Context,
    Message,
    Role,
    RunAgentInput,
    RunState,
    RunStatus,
    RunWarning,
    Tool,
    ToolCall,
)
from .accumulator import Reduction, apply, close_open, fold
from .coordinator import CoordinatorState, Notification, StreamCoordinator
from .events import Event, EventStreamParser, EventType, encode_sse
from .session import AgentSession
from .transport import (
    EventSource,
    GeneratorTransport,
    HttpTransport,
    ReplayTransport,
    Transport,
)

__all__ = [
    # Session
    "AgentSession",
    "AguiError",
    "AlreadyRunningError",
    "ConfigurationError",
    "Context",
    "CoordinatorState",
    "DanglingReferenceError",
    "DuplicateIdError",
    # Events
    "Event",
    "EventDecodeError",
    "EventSource",
    "EventStreamParser",
    "EventType",
    # Transports
    "GeneratorTransport",
    "HttpTransport",
    "IncompleteToolCallError",
    "InvalidPatchError",
    "MalformedArgumentsError",
    "Message",
    "Notification",
    "ProtocolError",
    "Reduction",
    "RemoteRunError",
    "ReplayTransport",
    "Role",
    "RunAgentInput",
    "RunState",
    "RunStatus",
    "RunStream",
    "RunWarning",
    "StaleEventError",
    "StreamCoordinator",
    "Tool",
    "ToolCall",
    "ToolCallError",
    "Transport",
    "TransportError",
    "UnexpectedEventError",
    "UnknownTargetError",
    "ValidationError",
    # Reducer
    "apply",
    "close_open",
    "encode_sse",
    "fold",
]
