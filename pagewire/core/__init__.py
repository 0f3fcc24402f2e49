"""Core pagewire components: connection, sessions, errors."""

from .connection import Connection
from .session import Session, SessionTree
from .callbacks import CallbackRegistry, PendingOperations
from .config import load_options
from .events import (
    EventEmitter,
    ConnectionEvent,
    SessionEvent,
    FrameTreeEvent,
    ContextEvent,
    NetworkEvent,
)
from .errors import (
    PagewireError,
    ConnectionClosedError,
    TargetClosedError,
    FrameDetachedError,
    ContextDestroyedError,
    ProtocolError,
    EvaluationError,
    AlreadyResolvedError,
    InterceptionNotEnabledError,
    RequestFailedError,
    NavigationError,
    ProtocolViolationError,
    OperationTimeoutError,
    BrowserNotAvailableError,
    ConfigurationError,
)

__all__ = [
    "Connection",
    "Session",
    "SessionTree",
    "CallbackRegistry",
    "PendingOperations",
    "load_options",
    "EventEmitter",
    "ConnectionEvent",
    "SessionEvent",
    "FrameTreeEvent",
    "ContextEvent",
    "NetworkEvent",
    # Errors
    "PagewireError",
    "ConnectionClosedError",
    "TargetClosedError",
    "FrameDetachedError",
    "ContextDestroyedError",
    "ProtocolError",
    "EvaluationError",
    "AlreadyResolvedError",
    "InterceptionNotEnabledError",
    "RequestFailedError",
    "NavigationError",
    "ProtocolViolationError",
    "OperationTimeoutError",
    "BrowserNotAvailableError",
    "ConfigurationError",
]
