"""
pagewire - browser protocol sessions and page state for Python.

pagewire multiplexes DevTools (CDP) and WebDriver BiDi sessions over one
connection and keeps a live model of each page: its frame tree, the
JavaScript execution contexts of every frame, and the network requests in
flight, with request interception.
"""

__version__ = "0.1.0"

from .connect import connect

from .core import (
    Connection,
    Session,
    SessionTree,
    load_options,
    ConnectionEvent,
    SessionEvent,
    FrameTreeEvent,
    ContextEvent,
    NetworkEvent,
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

from .bidi import BidiConnection, Keyboard, Mouse, MouseButton, Touchscreen
from .network import NetworkPipeline, Request
from .page import ExecutionContext, ExecutionContextRegistry, Frame, FrameTree, PageModel, RemoteHandle

from .types import (
    ConnectionOptions,
    ContinueOverrides,
    Credentials,
    FulfillResponse,
    LifecycleState,
    RequestState,
    ResolutionAction,
    ResponseInfo,
    TargetInfo,
)

__all__ = [
    # Version
    "__version__",
    # Entry point
    "connect",
    # Connection and sessions
    "Connection",
    "BidiConnection",
    "Session",
    "SessionTree",
    "load_options",
    # Page state
    "PageModel",
    "FrameTree",
    "Frame",
    "ExecutionContext",
    "ExecutionContextRegistry",
    "RemoteHandle",
    # Network
    "NetworkPipeline",
    "Request",
    # Input
    "Keyboard",
    "Mouse",
    "MouseButton",
    "Touchscreen",
    # Events
    "ConnectionEvent",
    "SessionEvent",
    "FrameTreeEvent",
    "ContextEvent",
    "NetworkEvent",
    # Types
    "ConnectionOptions",
    "ContinueOverrides",
    "Credentials",
    "FulfillResponse",
    "LifecycleState",
    "RequestState",
    "ResolutionAction",
    "ResponseInfo",
    "TargetInfo",
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
