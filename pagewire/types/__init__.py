"""Type definitions for pagewire."""

from .models import (
    SessionStatus,
    ContextState,
    LifecycleState,
    RequestState,
    ResolutionAction,
    ConnectionOptions,
)
from .browser import (
    TargetInfo,
    FrameInfo,
    ResponseInfo,
    ContinueOverrides,
    FulfillResponse,
    Credentials,
    headers_to_array,
)

__all__ = [
    "SessionStatus",
    "ContextState",
    "LifecycleState",
    "RequestState",
    "ResolutionAction",
    "ConnectionOptions",
    "TargetInfo",
    "FrameInfo",
    "ResponseInfo",
    "ContinueOverrides",
    "FulfillResponse",
    "Credentials",
    "headers_to_array",
]
