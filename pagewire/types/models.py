"""Core type definitions for pagewire."""

from enum import Enum
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class SessionStatus(str, Enum):
    """Lifecycle of a protocol session."""
    ACTIVE = "active"
    DETACHED = "detached"


class ContextState(str, Enum):
    """Readiness of an execution context."""
    PENDING = "pending"
    READY = "ready"
    DESTROYED = "destroyed"


class LifecycleState(str, Enum):
    """Navigation lifecycle of a frame."""
    PENDING = "pending"
    DOM_LOADED = "dom-loaded"
    LOADED = "loaded"

    @property
    def rank(self) -> int:
        return _LIFECYCLE_RANK[self]


_LIFECYCLE_RANK = {
    LifecycleState.PENDING: 0,
    LifecycleState.DOM_LOADED: 1,
    LifecycleState.LOADED: 2,
}


class RequestState(str, Enum):
    """Network request state machine."""
    SENT = "sent"
    HEADERS_RECEIVED = "headers-received"
    INTERCEPTION_PAUSED = "interception-paused"
    RESOLVED = "resolved"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RequestState.RESOLVED, RequestState.FAILED)


class ResolutionAction(str, Enum):
    """Decision taken for an intercepted request."""
    NONE = "none"
    CONTINUE = "continue"
    FULFILL = "fulfill"
    ABORT = "abort"


class ConnectionOptions(BaseModel):
    """Parameters for connecting to a browser."""
    browser_ws_endpoint: Optional[str] = None
    browser_url: Optional[str] = None
    protocol: Literal["cdp", "webDriverBiDi"] = "cdp"
    protocol_timeout: Optional[float] = 180.0
    slow_mo: float = 0.0
    verbose: int = 0
    headers: Dict[str, str] = Field(default_factory=dict)
    max_message_size: int = 256 * 1024 * 1024

    @field_validator("protocol_timeout")
    @classmethod
    def _non_negative_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("protocol_timeout must be >= 0")
        return v or None

    @field_validator("verbose")
    @classmethod
    def _verbose_range(cls, v: int) -> int:
        if not 0 <= v <= 3:
            raise ValueError("verbose must be between 0 and 3")
        return v
