"""Custom exception hierarchy for pagewire."""

from typing import Optional, Any, Dict


class PagewireError(Exception):
    """Base exception for all pagewire errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConnectionClosedError(PagewireError):
    """Raised for work pending on a connection whose transport went away."""

    def __init__(self, reason: str = "Connection closed"):
        super().__init__(
            f"Protocol connection closed: {reason}",
            {"reason": reason, "error_code": "CONNECTION_CLOSED"}
        )


class TargetClosedError(PagewireError):
    """Raised for work scoped to a session that has been detached."""

    def __init__(self, reason: str = "Session detached", session_id: Optional[str] = None):
        super().__init__(
            f"Target closed: {reason}",
            {"reason": reason, "session_id": session_id, "error_code": "TARGET_CLOSED"}
        )


class FrameDetachedError(TargetClosedError):
    """Raised for waits bound to a frame that left the frame tree."""

    def __init__(self, frame_id: str):
        super().__init__(f"Frame {frame_id} was detached")
        self.details["frame_id"] = frame_id
        self.details["error_code"] = "FRAME_DETACHED"


class ContextDestroyedError(PagewireError):
    """Raised when an execution context is no longer usable."""

    def __init__(self, context_id: Optional[int] = None, reason: str = "Execution context was destroyed"):
        super().__init__(
            reason,
            {"context_id": context_id, "error_code": "CONTEXT_DESTROYED"}
        )


class ProtocolError(PagewireError):
    """Raised when the remote side answers a command with an error."""

    def __init__(
        self,
        method: str,
        message: str,
        code: Optional[int] = None,
        data: Optional[Any] = None,
    ):
        text = f"Protocol error ({method}): {message}"
        if data:
            text += f" {data}"
        super().__init__(
            text,
            {"method": method, "code": code, "data": data, "error_code": "PROTOCOL_ERROR"}
        )
        self.method = method
        self.code = code
        self.original_message = message


class EvaluationError(ProtocolError):
    """Raised when evaluated script throws inside the target."""

    def __init__(self, method: str, exception_details: Dict[str, Any]):
        exception = exception_details.get("exception") or {}
        message = exception.get("description") or exception_details.get("text") or "Evaluation failed"
        super().__init__(method, message)
        self.details["error_code"] = "EVALUATION_FAILED"
        self.exception_details = exception_details


class AlreadyResolvedError(PagewireError):
    """Raised when an intercepted request receives a second decision."""

    def __init__(self, request_id: str, resolution: str):
        super().__init__(
            f"Request {request_id} is already handled ({resolution})",
            {"request_id": request_id, "resolution": resolution, "error_code": "ALREADY_RESOLVED"}
        )


class InterceptionNotEnabledError(PagewireError):
    """Raised when resolving a request that was never paused."""

    def __init__(self, request_id: str):
        super().__init__(
            f"Request {request_id} is not intercepted",
            {"request_id": request_id, "error_code": "INTERCEPTION_NOT_ENABLED"}
        )


class RequestFailedError(PagewireError):
    """Raised when waiting on a request that failed."""

    def __init__(self, request_id: str, error_text: str):
        super().__init__(
            f"Request {request_id} failed: {error_text}",
            {"request_id": request_id, "error_text": error_text, "error_code": "REQUEST_FAILED"}
        )
        self.error_text = error_text


class NavigationError(PagewireError):
    """Raised when the browser refuses a navigation."""

    def __init__(self, url: str, error_text: str):
        super().__init__(
            f"Navigation to {url} failed: {error_text}",
            {"url": url, "error_text": error_text, "error_code": "NAVIGATION_FAILED"}
        )


class ProtocolViolationError(PagewireError):
    """Raised when the correlation bookkeeping is broken."""

    def __init__(self, reason: str):
        super().__init__(
            f"Protocol violation: {reason}",
            {"reason": reason, "error_code": "PROTOCOL_VIOLATION"}
        )


class OperationTimeoutError(PagewireError):
    """Raised when operations timeout."""

    def __init__(self, operation: str, timeout_ms: int):
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_ms}ms",
            {"operation": operation, "timeout_ms": timeout_ms, "error_code": "TIMEOUT"}
        )


class BrowserNotAvailableError(PagewireError):
    """Raised when the browser endpoint cannot be reached."""

    def __init__(self, reason: str):
        super().__init__(
            f"Browser not available: {reason}",
            {"reason": reason, "error_code": "BROWSER_NOT_AVAILABLE"}
        )


class ConfigurationError(PagewireError):
    """Raised when configuration is invalid."""

    def __init__(self, reason: str):
        super().__init__(
            f"Invalid configuration: {reason}",
            {"reason": reason, "error_code": "CONFIGURATION_ERROR"}
        )
