"""Network requests and the interception decision contract."""

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.errors import (
    AlreadyResolvedError,
    InterceptionNotEnabledError,
    OperationTimeoutError,
    PagewireError,
    RequestFailedError,
    TargetClosedError,
)
from ..core.session import Session
from ..types import ContinueOverrides, FulfillResponse, RequestState, ResolutionAction, ResponseInfo

if TYPE_CHECKING:
    from .pipeline import NetworkPipeline


ERROR_REASONS = {
    "aborted": "Aborted",
    "accessdenied": "AccessDenied",
    "addressunreachable": "AddressUnreachable",
    "blockedbyclient": "BlockedByClient",
    "blockedbyresponse": "BlockedByResponse",
    "connectionaborted": "ConnectionAborted",
    "connectionclosed": "ConnectionClosed",
    "connectionfailed": "ConnectionFailed",
    "connectionrefused": "ConnectionRefused",
    "connectionreset": "ConnectionReset",
    "internetdisconnected": "InternetDisconnected",
    "namenotresolved": "NameNotResolved",
    "timedout": "TimedOut",
    "failed": "Failed",
}


class Request:
    """
    One network request seen by a session's pipeline.

    ``state`` follows sent -> headers-received -> resolved|failed, with an
    interception-paused stop while a caller decision is outstanding. A paused
    request accepts exactly one of continue_/fulfill/abort.
    """

    def __init__(
        self,
        pipeline: "NetworkPipeline",
        request_id: str,
        interception_id: Optional[str],
        event: Dict[str, Any],
        redirect_chain: Optional[List["Request"]] = None,
    ):
        payload = event.get("request") or {}
        self._pipeline = pipeline
        self.request_id = request_id
        self.interception_id = interception_id
        self.frame_id: Optional[str] = event.get("frameId")
        self.loader_id: Optional[str] = event.get("loaderId")
        self.url: str = payload.get("url", "") + payload.get("urlFragment", "")
        self.method: str = payload.get("method", "GET")
        self.headers: Dict[str, str] = {k.lower(): str(v) for k, v in (payload.get("headers") or {}).items()}
        self.post_data: Optional[str] = payload.get("postData")
        self.resource_type: str = (event.get("type") or event.get("resourceType") or "other").lower()
        self.is_navigation = self.request_id == self.loader_id and self.resource_type == "document"
        self.redirect_chain: List[Request] = redirect_chain if redirect_chain is not None else []
        self.response: Optional[ResponseInfo] = None
        self.failure_text: Optional[str] = None
        self.from_memory_cache = False
        self._state = RequestState.SENT
        self._resolution = ResolutionAction.NONE
        self._failure: Optional[BaseException] = None
        self._completion: Optional["asyncio.Future"] = None

    @property
    def session(self) -> Session:
        return self._pipeline.session

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def resolution(self) -> ResolutionAction:
        return self._resolution

    @property
    def is_intercepted(self) -> bool:
        return self.interception_id is not None

    @property
    def is_paused(self) -> bool:
        return self._state is RequestState.INTERCEPTION_PAUSED

    async def continue_(self, overrides: Optional[ContinueOverrides] = None) -> None:
        """Let the request proceed, optionally rewriting url, method, body or headers."""
        self._claim(ResolutionAction.CONTINUE)
        params: Dict[str, Any] = {"requestId": self.interception_id}
        if overrides is not None:
            params.update(overrides.to_protocol())
        await self.session.send("Fetch.continueRequest", params)
        if self._state is RequestState.INTERCEPTION_PAUSED:
            self._state = RequestState.SENT

    async def fulfill(self, response: FulfillResponse) -> None:
        """Answer the request with a synthetic response."""
        self._claim(ResolutionAction.FULFILL)
        params = {"requestId": self.interception_id, **response.to_protocol()}
        await self.session.send("Fetch.fulfillRequest", params)
        if not self._state.terminal:
            self.response = ResponseInfo(
                url=self.url,
                status=response.status,
                headers={k.lower(): v for k, v in response.headers.items()},
            )
            self._pipeline._complete(self)

    async def abort(self, error_code: str = "failed") -> None:
        """Fail the request with a synthetic network error."""
        reason = ERROR_REASONS.get(error_code.lower())
        if reason is None:
            raise PagewireError(f"Unknown error code: {error_code}")
        self._claim(ResolutionAction.ABORT)
        await self.session.send("Fetch.failRequest", {"requestId": self.interception_id, "errorReason": reason})
        if not self._state.terminal:
            self._pipeline._fail(self, "net::ERR_" + reason.upper())

    async def wait_for_completion(self, timeout: Optional[float] = None) -> "Request":
        """Wait for the request to finish; raises when it fails."""
        if not self._state.terminal:
            if self._completion is None:
                self._completion = asyncio.get_running_loop().create_future()
            try:
                await asyncio.wait_for(asyncio.shield(self._completion), timeout)
            except asyncio.TimeoutError:
                raise OperationTimeoutError(f"wait_for_completion({self.request_id})", int(timeout * 1000)) from None
        if self._state is RequestState.FAILED:
            raise self._failure or RequestFailedError(self.request_id, self.failure_text or "unknown error")
        return self

    def _claim(self, action: ResolutionAction) -> None:
        if not self.is_intercepted:
            raise InterceptionNotEnabledError(self.request_id)
        if self._resolution is not ResolutionAction.NONE:
            raise AlreadyResolvedError(self.request_id, self._resolution.value)
        if self.session.detached or isinstance(self._failure, TargetClosedError):
            raise TargetClosedError(f"Request {self.request_id} belongs to a detached session", self.session.session_id)
        self._resolution = action

    def _pause(self, interception_id: str) -> None:
        self.interception_id = interception_id
        self._resolution = ResolutionAction.NONE
        self._state = RequestState.INTERCEPTION_PAUSED

    def _set_response(self, response: ResponseInfo) -> bool:
        if self._state.terminal:
            return False
        self.response = response
        self._state = RequestState.HEADERS_RECEIVED
        return True

    def _finish(self) -> bool:
        if self._state.terminal:
            return False
        self._state = RequestState.RESOLVED
        if self._completion is not None and not self._completion.done():
            self._completion.set_result(self)
        return True

    def _set_failed(self, error_text: str, error: Optional[BaseException] = None) -> bool:
        if self._state.terminal:
            return False
        self._state = RequestState.FAILED
        self.failure_text = error_text
        self._failure = error or RequestFailedError(self.request_id, error_text)
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(self._failure)
            self._completion.exception()
        return True

    def __repr__(self) -> str:
        return f"<Request id={self.request_id!r} {self.method} {self.url!r} state={self._state.value}>"
