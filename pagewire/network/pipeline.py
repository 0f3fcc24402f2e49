"""Per-session network event pipeline with request interception."""

import asyncio
from typing import Any, Dict, List, Optional, Set

from ..core.errors import ConnectionClosedError, ProtocolError, TargetClosedError
from ..core.events import EventEmitter, Handler, NetworkEvent, SessionEvent
from ..core.session import Session
from ..types import Credentials, ResponseInfo
from ..utils.logger import PagewireLogger, get_logger
from .request import Request


class NetworkPipeline:
    """
    Pairs request/response lifecycle events of one session by request id.

    With interception on, Network.requestWillBeSent and Fetch.requestPaused
    may arrive in either order; whichever comes first waits for the other and
    the Request is announced paused once both are known. Each paused request is
    an independent suspension point: nothing here orders or blocks one request
    on another's decision.
    """

    def __init__(self, session: Session, logger: Optional[PagewireLogger] = None):
        self._session = session
        self._logger = (logger or get_logger()).child(component="network", session_id=session.session_id)
        self._emitter = EventEmitter(deferred=True, logger=self._logger)
        self._requests: Dict[str, Request] = {}
        self._interceptions: Dict[str, Request] = {}
        self._will_be_sent: Dict[str, Dict[str, Any]] = {}
        self._paused: Dict[str, Dict[str, Any]] = {}
        self._attempted_auth: Set[str] = set()
        self._intercepting = False
        self._credentials: Optional[Credentials] = None
        self._fetch_enabled = False
        self._extra_headers: Dict[str, str] = {}
        self._closed = False

        session.on("Network.requestWillBeSent", self._on_request_will_be_sent)
        session.on("Network.responseReceived", self._on_response_received)
        session.on("Network.loadingFinished", self._on_loading_finished)
        session.on("Network.loadingFailed", self._on_loading_failed)
        session.on("Network.requestServedFromCache", self._on_request_served_from_cache)
        session.on("Fetch.requestPaused", self._on_request_paused)
        session.on("Fetch.authRequired", self._on_auth_required)
        session.on(SessionEvent.DETACHED, self._on_session_detached)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def intercepting(self) -> bool:
        return self._intercepting

    def on(self, event: str, handler: Handler) -> Handler:
        return self._emitter.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._emitter.off(event, handler)

    def request(self, request_id: str) -> Optional[Request]:
        return self._requests.get(request_id)

    def requests(self) -> List[Request]:
        """In-flight requests."""
        return list(self._requests.values())

    def paused_requests(self) -> List[Request]:
        return [r for r in self._interceptions.values() if r.is_paused]

    async def initialize(self) -> None:
        await self._session.send("Network.enable")
        if self._extra_headers:
            await self.set_extra_http_headers(self._extra_headers)
        if self._intercepting or self._credentials:
            await self._update_fetch()

    async def set_request_interception(self, enabled: bool) -> None:
        self._intercepting = enabled
        await self._update_fetch()

    async def authenticate(self, credentials: Optional[Credentials]) -> None:
        self._credentials = credentials
        await self._update_fetch()

    async def set_extra_http_headers(self, headers: Dict[str, str]) -> None:
        self._extra_headers = {k.lower(): str(v) for k, v in headers.items()}
        await self._session.send("Network.setExtraHTTPHeaders", {"headers": self._extra_headers})

    async def _update_fetch(self) -> None:
        enabled = self._intercepting or self._credentials is not None
        if enabled == self._fetch_enabled:
            return
        self._fetch_enabled = enabled
        if enabled:
            await asyncio.gather(
                self._session.send("Network.setCacheDisabled", {"cacheDisabled": True}),
                self._session.send("Fetch.enable", {"handleAuthRequests": True, "patterns": [{"urlPattern": "*"}]}),
            )
        else:
            await asyncio.gather(
                self._session.send("Network.setCacheDisabled", {"cacheDisabled": False}),
                self._session.send("Fetch.disable"),
            )

    # Event handlers

    def _on_request_will_be_sent(self, event: Dict[str, Any]) -> None:
        request_id = event["requestId"]
        url = (event.get("request") or {}).get("url", "")
        if self._intercepting and not url.startswith("data:"):
            paused = self._paused.pop(request_id, None)
            if paused is None:
                self._will_be_sent[request_id] = event
                return
            self._start_request(event, paused["requestId"])
            return
        self._start_request(event, None)

    def _on_request_paused(self, event: Dict[str, Any]) -> None:
        interception_id = event["requestId"]
        if not self._intercepting:
            # Fetch is on only for credentials; let the request through.
            self._fire_and_forget("Fetch.continueRequest", {"requestId": interception_id})
            return

        network_id = event.get("networkId")
        if not network_id:
            self._start_request({**event, "requestId": interception_id}, interception_id)
            return

        will_be_sent = self._will_be_sent.pop(network_id, None)
        if will_be_sent is not None:
            self._start_request(will_be_sent, interception_id)
            return

        existing = self._requests.get(network_id)
        if existing is not None and self._is_same_unintercepted(existing, event):
            existing._pause(interception_id)
            self._interceptions[interception_id] = existing
            self._emitter.emit(NetworkEvent.REQUEST, existing)
            return

        self._paused[network_id] = event

    def _on_auth_required(self, event: Dict[str, Any]) -> None:
        interception_id = event["requestId"]
        response = "Default"
        if interception_id in self._attempted_auth:
            response = "CancelAuth"
        elif self._credentials is not None:
            response = "ProvideCredentials"
            self._attempted_auth.add(interception_id)
        challenge: Dict[str, Any] = {"response": response}
        if response == "ProvideCredentials":
            challenge["username"] = self._credentials.username
            challenge["password"] = self._credentials.password
        self._fire_and_forget("Fetch.continueWithAuth", {"requestId": interception_id, "authChallengeResponse": challenge})

    def _on_response_received(self, event: Dict[str, Any]) -> None:
        request = self._requests.get(event["requestId"])
        if request is None:
            return
        if request._set_response(ResponseInfo.from_protocol(event.get("response") or {})):
            self._emitter.emit(NetworkEvent.RESPONSE, request)

    def _on_loading_finished(self, event: Dict[str, Any]) -> None:
        self._drop_unpaired(event["requestId"])
        request = self._requests.get(event["requestId"])
        if request is not None:
            self._complete(request)

    def _on_loading_failed(self, event: Dict[str, Any]) -> None:
        self._drop_unpaired(event["requestId"])
        request = self._requests.get(event["requestId"])
        if request is not None:
            self._fail(request, event.get("errorText", "net::ERR_FAILED"))

    def _on_request_served_from_cache(self, event: Dict[str, Any]) -> None:
        request = self._requests.get(event["requestId"])
        if request is not None:
            request.from_memory_cache = True
            self._emitter.emit(NetworkEvent.REQUEST_SERVED_FROM_CACHE, request)

    def _on_session_detached(self, _session: Any) -> None:
        self._closed = True
        for request in list(self._requests.values()):
            error = TargetClosedError(f"Request {request.request_id} interrupted by session detach", self._session.session_id)
            if request._set_failed("net::ERR_ABORTED", error):
                self._emitter.emit(NetworkEvent.REQUEST_FAILED, request)
        self._requests.clear()
        self._interceptions.clear()
        self._will_be_sent.clear()
        self._paused.clear()

    # Bookkeeping

    def _is_same_unintercepted(self, request: Request, paused: Dict[str, Any]) -> bool:
        # A redirect hop pauses under the same network id before its requestWillBeSent.
        payload = paused.get("request") or {}
        return (
            not request.state.terminal
            and request.interception_id is None
            and request.url == payload.get("url", "") + payload.get("urlFragment", "")
            and request.method == payload.get("method", "GET")
        )

    def _drop_unpaired(self, request_id: str) -> None:
        self._will_be_sent.pop(request_id, None)
        self._paused.pop(request_id, None)

    def _start_request(self, event: Dict[str, Any], interception_id: Optional[str]) -> Request:
        request_id = event["requestId"]
        redirect_chain: List[Request] = []
        redirect_response = event.get("redirectResponse")
        previous = self._requests.get(request_id)
        if redirect_response and previous is not None:
            previous._set_response(ResponseInfo.from_protocol(redirect_response))
            redirect_chain = previous.redirect_chain + [previous]
            self._emitter.emit(NetworkEvent.RESPONSE, previous)
            self._complete(previous)

        request = Request(self, request_id, interception_id, event, redirect_chain)
        self._requests[request_id] = request
        if interception_id is not None:
            request._pause(interception_id)
            self._interceptions[interception_id] = request
        self._logger.debug(
            "network:request",
            "Request started",
            request_id=request_id,
            url=request.url,
            paused=request.is_paused,
        )
        self._emitter.emit(NetworkEvent.REQUEST, request)
        return request

    def _complete(self, request: Request) -> None:
        if request._finish():
            self._emitter.emit(NetworkEvent.REQUEST_FINISHED, request)
        self._forget(request)

    def _fail(self, request: Request, error_text: str) -> None:
        if request._set_failed(error_text):
            self._emitter.emit(NetworkEvent.REQUEST_FAILED, request)
        self._forget(request)

    def _forget(self, request: Request) -> None:
        if self._requests.get(request.request_id) is request:
            del self._requests[request.request_id]
        if request.interception_id is not None and self._interceptions.get(request.interception_id) is request:
            del self._interceptions[request.interception_id]
            self._attempted_auth.discard(request.interception_id)

    def _fire_and_forget(self, method: str, params: Dict[str, Any]) -> None:
        task = asyncio.ensure_future(self._session.send(method, params))
        task.add_done_callback(lambda t: self._report(method, t))

    def _report(self, method: str, task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if isinstance(error, (TargetClosedError, ConnectionClosedError, ProtocolError)):
            self._logger.debug("network:command", "Background command failed", method=method, error=str(error))
        elif error is not None:
            self._logger.error("network:command", "Background command failed", method=method, error=str(error))
