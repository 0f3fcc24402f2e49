"""Session-multiplexed protocol connection."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from ..transport.base import Transport
from ..types import ConnectionOptions, TargetInfo
from ..utils.logger import LogLevel, PagewireLogger, get_logger
from .callbacks import CallbackRegistry
from .errors import (
    ConnectionClosedError,
    PagewireError,
    ProtocolError,
    ProtocolViolationError,
    TargetClosedError,
)
from .events import ConnectionEvent, EventEmitter, Handler, SessionEvent
from .session import Session, SessionTree


class Connection:
    """
    Owns a transport and multiplexes sessions over it.

    Outgoing commands get a fresh correlation id and a pending slot; inbound
    frames are processed one at a time, in arrival order, either settling a
    slot or being routed as an event to the session named by ``sessionId``
    (the root session when absent). Closing the transport is the single
    recovery point: every slot is rejected and every session detached.
    """

    def __init__(
        self,
        transport: Transport,
        options: Optional[ConnectionOptions] = None,
        logger: Optional[PagewireLogger] = None,
        url: Optional[str] = None,
    ):
        self._transport = transport
        self._options = options or ConnectionOptions()
        self._url = url
        self._logger = (logger or get_logger(self._options.verbose)).child(component="connection")
        self._callbacks = CallbackRegistry()
        self._sessions: Dict[str, Session] = {}
        self._tree = SessionTree()
        self._emitter = EventEmitter(logger=self._logger)
        self._closed = False
        self._close_reason: Optional[str] = None
        self._reader: Optional["asyncio.Future"] = None
        self._root = Session(self, None, None, self._logger)

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    @property
    def root(self) -> Session:
        """Browser-level session receiving events without a session id."""
        return self._root

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session_tree(self) -> SessionTree:
        return self._tree

    def session(self, session_id: Optional[str]) -> Optional[Session]:
        if session_id is None:
            return self._root
        return self._sessions.get(session_id)

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def pending_commands(self) -> List[int]:
        return self._callbacks.pending_ids()

    def on(self, event: str, handler: Handler) -> Handler:
        return self._emitter.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._emitter.off(event, handler)

    def once(self, event: str, handler: Handler) -> Handler:
        return self._emitter.once(event, handler)

    def start(self) -> None:
        """Start pumping frames from the transport."""
        if self._reader is None:
            self._reader = asyncio.ensure_future(self._read_loop())

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a command and wait for its correlated result.

        Args:
            method: Protocol method name (e.g. 'Page.navigate')
            params: Method parameters
            session_id: Channel to address; None for the browser channel
            timeout: Seconds to wait; defaults to the connection's protocol timeout

        Returns:
            The ``result`` payload of the response
        """
        if self._closed:
            raise ConnectionClosedError(self._close_reason or "Connection closed")

        callback_id = self._callbacks.next_id()
        message = self._encode(callback_id, method, params or {}, session_id)
        callback = self._callbacks.create(callback_id, method, session_id, self._timeout_for(timeout))

        if self._options.slow_mo:
            await asyncio.sleep(self._options.slow_mo)
            if self._closed:
                return await callback.future

        self._logger.debug(
            "connection:send",
            "Sending command",
            id=callback_id,
            method=method,
            session_id=session_id,
        )
        try:
            await self._transport.send(message)
        except PagewireError as e:
            self._callbacks.reject(callback_id, e)
        except Exception as e:
            self._callbacks.reject(callback_id, ConnectionClosedError(str(e)))
        return await callback.future

    async def create_session(self, target_id: str) -> Session:
        """Attach to a target in flat mode and return its session."""
        result = await self.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        session_id = result.get("sessionId")
        session = self._sessions.get(session_id)
        if session is None:
            raise ProtocolViolationError(f"attach response names session {session_id} that never attached")
        return session

    def on_message(self, raw: str) -> None:
        """Process a single inbound frame."""
        if self._closed:
            return
        if self._logger.enabled(LogLevel.DEBUG):
            self._logger.debug("connection:receive", "Frame received", frame=raw)
        try:
            message = json.loads(raw)
        except ValueError:
            self._logger.error("connection:receive", "Dropping malformed frame", frame=raw[:200])
            return
        if not isinstance(message, dict):
            self._logger.error("connection:receive", "Dropping non-object frame", frame=raw[:200])
            return

        if "id" in message:
            self._handle_response(message)
        else:
            self._handle_event(message)

    def on_close(self, reason: str = "Transport closed") -> None:
        """Fail everything that depends on this connection; idempotent."""
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason

        rejected = self._callbacks.reject_all(lambda: ConnectionClosedError(reason))
        self._logger.info("connection:close", "Connection closed", reason=reason, rejected_commands=rejected)

        for session_id in self._tree.walk():
            session = self._sessions.pop(session_id, None)
            if session is None:
                continue
            session._teardown(ConnectionClosedError(reason))
            self._emitter.emit(ConnectionEvent.SESSION_DETACHED, session)
        for session in list(self._sessions.values()):
            session._teardown(ConnectionClosedError(reason))
            self._emitter.emit(ConnectionEvent.SESSION_DETACHED, session)
        self._sessions.clear()
        self._tree.clear()
        self._root._teardown(ConnectionClosedError(reason))

        self._emitter.emit(ConnectionEvent.DISCONNECTED, reason)

    async def close(self) -> None:
        if self._closed:
            return
        try:
            await self._transport.close()
        finally:
            self.on_close("Connection closed by client")
            if self._reader is not None and not self._reader.done():
                self._reader.cancel()

    # Dialect hooks

    def _encode(self, callback_id: int, method: str, params: Dict[str, Any], session_id: Optional[str]) -> str:
        message: Dict[str, Any] = {"id": callback_id, "method": method, "params": params}
        if session_id is not None:
            message["sessionId"] = session_id
        return json.dumps(message)

    def _response_error(self, message: Dict[str, Any]) -> Optional[Tuple[str, Optional[int], Any]]:
        error = message.get("error")
        if not error:
            return None
        return error.get("message", ""), error.get("code"), error.get("data")

    def _detach_command(self, session_id: str) -> Optional[Tuple[str, Dict[str, Any]]]:
        return "Target.detachFromTarget", {"sessionId": session_id}

    def _handle_event(self, message: Dict[str, Any]) -> None:
        method = message.get("method")
        params = message.get("params") or {}
        session_id = message.get("sessionId")

        target = self.session(session_id)
        if target is None:
            self._logger.warn(
                "connection:unroutable",
                "Dropping event for unknown session",
                method=method,
                session_id=session_id,
            )
            return

        if method == "Target.attachedToTarget":
            self._attach_session(target, params["sessionId"], TargetInfo.model_validate(params["targetInfo"]))
        elif method == "Target.detachedFromTarget":
            child = self._sessions.get(params.get("sessionId"))
            if child is not None:
                child.mark_detached(TargetClosedError("Target detached", child.session_id))

        target.emit(method, params)

    # Session bookkeeping

    def _attach_session(self, parent: Session, session_id: str, target_info: Optional[TargetInfo]) -> Optional[Session]:
        if session_id in self._sessions:
            self._logger.warn("connection:attach", "Session attached twice", session_id=session_id)
            return None
        session = Session(self, session_id, target_info, self._logger)
        self._sessions[session_id] = session
        self._tree.add(session_id, parent.session_id)
        self._logger.debug(
            "connection:attach",
            "Session attached",
            session_id=session_id,
            parent_id=parent.session_id,
            target_type=session.target_type,
        )
        parent.emit(SessionEvent.ATTACHED, session)
        self._emitter.emit(ConnectionEvent.SESSION_ATTACHED, session)
        return session

    def _drop_session(self, session: Session, error: BaseException) -> None:
        session_ids = self._tree.remove(session.session_id) if session.session_id in self._tree else [session.session_id]
        for session_id in session_ids:
            if session_id == session.session_id:
                current, current_error = session, error
            else:
                current = self._sessions.get(session_id)
                current_error = TargetClosedError("Parent session detached", session_id)
            if current is None:
                continue
            if session_id is not None:
                self._sessions.pop(session_id, None)
            current._teardown(current_error)
            if current is not self._root:
                self._emitter.emit(ConnectionEvent.SESSION_DETACHED, current)

    def _handle_response(self, message: Dict[str, Any]) -> None:
        callback_id = message["id"]
        callback = self._callbacks.get(callback_id)
        if callback is None:
            self._logger.warn("connection:receive", "Response for unknown correlation id", id=callback_id)
            return
        error = self._response_error(message)
        if error is not None:
            text, code, data = error
            self._callbacks.reject(callback_id, ProtocolError(callback.method, text, code, data))
        else:
            self._callbacks.resolve(callback_id, message.get("result", {}))

    def _timeout_for(self, timeout: Optional[float]) -> Optional[float]:
        if timeout is None:
            return self._options.protocol_timeout
        return timeout or None

    async def _read_loop(self) -> None:
        reason = "Transport closed"
        try:
            while True:
                message = await self._transport.receive()
                if message is None:
                    break
                self.on_message(message)
        except asyncio.CancelledError:
            reason = "Reader cancelled"
            raise
        except Exception as e:
            reason = f"Transport failed: {e}"
            self._logger.error("connection:read", "Transport read failed", error=str(e))
        finally:
            self.on_close(reason)
