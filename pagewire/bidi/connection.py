"""WebDriver BiDi dialect of the session-multiplexed connection."""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..core.connection import Connection
from ..core.errors import TargetClosedError
from ..core.session import Session
from ..types import TargetInfo

CONTEXT_CREATED = "browsingContext.contextCreated"
CONTEXT_DESTROYED = "browsingContext.contextDestroyed"


class BidiConnection(Connection):
    """
    Connection speaking WebDriver BiDi.

    BiDi has a single channel on the wire; browsing contexts are mapped onto
    Sessions keyed by context id so that the routing, detach cascade and close
    semantics of the base connection apply unchanged. Nested contexts become
    child sessions of their parent context.
    """

    async def subscribe(self, events: List[str], contexts: Optional[List[str]] = None) -> None:
        params: Dict[str, Any] = {"events": events}
        if contexts:
            params["contexts"] = contexts
        await self.send("session.subscribe", params)

    async def create_session(self, target_id: str) -> Session:
        session = self.session(target_id)
        if session is None:
            raise TargetClosedError(f"No browsing context {target_id}", target_id)
        return session

    def _encode(self, callback_id: int, method: str, params: Dict[str, Any], session_id: Optional[str]) -> str:
        # The context travels inside params; session ids only scope bookkeeping.
        return json.dumps({"id": callback_id, "method": method, "params": params})

    def _response_error(self, message: Dict[str, Any]) -> Optional[Tuple[str, Optional[int], Any]]:
        if message.get("type") != "error":
            return None
        return message.get("message") or message.get("error", ""), None, message.get("error")

    def _detach_command(self, session_id: str) -> Optional[Tuple[str, Dict[str, Any]]]:
        return None

    def _handle_event(self, message: Dict[str, Any]) -> None:
        if message.get("type") != "event":
            self._logger.warn("connection:receive", "Dropping frame of unknown type", type=message.get("type"))
            return
        method = message.get("method")
        params = message.get("params") or {}

        if method == CONTEXT_CREATED:
            self._on_context_created(params)
            # Creation and destruction are announced on the parent context.
            target = self.session(params.get("parent")) or self._root
        elif method == CONTEXT_DESTROYED:
            target = self._on_context_destroyed(params)
        else:
            context_id = params.get("context") or (params.get("source") or {}).get("context")
            target = self.session(context_id)
            if target is None:
                self._logger.warn(
                    "connection:unroutable",
                    "Dropping event for unknown browsing context",
                    method=method,
                    context=context_id,
                )
                return
        target.emit(method, params)

    def _on_context_created(self, params: Dict[str, Any]) -> None:
        context_id = params.get("context")
        if not context_id or context_id in self._sessions:
            return
        parent_id = params.get("parent")
        parent = self._sessions.get(parent_id) if parent_id else self._root
        if parent is None:
            self._logger.warn("connection:attach", "Parent browsing context is unknown", context=context_id, parent=parent_id)
            parent = self._root
        target_info = TargetInfo(
            targetId=context_id,
            type="iframe" if parent_id else "page",
            url=params.get("url", ""),
        )
        self._attach_session(parent, context_id, target_info)

    def _on_context_destroyed(self, params: Dict[str, Any]) -> Session:
        session = self._sessions.get(params.get("context"))
        if session is None:
            return self._root
        parent = session.parent or self._root
        session.mark_detached(TargetClosedError("Browsing context destroyed", session.session_id))
        return parent
