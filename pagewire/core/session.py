"""Protocol sessions: one logical channel per attached target."""

from collections import defaultdict
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..types import SessionStatus, TargetInfo
from ..utils.logger import PagewireLogger
from .errors import ConnectionClosedError, ProtocolViolationError, TargetClosedError
from .events import EventEmitter, Handler, SessionEvent

if TYPE_CHECKING:
    from .connection import Connection


class SessionTree:
    """
    Parent/child relationships between sessions.

    The tree owns only ids: parents hold child lists, children are looked up
    to their parent through a separate index. Removing a node hands back the
    node and all of its descendants in top-down order so that teardown is a
    single walk.
    """

    def __init__(self) -> None:
        self._children: Dict[Optional[str], List[str]] = defaultdict(list)
        self._parents: Dict[str, Optional[str]] = {}

    def add(self, session_id: str, parent_id: Optional[str] = None) -> None:
        if session_id in self._parents:
            raise ProtocolViolationError(f"session {session_id} is already attached")
        self._parents[session_id] = parent_id
        self._children[parent_id].append(session_id)

    def parent_of(self, session_id: str) -> Optional[str]:
        return self._parents.get(session_id)

    def children_of(self, session_id: Optional[str]) -> List[str]:
        return list(self._children.get(session_id, ()))

    def descendants(self, session_id: Optional[str]) -> List[str]:
        result: List[str] = []
        pending = self.children_of(session_id)
        while pending:
            current = pending.pop(0)
            result.append(current)
            pending.extend(self.children_of(current))
        return result

    def walk(self) -> List[str]:
        """All sessions, parents before children."""
        return self.descendants(None)

    def remove(self, session_id: str) -> List[str]:
        if session_id not in self._parents:
            return []
        removed = [session_id] + self.descendants(session_id)
        for sid in removed:
            parent = self._parents.pop(sid, None)
            siblings = self._children.get(parent)
            if siblings and sid in siblings:
                siblings.remove(sid)
                if not siblings:
                    del self._children[parent]
            self._children.pop(sid, None)
        return removed

    def clear(self) -> None:
        self._children.clear()
        self._parents.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._parents

    def __len__(self) -> int:
        return len(self._parents)


class Session:
    """
    A channel scoped to one remote target.

    Commands are forwarded through the owning connection tagged with this
    session's id; events addressed to the id are re-emitted to subscribers in
    arrival order. The root session (``session_id is None``) carries
    browser-level traffic.
    """

    def __init__(
        self,
        connection: "Connection",
        session_id: Optional[str],
        target_info: Optional[TargetInfo],
        logger: PagewireLogger,
    ):
        self._connection = connection
        self._session_id = session_id
        self._target_info = target_info
        self._status = SessionStatus.ACTIVE
        self._logger = logger.child(session_id=session_id)
        self._emitter = EventEmitter(logger=self._logger)

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def target_info(self) -> Optional[TargetInfo]:
        return self._target_info

    @property
    def target_id(self) -> str:
        return self._target_info.target_id if self._target_info else "browser"

    @property
    def target_type(self) -> str:
        return self._target_info.type if self._target_info else "browser"

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def detached(self) -> bool:
        return self._status is SessionStatus.DETACHED

    @property
    def connection(self) -> "Connection":
        return self._connection

    @property
    def parent(self) -> Optional["Session"]:
        if self._session_id is None:
            return None
        parent_id = self._connection.session_tree.parent_of(self._session_id)
        if parent_id is None:
            return self._connection.root
        return self._connection.session(parent_id)

    @property
    def children(self) -> List["Session"]:
        sessions = (self._connection.session(sid) for sid in self._connection.session_tree.children_of(self._session_id))
        return [s for s in sessions if s is not None]

    def on(self, event: str, handler: Handler) -> Handler:
        return self._emitter.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._emitter.off(event, handler)

    def once(self, event: str, handler: Handler) -> Handler:
        return self._emitter.once(event, handler)

    def emit(self, event: str, payload: Any = None) -> bool:
        if self.detached:
            return False
        return self._emitter.emit(event, payload)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        if self.detached:
            raise TargetClosedError(
                f"Protocol error ({method}): Session closed. Most likely the {self.target_type} has been closed.",
                self._session_id,
            )
        return await self._connection.send(method, params, session_id=self._session_id, timeout=timeout)

    async def detach(self) -> None:
        """Detach from the target. Only the first call has any effect."""
        if self.detached:
            return
        command = None
        if self._session_id is not None and not self._connection.closed:
            command = self._connection._detach_command(self._session_id)
        self.mark_detached(TargetClosedError("Session detached by client", self._session_id))
        if command is None:
            return
        try:
            await self._connection.send(*command)
        except ConnectionClosedError:
            self._logger.debug("session:detach", "Connection closed before remote detach", session_id=self._session_id)

    def mark_detached(self, error: Optional[BaseException] = None) -> None:
        """Tear the session down locally; idempotent."""
        if self.detached:
            return
        self._connection._drop_session(self, error or TargetClosedError("Session detached", self._session_id))

    def _teardown(self, error: BaseException) -> None:
        if self.detached:
            return
        self._status = SessionStatus.DETACHED
        rejected = self._connection._callbacks.reject_session(self._session_id, lambda: error)
        self._logger.debug(
            "session:detached",
            "Session detached",
            target_id=self.target_id,
            rejected_commands=rejected,
        )
        # Internal listeners (registries, pipelines) tear down synchronously before handlers go away.
        self._emitter.emit(SessionEvent.DETACHED, self)
        self._emitter.remove_all_listeners()

    def __repr__(self) -> str:
        return f"<Session id={self._session_id!r} target={self.target_id!r} status={self._status.value}>"
