"""Frame hierarchy reconstructed from page lifecycle events."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from ..core.connection import Connection
from ..core.errors import ContextDestroyedError, FrameDetachedError, NavigationError, OperationTimeoutError, TargetClosedError
from ..core.events import EventEmitter, FrameTreeEvent, Handler, SessionEvent
from ..core.session import Session
from ..types import FrameInfo, LifecycleState
from ..utils.logger import PagewireLogger, get_logger
from .execution_context import (
    MAIN_WORLD,
    UTILITY_WORLD_NAME,
    ExecutionContext,
    ExecutionContextRegistry,
)


_LIFECYCLE_BY_EVENT = {
    "DOMContentLoaded": LifecycleState.DOM_LOADED,
    "load": LifecycleState.LOADED,
}


class Frame:
    """
    A node of the frame tree.

    Frames do not own each other: parent and children are looked up through
    the tree by id. A frame without its own session uses the nearest
    ancestor's session.
    """

    def __init__(self, tree: "FrameTree", frame_id: str, parent_id: Optional[str], session: Optional[Session] = None):
        self._tree = tree
        self._id = frame_id
        self._parent_id = parent_id
        self._session = session
        self.url = ""
        self.name: Optional[str] = None
        self.loader_id: Optional[str] = None
        self.loading = False
        self._lifecycle = LifecycleState.PENDING
        self._lifecycle_events: set = set()
        self._detached = False
        self._lifecycle_waiters: List[Tuple[LifecycleState, "asyncio.Future"]] = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def parent_frame(self) -> Optional["Frame"]:
        if self._parent_id is None:
            return None
        return self._tree.frame(self._parent_id)

    @property
    def child_frames(self) -> List["Frame"]:
        return self._tree.children_of(self._id)

    @property
    def lifecycle(self) -> LifecycleState:
        return self._lifecycle

    @property
    def lifecycle_events(self) -> List[str]:
        return sorted(self._lifecycle_events)

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def is_oopif(self) -> bool:
        return self._session is not None and self._parent_id is not None

    @property
    def session(self) -> Session:
        frame: Optional[Frame] = self
        while frame is not None:
            if frame._session is not None:
                return frame._session
            frame = frame.parent_frame
        return self._tree.session

    def execution_context(self, world: str = MAIN_WORLD) -> ExecutionContext:
        """The ready context for ``world``; raises ContextDestroyedError when there is none."""
        if self._detached:
            raise FrameDetachedError(self._id)
        registry = self._tree.registry_for(self.session)
        context = registry.for_frame(self._id, world) if registry else None
        if context is None:
            raise ContextDestroyedError(reason=f"No ready {world} execution context in frame {self._id}")
        return context

    async def wait_for_execution_context(self, world: str = MAIN_WORLD, timeout: Optional[float] = None) -> ExecutionContext:
        if self._detached:
            raise FrameDetachedError(self._id)
        registry = self._tree.registry_for(self.session)
        if registry is None:
            raise TargetClosedError("Frame session has no context registry", self.session.session_id)
        return await registry.wait_for_context(self._id, world, timeout)

    async def evaluate(self, expression: str, *args: Any, world: str = MAIN_WORLD) -> Any:
        return await self.execution_context(world).evaluate(expression, *args)

    async def evaluate_handle(self, expression: str, *args: Any, world: str = MAIN_WORLD) -> Any:
        return await self.execution_context(world).evaluate_handle(expression, *args)

    async def goto(
        self,
        url: str,
        referer: Optional[str] = None,
        wait_until: Optional[LifecycleState] = None,
        timeout: Optional[float] = None,
    ) -> Optional[str]:
        """
        Navigate this frame.

        Args:
            url: Destination
            referer: Optional referrer header
            wait_until: Lifecycle state to wait for after the navigation commits
            timeout: Seconds allowed for the lifecycle wait

        Returns:
            Loader id of the new document, None for same-document navigations
        """
        if self._detached:
            raise FrameDetachedError(self._id)
        params: Dict[str, Any] = {"url": url, "frameId": self._id}
        if referer:
            params["referrer"] = referer
        result = await self.session.send("Page.navigate", params)
        if result.get("errorText"):
            raise NavigationError(url, result["errorText"])
        loader_id = result.get("loaderId")
        if wait_until is not None and loader_id:
            await self.wait_for_lifecycle(wait_until, timeout, loader_id=loader_id)
        return loader_id

    async def wait_for_lifecycle(
        self,
        state: LifecycleState = LifecycleState.LOADED,
        timeout: Optional[float] = None,
        loader_id: Optional[str] = None,
    ) -> None:
        """Wait until the frame reaches ``state`` (for ``loader_id`` when given)."""
        if self._detached:
            raise FrameDetachedError(self._id)
        if self._reached(state, loader_id):
            return
        waiter = asyncio.get_running_loop().create_future()
        entry = (state, waiter)
        self._lifecycle_waiters.append(entry)
        try:
            await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(f"wait_for_lifecycle({state.value})", int(timeout * 1000)) from None
        finally:
            if entry in self._lifecycle_waiters:
                self._lifecycle_waiters.remove(entry)
        if loader_id is not None and self.loader_id != loader_id:
            await self.wait_for_lifecycle(state, timeout, loader_id)

    def snapshot(self) -> FrameInfo:
        return FrameInfo(
            frame_id=self._id,
            parent_frame_id=self._parent_id,
            url=self.url,
            name=self.name,
            loader_id=self.loader_id,
            lifecycle=self._lifecycle,
            session_id=self.session.session_id,
            is_oopif=self.is_oopif,
            child_frame_ids=[child.id for child in self.child_frames],
        )

    def _reached(self, state: LifecycleState, loader_id: Optional[str] = None) -> bool:
        if loader_id is not None and self.loader_id != loader_id:
            return False
        return self._lifecycle.rank >= state.rank

    def _navigated(self, payload: Dict[str, Any]) -> None:
        self.url = payload.get("url", "") + payload.get("urlFragment", "")
        self.name = payload.get("name")
        self.loader_id = payload.get("loaderId", self.loader_id)
        self._lifecycle_events.clear()
        self._lifecycle = LifecycleState.PENDING

    def _on_lifecycle_event(self, loader_id: Optional[str], name: str) -> None:
        if name == "init":
            self.loader_id = loader_id
            self._lifecycle_events.clear()
            self._lifecycle = LifecycleState.PENDING
        self._lifecycle_events.add(name)
        state = _LIFECYCLE_BY_EVENT.get(name)
        if state is not None and state.rank > self._lifecycle.rank:
            self._set_lifecycle(state)

    def _on_stopped_loading(self) -> None:
        self.loading = False
        self._lifecycle_events.update(("DOMContentLoaded", "load"))
        self._set_lifecycle(LifecycleState.LOADED)

    def _set_lifecycle(self, state: LifecycleState) -> None:
        self._lifecycle = state
        for wanted, waiter in list(self._lifecycle_waiters):
            if state.rank >= wanted.rank and not waiter.done():
                waiter.set_result(None)

    def _detach(self) -> None:
        self._detached = True
        for _, waiter in self._lifecycle_waiters:
            if not waiter.done():
                waiter.set_exception(FrameDetachedError(self._id))
        self._lifecycle_waiters.clear()

    def __repr__(self) -> str:
        return f"<Frame id={self._id!r} url={self.url!r} lifecycle={self._lifecycle.value}>"


class FrameTree:
    """
    The page's frames, rebuilt from Page.* events of every session involved.

    The tree owns all frames. Mutations happen only while processing events;
    callers reading frames across an await should take a snapshot.
    Notifications are delivered on the next loop iteration.
    """

    def __init__(self, connection: Connection, session: Session, logger: Optional[PagewireLogger] = None):
        self._connection = connection
        self._session = session
        self._logger = (logger or get_logger()).child(component="frames", target_id=session.target_id)
        self._frames: Dict[str, Frame] = {}
        self._children: Dict[str, List[str]] = {}
        self._main_frame_id: Optional[str] = None
        self._registries: Dict[Optional[str], ExecutionContextRegistry] = {}
        self._isolated_world_sessions: set = set()
        self._emitter = EventEmitter(deferred=True, logger=self._logger)
        self.track_session(session)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def main_frame(self) -> Optional[Frame]:
        if self._main_frame_id is None:
            return None
        return self._frames.get(self._main_frame_id)

    def frame(self, frame_id: str) -> Optional[Frame]:
        return self._frames.get(frame_id)

    def frames(self) -> List[Frame]:
        return list(self._frames.values())

    def children_of(self, frame_id: str) -> List[Frame]:
        return [self._frames[cid] for cid in self._children.get(frame_id, ()) if cid in self._frames]

    def registry_for(self, session: Session) -> Optional[ExecutionContextRegistry]:
        return self._registries.get(session.session_id)

    def registries(self) -> List[ExecutionContextRegistry]:
        return list(self._registries.values())

    def snapshot(self) -> List[FrameInfo]:
        return [frame.snapshot() for frame in self._frames.values()]

    def on(self, event: str, handler: Handler) -> Handler:
        return self._emitter.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._emitter.off(event, handler)

    def track_session(self, session: Session) -> ExecutionContextRegistry:
        """Subscribe to a session's page events and give it a context registry."""
        existing = self._registries.get(session.session_id)
        if existing is not None:
            return existing
        registry = ExecutionContextRegistry(session, is_live_frame=self._is_live, logger=self._logger)
        self._registries[session.session_id] = registry

        session.on("Page.frameAttached", lambda e: self._on_frame_attached(session, e["frameId"], e.get("parentFrameId")))
        session.on("Page.frameNavigated", lambda e: self._on_frame_navigated(session, e["frame"], e.get("type", "Navigation")))
        session.on("Page.navigatedWithinDocument", lambda e: self._on_navigated_within_document(e["frameId"], e["url"]))
        session.on("Page.frameDetached", lambda e: self._on_frame_detached(session, e["frameId"], e.get("reason", "remove")))
        session.on("Page.frameStartedLoading", lambda e: self._on_frame_started_loading(e["frameId"]))
        session.on("Page.frameStoppedLoading", lambda e: self._on_frame_stopped_loading(e["frameId"]))
        session.on("Page.lifecycleEvent", lambda e: self._on_lifecycle_event(e["frameId"], e.get("loaderId"), e["name"]))
        session.on(SessionEvent.DETACHED, lambda _: self._on_session_detached(session))
        return registry

    def bind_session(self, session: Session) -> Optional[Frame]:
        """
        Bind an out-of-process iframe session to the frame it hosts.

        The target id of an iframe target is the id of its frame. Runs while
        the attach event is processed, so the binding exists before any event
        of the new session is delivered.
        """
        self.track_session(session)
        frame = self._frames.get(session.target_id)
        if frame is None:
            self._logger.debug("frames:bind", "Session for unknown frame", target_id=session.target_id)
            return None
        previous = frame.session
        if previous is not session:
            registry = self._registries.get(previous.session_id)
            if registry is not None:
                registry.destroy_frame(frame.id)
        frame._session = session
        self._logger.debug("frames:bind", "Bound session to frame", frame_id=frame.id, session_id=session.session_id)
        return frame

    async def initialize(self, session: Optional[Session] = None) -> None:
        """Enable page events on ``session`` and load its current frame tree."""
        session = session or self._session
        self.track_session(session)
        _, tree = await asyncio.gather(
            session.send("Page.enable"),
            session.send("Page.getFrameTree"),
        )
        self._handle_frame_tree(session, tree["frameTree"])
        await asyncio.gather(
            session.send("Page.setLifecycleEventsEnabled", {"enabled": True}),
            session.send("Runtime.enable"),
        )
        if self._isolated_world_sessions:
            await self.ensure_isolated_world(session)

    async def ensure_isolated_world(self, session: Optional[Session] = None) -> None:
        """Create the utility world in every current and future frame of ``session``."""
        session = session or self._session
        self._isolated_world_sessions.add(session.session_id)
        await session.send(
            "Page.addScriptToEvaluateOnNewDocument",
            {"source": f"//# sourceURL={UTILITY_WORLD_NAME}", "worldName": UTILITY_WORLD_NAME},
        )
        frames = [f for f in self._frames.values() if f.session is session]
        await asyncio.gather(*(
            session.send(
                "Page.createIsolatedWorld",
                {"frameId": frame.id, "worldName": UTILITY_WORLD_NAME, "grantUniveralAccess": True},
            )
            for frame in frames
        ))

    def _is_live(self, frame_id: str) -> bool:
        return frame_id in self._frames

    def _handle_frame_tree(self, session: Session, tree: Dict[str, Any]) -> None:
        payload = tree["frame"]
        if payload.get("parentId"):
            self._on_frame_attached(session, payload["id"], payload["parentId"])
        self._on_frame_navigated(session, payload, "Navigation")
        for child in tree.get("childFrames") or []:
            self._handle_frame_tree(session, child)

    def _on_frame_attached(self, session: Session, frame_id: str, parent_id: Optional[str]) -> None:
        if frame_id in self._frames:
            frame = self._frames[frame_id]
            if session is not self._session and frame.session is not session:
                frame._session = session
            return
        if parent_id is not None and parent_id not in self._frames:
            self._logger.debug("frames:attach", "Parent frame is gone", frame_id=frame_id, parent_id=parent_id)
            return
        frame = Frame(self, frame_id, parent_id)
        self._insert(frame)
        self._logger.debug("frames:attach", "Frame attached", frame_id=frame_id, parent_id=parent_id)
        self._emitter.emit(FrameTreeEvent.FRAME_ATTACHED, frame)

    def _on_frame_navigated(self, session: Session, payload: Dict[str, Any], navigation_type: str) -> None:
        frame_id = payload["id"]
        is_main = not payload.get("parentId") and session is self._session
        frame = self._frames.get(frame_id)

        if is_main and frame is None:
            if self._main_frame_id is not None and self._main_frame_id in self._frames:
                frame = self._rekey(self._main_frame_id, frame_id)
            else:
                frame = Frame(self, frame_id, None)
                self._insert(frame)
                self._main_frame_id = frame_id
        elif frame is None:
            self._logger.debug("frames:navigated", "Navigation for unknown frame", frame_id=frame_id)
            return

        for child in frame.child_frames:
            self._remove_frame_recursively(child)
        for registry in self._registries.values():
            registry.destroy_frame(frame_id)
        frame._navigated(payload)
        self._logger.debug("frames:navigated", "Frame navigated", frame_id=frame_id, url=frame.url, type=navigation_type)
        self._emitter.emit(FrameTreeEvent.FRAME_NAVIGATED, frame)

    def _on_navigated_within_document(self, frame_id: str, url: str) -> None:
        frame = self._frames.get(frame_id)
        if frame is None:
            return
        frame.url = url
        self._emitter.emit(FrameTreeEvent.FRAME_NAVIGATED_WITHIN_DOCUMENT, frame)

    def _on_frame_detached(self, session: Session, frame_id: str, reason: str) -> None:
        frame = self._frames.get(frame_id)
        if frame is None:
            return
        if reason == "swap":
            # The frame moves to another process; its new session attaches next.
            registry = self._registries.get(session.session_id)
            if registry is not None:
                registry.destroy_frame(frame_id)
            return
        self._remove_frame_recursively(frame)

    def _on_frame_started_loading(self, frame_id: str) -> None:
        frame = self._frames.get(frame_id)
        if frame is not None:
            frame.loading = True

    def _on_frame_stopped_loading(self, frame_id: str) -> None:
        frame = self._frames.get(frame_id)
        if frame is None:
            return
        frame._on_stopped_loading()
        self._emitter.emit(FrameTreeEvent.LIFECYCLE_EVENT, frame)

    def _on_lifecycle_event(self, frame_id: str, loader_id: Optional[str], name: str) -> None:
        frame = self._frames.get(frame_id)
        if frame is None:
            return
        frame._on_lifecycle_event(loader_id, name)
        self._emitter.emit(FrameTreeEvent.LIFECYCLE_EVENT, frame)

    def _on_session_detached(self, session: Session) -> None:
        self._registries.pop(session.session_id, None)
        self._isolated_world_sessions.discard(session.session_id)
        for frame in self._frames.values():
            if frame._session is session:
                frame._session = None

    def _insert(self, frame: Frame) -> None:
        self._frames[frame.id] = frame
        self._children.setdefault(frame.id, [])
        if frame._parent_id is not None:
            self._children.setdefault(frame._parent_id, []).append(frame.id)

    def _rekey(self, old_id: str, new_id: str) -> Frame:
        frame = self._frames.pop(old_id)
        frame._id = new_id
        self._frames[new_id] = frame
        self._children[new_id] = self._children.pop(old_id, [])
        for child_id in self._children[new_id]:
            child = self._frames.get(child_id)
            if child is not None:
                child._parent_id = new_id
        self._main_frame_id = new_id
        for registry in self._registries.values():
            registry.destroy_frame(old_id)
        return frame

    def _remove_frame_recursively(self, frame: Frame) -> None:
        for child in frame.child_frames:
            self._remove_frame_recursively(child)

        self._frames.pop(frame.id, None)
        self._children.pop(frame.id, None)
        siblings = self._children.get(frame._parent_id) if frame._parent_id is not None else None
        if siblings and frame.id in siblings:
            siblings.remove(frame.id)
        if self._main_frame_id == frame.id:
            self._main_frame_id = None

        for registry in list(self._registries.values()):
            registry.destroy_frame(frame.id)
        own_session = frame._session
        if own_session is not None and own_session is not self._session:
            own_session.mark_detached(TargetClosedError(f"Frame {frame.id} was detached", own_session.session_id))
        frame._detach()
        self._logger.debug("frames:detach", "Frame detached", frame_id=frame.id)
        self._emitter.emit(FrameTreeEvent.FRAME_DETACHED, frame)
