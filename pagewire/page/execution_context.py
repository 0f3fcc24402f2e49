"""Execution contexts, remote handles and the per-session context registry."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.callbacks import PendingOperations
from ..core.errors import (
    ConnectionClosedError,
    ContextDestroyedError,
    EvaluationError,
    OperationTimeoutError,
    ProtocolError,
    TargetClosedError,
)
from ..core.events import ContextEvent, EventEmitter, Handler, SessionEvent
from ..core.session import Session
from ..types import ContextState
from ..utils.logger import PagewireLogger, get_logger
from .serialization import (
    create_handle_or_value,
    looks_like_function,
    serialize_argument,
    value_from_remote_object,
)


MAIN_WORLD = "main"
UTILITY_WORLD = "utility"
UTILITY_WORLD_NAME = "__pagewire_utility_world__"
EVALUATION_SCRIPT_URL = "pagewire:evaluate"

FrameWorldKey = Tuple[Optional[str], str]


class RemoteHandle:
    """
    Reference to a value living in the target.

    A handle is valid only while its context is ready; once the context is
    destroyed the handle stays permanently invalid.
    """

    def __init__(self, context: "ExecutionContext", remote_object: Dict[str, Any]):
        self._context = context
        self._remote_object = remote_object
        self._disposed = False

    @property
    def context(self) -> "ExecutionContext":
        return self._context

    @property
    def remote_object(self) -> Dict[str, Any]:
        return self._remote_object

    @property
    def object_id(self) -> Optional[str]:
        return self._remote_object.get("objectId")

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_valid(self) -> bool:
        return not self._disposed and self._context.is_ready

    async def evaluate(self, function: str, *args: Any) -> Any:
        """Call ``function`` with this handle as its first argument."""
        return await self._context.evaluate(function, self, *args)

    async def evaluate_handle(self, function: str, *args: Any) -> Any:
        return await self._context.evaluate_handle(function, self, *args)

    async def get_property(self, name: str) -> Any:
        return await self._context.evaluate_handle("(object, name) => object[name]", self, name)

    async def json_value(self) -> Any:
        """Copy the referenced value into the client by value."""
        return await self._context._call("function() { return this; }", (), True, this=self)

    async def dispose(self) -> None:
        """
        Release the remote object.

        Best-effort: a handle whose context or session is already gone is
        unreachable remotely, so there is nothing to release.
        """
        if self._disposed:
            return
        self._disposed = True
        object_id = self.object_id
        if not object_id or not self._context.is_ready or self._context.session.detached:
            return
        try:
            await self._context.session.send("Runtime.releaseObject", {"objectId": object_id})
        except (TargetClosedError, ConnectionClosedError, ProtocolError) as e:
            self._context._logger.debug("context:release", "Release skipped", object_id=object_id, error=str(e))

    def __repr__(self) -> str:
        description = self._remote_object.get("description") or self._remote_object.get("type", "object")
        return f"<RemoteHandle {description}>"


class ExecutionContext:
    """One script-evaluation environment: a (frame, world) pair inside a session."""

    def __init__(
        self,
        session: Session,
        context_id: int,
        frame_id: Optional[str],
        world: str,
        name: str = "",
        origin: str = "",
        unique_id: Optional[str] = None,
        logger: Optional[PagewireLogger] = None,
    ):
        self._session = session
        self.context_id = context_id
        self.frame_id = frame_id
        self.world = world
        self.name = name
        self.origin = origin
        self.unique_id = unique_id
        self._state = ContextState.PENDING
        self._operations = PendingOperations()
        self._logger = logger or get_logger()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ContextState.READY

    @property
    def key(self) -> FrameWorldKey:
        return self.frame_id, self.world

    async def evaluate(self, expression: str, *args: Any) -> Any:
        """
        Evaluate an expression or call a function, returning the value inline.

        Args:
            expression: JavaScript expression or function declaration
            *args: Arguments for a function declaration

        Returns:
            The JSON-compatible result
        """
        return await self._call(expression, args, True)

    async def evaluate_handle(self, expression: str, *args: Any) -> Any:
        """Like evaluate, but objects, functions and nodes come back as RemoteHandle."""
        return await self._call(expression, args, False)

    async def _call(
        self,
        source: str,
        args: Tuple[Any, ...],
        return_by_value: bool,
        this: Optional[RemoteHandle] = None,
    ) -> Any:
        self._ensure_ready()
        if args or this is not None or looks_like_function(source):
            method = "Runtime.callFunctionOn"
            params: Dict[str, Any] = {
                "functionDeclaration": source,
                "arguments": [serialize_argument(self, arg) for arg in args],
                "returnByValue": return_by_value,
                "awaitPromise": True,
                "userGesture": True,
            }
            if this is not None:
                params["objectId"] = serialize_argument(self, this).get("objectId")
            else:
                params["executionContextId"] = self.context_id
        else:
            method = "Runtime.evaluate"
            if "//# sourceURL=" not in source:
                source = f"{source}\n//# sourceURL={EVALUATION_SCRIPT_URL}"
            params = {
                "expression": source,
                "contextId": self.context_id,
                "returnByValue": return_by_value,
                "awaitPromise": True,
                "userGesture": True,
            }

        response = await self._operations.run(self._session.send(method, params))
        exception_details = response.get("exceptionDetails")
        if exception_details:
            raise EvaluationError(method, exception_details)
        remote_object = response.get("result") or {}
        if return_by_value:
            return value_from_remote_object(remote_object)
        return create_handle_or_value(self, remote_object)

    def _ensure_ready(self) -> None:
        if self._state is ContextState.DESTROYED:
            raise ContextDestroyedError(self.context_id)
        if self._state is not ContextState.READY:
            raise ContextDestroyedError(self.context_id, "Execution context is not ready")

    def _mark_ready(self) -> None:
        if self._state is ContextState.PENDING:
            self._state = ContextState.READY

    def _destroy(self) -> None:
        if self._state is ContextState.DESTROYED:
            return
        self._state = ContextState.DESTROYED
        failed = self._operations.fail_all(ContextDestroyedError(self.context_id))
        if failed:
            self._logger.debug("context:destroyed", "Failed pending evaluations", context_id=self.context_id, count=failed)

    def __repr__(self) -> str:
        return f"<ExecutionContext id={self.context_id} frame={self.frame_id!r} world={self.world!r} state={self._state.value}>"


class ExecutionContextRegistry:
    """
    Live execution contexts of one session.

    At most one ready context exists per (frame, world). A newer context for
    the same pair destroys its predecessor first, so no reader can observe the
    old one as ready once the new one is registered.
    """

    def __init__(
        self,
        session: Session,
        is_live_frame: Optional[Callable[[str], bool]] = None,
        logger: Optional[PagewireLogger] = None,
    ):
        self._session = session
        self._is_live_frame = is_live_frame
        self._logger = (logger or get_logger()).child(component="contexts", session_id=session.session_id)
        self._contexts: Dict[int, ExecutionContext] = {}
        self._by_key: Dict[FrameWorldKey, ExecutionContext] = {}
        self._waiters: Dict[FrameWorldKey, List["asyncio.Future"]] = {}
        self._emitter = EventEmitter(deferred=True, logger=self._logger)
        self._closed = False

        session.on("Runtime.executionContextCreated", self._on_context_created)
        session.on("Runtime.executionContextDestroyed", self._on_context_destroyed)
        session.on("Runtime.executionContextsCleared", self._on_contexts_cleared)
        session.on(SessionEvent.DETACHED, self._on_session_detached)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, handler: Handler) -> Handler:
        return self._emitter.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._emitter.off(event, handler)

    def get(self, context_id: int) -> Optional[ExecutionContext]:
        return self._contexts.get(context_id)

    def for_frame(self, frame_id: Optional[str], world: str = MAIN_WORLD) -> Optional[ExecutionContext]:
        context = self._by_key.get((frame_id, world))
        if context is not None and context.is_ready:
            return context
        return None

    def contexts(self) -> List[ExecutionContext]:
        return list(self._contexts.values())

    async def wait_for_context(
        self,
        frame_id: Optional[str],
        world: str = MAIN_WORLD,
        timeout: Optional[float] = None,
    ) -> ExecutionContext:
        """Return the ready context for (frame, world), waiting for one to be created."""
        context = self.for_frame(frame_id, world)
        if context is not None:
            return context
        if self._closed:
            raise TargetClosedError("Session detached", self._session.session_id)

        key = (frame_id, world)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(key, []).append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(f"wait_for_context({frame_id}, {world})", int(timeout * 1000)) from None
        finally:
            waiters = self._waiters.get(key)
            if waiters and waiter in waiters:
                waiters.remove(waiter)
                if not waiters:
                    del self._waiters[key]

    def destroy_frame(self, frame_id: str) -> int:
        """Destroy every context belonging to ``frame_id``; returns how many were destroyed."""
        doomed = [c for c in self._contexts.values() if c.frame_id == frame_id]
        for context in doomed:
            self._destroy(context)
        return len(doomed)

    def destroy_all(self) -> None:
        for context in list(self._contexts.values()):
            self._destroy(context)

    @staticmethod
    def world_for(description: Dict[str, Any]) -> str:
        aux = description.get("auxData") or {}
        if aux.get("isDefault"):
            return MAIN_WORLD
        name = description.get("name") or ""
        if name == UTILITY_WORLD_NAME:
            return UTILITY_WORLD
        return name or f"isolated:{description.get('id')}"

    def _on_context_created(self, params: Dict[str, Any]) -> None:
        description = params.get("context") or {}
        aux = description.get("auxData") or {}
        frame_id = aux.get("frameId")
        world = self.world_for(description)

        if frame_id and self._is_live_frame is not None and not self._is_live_frame(frame_id):
            self._logger.debug("contexts:ignored", "Context for unknown frame", frame_id=frame_id, context_id=description.get("id"))
            return

        previous = self._by_key.get((frame_id, world))
        if previous is not None:
            self._destroy(previous)

        context = ExecutionContext(
            self._session,
            description["id"],
            frame_id,
            world,
            name=description.get("name", ""),
            origin=description.get("origin", ""),
            unique_id=description.get("uniqueId"),
            logger=self._logger,
        )
        self._contexts[context.context_id] = context
        self._by_key[context.key] = context
        context._mark_ready()
        self._logger.debug("contexts:created", "Context ready", context_id=context.context_id, frame_id=frame_id, world=world)

        for waiter in self._waiters.pop(context.key, []):
            if not waiter.done():
                waiter.set_result(context)
        self._emitter.emit(ContextEvent.CREATED, context)

    def _on_context_destroyed(self, params: Dict[str, Any]) -> None:
        context = self._contexts.get(params.get("executionContextId"))
        if context is not None:
            self._destroy(context)

    def _on_contexts_cleared(self, _params: Any) -> None:
        self.destroy_all()

    def _on_session_detached(self, _session: Any) -> None:
        self._closed = True
        self.destroy_all()
        for waiters in self._waiters.values():
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(TargetClosedError("Session detached", self._session.session_id))
        self._waiters.clear()

    def _destroy(self, context: ExecutionContext) -> None:
        self._contexts.pop(context.context_id, None)
        if self._by_key.get(context.key) is context:
            del self._by_key[context.key]
        if context.state is ContextState.DESTROYED:
            return
        context._destroy()
        self._logger.debug("contexts:destroyed", "Context destroyed", context_id=context.context_id, frame_id=context.frame_id)
        self._emitter.emit(ContextEvent.DESTROYED, context)
