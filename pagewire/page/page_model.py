"""Client-side model of one page target and its out-of-process frames."""

import asyncio
from typing import Dict, List, Optional

from ..core.connection import Connection
from ..core.errors import ConnectionClosedError, TargetClosedError
from ..core.events import SessionEvent
from ..core.session import Session
from ..network.pipeline import NetworkPipeline
from ..types import Credentials
from ..utils.logger import PagewireLogger, get_logger
from .frame_tree import Frame, FrameTree


class PageModel:
    """
    Wires a frame tree, per-session context registries and per-session
    network pipelines for one page target.

    Out-of-process iframe sessions are bound to their frame while the attach
    event is processed; their domains are then enabled in the background and
    the target is released from its start-up pause.
    """

    def __init__(self, connection: Connection, session: Session, logger: Optional[PagewireLogger] = None):
        self._connection = connection
        self._session = session
        self._logger = (logger or get_logger()).child(component="page", target_id=session.target_id)
        self._frame_tree = FrameTree(connection, session, self._logger)
        self._pipelines: Dict[Optional[str], NetworkPipeline] = {}
        self._setup_tasks: List["asyncio.Future"] = []
        self._intercepting = False
        self._credentials: Optional[Credentials] = None
        self._pipeline_for(session)
        self._watch(session)

    @classmethod
    async def create(
        cls,
        connection: Connection,
        target_id: str,
        logger: Optional[PagewireLogger] = None,
    ) -> "PageModel":
        """Attach to ``target_id`` and build its initial page state."""
        session = await connection.create_session(target_id)
        model = cls(connection, session, logger)
        await model.initialize()
        return model

    @property
    def session(self) -> Session:
        return self._session

    @property
    def frame_tree(self) -> FrameTree:
        return self._frame_tree

    @property
    def main_frame(self) -> Optional[Frame]:
        return self._frame_tree.main_frame

    def pipeline(self, session: Optional[Session] = None) -> Optional[NetworkPipeline]:
        return self._pipelines.get((session or self._session).session_id)

    def pipelines(self) -> List[NetworkPipeline]:
        return list(self._pipelines.values())

    async def initialize(self) -> None:
        await self._setup_session(self._session, main=True)

    async def set_request_interception(self, enabled: bool) -> None:
        self._intercepting = enabled
        await asyncio.gather(*(p.set_request_interception(enabled) for p in self._pipelines.values()))

    async def authenticate(self, credentials: Optional[Credentials]) -> None:
        self._credentials = credentials
        await asyncio.gather(*(p.authenticate(credentials) for p in self._pipelines.values()))

    async def wait_for_setup(self) -> None:
        """Wait for background initialization of attached frame sessions."""
        pending = [t for t in self._setup_tasks if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _watch(self, session: Session) -> None:
        session.on(SessionEvent.ATTACHED, self._on_child_attached)

    def _pipeline_for(self, session: Session) -> NetworkPipeline:
        pipeline = self._pipelines.get(session.session_id)
        if pipeline is None:
            pipeline = NetworkPipeline(session, self._logger)
            self._pipelines[session.session_id] = pipeline
            session.on(SessionEvent.DETACHED, lambda _: self._pipelines.pop(session.session_id, None))
        return pipeline

    def _on_child_attached(self, session: Session) -> None:
        if session.target_type != "iframe":
            self._logger.debug("page:attach", "Ignoring non-frame target", target_type=session.target_type)
            task = asyncio.ensure_future(session.send("Runtime.runIfWaitingForDebugger"))
            task.add_done_callback(lambda t: self._report(session, t))
            return
        self._frame_tree.bind_session(session)
        self._pipeline_for(session)
        self._watch(session)
        task = asyncio.ensure_future(self._setup_session(session, main=False))
        task.add_done_callback(lambda t: self._report(session, t))
        self._setup_tasks.append(task)

    async def _setup_session(self, session: Session, main: bool) -> None:
        pipeline = self._pipeline_for(session)
        await asyncio.gather(
            self._frame_tree.initialize(session),
            pipeline.initialize(),
            session.send("Target.setAutoAttach", {"autoAttach": True, "waitForDebuggerOnStart": True, "flatten": True}),
        )
        if self._intercepting:
            await pipeline.set_request_interception(True)
        if self._credentials is not None:
            await pipeline.authenticate(self._credentials)
        if not main:
            await session.send("Runtime.runIfWaitingForDebugger")

    def _report(self, session: Session, task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, (TargetClosedError, ConnectionClosedError)):
            self._logger.debug("page:setup", "Frame session closed during setup", session_id=session.session_id)
        else:
            self._logger.error("page:setup", "Frame session setup failed", session_id=session.session_id, error=str(error))
