"""Shared fixtures: an in-memory transport driving a real Connection."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from pagewire.bidi.connection import BidiConnection
from pagewire.core.connection import Connection
from pagewire.core.errors import ConnectionClosedError
from pagewire.transport.base import Transport
from pagewire.types import ConnectionOptions

Responder = Union[Dict[str, Any], Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]]


class FakeTransport(Transport):
    """Records outgoing frames and lets tests inject inbound ones."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.connection: Optional[Connection] = None
        self.responders: Dict[str, Responder] = {}
        self.auto_respond = False
        self._inbox: Optional[asyncio.Queue] = None

    @property
    def inbox(self) -> asyncio.Queue:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        return self._inbox

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedError("Fake transport closed")
        frame = json.loads(message)
        self.sent.append(frame)
        method = frame["method"]
        if method in self.responders or self.auto_respond:
            responder = self.responders.get(method, {})
            result = responder(frame) if callable(responder) else responder
            asyncio.get_running_loop().call_soon(self.reply, frame, result)

    async def receive(self) -> Optional[str]:
        return await self.inbox.get()

    async def close(self) -> None:
        self.closed = True
        self.inbox.put_nowait(None)

    def push(self, message: Dict[str, Any]) -> None:
        """Queue a frame for the connection's read loop."""
        self.inbox.put_nowait(json.dumps(message))

    def reply(self, frame: Dict[str, Any], result: Optional[Dict[str, Any]] = None) -> None:
        self.connection.on_message(json.dumps({"id": frame["id"], "result": result or {}}))

    def fail(self, frame: Dict[str, Any], message: str, code: int = -32000) -> None:
        self.connection.on_message(json.dumps({"id": frame["id"], "error": {"code": code, "message": message}}))

    def event(self, method: str, params: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None) -> None:
        message: Dict[str, Any] = {"method": method, "params": params or {}}
        if session_id is not None:
            message["sessionId"] = session_id
        self.connection.on_message(json.dumps(message))

    def commands(self, method: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame["method"] == method]

    def last(self, method: str) -> Dict[str, Any]:
        matching = self.commands(method)
        assert matching, f"{method} was never sent; sent: {self.methods()}"
        return matching[-1]

    def methods(self) -> List[str]:
        return [frame["method"] for frame in self.sent]


async def flush(rounds: int = 10) -> None:
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def attach(
    transport: FakeTransport,
    session_id: str,
    target_id: str,
    target_type: str = "page",
    parent_session_id: Optional[str] = None,
    url: str = "about:blank",
) -> None:
    """Announce an attached target on ``parent_session_id`` (the browser channel by default)."""
    transport.event(
        "Target.attachedToTarget",
        {
            "sessionId": session_id,
            "targetInfo": {"targetId": target_id, "type": target_type, "url": url, "title": "", "attached": True},
            "waitingForDebugger": True,
        },
        session_id=parent_session_id,
    )


def context_created(
    transport: FakeTransport,
    context_id: int,
    frame_id: str,
    session_id: Optional[str] = None,
    is_default: bool = True,
    name: str = "",
) -> None:
    transport.event(
        "Runtime.executionContextCreated",
        {
            "context": {
                "id": context_id,
                "origin": "https://example.com",
                "name": name,
                "uniqueId": f"unique-{context_id}",
                "auxData": {"frameId": frame_id, "isDefault": is_default, "type": "default" if is_default else "isolated"},
            }
        },
        session_id=session_id,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def connection(transport: FakeTransport) -> Connection:
    conn = Connection(transport, ConnectionOptions(protocol_timeout=5))
    transport.connection = conn
    return conn


@pytest.fixture
def bidi_connection(transport: FakeTransport) -> BidiConnection:
    conn = BidiConnection(transport, ConnectionOptions(protocol="webDriverBiDi", protocol_timeout=5))
    transport.connection = conn
    return conn
