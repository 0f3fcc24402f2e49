"""WebSocket transport and debugging-endpoint discovery."""

import asyncio
from typing import Dict, Optional

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..core.errors import BrowserNotAvailableError, ConnectionClosedError
from .base import Transport


class WebSocketTransport(Transport):
    """Transport over a browser's DevTools/BiDi websocket endpoint."""

    def __init__(self, websocket: ClientConnection, url: str):
        self._websocket = websocket
        self.url = url

    @classmethod
    async def create(
        cls,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        max_size: int = 256 * 1024 * 1024,
        open_timeout: float = 30.0,
    ) -> "WebSocketTransport":
        """
        Open a websocket to the browser.

        Args:
            url: ws:// or wss:// endpoint
            headers: Extra handshake headers
            max_size: Largest accepted frame in bytes
            open_timeout: Seconds allowed for the handshake

        Returns:
            Connected transport
        """
        try:
            websocket = await connect(
                url,
                additional_headers=headers or None,
                max_size=max_size,
                open_timeout=open_timeout,
                ping_interval=None,
                compression=None,
            )
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as e:
            raise BrowserNotAvailableError(f"cannot open websocket {url}: {e}") from e
        return cls(websocket, url)

    async def send(self, message: str) -> None:
        try:
            await self._websocket.send(message)
        except ConnectionClosed as e:
            raise ConnectionClosedError(str(e)) from e

    async def receive(self) -> Optional[str]:
        try:
            message = await self._websocket.recv()
        except ConnectionClosed:
            return None
        if isinstance(message, bytes):
            return message.decode("utf-8")
        return message

    async def close(self) -> None:
        await self._websocket.close()


async def discover_websocket_url(browser_url: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """
    Resolve an HTTP debugging endpoint to the browser websocket url.

    Args:
        browser_url: e.g. http://localhost:9222
        client: Optional preconfigured httpx client

    Returns:
        The ``webSocketDebuggerUrl`` advertised by ``/json/version``
    """
    endpoint = browser_url.rstrip("/") + "/json/version"
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10.0)
    try:
        response = await client.get(endpoint)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as e:
        raise BrowserNotAvailableError(f"cannot reach {endpoint}: {e}") from e
    except ValueError as e:
        raise BrowserNotAvailableError(f"{endpoint} did not return JSON") from e
    finally:
        if owns_client:
            await client.aclose()

    url = data.get("webSocketDebuggerUrl")
    if not url:
        raise BrowserNotAvailableError(f"{endpoint} does not advertise webSocketDebuggerUrl")
    return url
