"""Entry point: open a protocol connection to a running browser."""

from pathlib import Path
from typing import Any, Optional, Union

from .bidi.connection import BidiConnection
from .core.config import load_options
from .core.connection import Connection
from .core.errors import ConfigurationError
from .transport.websocket import WebSocketTransport, discover_websocket_url
from .types import ConnectionOptions
from .utils.logger import PagewireLogger, configure_logging


async def connect(
    options: Optional[ConnectionOptions] = None,
    env_file: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> Connection:
    """
    Connect to a browser and start reading protocol frames.

    Args:
        options: Fully built options; the environment is consulted when omitted
        env_file: Dotenv file read when ``options`` is omitted
        **overrides: Option fields that win over the environment

    Returns:
        A started Connection (BidiConnection for ``protocol="webDriverBiDi"``)

    Raises:
        ConfigurationError: If neither an endpoint nor a browser URL is known
        BrowserNotAvailableError: If the browser cannot be reached
    """
    if options is None:
        options = load_options(env_file, **overrides)
    elif overrides:
        options = options.model_copy(update=overrides)

    logger = PagewireLogger(configure_logging(options.verbose), options.verbose)

    endpoint = options.browser_ws_endpoint
    if not endpoint:
        if not options.browser_url:
            raise ConfigurationError("Either browser_ws_endpoint or browser_url must be set")
        endpoint = await discover_websocket_url(options.browser_url)
        logger.debug("connect:discover", "Resolved websocket endpoint", browser_url=options.browser_url, endpoint=endpoint)

    transport = await WebSocketTransport.create(
        endpoint,
        headers=options.headers,
        max_size=options.max_message_size,
    )

    connection_class = BidiConnection if options.protocol == "webDriverBiDi" else Connection
    connection = connection_class(transport, options=options, logger=logger, url=endpoint)
    connection.start()
    logger.info("connect:ready", "Connected to browser", endpoint=endpoint, protocol=options.protocol)
    return connection
