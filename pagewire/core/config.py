"""Connection configuration from the environment."""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv
from pydantic import ValidationError

from ..types import ConnectionOptions
from .errors import ConfigurationError


ENV_PREFIX = "PAGEWIRE_"

_ENV_FIELDS = {
    "WS_ENDPOINT": "browser_ws_endpoint",
    "BROWSER_URL": "browser_url",
    "PROTOCOL": "protocol",
    "PROTOCOL_TIMEOUT": "protocol_timeout",
    "SLOW_MO": "slow_mo",
    "VERBOSE": "verbose",
}


def load_options(env_file: Optional[Union[str, Path]] = None, **overrides: Any) -> ConnectionOptions:
    """
    Build ConnectionOptions from ``.env``, PAGEWIRE_* variables and overrides.

    Args:
        env_file: Explicit dotenv file; the nearest ``.env`` is used when omitted
        **overrides: Field values that win over the environment

    Returns:
        Validated options
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    values: Dict[str, Any] = {}
    for suffix, field in _ENV_FIELDS.items():
        raw = os.getenv(ENV_PREFIX + suffix)
        if raw not in (None, ""):
            values[field] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ConnectionOptions(**values)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
