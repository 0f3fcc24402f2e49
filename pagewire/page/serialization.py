"""Argument serialization and remote-object decoding for script evaluation."""

import math
import re
from typing import TYPE_CHECKING, Any, Dict

from ..core.errors import ContextDestroyedError, PagewireError

if TYPE_CHECKING:
    from .execution_context import ExecutionContext


_FUNCTION_RE = re.compile(r"^\s*(async\s+)?(function\b|\([^)]*\)\s*=>|[A-Za-z_$][\w$]*\s*=>)")


def looks_like_function(source: str) -> bool:
    """True when ``source`` is a function declaration rather than an expression."""
    return bool(_FUNCTION_RE.match(source))


def serialize_argument(context: "ExecutionContext", arg: Any) -> Dict[str, Any]:
    """
    Convert a Python value into a CallArgument.

    Handles become object references and must belong to ``context``; special
    floats travel as unserializable values; everything else is sent inline.
    """
    from .execution_context import RemoteHandle

    if isinstance(arg, RemoteHandle):
        if arg.disposed:
            raise PagewireError("Handle is disposed")
        if arg.context is not context:
            raise PagewireError("Handles can be evaluated only in the context they were created in")
        if not arg.context.is_ready:
            raise ContextDestroyedError(arg.context.context_id)
        object_id = arg.remote_object.get("objectId")
        if object_id:
            return {"objectId": object_id}
        return _inline(arg.remote_object)
    if isinstance(arg, float):
        if math.isnan(arg):
            return {"unserializableValue": "NaN"}
        if math.isinf(arg):
            return {"unserializableValue": "Infinity" if arg > 0 else "-Infinity"}
        if arg == 0 and math.copysign(1.0, arg) < 0:
            return {"unserializableValue": "-0"}
    return {"value": arg}


def _inline(remote_object: Dict[str, Any]) -> Dict[str, Any]:
    if "unserializableValue" in remote_object:
        return {"unserializableValue": remote_object["unserializableValue"]}
    if remote_object.get("type") == "undefined":
        return {}
    return {"value": remote_object.get("value")}


def value_from_remote_object(remote_object: Dict[str, Any]) -> Any:
    """Decode an inline RemoteObject (one without an objectId)."""
    unserializable = remote_object.get("unserializableValue")
    if unserializable is not None:
        if remote_object.get("type") == "bigint" or unserializable.endswith("n"):
            return int(unserializable.rstrip("n"))
        if unserializable == "-0":
            return -0.0
        if unserializable == "NaN":
            return float("nan")
        if unserializable == "Infinity":
            return float("inf")
        if unserializable == "-Infinity":
            return float("-inf")
        raise PagewireError(f"Unsupported unserializable value: {unserializable}")
    if remote_object.get("type") == "undefined" or remote_object.get("subtype") == "null":
        return None
    return remote_object.get("value")


def create_handle_or_value(context: "ExecutionContext", remote_object: Dict[str, Any]) -> Any:
    """Objects, functions and nodes become handles; primitives are returned inline."""
    from .execution_context import RemoteHandle

    if remote_object.get("objectId"):
        return RemoteHandle(context, remote_object)
    return value_from_remote_object(remote_object)
