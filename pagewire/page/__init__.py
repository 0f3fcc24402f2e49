"""Page state: frames, execution contexts and the page model."""

from .execution_context import (
    MAIN_WORLD,
    UTILITY_WORLD,
    UTILITY_WORLD_NAME,
    ExecutionContext,
    ExecutionContextRegistry,
    RemoteHandle,
)
from .frame_tree import Frame, FrameTree
from .page_model import PageModel

__all__ = [
    "MAIN_WORLD",
    "UTILITY_WORLD",
    "UTILITY_WORLD_NAME",
    "ExecutionContext",
    "ExecutionContextRegistry",
    "RemoteHandle",
    "Frame",
    "FrameTree",
    "PageModel",
]
