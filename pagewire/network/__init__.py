"""Network request tracking and interception."""

from .pipeline import NetworkPipeline
from .request import ERROR_REASONS, Request

__all__ = [
    "NetworkPipeline",
    "Request",
    "ERROR_REASONS",
]
