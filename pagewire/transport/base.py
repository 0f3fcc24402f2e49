"""Transport boundary: a bidirectional channel of serialized protocol frames."""

from abc import ABC, abstractmethod
from typing import Optional


class Transport(ABC):
    """
    Abstract message channel to a browser.

    Implementations deliver whole text frames. ``receive`` returns ``None``
    once the channel is closed; it is never called concurrently.
    """

    @abstractmethod
    async def send(self, message: str) -> None:
        """Write one frame."""

    @abstractmethod
    async def receive(self) -> Optional[str]:
        """Read the next frame, or None when the channel is closed."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel."""
