"""WebDriver BiDi dialect: connection and input devices."""

from .connection import BidiConnection
from .input import Keyboard, Mouse, MouseButton, Touchscreen, key_value

__all__ = [
    "BidiConnection",
    "Keyboard",
    "Mouse",
    "MouseButton",
    "Touchscreen",
    "key_value",
]
