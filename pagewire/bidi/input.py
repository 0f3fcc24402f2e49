"""Keyboard, mouse and touch input for BiDi browsing contexts."""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.session import Session

KEYBOARD_SOURCE = "__pagewire_keyboard"
MOUSE_SOURCE = "__pagewire_mouse"
WHEEL_SOURCE = "__pagewire_wheel"
FINGER_SOURCE = "__pagewire_finger"

# WebDriver private-use code points for named keys.
KEY_VALUES: Dict[str, str] = {
    "Unidentified": "\uE000",
    "Cancel": "\uE001",
    "Help": "\uE002",
    "Backspace": "\uE003",
    "Tab": "\uE004",
    "Clear": "\uE005",
    "Return": "\uE006",
    "Enter": "\uE007",
    "Shift": "\uE008",
    "Control": "\uE009",
    "Alt": "\uE00A",
    "Pause": "\uE00B",
    "Escape": "\uE00C",
    "PageUp": "\uE00E",
    "PageDown": "\uE00F",
    "End": "\uE010",
    "Home": "\uE011",
    "ArrowLeft": "\uE012",
    "ArrowUp": "\uE013",
    "ArrowRight": "\uE014",
    "ArrowDown": "\uE015",
    "Insert": "\uE016",
    "Delete": "\uE017",
    "F1": "\uE031",
    "F2": "\uE032",
    "F3": "\uE033",
    "F4": "\uE034",
    "F5": "\uE035",
    "F6": "\uE036",
    "F7": "\uE037",
    "F8": "\uE038",
    "F9": "\uE039",
    "F10": "\uE03A",
    "F11": "\uE03B",
    "F12": "\uE03C",
    "Meta": "\uE03D",
    "ZenkakuHankaku": "\uE040",
}


class MouseButton(str, Enum):
    LEFT = "left"
    MIDDLE = "middle"
    RIGHT = "right"
    BACK = "back"
    FORWARD = "forward"

    @property
    def code(self) -> int:
        return _BUTTON_CODES[self]


_BUTTON_CODES = {
    MouseButton.LEFT: 0,
    MouseButton.MIDDLE: 1,
    MouseButton.RIGHT: 2,
    MouseButton.BACK: 3,
    MouseButton.FORWARD: 4,
}


def key_value(key: str) -> str:
    """Map a key name or character to the value sent in key actions."""
    if key == "\n":
        key = "Enter"
    if len(key) == 1:
        return key
    try:
        return KEY_VALUES[key]
    except KeyError:
        raise ValueError(f'Unknown key: "{key}"') from None


class _InputDevice:
    def __init__(self, session: Session):
        self._session = session

    async def _perform(self, source: Dict[str, Any]) -> None:
        await self._session.send(
            "input.performActions",
            {"context": self._session.session_id, "actions": [source]},
        )


class Keyboard(_InputDevice):
    async def down(self, key: str) -> None:
        await self._send_keys([{"type": "keyDown", "value": key_value(key)}])

    async def up(self, key: str) -> None:
        await self._send_keys([{"type": "keyUp", "value": key_value(key)}])

    async def press(self, key: str, delay: float = 0) -> None:
        """Press and release ``key``, holding it for ``delay`` milliseconds."""
        value = key_value(key)
        actions: List[Dict[str, Any]] = [{"type": "keyDown", "value": value}]
        if delay > 0:
            actions.append({"type": "pause", "duration": delay})
        actions.append({"type": "keyUp", "value": value})
        await self._send_keys(actions)

    async def type(self, text: str, delay: float = 0) -> None:
        """Type ``text`` one code point at a time."""
        actions: List[Dict[str, Any]] = []
        for value in [key_value(ch) for ch in text]:
            actions.append({"type": "keyDown", "value": value})
            if delay > 0:
                actions.append({"type": "pause", "duration": delay})
            actions.append({"type": "keyUp", "value": value})
        await self._send_keys(actions)

    async def _send_keys(self, actions: List[Dict[str, Any]]) -> None:
        await self._perform({"type": "key", "id": KEYBOARD_SOURCE, "actions": actions})


class Mouse(_InputDevice):
    def __init__(self, session: Session):
        super().__init__(session)
        self._last_move: Optional[Tuple[float, float]] = None

    async def reset(self) -> None:
        """Release every pressed button and forget the pointer position."""
        self._last_move = None
        await self._session.send("input.releaseActions", {"context": self._session.session_id})

    async def move(self, x: float, y: float, steps: int = 0, origin: Optional[Any] = None) -> None:
        self._last_move = (x, y)
        await self._send_pointer([_pointer_move(x, y, origin, duration=steps * 50)])

    async def down(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._send_pointer([{"type": "pointerDown", "button": MouseButton(button).code}])

    async def up(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._send_pointer([{"type": "pointerUp", "button": MouseButton(button).code}])

    async def click(
        self,
        x: float,
        y: float,
        button: MouseButton = MouseButton.LEFT,
        count: int = 1,
        delay: float = 0,
        origin: Optional[Any] = None,
    ) -> None:
        code = MouseButton(button).code
        pointer_down = {"type": "pointerDown", "button": code}
        pointer_up = {"type": "pointerUp", "button": code}
        actions: List[Dict[str, Any]] = [_pointer_move(x, y, origin)]
        for _ in range(1, count):
            actions.extend([pointer_down, pointer_up])
        actions.append(pointer_down)
        if delay:
            actions.append({"type": "pause", "duration": delay})
        actions.append(pointer_up)
        await self._send_pointer(actions)

    async def wheel(self, delta_x: float = 0, delta_y: float = 0) -> None:
        x, y = self._last_move or (0, 0)
        await self._perform(
            {
                "type": "wheel",
                "id": WHEEL_SOURCE,
                "actions": [{"type": "scroll", "x": x, "y": y, "deltaX": delta_x, "deltaY": delta_y}],
            }
        )

    async def _send_pointer(self, actions: List[Dict[str, Any]]) -> None:
        await self._perform({"type": "pointer", "id": MOUSE_SOURCE, "actions": actions})


class Touchscreen(_InputDevice):
    async def tap(self, x: float, y: float, origin: Optional[Any] = None) -> None:
        await self.touch_start(x, y, origin)
        await self.touch_end()

    async def touch_start(self, x: float, y: float, origin: Optional[Any] = None) -> None:
        await self._send_touch([_pointer_move(x, y, origin), {"type": "pointerDown", "button": 0}])

    async def touch_move(self, x: float, y: float, origin: Optional[Any] = None) -> None:
        await self._send_touch([_pointer_move(x, y, origin)])

    async def touch_end(self) -> None:
        await self._send_touch([{"type": "pointerUp", "button": 0}])

    async def _send_touch(self, actions: List[Dict[str, Any]]) -> None:
        await self._perform(
            {
                "type": "pointer",
                "id": FINGER_SOURCE,
                "parameters": {"pointerType": "touch"},
                "actions": actions,
            }
        )


def _pointer_move(x: float, y: float, origin: Optional[Any], duration: Optional[int] = None) -> Dict[str, Any]:
    action: Dict[str, Any] = {"type": "pointerMove", "x": x, "y": y}
    if duration is not None:
        action["duration"] = duration
    if origin is not None:
        action["origin"] = origin
    return action
