"""Typed client for the native helper methods."""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..interfaces import EventListener, NativeActionService, ProtocolError
from ..scenario.models import RGB, Modifier, MouseButton, PermissionStatus, Point, Rect
from .channel import NO_TIMEOUT, MessageChannel

# Extra channel timeout on top of the helper-side polling timeout
PIXEL_WAIT_BUFFER_MS = 5000


class NativeActionClient(NativeActionService):
    """NativeActionService implemented as requests over a MessageChannel."""

    def __init__(self, channel: MessageChannel):
        self.channel = channel

    async def check_permissions(self) -> PermissionStatus:
        result = await self.channel.request("checkPermissions")
        return PermissionStatus.model_validate(self._expect_dict("checkPermissions", result))

    async def show_recorder_overlay(self, position: Optional[Point] = None) -> None:
        await self.channel.request("showRecorderOverlay", {"position": _dump(position)})

    async def hide_recorder_overlay(self) -> None:
        await self.channel.request("hideRecorderOverlay")

    async def set_recorder_state(self, state: str, sub_state: Optional[str] = None) -> None:
        await self.channel.request("setRecorderState", {"state": state, "subState": sub_state})

    async def show_magnifier(self) -> None:
        await self.channel.request("showMagnifier")

    async def hide_magnifier(self) -> None:
        await self.channel.request("hideMagnifier")

    async def execute_click(self, position: Point, button: MouseButton = "left") -> None:
        await self.channel.request("executeClick", {"position": _dump(position), "button": button})

    async def execute_keypress(self, key: str, modifiers: Optional[List[Modifier]] = None) -> None:
        await self.channel.request("executeKeypress", {"key": key, "modifiers": list(modifiers or [])})

    async def get_pixel_color(self, position: Point) -> RGB:
        result = await self.channel.request("getPixelColor", {"position": _dump(position)})
        color = self._expect_dict("getPixelColor", result).get("color")
        try:
            return RGB.model_validate(color)
        except ValidationError as e:
            raise ProtocolError(f"Unexpected result for getPixelColor: {result!r}") from e

    async def wait_for_pixel_state(self, position: Point, color: RGB, threshold: float,
                                   timeout_ms: Optional[int] = None) -> bool:
        result = await self.channel.request(
            "waitForPixelState",
            {
                "position": _dump(position),
                "color": _dump(color),
                "threshold": threshold,
                "timeoutMs": timeout_ms,
            },
            timeout_ms=_pixel_wait_timeout(timeout_ms),
        )
        return bool(self._expect_dict("waitForPixelState", result).get("matched"))

    async def wait_for_pixel_zone(self, rect: Rect, color: RGB, threshold: float,
                                  timeout_ms: Optional[int] = None) -> bool:
        result = await self.channel.request(
            "waitForPixelZone",
            {
                "rect": _dump(rect),
                "color": _dump(color),
                "threshold": threshold,
                "timeoutMs": timeout_ms,
            },
            timeout_ms=_pixel_wait_timeout(timeout_ms),
        )
        return bool(self._expect_dict("waitForPixelZone", result).get("matched"))

    def on(self, event: str, listener: EventListener) -> None:
        self.channel.on(event, listener)

    def off(self, event: str, listener: EventListener) -> None:
        self.channel.off(event, listener)

    @staticmethod
    def _expect_dict(method: str, result: Any) -> Dict[str, Any]:
        if not isinstance(result, dict):
            raise ProtocolError(f"Unexpected result for {method}: {result!r}")
        return result


def _dump(value: Any) -> Optional[Dict[str, Any]]:
    return value.to_dict() if value is not None else None


def _pixel_wait_timeout(timeout_ms: Optional[int]) -> float:
    if timeout_ms is None:
        return NO_TIMEOUT
    return timeout_ms + PIXEL_WAIT_BUFFER_MS
