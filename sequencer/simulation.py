"""
In-process simulation of the native helper.

Used for dry-run playback from the command line and as the native action
service in tests. Every call is logged and recorded; pixel waits match
according to the configured outcome and errors can be injected per method.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .interfaces import EventListener, NativeActionService
from .logging_config import get_logger
from .scenario.models import RGB, Modifier, MouseButton, PermissionStatus, Point, Rect


class SimulationConfig(BaseModel):
    """Behavior of the simulated helper."""

    action_delay_ms: float = Field(default=0.0, ge=0, description="Simulated duration of each action")
    pixel_match: bool = Field(default=True, description="Outcome of pixel waits")
    pixel_color: Tuple[int, int, int] = Field(default=(0, 0, 0), description="Color returned by getPixelColor")
    accessibility: bool = Field(default=True, description="Reported accessibility permission")
    screen_recording: bool = Field(default=True, description="Reported screen recording permission")


class SimulatedNativeService(NativeActionService):
    """NativeActionService that performs nothing and records every call."""

    def __init__(self, config: Optional[SimulationConfig] = None):
        self.config = config or SimulationConfig()
        self.logger = get_logger(__name__)

        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._listeners: Dict[str, List[EventListener]] = defaultdict(list)
        self._errors: Dict[str, Exception] = {}

    # Test and dry-run controls

    def inject_error(self, method: str, error: Exception) -> None:
        """Make every call to ``method`` raise ``error``."""
        self._errors[method] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    async def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event to the registered listeners and await async ones."""
        for listener in list(self._listeners.get(event, ())):
            result = listener(data or {})
            if inspect.isawaitable(result):
                await result

    async def _perform(self, method: str, **params: Any) -> None:
        self.calls.append((method, params))
        self.logger.info(f"[simulated] {method} {params if params else ''}".rstrip())

        error = self._errors.get(method)
        if error is not None:
            raise error

        if self.config.action_delay_ms:
            await asyncio.sleep(self.config.action_delay_ms / 1000)

    # NativeActionService

    async def check_permissions(self) -> PermissionStatus:
        await self._perform("check_permissions")
        return PermissionStatus(accessibility=self.config.accessibility,
                                screen_recording=self.config.screen_recording)

    async def show_recorder_overlay(self, position: Optional[Point] = None) -> None:
        await self._perform("show_recorder_overlay", position=position)

    async def hide_recorder_overlay(self) -> None:
        await self._perform("hide_recorder_overlay")

    async def set_recorder_state(self, state: str, sub_state: Optional[str] = None) -> None:
        await self._perform("set_recorder_state", state=state, sub_state=sub_state)

    async def show_magnifier(self) -> None:
        await self._perform("show_magnifier")

    async def hide_magnifier(self) -> None:
        await self._perform("hide_magnifier")

    async def execute_click(self, position: Point, button: MouseButton = "left") -> None:
        await self._perform("execute_click", position=position, button=button)

    async def execute_keypress(self, key: str, modifiers: Optional[List[Modifier]] = None) -> None:
        await self._perform("execute_keypress", key=key, modifiers=list(modifiers or []))

    async def get_pixel_color(self, position: Point) -> RGB:
        await self._perform("get_pixel_color", position=position)
        r, g, b = self.config.pixel_color
        return RGB(r=r, g=g, b=b)

    async def wait_for_pixel_state(self, position: Point, color: RGB, threshold: float,
                                   timeout_ms: Optional[int] = None) -> bool:
        await self._perform("wait_for_pixel_state", position=position, color=color,
                            threshold=threshold, timeout_ms=timeout_ms)
        return self.config.pixel_match

    async def wait_for_pixel_zone(self, rect: Rect, color: RGB, threshold: float,
                                  timeout_ms: Optional[int] = None) -> bool:
        await self._perform("wait_for_pixel_zone", rect=rect, color=color,
                            threshold=threshold, timeout_ms=timeout_ms)
        return self.config.pixel_match

    def on(self, event: str, listener: EventListener) -> None:
        if listener not in self._listeners[event]:
            self._listeners[event].append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)
