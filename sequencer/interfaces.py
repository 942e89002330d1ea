"""Error taxonomy and the abstract native-action service contract."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, List, Optional

if TYPE_CHECKING:
    from .scenario.models import RGB, Modifier, MouseButton, PermissionStatus, Point, Rect


class SequencerError(Exception):
    """Base exception for all sequencer errors."""


class ServiceError(SequencerError):
    """Base exception for failures talking to the native helper."""


class ProtocolError(ServiceError):
    """Raised for a malformed or unroutable message on the channel."""


class RequestTimeout(ServiceError):
    """Raised when the helper does not answer a request in time."""

    def __init__(self, method: str, timeout_ms: float):
        super().__init__(f"Request {method} timed out after {timeout_ms:.0f}ms")
        self.method = method
        self.timeout_ms = timeout_ms


class RemoteActionError(ServiceError):
    """Raised when the helper reports ``success: false`` for a request."""

    def __init__(self, method: str, error: str):
        super().__init__(error)
        self.method = method
        self.error = error


class ServiceUnavailable(ServiceError):
    """Raised when the transport to the helper is closed."""


class ExecutionError(SequencerError):
    """Base exception for failures during scenario playback."""


class BrokenReference(ExecutionError):
    """Raised when a scenario-ref step points at a scenario that does not exist."""

    def __init__(self, scenario_id: str):
        super().__init__(f"Sub-scenario not found: {scenario_id}")
        self.scenario_id = scenario_id


class CircularReference(ExecutionError):
    """Raised when a scenario is re-entered while it is still executing."""

    def __init__(self, scenario_id: str, scenario_name: str, stack: List[str]):
        super().__init__(f"Circular reference detected: {scenario_name}")
        self.scenario_id = scenario_id
        self.scenario_name = scenario_name
        self.stack = stack


class PixelConditionTimeout(ExecutionError):
    """Raised when a pixel wait finished without the color matching."""


class ExecutionCancelled(SequencerError):
    """Raised when the user aborts a playback run. Not an ExecutionError."""


EventListener = Callable[[dict], Any]


class NativeActionService(ABC):
    """Interface of the helper process performing OS-level interaction.

    Every method is a single request to the helper. None of them are retried:
    clicks and keypresses are not idempotent.
    """

    @abstractmethod
    async def check_permissions(self) -> "PermissionStatus":
        """
        Query the accessibility and screen recording permissions.

        Returns:
            Current permission status
        """

    @abstractmethod
    async def show_recorder_overlay(self, position: Optional["Point"] = None) -> None:
        """
        Show the recorder overlay window.

        Args:
            position: Optional screen position for the overlay
        """

    @abstractmethod
    async def hide_recorder_overlay(self) -> None:
        """Hide the recorder overlay window."""

    @abstractmethod
    async def set_recorder_state(self, state: str, sub_state: Optional[str] = None) -> None:
        """
        Set the overlay display state.

        Args:
            state: One of idle, action, transition
            sub_state: One of mouse, keyboard, time, pixel
        """

    @abstractmethod
    async def show_magnifier(self) -> None:
        """Show the magnifier used for pixel selection."""

    @abstractmethod
    async def hide_magnifier(self) -> None:
        """Hide the magnifier."""

    @abstractmethod
    async def execute_click(self, position: "Point", button: "MouseButton" = "left") -> None:
        """
        Click the mouse at a screen position.

        Args:
            position: Screen coordinates
            button: left or right
        """

    @abstractmethod
    async def execute_keypress(self, key: str, modifiers: Optional[List["Modifier"]] = None) -> None:
        """
        Press a key with optional modifiers held.

        Args:
            key: Key name
            modifiers: Modifier keys (ctrl, alt, shift, cmd)
        """

    @abstractmethod
    async def get_pixel_color(self, position: "Point") -> "RGB":
        """
        Sample the color of one screen pixel.

        Args:
            position: Screen coordinates

        Returns:
            Sampled color
        """

    @abstractmethod
    async def wait_for_pixel_state(self, position: "Point", color: "RGB", threshold: float,
                                   timeout_ms: Optional[int] = None) -> bool:
        """
        Wait until a pixel is within ``threshold`` of ``color``.

        Args:
            position: Screen coordinates
            color: Target color
            threshold: Euclidean RGB distance bound
            timeout_ms: Helper-side polling timeout (None waits indefinitely)

        Returns:
            True if matched, False if the helper timed out
        """

    @abstractmethod
    async def wait_for_pixel_zone(self, rect: "Rect", color: "RGB", threshold: float,
                                  timeout_ms: Optional[int] = None) -> bool:
        """
        Wait until any pixel in ``rect`` is within ``threshold`` of ``color``.

        Args:
            rect: Screen zone
            color: Target color
            threshold: Euclidean RGB distance bound
            timeout_ms: Helper-side polling timeout (None waits indefinitely)

        Returns:
            True if matched, False if the helper timed out
        """

    @abstractmethod
    def on(self, event: str, listener: EventListener) -> None:
        """Subscribe to an unsolicited helper event."""

    @abstractmethod
    def off(self, event: str, listener: EventListener) -> None:
        """Unsubscribe from a helper event."""
