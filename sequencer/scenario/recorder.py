"""
Recording state machine.

Turns live helper events into steps in the ScenarioStore. The machine is in
exactly one of three states: idle, naming a scenario, or recording into one.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from ..interfaces import NativeActionService, ServiceError
from ..logging_config import get_logger
from .models import (
    DEFAULT_SCENARIO_NAME,
    ClickStep,
    DelayStep,
    KeypressStep,
    PixelStateStep,
    PixelZoneStep,
    Point,
    Rect,
    Step,
)
from .settings import SettingsStore
from .store import Observable, ScenarioStore


class IdleState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "idle"


class NamingState(BaseModel):
    """Editing a scenario name. ``draft`` scenarios were created for this naming."""
    model_config = ConfigDict(frozen=True)

    status: str = "naming"
    scenario_id: str
    buffer: str = ""
    draft: bool = True


class RecordingState(BaseModel):
    """Capturing steps; new steps go after ``insert_after_index`` (None appends)."""
    model_config = ConfigDict(frozen=True)

    status: str = "recording"
    scenario_id: str
    insert_after_index: Optional[int] = None


RecorderState = Union[IdleState, NamingState, RecordingState]

# (state, sub_state) as mirrored to the helper overlay
OverlayMode = Tuple[str, Optional[str]]

OVERLAY_IDLE: OverlayMode = ("idle", None)
ACTION_MOUSE: OverlayMode = ("action", "mouse")
ACTION_KEYBOARD: OverlayMode = ("action", "keyboard")
TRANSITION_PIXEL: OverlayMode = ("transition", "pixel")
TRANSITION_TIME: OverlayMode = ("transition", "time")

RECORDING_EVENTS = (
    "overlayIconClicked",
    "mouseClicked",
    "keyPressed",
    "zoneSelected",
    "pixelSelected",
    "timeInputCompleted",
    "overlayMoved",
    "overlayClosed",
)


class RecordingStateMachine(Observable):
    """Idle / Naming / Recording state machine driven by user intent and helper events."""

    def __init__(self, store: ScenarioStore, settings: SettingsStore, service: NativeActionService):
        """
        Initialize the recorder.

        Args:
            store: Store receiving the recorded steps
            settings: Source of the default threshold and overlay position
            service: Helper the overlay and events come from
        """
        super().__init__()
        self.store = store
        self.settings = settings
        self.service = service
        self.logger = get_logger(__name__)

        self._state: RecorderState = IdleState()
        self._overlay_mode: OverlayMode = OVERLAY_IDLE
        self._pending_zone: Optional[Rect] = None
        self._subscriptions: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {}

        self._event_handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            "overlayIconClicked": self._on_overlay_icon_clicked,
            "mouseClicked": self._on_mouse_clicked,
            "keyPressed": self._on_key_pressed,
            "zoneSelected": self._on_zone_selected,
            "pixelSelected": self._on_pixel_selected,
            "timeInputCompleted": self._on_time_input_completed,
            "overlayMoved": self._on_overlay_moved,
            "overlayClosed": self._on_overlay_closed,
        }

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def overlay_mode(self) -> OverlayMode:
        return self._overlay_mode

    @property
    def pending_zone(self) -> Optional[Rect]:
        return self._pending_zone

    @property
    def is_idle(self) -> bool:
        return isinstance(self._state, IdleState)

    @property
    def is_naming(self) -> bool:
        return isinstance(self._state, NamingState)

    @property
    def is_recording(self) -> bool:
        return isinstance(self._state, RecordingState)

    @property
    def current_scenario_id(self) -> Optional[str]:
        if isinstance(self._state, (NamingState, RecordingState)):
            return self._state.scenario_id
        return None

    def _set_state(self, state: RecorderState) -> None:
        self._state = state
        self._notify()

    # User intents

    async def start(self) -> None:
        """
        Toggle recording.

        Stops an active recording. From idle, records into the selected
        scenario after the selected step, or creates a draft scenario and
        starts naming it when nothing is selected.
        """
        if self.is_recording:
            await self.stop()
            return
        if not self.is_idle:
            self.logger.warning(f"Cannot start recording: already in {self._state.status} state")
            return

        selected = self.store.get_selected_scenario()
        if selected is not None:
            await self.start_recording(selected.id, self.store.selected_step_index)
        else:
            draft = self.store.create_scenario(DEFAULT_SCENARIO_NAME)
            self._set_state(NamingState(scenario_id=draft.id, buffer="", draft=True))

    def rename(self, scenario_id: str) -> None:
        """Start editing the name of an existing scenario."""
        if not self.is_idle:
            self.logger.warning(f"Cannot start naming: already in {self._state.status} state")
            return

        scenario = self.store.get_scenario(scenario_id)
        if scenario is None:
            self.logger.warning(f"Cannot rename unknown scenario {scenario_id}")
            return
        self._set_state(NamingState(scenario_id=scenario_id, buffer=scenario.name, draft=False))

    def type_char(self, char: str) -> None:
        if isinstance(self._state, NamingState):
            self._set_state(self._state.model_copy(update={"buffer": self._state.buffer + char}))

    def backspace(self) -> None:
        if isinstance(self._state, NamingState):
            self._set_state(self._state.model_copy(update={"buffer": self._state.buffer[:-1]}))

    async def confirm(self) -> Optional[str]:
        """
        Commit the name being edited.

        A draft scenario goes straight into recording, appending steps.

        Returns:
            The committed name, or None if not naming
        """
        state = self._state
        if not isinstance(state, NamingState):
            return None

        name = state.buffer.strip() or DEFAULT_SCENARIO_NAME
        self.store.rename_scenario(state.scenario_id, name)
        self._set_state(IdleState())

        if state.draft:
            await self.start_recording(state.scenario_id, None)
        return name

    def cancel(self) -> None:
        """Abandon naming; a draft scenario is deleted."""
        state = self._state
        if not isinstance(state, NamingState):
            return

        if state.draft:
            self.store.delete_scenario(state.scenario_id)
        self._set_state(IdleState())

    async def start_recording(self, scenario_id: str, insert_after_index: Optional[int] = None) -> None:
        """
        Enter recording for a scenario.

        Args:
            scenario_id: Scenario receiving the steps
            insert_after_index: Steps go after this index; None appends

        Raises:
            ServiceError: If the overlay cannot be shown; the recorder returns to idle
        """
        if not self.is_idle:
            self.logger.warning(f"Cannot start recording: already in {self._state.status} state")
            return

        self._overlay_mode = OVERLAY_IDLE
        self._pending_zone = None
        self._subscribe_events()
        self._set_state(RecordingState(scenario_id=scenario_id, insert_after_index=insert_after_index))
        self.logger.info(f"Recording into scenario {scenario_id}")

        try:
            await self.service.show_recorder_overlay(self.settings.last_overlay_position)
        except ServiceError:
            self._leave_recording()
            raise

    async def stop(self, hide_overlay: bool = True) -> None:
        """Stop recording and hide the overlay."""
        if not self.is_recording:
            self.logger.warning("Cannot stop recording: not currently recording")
            return

        self._leave_recording()
        self.logger.info("Recording stopped")

        if hide_overlay:
            try:
                await self.service.hide_recorder_overlay()
            except ServiceError as e:
                self.logger.error(f"Failed to hide recorder overlay: {e}")

    def _leave_recording(self) -> None:
        self._unsubscribe_events()
        self._overlay_mode = OVERLAY_IDLE
        self._pending_zone = None
        self._set_state(IdleState())

    # Helper events

    def _subscribe_events(self) -> None:
        for event in RECORDING_EVENTS:
            listener = self._make_listener(event)
            self._subscriptions[event] = listener
            self.service.on(event, listener)

    def _unsubscribe_events(self) -> None:
        for event, listener in self._subscriptions.items():
            self.service.off(event, listener)
        self._subscriptions.clear()

    def _make_listener(self, event: str) -> Callable[[Dict[str, Any]], Awaitable[None]]:
        async def listener(data: Dict[str, Any]) -> None:
            await self.handle_event(event, data)
        return listener

    async def handle_event(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Process one helper event.

        Events outside recording, unknown events and malformed payloads are
        logged and ignored.
        """
        if not self.is_recording:
            self.logger.debug(f"Ignoring {event} event while {self._state.status}")
            return

        handler = self._event_handlers.get(event)
        if handler is None:
            self.logger.warning(f"Ignoring unknown recorder event: {event}")
            return

        try:
            await handler(data or {})
        except (ValidationError, KeyError, TypeError) as e:
            self.logger.warning(f"Ignoring malformed {event} event {data!r}: {e}")

    def _add_step(self, step: Step) -> None:
        state = self._state
        if not isinstance(state, RecordingState):
            return

        index = self.store.add_step(state.scenario_id, step, state.insert_after_index)
        if index is None:
            self.logger.warning(f"Recording target {state.scenario_id} no longer exists, step dropped")
            return

        self._set_state(state.model_copy(update={"insert_after_index": index}))
        self.logger.debug(f"Recorded step at index {index}: {step.type}")

    async def _set_overlay_mode(self, mode: OverlayMode) -> None:
        self._overlay_mode = mode
        await self.service.set_recorder_state(mode[0], mode[1])

    async def _on_overlay_icon_clicked(self, data: Dict[str, Any]) -> None:
        icon = data["icon"]
        current_state = self._overlay_mode[0]

        if icon == "action":
            await self._set_overlay_mode(ACTION_MOUSE)
        elif icon == "transition":
            await self._set_overlay_mode(TRANSITION_PIXEL)
        elif icon == "mouse":
            # Mouse means click capture in action mode and pixel picking in transition mode
            if current_state == "action":
                await self._set_overlay_mode(ACTION_MOUSE)
            elif current_state == "transition":
                await self._set_overlay_mode(TRANSITION_PIXEL)
                await self.service.show_magnifier()
        elif icon == "keyboard":
            await self._set_overlay_mode(ACTION_KEYBOARD)
        elif icon == "time":
            await self._set_overlay_mode(TRANSITION_TIME)
        else:
            self.logger.warning(f"Ignoring unknown overlay icon: {icon}")

    async def _on_mouse_clicked(self, data: Dict[str, Any]) -> None:
        if self._overlay_mode != ACTION_MOUSE:
            return
        self._add_step(ClickStep(position=data["position"], button=data.get("button", "left")))

    async def _on_key_pressed(self, data: Dict[str, Any]) -> None:
        if self._overlay_mode != ACTION_KEYBOARD:
            return
        self._add_step(KeypressStep(key=data["key"], modifiers=data.get("modifiers") or ()))

    async def _on_zone_selected(self, data: Dict[str, Any]) -> None:
        self._pending_zone = Rect.model_validate(data["rect"])
        await self.service.show_magnifier()

    async def _on_pixel_selected(self, data: Dict[str, Any]) -> None:
        threshold = self.settings.default_threshold
        if self._pending_zone is not None:
            step: Step = PixelZoneStep(rect=self._pending_zone, color=data["color"], threshold=threshold)
        else:
            step = PixelStateStep(position=data["position"], color=data["color"], threshold=threshold)

        self._add_step(step)
        self._pending_zone = None
        await self.service.hide_magnifier()

    async def _on_time_input_completed(self, data: Dict[str, Any]) -> None:
        self._add_step(DelayStep(ms=data["ms"]))

    async def _on_overlay_moved(self, data: Dict[str, Any]) -> None:
        self.settings.set_last_overlay_position(Point.model_validate(data["position"]))

    async def _on_overlay_closed(self, data: Dict[str, Any]) -> None:
        # The helper already closed the overlay
        await self.stop(hide_overlay=False)
