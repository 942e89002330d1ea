"""
Scenario playback.

This module plays back a scenario tree against the native action service:
strictly sequential, depth-first through scenario references, observing a
cancellation token before every step and reporting progress as it goes.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..interfaces import (
    BrokenReference,
    CircularReference,
    ExecutionCancelled,
    NativeActionService,
    PixelConditionTimeout,
    SequencerError,
)
from ..logging_config import get_logger
from .models import (
    ClickStep,
    DelayStep,
    KeypressStep,
    PixelStateStep,
    PixelZoneStep,
    Scenario,
    ScenarioRefStep,
    Step,
    describe_step,
)
from .store import ScenarioStore

DEFAULT_PIXEL_WAIT_TIMEOUT_MS = 60000


class ExecutionStatus(str, Enum):
    """Progress status of a playback run."""
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.ABORTED, ExecutionStatus.ERROR)


class ExecutionProgress:
    """Snapshot of a playback run."""

    def __init__(self, current_step: int, total_steps: int, status: ExecutionStatus,
                 step_description: Optional[str] = None, error: Optional[str] = None):
        self.current_step = current_step
        self.total_steps = total_steps
        self.status = status
        self.step_description = step_description
        self.error = error

    def __repr__(self) -> str:
        return (f"ExecutionProgress({self.current_step}/{self.total_steps}, {self.status.value}"
                f"{', ' + self.step_description if self.step_description else ''})")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "status": self.status.value,
            "step_description": self.step_description,
            "error": self.error,
        }


ProgressCallback = Callable[[ExecutionProgress], None]


class ExecutionResult:
    """Outcome of a complete playback run."""

    def __init__(self, scenario: Scenario, status: ExecutionStatus, current_step: int,
                 total_steps: int, error: Optional[str] = None, duration: float = 0.0):
        self.scenario = scenario
        self.status = status
        self.current_step = current_step
        self.total_steps = total_steps
        self.error = error
        self.duration = duration

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    def get_summary(self) -> Dict[str, Any]:
        """Get playback summary."""
        return {
            "scenario_id": self.scenario.id,
            "scenario_name": self.scenario.name,
            "status": self.status.value,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "error": self.error,
            "duration_seconds": round(self.duration, 3),
        }


class CancellationToken:
    """Per-run cancellation signal observed at every suspension point."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExecutionCancelled("Execution aborted")

    async def sleep(self, ms: float) -> None:
        """
        Sleep for ``ms`` milliseconds, waking early on cancellation.

        Raises:
            ExecutionCancelled: If the token is cancelled before or during the sleep
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=ms / 1000)
        except asyncio.TimeoutError:
            return
        raise ExecutionCancelled("Execution aborted")


class _RunState:
    """Bookkeeping shared by every recursion level of one run."""

    def __init__(self, token: CancellationToken, on_progress: Optional[ProgressCallback],
                 total_steps: int):
        self.token = token
        self.on_progress = on_progress
        self.total_steps = total_steps
        self.executed = 0
        self.stack: List[str] = []


class ExecutionEngine:
    """Plays scenarios through a NativeActionService. Stateless across runs."""

    def __init__(self, store: ScenarioStore, service: NativeActionService,
                 pixel_wait_timeout_ms: Optional[int] = DEFAULT_PIXEL_WAIT_TIMEOUT_MS):
        """
        Initialize the engine.

        Args:
            store: Source of scenarios for reference lookup
            service: Native action service performing the steps
            pixel_wait_timeout_ms: Helper-side timeout for pixel waits (None waits indefinitely)
        """
        self.store = store
        self.service = service
        self.pixel_wait_timeout_ms = pixel_wait_timeout_ms
        self.logger = get_logger(__name__)

        self._step_handlers: Dict[type, Callable[[Any, _RunState], Awaitable[None]]] = {
            ClickStep: self._handle_click,
            KeypressStep: self._handle_keypress,
            DelayStep: self._handle_delay,
            PixelStateStep: self._handle_pixel_state,
            PixelZoneStep: self._handle_pixel_zone,
        }

    def describe(self, step: Step) -> str:
        return describe_step(step, self.store.get_scenario)

    def count_total_steps(self, scenario: Scenario) -> int:
        """
        Count leaf steps across the scenario and everything it references.

        A scenario is counted once per traversal; missing references count 0.
        """
        visited: Set[str] = set()

        def count(current: Scenario) -> int:
            if current.id in visited:
                return 0
            visited.add(current.id)

            total = 0
            for step in current.steps:
                if isinstance(step, ScenarioRefStep):
                    sub = self.store.get_scenario(step.scenario_id)
                    if sub is not None:
                        total += count(sub)
                else:
                    total += 1
            return total

        return count(scenario)

    async def execute(self, scenario: Scenario, token: Optional[CancellationToken] = None,
                      on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Execute a scenario.

        Reports the terminal progress exactly once, then re-raises any failure.

        Raises:
            ExecutionCancelled: If the token was cancelled
            ExecutionError: On a broken or circular reference or an unmatched pixel wait
            ServiceError: If the helper fails a request
        """
        token = token or CancellationToken()
        state = _RunState(token, on_progress, self.count_total_steps(scenario))
        self.logger.info(f"Starting playback of scenario: {scenario.name} ({state.total_steps} steps)")

        try:
            await self._execute_scenario(scenario, state)
        except ExecutionCancelled:
            self.logger.info(f"Playback of {scenario.name} aborted at step {state.executed}")
            self._report(state, ExecutionStatus.ABORTED)
            raise
        except SequencerError as e:
            self.logger.error(f"Playback of {scenario.name} failed: {e}")
            self._report(state, ExecutionStatus.ERROR, error=str(e))
            raise
        except Exception as e:
            self.logger.exception(f"Playback of {scenario.name} failed unexpectedly: {e}")
            self._report(state, ExecutionStatus.ERROR, error=str(e) or type(e).__name__)
            raise

        self.store.touch_scenario(scenario.id)
        state.executed = state.total_steps
        self._report(state, ExecutionStatus.COMPLETED)
        self.logger.info(f"Playback of {scenario.name} completed")

    async def run(self, scenario: Scenario, token: Optional[CancellationToken] = None,
                  on_progress: Optional[ProgressCallback] = None) -> ExecutionResult:
        """Execute a scenario and return its result instead of raising."""
        progress: List[ExecutionProgress] = []

        def record(update: ExecutionProgress) -> None:
            progress.append(update)
            if on_progress is not None:
                on_progress(update)

        start = time.monotonic()
        try:
            await self.execute(scenario, token, record)
        except Exception:
            # The terminal status was already reported
            pass

        last = progress[-1]
        return ExecutionResult(
            scenario=scenario,
            status=last.status,
            current_step=last.current_step,
            total_steps=last.total_steps,
            error=last.error,
            duration=time.monotonic() - start,
        )

    async def _execute_scenario(self, scenario: Scenario, state: _RunState) -> None:
        if scenario.id in state.stack:
            raise CircularReference(scenario.id, scenario.name, list(state.stack))

        state.stack.append(scenario.id)
        try:
            for step in scenario.steps:
                state.token.raise_if_cancelled()
                self._report(state, ExecutionStatus.RUNNING, self.describe(step))
                await self._execute_step(step, state)
        finally:
            state.stack.pop()

    async def _execute_step(self, step: Step, state: _RunState) -> None:
        if isinstance(step, ScenarioRefStep):
            sub = self.store.get_scenario(step.scenario_id)
            if sub is None:
                raise BrokenReference(step.scenario_id)
            # Leaf steps inside the sub-scenario advance the counter
            await self._execute_scenario(sub, state)
            return

        self.logger.debug(f"Executing step {state.executed + 1}/{state.total_steps}: {self.describe(step)}")
        await self._step_handlers[type(step)](step, state)
        state.executed += 1

    # Step handlers

    async def _handle_click(self, step: ClickStep, state: _RunState) -> None:
        await self.service.execute_click(step.position, step.button)

    async def _handle_keypress(self, step: KeypressStep, state: _RunState) -> None:
        await self.service.execute_keypress(step.key, list(step.modifiers))

    async def _handle_delay(self, step: DelayStep, state: _RunState) -> None:
        await state.token.sleep(step.ms)

    async def _handle_pixel_state(self, step: PixelStateStep, state: _RunState) -> None:
        self._report(state, ExecutionStatus.WAITING, self.describe(step))
        matched = await self.service.wait_for_pixel_state(
            step.position, step.color, step.threshold, self.pixel_wait_timeout_ms)
        if not matched:
            raise PixelConditionTimeout(
                f"Pixel at ({step.position.x:g}, {step.position.y:g}) did not match "
                f"within {self.pixel_wait_timeout_ms}ms")

    async def _handle_pixel_zone(self, step: PixelZoneStep, state: _RunState) -> None:
        self._report(state, ExecutionStatus.WAITING, self.describe(step))
        matched = await self.service.wait_for_pixel_zone(
            step.rect, step.color, step.threshold, self.pixel_wait_timeout_ms)
        if not matched:
            raise PixelConditionTimeout(
                f"No pixel in zone matched within {self.pixel_wait_timeout_ms}ms")

    def _report(self, state: _RunState, status: ExecutionStatus,
                description: Optional[str] = None, error: Optional[str] = None) -> None:
        if state.on_progress is None:
            return
        progress = ExecutionProgress(state.executed, state.total_steps, status, description, error)
        try:
            state.on_progress(progress)
        except Exception:
            self.logger.exception("Error in progress callback")
