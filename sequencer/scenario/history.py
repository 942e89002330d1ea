"""Bounded undo log for step deletions."""

from collections import deque
from typing import Callable, Deque, Optional

from ..logging_config import get_logger
from .models import HistoryEntry, describe_step
from .store import Observable, ScenarioStore

DEFAULT_CAPACITY = 50


class HistoryLog(Observable):
    """Undo stack over ScenarioStore step deletions.

    Only deletions are recorded. When the stack is full the oldest entry is
    evicted.
    """

    def __init__(self, store: ScenarioStore, capacity: int = DEFAULT_CAPACITY,
                 clock: Optional[Callable[[], int]] = None):
        super().__init__()
        if capacity <= 0:
            raise ValueError("History capacity must be positive")

        self.store = store
        self.capacity = capacity
        self.clock = clock or store.clock
        self.logger = get_logger(__name__)
        self._entries: Deque[HistoryEntry] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def delete_step(self, scenario_id: str, step_index: int) -> bool:
        """
        Delete a step and record it for undo.

        Returns:
            True if a step was deleted
        """
        step = self.store.remove_step(scenario_id, step_index)
        if step is None:
            return False

        self._entries.append(HistoryEntry(
            scenario_id=scenario_id,
            step_index=step_index,
            step=step,
            timestamp=self.clock(),
        ))
        self.logger.debug(f"Recorded deletion of step {step_index} in {scenario_id}")
        self._notify()
        return True

    def undo(self) -> bool:
        """
        Restore the most recently deleted step.

        Returns:
            False if there is nothing to undo or the scenario no longer exists
        """
        if not self._entries:
            return False

        entry = self._entries.pop()
        if self.store.get_scenario(entry.scenario_id) is None:
            self.logger.info(f"Cannot undo: scenario {entry.scenario_id} no longer exists")
            self._notify()
            return False

        position = self.store.insert_step(entry.scenario_id, entry.step_index, entry.step)
        self.store.select_scenario(entry.scenario_id)
        self.store.select_step(position)
        self._notify()
        return True

    def can_undo(self) -> bool:
        return bool(self._entries)

    def undo_description(self) -> Optional[str]:
        if not self._entries:
            return None
        entry = self._entries[-1]
        return f"Restore deleted {describe_step(entry.step, self.store.get_scenario)}"

    def clear(self) -> None:
        self._entries.clear()
        self._notify()
