"""
In-memory scenario store.

The store owns the list of scenarios and the UI selection. Every mutating
call replaces the affected scenario with an updated copy, persists the whole
list and then notifies subscribers synchronously.
"""

from typing import Any, Callable, List, Optional, Protocol

from ..logging_config import get_logger
from .models import DEFAULT_SCENARIO_NAME, Scenario, Step, now_ms

Listener = Callable[[], None]

_UNSET: Any = object()


class ScenarioPersistence(Protocol):
    def load_scenarios(self) -> List[Scenario]: ...

    def save_scenarios(self, scenarios: List[Scenario]) -> None: ...


class Observable:
    """Explicit observer list with synchronous notification."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._observable_logger = get_logger(__name__)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                self._observable_logger.exception(f"Error in {type(self).__name__} listener")


class ScenarioStore(Observable):
    """CRUD over scenarios and steps with auto-persist after every mutation."""

    def __init__(self, storage: Optional[ScenarioPersistence] = None,
                 clock: Callable[[], int] = now_ms):
        """
        Initialize the store.

        Args:
            storage: Optional persistence backend; None keeps everything in memory
            clock: Source of Unix millisecond timestamps
        """
        super().__init__()
        self.storage = storage
        self.clock = clock
        self.logger = get_logger(__name__)

        self._scenarios: List[Scenario] = []
        self._selected_scenario_id: Optional[str] = None
        self._selected_step_index: Optional[int] = None

    # State

    @property
    def scenarios(self) -> List[Scenario]:
        """Scenarios in storage (insertion) order."""
        return list(self._scenarios)

    @property
    def selected_scenario_id(self) -> Optional[str]:
        return self._selected_scenario_id

    @property
    def selected_step_index(self) -> Optional[int]:
        return self._selected_step_index

    def _set_state(self, scenarios: List[Scenario] = _UNSET, selected_scenario_id: Optional[str] = _UNSET,
                   selected_step_index: Optional[int] = _UNSET, persist: bool = True) -> None:
        if scenarios is not _UNSET:
            self._scenarios = scenarios
        if selected_scenario_id is not _UNSET:
            self._selected_scenario_id = selected_scenario_id
        if selected_step_index is not _UNSET:
            self._selected_step_index = selected_step_index

        if persist:
            self._persist()
        self._notify()

    def _persist(self) -> None:
        if self.storage is None:
            return
        try:
            self.storage.save_scenarios(list(self._scenarios))
        except OSError as e:
            self.logger.error(f"Failed to save scenarios: {e}")

    def _find_index(self, scenario_id: str) -> int:
        for i, scenario in enumerate(self._scenarios):
            if scenario.id == scenario_id:
                return i
        return -1

    def _replace(self, index: int, scenario: Scenario) -> List[Scenario]:
        updated = list(self._scenarios)
        updated[index] = scenario
        return updated

    # Initialization

    def load(self) -> None:
        """Load scenarios from storage, replacing the current list."""
        scenarios = self.storage.load_scenarios() if self.storage is not None else []
        self.logger.info(f"Loaded {len(scenarios)} scenario(s)")
        self._set_state(scenarios=list(scenarios), selected_scenario_id=None,
                        selected_step_index=None, persist=False)

    def save(self) -> None:
        """Persist the current scenarios."""
        self._persist()

    # Selection

    def select_scenario(self, scenario_id: Optional[str]) -> None:
        """Select a scenario; the step selection is reset."""
        self._set_state(selected_scenario_id=scenario_id, selected_step_index=None, persist=False)

    def select_step(self, index: Optional[int]) -> None:
        self._set_state(selected_step_index=index, persist=False)

    # Scenario CRUD

    def create_scenario(self, name: str = DEFAULT_SCENARIO_NAME) -> Scenario:
        """Create an empty scenario and select it."""
        now = self.clock()
        scenario = Scenario(name=name.strip() or DEFAULT_SCENARIO_NAME, created_at=now, last_used_at=now)

        self._set_state(
            scenarios=self._scenarios + [scenario],
            selected_scenario_id=scenario.id,
            selected_step_index=None,
        )
        self.logger.info(f"Created scenario {scenario.name} ({scenario.id})")
        return scenario

    def rename_scenario(self, scenario_id: str, name: str) -> None:
        index = self._find_index(scenario_id)
        if index == -1:
            return

        scenario = self._scenarios[index].model_copy(update={"name": name.strip()})
        self._set_state(scenarios=self._replace(index, scenario))

    def delete_scenario(self, scenario_id: str) -> Optional[Scenario]:
        """
        Delete a scenario.

        Returns:
            The deleted scenario, or None if it did not exist
        """
        index = self._find_index(scenario_id)
        if index == -1:
            return None

        deleted = self._scenarios[index]
        remaining = [s for s in self._scenarios if s.id != scenario_id]

        selected_id = self._selected_scenario_id
        selected_step = self._selected_step_index
        if selected_id == scenario_id:
            selected_id = remaining[min(index, len(remaining) - 1)].id if remaining else None
            selected_step = None

        self._set_state(scenarios=remaining, selected_scenario_id=selected_id,
                        selected_step_index=selected_step)
        self.logger.info(f"Deleted scenario {deleted.name} ({scenario_id})")
        return deleted

    def touch_scenario(self, scenario_id: str) -> None:
        """Mark a scenario as used now."""
        index = self._find_index(scenario_id)
        if index == -1:
            return

        scenario = self._scenarios[index].model_copy(update={"last_used_at": self.clock()})
        self._set_state(scenarios=self._replace(index, scenario))

    # Step operations

    def add_step(self, scenario_id: str, step: Step, after_index: Optional[int] = None) -> Optional[int]:
        """
        Insert a step after ``after_index``, or append it.

        Args:
            scenario_id: Target scenario
            step: Step to insert
            after_index: Index the step goes after; None appends, -1 inserts at the front

        Returns:
            Index of the inserted step, or None if the scenario does not exist
        """
        index = self._find_index(scenario_id)
        if index == -1:
            return None

        length = len(self._scenarios[index].steps)
        position = length if after_index is None else after_index + 1
        return self.insert_step(scenario_id, position, step)

    def insert_step(self, scenario_id: str, position: int, step: Step) -> Optional[int]:
        """
        Insert a step at ``position`` (clamped to the step list); 0 inserts at the front.

        Returns:
            Index of the inserted step, or None if the scenario does not exist
        """
        index = self._find_index(scenario_id)
        if index == -1:
            return None

        scenario = self._scenarios[index]
        steps = list(scenario.steps)
        position = max(0, min(position, len(steps)))
        steps.insert(position, step)

        updated = self._replace(index, scenario.model_copy(update={"steps": tuple(steps)}))
        if self._selected_scenario_id == scenario_id:
            self._set_state(scenarios=updated, selected_step_index=position)
        else:
            self._set_state(scenarios=updated)
        return position

    def update_step(self, scenario_id: str, step_index: int, step: Step) -> None:
        index = self._find_index(scenario_id)
        if index == -1:
            return

        scenario = self._scenarios[index]
        if not 0 <= step_index < len(scenario.steps):
            return

        steps = list(scenario.steps)
        steps[step_index] = step
        self._set_state(scenarios=self._replace(index, scenario.model_copy(update={"steps": tuple(steps)})))

    def remove_step(self, scenario_id: str, step_index: int) -> Optional[Step]:
        """
        Remove a step.

        Returns:
            The removed step, or None if the scenario or index does not exist
        """
        index = self._find_index(scenario_id)
        if index == -1:
            return None

        scenario = self._scenarios[index]
        if not 0 <= step_index < len(scenario.steps):
            return None

        removed = scenario.steps[step_index]
        steps = scenario.steps[:step_index] + scenario.steps[step_index + 1:]
        updated = self._replace(index, scenario.model_copy(update={"steps": steps}))

        selected = self._selected_step_index
        if self._selected_scenario_id == scenario_id and selected is not None:
            if selected >= len(steps):
                selected = len(steps) - 1 if steps else None
            elif selected > step_index:
                selected -= 1

        self._set_state(scenarios=updated, selected_step_index=selected)
        return removed

    def swap_steps(self, scenario_id: str, index_a: int, index_b: int) -> None:
        """Exchange two steps; out-of-range indices are ignored."""
        index = self._find_index(scenario_id)
        if index == -1:
            return

        scenario = self._scenarios[index]
        length = len(scenario.steps)
        if not (0 <= index_a < length and 0 <= index_b < length):
            return

        steps = list(scenario.steps)
        steps[index_a], steps[index_b] = steps[index_b], steps[index_a]
        updated = self._replace(index, scenario.model_copy(update={"steps": tuple(steps)}))

        selected = self._selected_step_index
        if self._selected_scenario_id == scenario_id:
            if selected == index_a:
                selected = index_b
            elif selected == index_b:
                selected = index_a

        self._set_state(scenarios=updated, selected_step_index=selected)

    # Queries

    def get_sorted_scenarios(self) -> List[Scenario]:
        """Scenarios ordered by last use, most recent first."""
        return sorted(self._scenarios, key=lambda s: s.last_used_at, reverse=True)

    def get_selected_scenario(self) -> Optional[Scenario]:
        if self._selected_scenario_id is None:
            return None
        return self.get_scenario(self._selected_scenario_id)

    def get_scenario(self, scenario_id: str) -> Optional[Scenario]:
        for scenario in self._scenarios:
            if scenario.id == scenario_id:
                return scenario
        return None

    def find_scenario(self, id_or_name: str) -> Optional[Scenario]:
        """Look a scenario up by id, falling back to an exact name match."""
        scenario = self.get_scenario(id_or_name)
        if scenario is not None:
            return scenario

        matching = [s for s in self._scenarios if s.name == id_or_name]
        if len(matching) > 1:
            self.logger.warning(f"Multiple scenarios found with name '{id_or_name}', using first match")
        return matching[0] if matching else None
