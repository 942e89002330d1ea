"""
Scenario management.

This module wires the stores, undo history, recorder and execution engine
together from a system configuration and a native action service.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..interfaces import NativeActionService
from ..logging_config import get_logger
from .history import HistoryLog
from .models import Scenario, Settings
from .persistence import FileSystemStorage
from .player import CancellationToken, ExecutionEngine, ExecutionResult, ProgressCallback
from .recorder import RecordingStateMachine
from .settings import SettingsStore
from .store import ScenarioStore

if TYPE_CHECKING:
    from ..config_models import SystemConfig


class ScenarioManager:
    """Central manager for scenario operations."""

    def __init__(self, config: "SystemConfig", service: NativeActionService,
                 storage: Optional[FileSystemStorage] = None):
        """
        Initialize scenario manager.

        Args:
            config: System configuration
            service: Native action service used for recording and playback
            storage: Persistence backend; defaults to the configured data directory
        """
        self.config = config
        self.service = service
        self.storage = storage or FileSystemStorage(config.paths.data_dir)
        self.logger = get_logger(__name__)

        self.store = ScenarioStore(self.storage)
        self.settings = SettingsStore(
            self.storage,
            defaults=Settings(default_threshold=config.playback.default_threshold),
        )
        self.history = HistoryLog(self.store)
        self.recorder = RecordingStateMachine(self.store, self.settings, service)
        self.engine = ExecutionEngine(self.store, service, config.playback.pixel_wait_timeout_ms)

        self.logger.info(f"Initialized scenario manager with storage: {self.storage.base_path}")

    def load(self) -> None:
        """Load scenarios and settings from storage."""
        self.store.load()
        self.settings.load()

    # Playback operations

    async def play_scenario(self, scenario_id: str, token: Optional[CancellationToken] = None,
                            on_progress: Optional[ProgressCallback] = None) -> ExecutionResult:
        """
        Play a scenario by id or name.

        Raises:
            KeyError: If no scenario matches
        """
        scenario = self.find_scenario(scenario_id)
        if scenario is None:
            raise KeyError(f"Scenario {scenario_id} not found")

        result = await self.engine.run(scenario, token, on_progress)
        self.logger.info(f"Playback finished: {result.get_summary()}")
        return result

    # Scenario management

    def list_scenarios(self) -> List[Dict[str, Any]]:
        """List scenario summaries, most recently used first."""
        return [
            {**scenario.get_summary(), "flattened_steps": self.engine.count_total_steps(scenario)}
            for scenario in self.store.get_sorted_scenarios()
        ]

    def find_scenario(self, id_or_name: str) -> Optional[Scenario]:
        """Find a scenario by id, falling back to its name."""
        return self.store.find_scenario(id_or_name)
