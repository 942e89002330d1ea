"""JSON file persistence for scenarios and settings."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, List

from pydantic import ValidationError

from ..logging_config import get_logger
from .models import Scenario, Settings

SCENARIOS_FILE = "scenarios.json"
SETTINGS_FILE = "settings.json"


class FileSystemStorage:
    """Loads and saves the scenarios and settings documents.

    Each save rewrites the whole document; the last write wins.
    """

    def __init__(self, base_path: Path):
        """
        Initialize file system storage.

        Args:
            base_path: Directory holding scenarios.json and settings.json
        """
        self.base_path = Path(base_path)
        self.logger = get_logger(__name__)

    @property
    def scenarios_file(self) -> Path:
        return self.base_path / SCENARIOS_FILE

    @property
    def settings_file(self) -> Path:
        return self.base_path / SETTINGS_FILE

    def load_scenarios(self) -> List[Scenario]:
        """
        Load scenarios from disk.

        Returns:
            Stored scenarios, or an empty list if the file is missing or unreadable
        """
        data = self._read_json(self.scenarios_file)
        if data is None:
            return []
        if not isinstance(data, list):
            self.logger.error(f"Ignoring {self.scenarios_file}: expected a JSON array")
            return []

        scenarios = []
        for item in data:
            try:
                scenarios.append(Scenario.from_dict(item))
            except ValidationError as e:
                self.logger.error(f"Skipping invalid scenario in {self.scenarios_file}: {e}")
        return scenarios

    def save_scenarios(self, scenarios: List[Scenario]) -> None:
        """Save scenarios to disk."""
        self._write_json(self.scenarios_file, [s.to_dict() for s in scenarios])

    def load_settings(self) -> Settings:
        """
        Load settings from disk.

        Returns:
            Stored settings merged over defaults
        """
        data = self._read_json(self.settings_file)
        if not isinstance(data, dict):
            return Settings()
        try:
            return Settings.model_validate(data)
        except ValidationError as e:
            self.logger.error(f"Invalid settings in {self.settings_file}, using defaults: {e}")
            return Settings()

    def save_settings(self, settings: Settings) -> None:
        """Save settings to disk."""
        self._write_json(self.settings_file, settings.to_dict())

    def _read_json(self, file_path: Path) -> Any:
        if not file_path.exists():
            return None
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load {file_path}: {e}")
            return None

    def _write_json(self, file_path: Path, data: Any) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)

        # Write to a sibling temp file and rename so readers never see a partial file
        fd, tmp_name = tempfile.mkstemp(dir=self.base_path, prefix=f".{file_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, file_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
