"""User preference store."""

from typing import Any, Optional, Protocol

from ..logging_config import get_logger
from .models import Point, Settings
from .store import Observable


class SettingsPersistence(Protocol):
    def load_settings(self) -> Settings: ...

    def save_settings(self, settings: Settings) -> None: ...


class SettingsStore(Observable):
    """Holds the current Settings and persists them on every change."""

    def __init__(self, storage: Optional[SettingsPersistence] = None,
                 defaults: Optional[Settings] = None):
        """
        Initialize the settings store.

        Args:
            storage: Optional persistence backend
            defaults: Settings used before load() and by reset()
        """
        super().__init__()
        self.storage = storage
        self.defaults = defaults or Settings()
        self.logger = get_logger(__name__)
        self._settings = self.defaults.model_copy()

    @property
    def settings(self) -> Settings:
        return self._settings.model_copy()

    @property
    def default_threshold(self) -> float:
        return self._settings.default_threshold

    @property
    def poll_interval_ms(self) -> int:
        return self._settings.poll_interval_ms

    @property
    def last_overlay_position(self) -> Optional[Point]:
        return self._settings.last_overlay_position

    def load(self) -> Settings:
        """Load settings from storage; missing fields take the store defaults."""
        if self.storage is not None:
            stored = self.storage.load_settings()
            merged = self.defaults.model_dump()
            merged.update(stored.model_dump(exclude_unset=True))
            self._settings = Settings.model_validate(merged)
        self._notify()
        return self.settings

    def update(self, **fields: Any) -> Settings:
        """
        Update one or more settings.

        Args:
            **fields: Settings attributes by their Python name

        Returns:
            The updated settings

        Raises:
            ValueError: If a field is unknown
            pydantic.ValidationError: If a value is invalid
        """
        unknown = set(fields) - set(Settings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        data = self._settings.model_dump()
        data.update(fields)
        self._commit(Settings.model_validate(data))
        return self.settings

    def set_last_overlay_position(self, position: Point) -> None:
        self.update(last_overlay_position=position)

    def reset(self) -> None:
        """Restore the default settings."""
        self._commit(self.defaults.model_copy())

    def _commit(self, settings: Settings) -> None:
        self._settings = settings
        if self.storage is not None:
            try:
                self.storage.save_settings(settings)
            except OSError as e:
                self.logger.error(f"Failed to save settings: {e}")
        self._notify()
