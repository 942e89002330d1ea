"""
Scenario recording and playback for the sequencer.

This package holds the scenario data model, the stores and undo history, the
recording state machine and the execution engine.
"""

from .history import HistoryLog
from .manager import ScenarioManager
from .models import (
    RGB,
    ClickStep,
    DelayStep,
    HistoryEntry,
    KeypressStep,
    PixelStateStep,
    PixelZoneStep,
    Point,
    Rect,
    Scenario,
    ScenarioRefStep,
    Settings,
    Step,
    describe_step,
)
from .persistence import FileSystemStorage
from .player import (
    CancellationToken,
    ExecutionEngine,
    ExecutionProgress,
    ExecutionResult,
    ExecutionStatus,
)
from .recorder import RecordingStateMachine
from .settings import SettingsStore
from .store import ScenarioStore

__all__ = [
    "RGB",
    "ClickStep",
    "DelayStep",
    "HistoryEntry",
    "KeypressStep",
    "PixelStateStep",
    "PixelZoneStep",
    "Point",
    "Rect",
    "Scenario",
    "ScenarioRefStep",
    "Settings",
    "Step",
    "describe_step",
    "FileSystemStorage",
    "CancellationToken",
    "ExecutionEngine",
    "ExecutionProgress",
    "ExecutionResult",
    "ExecutionStatus",
    "HistoryLog",
    "RecordingStateMachine",
    "ScenarioManager",
    "SettingsStore",
    "ScenarioStore",
]
