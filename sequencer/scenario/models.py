"""
Data models for scenarios and their steps.

This module defines the screen primitives, the step variants a scenario is
made of, the scenario itself and the undo history entry. Field aliases match
the JSON format shared with the helper process and the scenarios file.
"""

import time
import uuid
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

MouseButton = Literal["left", "right"]
Modifier = Literal["ctrl", "alt", "shift", "cmd"]
# Integer coordinates stay integers on the wire
Number = Union[int, float]

# Largest possible Euclidean distance between two RGB colors: sqrt(3 * 255^2)
MAX_THRESHOLD = 441.68

DEFAULT_SCENARIO_NAME = "Untitled Scenario"


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def new_scenario_id() -> str:
    """Generate a unique scenario identifier."""
    return str(uuid.uuid4())


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary using wire field names."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Point(_WireModel):
    """Screen coordinates."""

    x: Number
    y: Number


class Rect(_WireModel):
    """Screen rectangle."""

    x: Number
    y: Number
    width: Number = Field(..., ge=0)
    height: Number = Field(..., ge=0)


class RGB(_WireModel):
    """24-bit color."""

    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)


class PermissionStatus(_WireModel):
    """macOS permissions required by the helper."""

    accessibility: bool
    screen_recording: bool = Field(..., alias="screenRecording")

    @property
    def all_granted(self) -> bool:
        return self.accessibility and self.screen_recording


class ClickStep(_WireModel):
    """Mouse click at a fixed position."""

    type: Literal["click"] = "click"
    position: Point
    button: MouseButton = "left"


class KeypressStep(_WireModel):
    """Key press with modifiers held."""

    type: Literal["keypress"] = "keypress"
    key: str = Field(..., min_length=1)
    modifiers: Tuple[Modifier, ...] = ()


class DelayStep(_WireModel):
    """Fixed wait."""

    type: Literal["delay"] = "delay"
    ms: int = Field(..., ge=0)


class PixelStateStep(_WireModel):
    """Wait until one pixel reaches a color."""

    type: Literal["pixel-state"] = "pixel-state"
    position: Point
    color: RGB
    threshold: float = Field(..., ge=0, le=MAX_THRESHOLD)


class PixelZoneStep(_WireModel):
    """Wait until any pixel of a zone reaches a color."""

    type: Literal["pixel-zone"] = "pixel-zone"
    rect: Rect
    color: RGB
    threshold: float = Field(..., ge=0, le=MAX_THRESHOLD)


class ScenarioRefStep(_WireModel):
    """Run another scenario, looked up by id at execution time."""

    type: Literal["scenario-ref"] = "scenario-ref"
    scenario_id: str = Field(..., alias="scenarioId")


Step = Annotated[
    Union[ClickStep, KeypressStep, DelayStep, PixelStateStep, PixelZoneStep, ScenarioRefStep],
    Field(discriminator="type"),
]

LEAF_STEP_TYPES = (ClickStep, KeypressStep, DelayStep, PixelStateStep, PixelZoneStep)

_step_adapter: TypeAdapter = TypeAdapter(Step)


def parse_step(data: Dict[str, Any]) -> Step:
    """Create a step from its JSON dictionary."""
    return _step_adapter.validate_python(data)


class Scenario(_WireModel):
    """Named, ordered sequence of steps.

    Scenarios are immutable; the store replaces them with updated copies.
    """

    id: str = Field(default_factory=new_scenario_id)
    name: str = Field(default=DEFAULT_SCENARIO_NAME)
    steps: Tuple[Step, ...] = ()
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    last_used_at: int = Field(default_factory=now_ms, alias="lastUsedAt")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    def get_step(self, index: int) -> Optional[Step]:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def referenced_ids(self) -> List[str]:
        """Ids of the scenarios this scenario references directly."""
        return [step.scenario_id for step in self.steps if isinstance(step, ScenarioRefStep)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scenario":
        """Create scenario from dictionary."""
        return cls.model_validate(data)

    def get_summary(self) -> Dict[str, Any]:
        """Get scenario summary information."""
        return {
            "id": self.id,
            "name": self.name,
            "total_steps": len(self.steps),
            "references": self.referenced_ids(),
            "created_at": self.created_at,
            "last_used_at": self.last_used_at,
        }


class HistoryEntry(_WireModel):
    """A deleted step, kept so the deletion can be undone."""

    scenario_id: str = Field(..., alias="scenarioId")
    step_index: int = Field(..., alias="stepIndex", ge=0)
    step: Step
    timestamp: int = Field(default_factory=now_ms)


class Settings(BaseModel):
    """User preferences persisted next to the scenarios."""

    model_config = ConfigDict(populate_by_name=True)

    default_threshold: float = Field(default=15, alias="defaultThreshold", ge=0, le=MAX_THRESHOLD)
    poll_interval_ms: int = Field(default=50, alias="pollIntervalMs", gt=0)
    last_overlay_position: Optional[Point] = Field(default=None, alias="lastOverlayPosition")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


ScenarioLookup = Callable[[str], Optional[Scenario]]


def _format_number(value: float) -> str:
    return f"{value:g}"


def describe_step(step: Step, lookup: Optional[ScenarioLookup] = None) -> str:
    """
    Describe a step for display.

    Args:
        step: Step to describe
        lookup: Optional scenario lookup used to name referenced scenarios

    Returns:
        One-line description
    """
    if isinstance(step, ClickStep):
        return (f"Click {step.button} at "
                f"({_format_number(step.position.x)}, {_format_number(step.position.y)})")
    if isinstance(step, KeypressStep):
        mods = "+".join(step.modifiers) + "+" if step.modifiers else ""
        return f"Press {mods}{step.key}"
    if isinstance(step, DelayStep):
        return f"Wait {step.ms}ms"
    if isinstance(step, PixelStateStep):
        return (f"Wait for pixel at "
                f"({_format_number(step.position.x)}, {_format_number(step.position.y)})")
    if isinstance(step, PixelZoneStep):
        return "Wait for color in zone"
    if isinstance(step, ScenarioRefStep):
        sub = lookup(step.scenario_id) if lookup else None
        return f'Run "{sub.name if sub else "unknown"}"'
    return "Unknown step"
