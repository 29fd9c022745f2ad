# tasks/ai_engine/types.py
"""
Record shapes the decision engine reads and produces.

The engine never persists these objects. Task records arrive from the
surrounding application (API payloads, the realtime feed, Celery jobs) and
are treated as read-only inputs.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import InvalidTaskInputError


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStage(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    # Construction-specific holding stages
    MATERIALS_PENDING = "materials-pending"
    CREW_ASSIGNED = "crew-assigned"
    INSPECTION_REQUIRED = "inspection-required"
    WEATHER_HOLD = "weather-hold"


class Weather(str, Enum):
    GOOD = "good"
    POOR = "poor"
    EXTREME = "extreme"


class SafetyLevel(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    CRITICAL = "critical"


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _parse_date(value: Any) -> Optional[datetime.date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidTaskInputError(f"Invalid due_date: {value!r}")


@dataclass(frozen=True)
class Material:
    """A material reference attached to a task."""

    name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> "Material":
        if isinstance(value, Material):
            return value
        if isinstance(value, dict):
            name = value.get("name")
            if not name:
                raise InvalidTaskInputError("Material entries require a name.")
            return cls(name=str(name), quantity=value.get("quantity"), unit=value.get("unit"))
        if isinstance(value, str) and value:
            return cls(name=value)
        raise InvalidTaskInputError(f"Unsupported material reference: {value!r}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.quantity is not None:
            data["quantity"] = self.quantity
        if self.unit is not None:
            data["unit"] = self.unit
        return data


@dataclass
class Task:
    """
    One unit of construction work.

    `stage` is kept as a plain string so that stages unknown to the rule
    engine still round-trip; the TaskStage values are the known vocabulary.
    """

    id: str
    title: str = ""
    priority: str = TaskPriority.MEDIUM.value
    stage: str = TaskStage.NOT_STARTED.value
    due_date: Optional[datetime.date] = None
    weather_dependent: bool = False
    inspection_required: bool = False
    trade_required: Optional[str] = None
    materials_needed: List[Material] = field(default_factory=list)
    estimated_hours: Optional[float] = None
    assigned_to: Optional[str] = None
    safety_notes: Optional[str] = None
    completion_notes: Optional[str] = None

    def __post_init__(self) -> None:
        self.priority = _enum_value(self.priority)
        self.stage = _enum_value(self.stage)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        task_id = data.get("id")
        if not task_id:
            raise InvalidTaskInputError("Task records require a non-empty id.")

        unknown = set(data) - set(TASK_FIELDS)
        if unknown:
            raise InvalidTaskInputError(f"Unknown task fields: {sorted(unknown)}")

        priority = _enum_value(data.get("priority") or TaskPriority.MEDIUM)
        if priority not in PRIORITY_VALUES:
            raise InvalidTaskInputError(f"Invalid priority: {priority!r}")

        hours = data.get("estimated_hours")
        if hours is not None:
            try:
                hours = float(hours)
            except (TypeError, ValueError):
                raise InvalidTaskInputError(f"Invalid estimated_hours: {hours!r}")
            if hours <= 0:
                raise InvalidTaskInputError("estimated_hours must be positive.")

        return cls(
            id=str(task_id),
            title=data.get("title") or "",
            priority=priority,
            stage=_enum_value(data.get("stage") or TaskStage.NOT_STARTED),
            due_date=_parse_date(data.get("due_date")),
            weather_dependent=bool(data.get("weather_dependent", False)),
            inspection_required=bool(data.get("inspection_required", False)),
            trade_required=data.get("trade_required") or None,
            materials_needed=[Material.from_value(m) for m in data.get("materials_needed") or []],
            estimated_hours=hours,
            assigned_to=data.get("assigned_to") or None,
            safety_notes=data.get("safety_notes"),
            completion_notes=data.get("completion_notes"),
        )

    def as_patch(self) -> Dict[str, Any]:
        """Shallow field mapping used as the base of a conflict resolution."""
        patch = {f.name: getattr(self, f.name) for f in fields(self)}
        patch["materials_needed"] = list(self.materials_needed)
        return patch

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        data = self.as_patch()
        data["due_date"] = self.due_date.isoformat() if self.due_date else None
        data["materials_needed"] = [m.to_dict() for m in self.materials_needed]
        return data


TASK_FIELDS: Tuple[str, ...] = tuple(f.name for f in fields(Task))
PRIORITY_VALUES = frozenset(p.value for p in TaskPriority)


@dataclass(frozen=True)
class CrewAvailability:
    available: bool = True
    skills: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MaterialAvailability:
    available: Tuple[str, ...] = ()
    pending: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkerContext:
    """
    Situational input supplied per call. Every field is optional and
    None means "unknown"; unknown values never disqualify a task.
    """

    weather: Optional[str] = None
    crew: Optional[CrewAvailability] = None
    materials: Optional[MaterialAvailability] = None
    safety_level: Optional[str] = None
    time_of_day: Optional[int] = None
    equipment_available: Optional[Tuple[str, ...]] = None
    current_location: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "weather", _enum_value(self.weather))
        object.__setattr__(self, "safety_level", _enum_value(self.safety_level))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkerContext":
        if not data:
            return cls()

        crew = data.get("crew")
        materials = data.get("materials")
        equipment = data.get("equipment_available")
        time_of_day = data.get("time_of_day")
        if time_of_day is not None:
            try:
                time_of_day = int(time_of_day)
            except (TypeError, ValueError):
                raise InvalidTaskInputError(f"Invalid time_of_day: {time_of_day!r}")
            if not 0 <= time_of_day <= 23:
                raise InvalidTaskInputError("time_of_day must be between 0 and 23.")

        return cls(
            weather=data.get("weather"),
            crew=CrewAvailability(
                available=bool(crew.get("available", True)),
                skills=tuple(crew.get("skills") or ()),
            ) if crew is not None else None,
            materials=MaterialAvailability(
                available=tuple(materials.get("available") or ()),
                pending=tuple(materials.get("pending") or ()),
            ) if materials is not None else None,
            safety_level=data.get("safety_level"),
            time_of_day=time_of_day,
            equipment_available=tuple(equipment) if equipment is not None else None,
            current_location=data.get("current_location"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Known fields only, None values omitted. Used for cache keys and prompts."""
        data: Dict[str, Any] = {}
        if self.weather is not None:
            data["weather"] = self.weather
        if self.crew is not None:
            data["crew"] = {"available": self.crew.available, "skills": list(self.crew.skills)}
        if self.materials is not None:
            data["materials"] = {
                "available": list(self.materials.available),
                "pending": list(self.materials.pending),
            }
        if self.safety_level is not None:
            data["safety_level"] = self.safety_level
        if self.time_of_day is not None:
            data["time_of_day"] = self.time_of_day
        if self.equipment_available is not None:
            data["equipment_available"] = list(self.equipment_available)
        if self.current_location is not None:
            data["current_location"] = self.current_location
        return data


@dataclass(frozen=True)
class TaskPrediction:
    predicted_completion: datetime.datetime
    risk_factors: Tuple[str, ...] = ()
    recommended_actions: Tuple[str, ...] = ()
    confidence_score: float = 1.0
    bottleneck_likelihood: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predicted_completion": self.predicted_completion.isoformat(),
            "risk_factors": list(self.risk_factors),
            "recommended_actions": list(self.recommended_actions),
            "confidence_score": self.confidence_score,
            "bottleneck_likelihood": self.bottleneck_likelihood,
        }


@dataclass
class ConflictResolution:
    resolved_task: Dict[str, Any]
    reasoning: str
    confidence: float
    requires_manual_review: bool = False

    def copy(self) -> "ConflictResolution":
        patch = dict(self.resolved_task)
        if isinstance(patch.get("materials_needed"), list):
            patch["materials_needed"] = list(patch["materials_needed"])
        return ConflictResolution(
            resolved_task=patch,
            reasoning=self.reasoning,
            confidence=self.confidence,
            requires_manual_review=self.requires_manual_review,
        )

    def to_dict(self) -> Dict[str, Any]:
        patch = dict(self.resolved_task)
        if isinstance(patch.get("due_date"), datetime.date):
            patch["due_date"] = patch["due_date"].isoformat()
        if patch.get("materials_needed") is not None:
            patch["materials_needed"] = [
                Material.from_value(m).to_dict() for m in patch["materials_needed"]
            ]
        return {
            "resolved_task": patch,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "requires_manual_review": self.requires_manual_review,
        }


@dataclass(frozen=True)
class AIDecision:
    """
    A cached decision with provenance.

    `fallback_used` records whether the rule engine produced the payload
    because the primary path gave no timely answer.
    """

    decision: Any
    reasoning: str
    confidence: float
    fallback_used: bool
    timestamp: datetime.datetime
