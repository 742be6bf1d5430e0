# ABOUTME: Defines canonical records shared by the ability, mastery and interest engines.
# ABOUTME: Centralizes item, response, ability, skill, interest and recommendation schemas.

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

THETA_MIN = -3.0
THETA_MAX = 3.0
DIFFICULTY_RANGE = (-3.0, 3.0)
DISCRIMINATION_RANGE = (0.5, 2.5)
DEFAULT_GUESSING = 0.25
MAX_GUESSING = 0.95


class InvalidItemError(ValueError):
    """Raised when an item record cannot be used for IRT estimation."""


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    try:
        return tuple(str(v) for v in value if v is not None and str(v).strip())
    except TypeError:
        return ()


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class _Record:
    """Mixin giving frozen dataclasses a verbatim dict round-trip."""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
            elif isinstance(value, tuple):
                data[key] = list(value)
        return data


@dataclass(frozen=True)
class Item(_Record):
    """Question record with 3PL parameters; the content payload is opaque."""

    item_id: str
    subject_id: str
    difficulty: float
    discrimination: float
    guessing: float = DEFAULT_GUESSING
    skill_ids: Tuple[str, ...] = ()
    category: Optional[str] = None
    content: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Item":
        """
        Validate a raw item-bank row and build an Item.

        Missing or non-finite IRT parameters are rejected. Values that are
        physically meaningful but outside the nominal domain are clamped.
        """
        item_id = record.get("item_id", record.get("id"))
        if item_id is None or str(item_id).strip() == "":
            raise InvalidItemError("Item record is missing an item_id.")
        subject_id = record.get("subject_id")
        if subject_id is None or str(subject_id).strip() == "":
            raise InvalidItemError(f"Item {item_id} is missing a subject_id.")

        b = _finite(record.get("difficulty"))
        a = _finite(record.get("discrimination", 1.0))
        raw_c = record.get("guessing")
        c = DEFAULT_GUESSING if raw_c is None else _finite(raw_c)
        if b is None:
            raise InvalidItemError(f"Item {item_id} has a non-numeric difficulty.")
        if a is None or a <= 0:
            raise InvalidItemError(f"Item {item_id} needs a positive discrimination, got {record.get('discrimination')!r}.")
        if c is None or not (0.0 <= c < 1.0):
            raise InvalidItemError(f"Item {item_id} needs guessing in [0, 1), got {raw_c!r}.")

        content = record.get("content") or {}
        category = record.get("category")
        return cls(
            item_id=str(item_id),
            subject_id=str(subject_id),
            difficulty=clamp(b, *DIFFICULTY_RANGE),
            discrimination=clamp(a, *DISCRIMINATION_RANGE),
            guessing=min(c, MAX_GUESSING),
            skill_ids=_as_tuple(record.get("skill_ids")),
            category=None if category is None else str(category),
            content=dict(content) if isinstance(content, Mapping) else {"payload": content},
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Item":
        return cls.from_record(data)


@dataclass(frozen=True)
class ResponseEvent(_Record):
    """Canonical response row produced by the presentation layer."""

    item_id: str
    subject_id: str
    correct: bool
    time_taken_seconds: float
    voluntary: bool = False
    timestamp: Optional[datetime] = None
    skill_ids: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResponseEvent":
        return cls(
            item_id=str(data["item_id"]),
            subject_id=str(data["subject_id"]),
            correct=bool(data["correct"]),
            time_taken_seconds=float(data.get("time_taken_seconds") or 0.0),
            voluntary=bool(data.get("voluntary", False)),
            timestamp=_parse_timestamp(data.get("timestamp")),
            skill_ids=_as_tuple(data.get("skill_ids")),
        )


@dataclass(frozen=True)
class Prior(_Record):
    """Normal prior over theta."""

    mean: float = 0.0
    sd: float = 1.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Prior":
        return cls(mean=float(data["mean"]), sd=float(data["sd"]))


@dataclass(frozen=True)
class AbilityState(_Record):
    """Ability estimate for one subject, recomputed after every response."""

    theta: float = 0.0
    standard_error: float = 1.0
    confidence: float = 0.0
    method: str = "prior"
    n_responses: int = 0
    posterior_mean: Optional[float] = None
    posterior_sd: Optional[float] = None
    posterior_mode: Optional[float] = None
    converged: bool = False
    iterations: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AbilityState":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class SkillState(_Record):
    """BKT mastery state for one (student, skill)."""

    skill_id: str
    p_know: float
    attempts: int = 0
    correct_count: int = 0
    is_mastered: bool = False
    needs_practice: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SkillState":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class Interaction(_Record):
    time_taken_seconds: float
    correct: bool
    voluntary: bool = False
    completed: bool = True
    timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Interaction":
        return cls(
            time_taken_seconds=float(data.get("time_taken_seconds") or 0.0),
            correct=bool(data.get("correct", False)),
            voluntary=bool(data.get("voluntary", False)),
            completed=bool(data.get("completed", True)),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )

    @classmethod
    def from_response(cls, event: ResponseEvent) -> "Interaction":
        return cls(
            time_taken_seconds=event.time_taken_seconds,
            correct=event.correct,
            voluntary=event.voluntary,
            completed=True,
            timestamp=event.timestamp,
        )


@dataclass(frozen=True)
class InterestProfile(_Record):
    """Behavioural interest profile for one (student, subject)."""

    subject_id: str
    interest_score: float = 0.0
    time_spent: float = 0.0
    questions_attempted: int = 0
    voluntary_attempts: int = 0
    completed_questions: int = 0
    correct_answers: int = 0
    total_questions: int = 0
    completion_rate: float = 0.0
    avg_time_per_question: float = 0.0
    accuracy: float = 0.0
    interactions: Tuple[Interaction, ...] = ()

    @property
    def has_data(self) -> bool:
        return self.questions_attempted > 0

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["interactions"] = [i.to_dict() for i in self.interactions]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InterestProfile":
        names = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in names}
        values["interactions"] = tuple(Interaction.from_dict(i) for i in data.get("interactions", ()))
        return cls(**values)


@dataclass(frozen=True)
class SubjectScore(_Record):
    """Read-only recommendation output for one subject."""

    subject_id: str
    category: str
    ability_score: float
    interest_score: float
    potential_score: float
    recommendation_score: float
    confidence: float
    ability_available: bool
    interest_available: bool
    potential_available: bool
    attempts: int = 0
    rank: int = 0
    fit_type: str = "balanced_fit"
    reasoning: Mapping[str, str] = field(default_factory=dict)
    components: Mapping[str, float] = field(default_factory=dict)

    @property
    def data_available(self) -> bool:
        return self.ability_available or self.interest_available

    def ranked(self, rank: int) -> "SubjectScore":
        return replace(self, rank=rank)
