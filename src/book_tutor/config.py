"""Scheduling constants and their user overrides."""
from dataclasses import dataclass, fields, replace
from enum import Enum

from book_tutor.settings import get_all_settings


class FollowUpGate(str, Enum):
    """What the mastery gate counts before a spaced follow-up may be queued."""

    CATEGORIES = "categories"
    CORRECT_ANSWERS = "correct_answers"


@dataclass(frozen=True)
class EngineConfig:
    base_delay_days: int = 3
    retry_delay_days: int = 2
    curveball_after_pass_days: int = 5
    mastery_gate: int = 8
    follow_up_gate: FollowUpGate = FollowUpGate.CATEGORIES
    lesson_mcq_cap: int = 3
    lesson_open_cap: int = 1
    review_mcq_cap: int = 6
    review_open_cap: int = 2
    stale_generation_seconds: int = 5 * 60
    poll_attempts: int = 40
    poll_interval_seconds: float = 1.0
    min_lesson_questions: int = 8


DEFAULT_CONFIG = EngineConfig()

_CASTS = {int: int, float: float, FollowUpGate: FollowUpGate}


def coerce_value(name: str, raw: str):
    """Convert a stored setting string to the type of the named config field."""
    field_types = {f.name: f.type for f in fields(EngineConfig)}
    if name not in field_types:
        raise ValueError(f"Unknown setting: {name}")
    cast = _CASTS[field_types[name]]
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from exc


def load_config(db_path: str) -> EngineConfig:
    """Defaults overlaid with any matching keys from user_settings."""
    known = {f.name for f in fields(EngineConfig)}
    overrides = {
        key: coerce_value(key, value)
        for key, value in get_all_settings(db_path).items()
        if key in known and value is not None
    }
    return replace(DEFAULT_CONFIG, **overrides)
