from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

STAT_MIN = 0
STAT_MAX = 100
BOUNDED_FIELDS = ("security", "hype", "tech_level", "decentralization")
UNBOUNDED_FIELDS = ("funds", "users")
DELTA_FIELDS = UNBOUNDED_FIELDS + BOUNDED_FIELDS


class StatVector(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )

    funds: int = Field(ge=0)
    users: int = Field(ge=0)
    security: int = Field(ge=STAT_MIN, le=STAT_MAX)
    hype: int = Field(ge=STAT_MIN, le=STAT_MAX)
    tech_level: int = Field(ge=STAT_MIN, le=STAT_MAX)
    decentralization: int = Field(ge=STAT_MIN, le=STAT_MAX)
    era: int = Field(default=1, ge=1)


class StatsDelta(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    funds: int = 0
    users: int = 0
    security: int = 0
    hype: int = 0
    tech_level: int = 0
    decentralization: int = 0

    def is_empty(self) -> bool:
        return all(getattr(self, name) == 0 for name in DELTA_FIELDS)


BASELINE_STATS = StatVector(
    funds=10000,
    users=1,
    security=50,
    hype=10,
    tech_level=10,
    decentralization=0,
    era=1,
)


def clamp(value: int, low: int = STAT_MIN, high: int = STAT_MAX) -> int:
    return max(low, min(high, value))


def combine_deltas(*deltas: StatsDelta | None) -> StatsDelta:
    totals = {name: 0 for name in DELTA_FIELDS}
    for delta in deltas:
        if delta is None:
            continue
        for name in DELTA_FIELDS:
            totals[name] += getattr(delta, name)
    return StatsDelta(**totals)


def apply_delta(current: StatVector, delta: StatsDelta | None) -> StatVector:
    """Add ``delta`` to ``current`` and clamp each field once.

    Callers with several delta sources should sum them with
    :func:`combine_deltas` first so that every field is bounded a single time.
    """
    if delta is None:
        return current
    updated = {
        name: max(0, getattr(current, name) + getattr(delta, name))
        for name in UNBOUNDED_FIELDS
    }
    for name in BOUNDED_FIELDS:
        updated[name] = clamp(getattr(current, name) + getattr(delta, name))
    return current.model_copy(update=updated)
