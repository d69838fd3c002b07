from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rules.infrastructure import InfrastructureGrid
from rules.stats import BASELINE_STATS, StatVector

LanguageCode = Literal["en", "fa", "ru", "zh"]
EventType = Literal["narrative", "choice", "alert", "success", "failure"]

TICKER_MAX_LENGTH = 5


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class GameSettings(_CamelModel):
    model_config = ConfigDict(frozen=True)

    project_name: str
    ticker: str = Field(max_length=TICKER_MAX_LENGTH)
    founder_name: str
    language: LanguageCode = "en"

    @field_validator("project_name", "founder_name", "ticker", mode="before")
    @classmethod
    def _strip_required(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @field_validator("ticker")
    @classmethod
    def _upper_ticker(cls, value: str) -> str:
        return value.upper()


class GameEvent(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    turn: int
    narrative: str
    choices: list[str] | None = None
    type: EventType = "narrative"


def new_event(
    turn: int,
    narrative: str,
    *,
    type: EventType,
    choices: list[str] | None = None,
    tag: str = "ai",
) -> GameEvent:
    return GameEvent(
        id=f"turn-{turn}-{tag}-{uuid.uuid4().hex[:8]}",
        turn=turn,
        narrative=narrative,
        choices=list(choices) if choices is not None else None,
        type=type,
    )


class GameState(_CamelModel):
    turn_count: int = Field(default=0, ge=0)
    settings: GameSettings
    stats: StatVector = BASELINE_STATS
    history: list[GameEvent] = Field(default_factory=list)
    infrastructure: InfrastructureGrid = Field(default_factory=InfrastructureGrid.empty)
    game_over: bool = False
    game_won: bool = False
    last_saved: str | None = None

    def latest_choices(self) -> list[str]:
        if not self.history:
            return []
        return list(self.history[-1].choices or [])

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
