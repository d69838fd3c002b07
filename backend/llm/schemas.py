from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from rules.stats import StatsDelta

OracleEventType = Literal["normal", "crisis", "opportunity", "game_over", "victory"]

MAX_CHOICES = 4


class StatsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    funds_change: int | None = None
    users_change: int | None = None
    security_change: int | None = None
    hype_change: int | None = None
    tech_level_change: int | None = None
    decentralization_change: int | None = None

    def to_delta(self) -> StatsDelta:
        return StatsDelta(
            funds=self.funds_change or 0,
            users=self.users_change or 0,
            security=self.security_change or 0,
            hype=self.hype_change or 0,
            tech_level=self.tech_level_change or 0,
            decentralization=self.decentralization_change or 0,
        )


class OracleResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    narrative: str
    choices: list[str] = Field(max_length=MAX_CHOICES)
    stats_update: StatsUpdate
    event_type: OracleEventType


class TurnResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    narrative: str
    choices: list[str] = Field(default_factory=list)
    stats_update: StatsDelta = Field(default_factory=StatsDelta)
    event_type: OracleEventType = "normal"
    is_fallback: bool = False

    @classmethod
    def from_response(cls, response: OracleResponse) -> TurnResult:
        return cls(
            narrative=response.narrative,
            choices=list(response.choices),
            stats_update=response.stats_update.to_delta(),
            event_type=response.event_type,
        )


# Mirrors OracleResponse in the generateContent schema dialect.
RESPONSE_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "narrative": {
            "type": "STRING",
            "description": (
                "The story segment in the target language. Use technical crypto "
                "terminology appropriate for that language."
            ),
        },
        "choices": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "2-4 suggested short strategic actions (in target language).",
        },
        "stats_update": {
            "type": "OBJECT",
            "properties": {
                "funds_change": {"type": "INTEGER", "description": "Change in USD."},
                "users_change": {"type": "INTEGER", "description": "Change in user count."},
                "security_change": {
                    "type": "INTEGER",
                    "description": "Change in security (0-100).",
                },
                "hype_change": {"type": "INTEGER", "description": "Change in hype (0-100)."},
                "tech_level_change": {
                    "type": "INTEGER",
                    "description": "Change in tech level (0-100).",
                },
                "decentralization_change": {
                    "type": "INTEGER",
                    "description": "Change in decentralization (0-100).",
                },
            },
        },
        "event_type": {
            "type": "STRING",
            "enum": ["normal", "crisis", "opportunity", "game_over", "victory"],
        },
    },
    "required": ["narrative", "choices", "stats_update", "event_type"],
}
