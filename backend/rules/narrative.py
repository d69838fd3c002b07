from __future__ import annotations

from typing import Iterable

from rules.core import GameEvent
from rules.infrastructure import InfrastructureGrid

HISTORY_SUMMARY_LIMIT = 5
NO_HARDWARE = "No hardware installed"
TYPEWRITER_SPEED_MS = 15


def hardware_summary(grid: InfrastructureGrid) -> str:
    names = [module.name for module in grid.installed_modules()]
    return ", ".join(names) or NO_HARDWARE


def recent_history_summary(
    history: Iterable[GameEvent],
    limit: int = HISTORY_SUMMARY_LIMIT,
) -> str:
    events = list(history)
    if limit <= 0:
        return ""
    return " ".join(event.narrative for event in events[-limit:])


def typewriter_prefix(text: str, elapsed_ms: float, speed_ms: int = TYPEWRITER_SPEED_MS) -> str:
    if speed_ms <= 0:
        return text
    if elapsed_ms < 0:
        return ""
    # the first character is revealed immediately
    count = int(elapsed_ms // speed_ms) + 1
    return text[:count]
