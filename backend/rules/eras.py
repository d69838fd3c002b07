from __future__ import annotations

from rules.stats import StatVector

VICTORY_USERS_PER_ERA = 1_000_000
VICTORY_HYPE = 90

FORK_USER_DIVISOR = 10
FORK_RESET_HYPE = 50
FORK_RESET_SECURITY = 50
FORK_RESET_TECH_LEVEL = 20

ERA_STAGES = {
    1: "Initial Token Launch",
    2: "Blockchain Ecosystem / L1 (Harder)",
    3: "Global Reserve Currency (Impossible difficulty)",
}


def evolve_stats(stats: StatVector) -> StatVector:
    """Carry a victorious project into the next era.

    Funds and decentralization survive; the user base shrinks to a tenth and
    the sentiment stats restart from fixed values.
    """
    return stats.model_copy(
        update={
            "users": stats.users // FORK_USER_DIVISOR,
            "hype": FORK_RESET_HYPE,
            "security": FORK_RESET_SECURITY,
            "tech_level": FORK_RESET_TECH_LEVEL,
            "era": stats.era + 1,
        }
    )


def victory_user_threshold(era: int) -> int:
    return VICTORY_USERS_PER_ERA * max(1, era)


def era_stage(era: int) -> str:
    if era in ERA_STAGES:
        return ERA_STAGES[era]
    return ERA_STAGES[max(ERA_STAGES)]


def era_stage_lines() -> list[str]:
    return [f"Era {era}: {stage}." for era, stage in sorted(ERA_STAGES.items())]


def era_opening(founder_name: str, project_name: str, era: int) -> str:
    if era > 1:
        return (
            f"The user has successfully evolved the project. We are now in Era {era}. "
            "The market is larger, but threats are global. Governments are watching."
        )
    return f"Start the game. {founder_name} is writing the first line of code for {project_name}."
