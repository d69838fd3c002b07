from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator

from llm.client import OracleClient, OracleError, OracleSession
from llm.schemas import TurnResult
from rules.core import EventType, GameSettings, GameState, new_event
from rules.eras import evolve_stats
from rules.infrastructure import GridSlot, InfrastructureGrid, InfrastructureModule
from rules.narrative import recent_history_summary
from rules.stats import BASELINE_STATS, apply_delta, combine_deltas
from storage import StorageError

logger = logging.getLogger(__name__)


class TurnError(ValueError):
    pass


class StaleTurnError(TurnError):
    pass


class EngineStatus(str, Enum):
    NOT_STARTED = "not_started"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    GAME_OVER = "game_over"
    VICTORY = "victory"


HISTORY_TYPE_BY_EVENT: dict[str, EventType] = {
    "game_over": "failure",
    "victory": "success",
}


class TurnEngine:
    """Owns the running game: state, oracle session and turn sequencing.

    ``oracle`` is anything with ``initialize``/``restore``/``resolve_turn`` in
    the shape of :class:`OracleClient`; ``store`` anything with ``save``.
    Only one turn may be in flight; a response that arrives after a new game
    or a resume replaced the session is dropped.
    """

    def __init__(self, oracle: Any | None = None, store: Any | None = None) -> None:
        self.oracle = oracle or OracleClient()
        self.store = store
        self.state: GameState | None = None
        self.status = EngineStatus.NOT_STARTED
        self.session: OracleSession | None = None
        self._turn_lock = threading.Lock()
        self._start_lock = threading.Lock()

    def start_new_game(
        self,
        settings: GameSettings,
        credentials: str | None,
        *,
        era: int = 1,
        carry_stats: bool = False,
    ) -> GameState:
        with _exclusive(self._start_lock, "Game initialization already in progress."):
            if carry_stats:
                previous = self.state
                if previous is None or self.status != EngineStatus.VICTORY:
                    raise TurnError("Only a victorious project can fork into a new era.")
                state = GameState(
                    turn_count=previous.turn_count,
                    settings=settings,
                    stats=evolve_stats(previous.stats),
                    history=list(previous.history),
                    infrastructure=previous.infrastructure.model_copy(deep=True),
                )
            else:
                state = GameState(
                    settings=settings,
                    stats=BASELINE_STATS.model_copy(update={"era": max(1, era)}),
                    infrastructure=InfrastructureGrid.empty(),
                )
            return self._initialize(state, credentials)

    def fork(self, credentials: str | None) -> GameState:
        if self.state is None:
            raise TurnError("No game to fork.")
        return self.start_new_game(self.state.settings, credentials, carry_stats=True)

    def resume(self, state: GameState, credentials: str | None) -> GameState:
        with _exclusive(self._start_lock, "Game initialization already in progress."):
            session = self.oracle.restore(
                credentials,
                state.settings,
                state.stats,
                state.infrastructure,
                recent_history_summary(state.history),
            )
            self.state = state
            self.session = session
            self.status = _status_for(state)
            return state

    def reset(self) -> None:
        self.state = None
        self.session = None
        self.status = EngineStatus.NOT_STARTED

    @property
    def pending_action(self) -> str | None:
        if self.state is None or self.status != EngineStatus.ACTIVE or not self.state.history:
            return None
        last = self.state.history[-1]
        return last.narrative if last.type == "choice" else None

    def resolve_turn(self, user_action: str) -> GameState:
        action = (user_action or "").strip()
        if not action:
            raise TurnError("Action must not be empty.")
        with _exclusive(self._turn_lock, "A turn is already in progress."):
            state = self._require_active()
            state.history.append(
                new_event(state.turn_count, action, type="choice", tag="user")
            )
            return self._complete_turn(state, action)

    def resolve_pending_turn(self) -> GameState:
        with _exclusive(self._turn_lock, "A turn is already in progress."):
            state = self._require_active()
            action = self.pending_action
            if action is None:
                raise TurnError("No pending action to resolve.")
            return self._complete_turn(state, action)

    def purchase_module(self, slot_id: int, module_type: str) -> GridSlot:
        with _exclusive(self._turn_lock, "Cannot change infrastructure during a turn."):
            state = self._require_state()
            slot, stats = state.infrastructure.purchase(slot_id, module_type, state.stats)
            state.stats = stats
            self._persist(state)
            return slot

    def remove_module(self, slot_id: int) -> InfrastructureModule:
        with _exclusive(self._turn_lock, "Cannot change infrastructure during a turn."):
            state = self._require_state()
            removed = state.infrastructure.remove(slot_id)
            self._persist(state)
            return removed

    def _initialize(self, state: GameState, credentials: str | None) -> GameState:
        previous = (self.state, self.status, self.session)
        self.state = state
        self.status = EngineStatus.INITIALIZING
        self.session = None
        try:
            session, result = self.oracle.initialize(
                credentials, state.settings, state.stats.era
            )
        except OracleError:
            self.state, self.status, self.session = previous
            raise
        state.history.append(
            new_event(0, result.narrative, type="narrative", choices=result.choices, tag="init")
        )
        state.stats = apply_delta(state.stats, result.stats_update)
        self.session = session
        self.status = EngineStatus.ACTIVE
        self._persist(state)
        return state

    def _complete_turn(self, state: GameState, action: str) -> GameState:
        session = self.session
        passive = state.infrastructure.passive_effects_for_turn()
        result = self.oracle.resolve_turn(session, action, state.stats, state.infrastructure)
        if self.session is not session or self.state is not state:
            logger.info("Discarding oracle response for a replaced game session.")
            raise StaleTurnError("Game session changed while the turn was in flight.")

        state.stats = apply_delta(state.stats, combine_deltas(result.stats_update, passive))
        state.history.append(
            new_event(
                state.turn_count + 1,
                result.narrative,
                type=_history_type(result),
                choices=result.choices,
            )
        )
        state.turn_count += 1
        if result.event_type == "game_over":
            state.game_over = True
            self.status = EngineStatus.GAME_OVER
        elif result.event_type == "victory":
            state.game_won = True
            self.status = EngineStatus.VICTORY
        logger.debug("Turn %s resolved (%s).", state.turn_count, result.event_type)
        self._persist(state)
        return state

    def _require_state(self) -> GameState:
        if self.state is None or self.status == EngineStatus.NOT_STARTED:
            raise TurnError("No game in progress.")
        if self.status == EngineStatus.INITIALIZING:
            raise TurnError("Game is still initializing.")
        return self.state

    def _require_active(self) -> GameState:
        state = self._require_state()
        if self.status != EngineStatus.ACTIVE:
            raise TurnError(f"Game has ended ({self.status.value}).")
        return state

    def _persist(self, state: GameState) -> None:
        if self.store is None or not state.history:
            return
        try:
            self.store.save(state)
        except StorageError as exc:
            logger.warning("Failed to save game: %s", exc)


def _history_type(result: TurnResult) -> EventType:
    if result.is_fallback:
        return "alert"
    return HISTORY_TYPE_BY_EVENT.get(result.event_type, "narrative")


def _status_for(state: GameState) -> EngineStatus:
    if state.game_over:
        return EngineStatus.GAME_OVER
    if state.game_won:
        return EngineStatus.VICTORY
    return EngineStatus.ACTIVE


@contextmanager
def _exclusive(lock: threading.Lock, message: str) -> Iterator[None]:
    if not lock.acquire(blocking=False):
        raise TurnError(message)
    try:
        yield
    finally:
        lock.release()
