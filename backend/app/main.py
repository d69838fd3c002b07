import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from db import check_db_connection, init_db
from llm.client import CredentialMissingError, OracleAuthError, OracleError
from rules.core import GameSettings
from rules.infrastructure import MODULE_CATALOG, PASSIVE_EFFECTS, InfrastructureError
from rules.turn import EngineStatus, StaleTurnError, TurnEngine, TurnError
from storage import CredentialStore, SaveCorruptError, SessionStore, StorageError

logger = logging.getLogger(__name__)

saves = SessionStore()
credentials = CredentialStore()
engine = TurnEngine(store=saves)


def get_engine() -> TurnEngine:
    return engine


def get_saves() -> SessionStore:
    return saves


def get_credentials() -> CredentialStore:
    return credentials


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    init_db()
    yield


app = FastAPI(
    title="crypto-genesis API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


class CredentialsUpdate(BaseModel):
    api_key: str


class StartRequest(BaseModel):
    settings: GameSettings
    era: int | None = None


class TurnRequest(BaseModel):
    action: str


class PurchaseRequest(BaseModel):
    module_type: str


@app.get("/health")
def health() -> dict:
    try:
        check_db_connection()
    except Exception as exc:
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"status": "ok"}


@app.get("/credentials")
def get_credentials_status(store: CredentialStore = Depends(get_credentials)) -> dict:
    return {"configured": bool(store.get())}


@app.put("/credentials")
def update_credentials(
    payload: CredentialsUpdate,
    store: CredentialStore = Depends(get_credentials),
) -> dict:
    store.set(payload.api_key)
    return {"configured": bool(store.get())}


@app.delete("/credentials")
def clear_credentials(store: CredentialStore = Depends(get_credentials)) -> dict:
    store.clear()
    return {"configured": bool(store.get())}


@app.get("/game")
def get_game(
    turn_engine: TurnEngine = Depends(get_engine),
    save_store: SessionStore = Depends(get_saves),
) -> dict:
    payload = _game_payload(turn_engine)
    payload["save_found"] = save_store.exists()
    return payload


@app.post("/game/start")
def start_game(
    payload: StartRequest,
    turn_engine: TurnEngine = Depends(get_engine),
    store: CredentialStore = Depends(get_credentials),
) -> dict:
    api_key = _require_api_key(store)
    try:
        turn_engine.start_new_game(payload.settings, api_key, era=payload.era or 1)
    except TurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OracleError as exc:
        raise _oracle_http_error(exc, "Error initializing game engine.") from exc
    return _game_payload(turn_engine)


@app.post("/game/fork")
def fork_game(
    turn_engine: TurnEngine = Depends(get_engine),
    store: CredentialStore = Depends(get_credentials),
) -> dict:
    api_key = _require_api_key(store)
    try:
        turn_engine.fork(api_key)
    except TurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OracleError as exc:
        raise _oracle_http_error(exc, "Error initializing the next era.") from exc
    return _game_payload(turn_engine)


@app.post("/game/continue")
def continue_game(
    turn_engine: TurnEngine = Depends(get_engine),
    save_store: SessionStore = Depends(get_saves),
    store: CredentialStore = Depends(get_credentials),
) -> dict:
    api_key = _require_api_key(store)
    try:
        state = save_store.load()
    except SaveCorruptError as exc:
        save_store.delete()
        raise HTTPException(status_code=409, detail="Save file corrupted. Starting fresh.") from exc
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if state is None:
        raise HTTPException(status_code=404, detail="No saved game")
    try:
        turn_engine.resume(state, api_key)
    except TurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OracleError as exc:
        raise _oracle_http_error(exc, "Could not restore the game session.") from exc
    return _game_payload(turn_engine)


@app.post("/game/reset")
def reset_game(turn_engine: TurnEngine = Depends(get_engine)) -> dict:
    turn_engine.reset()
    return _game_payload(turn_engine)


@app.delete("/game/save")
def delete_save(save_store: SessionStore = Depends(get_saves)) -> dict:
    save_store.delete()
    return {"save_found": False}


@app.post("/game/turn")
def resolve_turn(
    payload: TurnRequest,
    turn_engine: TurnEngine = Depends(get_engine),
) -> dict:
    try:
        turn_engine.resolve_turn(payload.action)
    except StaleTurnError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except TurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _game_payload(turn_engine)


@app.post("/game/turn/pending")
def resolve_pending_turn(turn_engine: TurnEngine = Depends(get_engine)) -> dict:
    try:
        turn_engine.resolve_pending_turn()
    except StaleTurnError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except TurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _game_payload(turn_engine)


@app.get("/infrastructure/catalog")
def list_modules() -> list[dict]:
    return [
        {
            "type": definition.type,
            "name": definition.name,
            "cost": definition.cost,
            "maintenance": definition.maintenance,
            "description": definition.description,
            "statsEffect": definition.stats_effect,
            "passiveEffect": PASSIVE_EFFECTS[definition.type].model_dump(),
        }
        for definition in MODULE_CATALOG.values()
    ]


@app.post("/infrastructure/{slot_id}")
def purchase_module(
    slot_id: int,
    payload: PurchaseRequest,
    turn_engine: TurnEngine = Depends(get_engine),
) -> dict:
    try:
        turn_engine.purchase_module(slot_id, payload.module_type)
    except (InfrastructureError, TurnError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _game_payload(turn_engine)


@app.delete("/infrastructure/{slot_id}")
def remove_module(
    slot_id: int,
    turn_engine: TurnEngine = Depends(get_engine),
) -> dict:
    try:
        turn_engine.remove_module(slot_id)
    except (InfrastructureError, TurnError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _game_payload(turn_engine)


def _require_api_key(store: CredentialStore) -> str:
    api_key = store.get()
    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="API Key is required to connect to the blockchain simulation.",
        )
    return api_key


def _oracle_http_error(exc: OracleError, message: str) -> HTTPException:
    if isinstance(exc, (CredentialMissingError, OracleAuthError)):
        return HTTPException(status_code=401, detail=f"{message} Check API Key validity.")
    logger.warning("%s %s", message, exc)
    return HTTPException(status_code=502, detail=message)


def _game_payload(turn_engine: TurnEngine) -> dict:
    state = turn_engine.state
    if state is None or turn_engine.status == EngineStatus.NOT_STARTED:
        return {
            "status": EngineStatus.NOT_STARTED.value,
            "state": None,
            "choices": [],
            "pending_action": None,
        }
    return {
        "status": turn_engine.status.value,
        "state": state.to_payload(),
        "choices": state.latest_choices(),
        "pending_action": turn_engine.pending_action,
        "passive_effects": state.infrastructure.passive_effects_for_turn().model_dump(),
        "occupancy": state.infrastructure.occupancy_count(),
    }
