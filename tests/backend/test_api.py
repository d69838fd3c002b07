from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import app, get_credentials, get_engine, get_saves
from llm.client import OracleAuthError, OracleSession
from llm.schemas import TurnResult
from rules.core import GameSettings, GameState, new_event
from rules.stats import StatsDelta
from rules.turn import TurnEngine
from storage import SAVE_KEY, CredentialStore, KeyValueStore, SessionStore

START_BODY = {
    "settings": {"projectName": "Solana", "ticker": "sol", "founderName": "Anatoly"},
}


class StubOracle:
    def __init__(self) -> None:
        self.init_error: Exception | None = None
        self.turn_results = [
            TurnResult(
                narrative="Validators go online.",
                choices=["Scale", "Audit"],
                stats_update=StatsDelta(funds=200),
            )
        ]
        self.restore_calls = 0

    def initialize(self, credentials, settings, era):
        if self.init_error is not None:
            raise self.init_error
        session = OracleSession(credentials=credentials, system_instruction="", temperature=0.0)
        return session, TurnResult(narrative="Genesis block mined.", choices=["Launch"])

    def restore(self, credentials, settings, stats, infrastructure, history_summary):
        self.restore_calls += 1
        return OracleSession(credentials=credentials, system_instruction="", temperature=0.0)

    def resolve_turn(self, session, user_action, stats, infrastructure):
        return self.turn_results.pop(0)


@pytest.fixture
def oracle() -> StubOracle:
    return StubOracle()


@pytest.fixture
def client(kv_store: KeyValueStore, oracle: StubOracle, monkeypatch) -> Iterator[TestClient]:
    monkeypatch.delenv("ORACLE_API_KEY", raising=False)
    saves = SessionStore(kv_store)
    credentials = CredentialStore(kv_store)
    engine = TurnEngine(oracle=oracle, store=saves)
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_saves] = lambda: saves
    app.dependency_overrides[get_credentials] = lambda: credentials
    yield TestClient(app)
    app.dependency_overrides.clear()


def _with_key(client: TestClient) -> TestClient:
    response = client.put("/credentials", json={"api_key": "secret"})
    assert response.json() == {"configured": True}
    return client


def test_start_requires_api_key(client: TestClient) -> None:
    response = client.post("/game/start", json=START_BODY)
    assert response.status_code == 401
    assert response.json()["detail"] == (
        "API Key is required to connect to the blockchain simulation."
    )


def test_full_turn_flow(client: TestClient) -> None:
    _with_key(client)
    started = client.post("/game/start", json=START_BODY).json()
    assert started["status"] == "active"
    assert started["state"]["settings"]["ticker"] == "SOL"
    assert started["choices"] == ["Launch"]

    bought = client.post("/infrastructure/0", json={"module_type": "miner"})
    assert bought.status_code == 200
    assert bought.json()["state"]["stats"]["funds"] == 8500
    assert bought.json()["occupancy"] == 1

    played = client.post("/game/turn", json={"action": "Launch"}).json()
    assert played["state"]["stats"]["funds"] == 8850
    assert played["state"]["turnCount"] == 1
    assert played["choices"] == ["Scale", "Audit"]
    assert client.get("/game").json()["save_found"] is True


def test_purchase_errors_are_bad_requests(client: TestClient) -> None:
    _with_key(client)
    client.post("/game/start", json=START_BODY)
    assert client.post("/infrastructure/12", json={"module_type": "miner"}).status_code == 400
    assert client.post("/infrastructure/0", json={"module_type": "laser"}).status_code == 400
    assert client.delete("/infrastructure/0").status_code == 400


def test_turn_without_game_is_rejected(client: TestClient) -> None:
    response = client.post("/game/turn", json={"action": "Pump"})
    assert response.status_code == 400


def test_rejected_key_maps_to_unauthorized(client: TestClient, oracle: StubOracle) -> None:
    _with_key(client)
    oracle.init_error = OracleAuthError("bad key")
    response = client.post("/game/start", json=START_BODY)
    assert response.status_code == 401
    assert client.get("/game").json()["status"] == "not_started"


def test_continue_restores_saved_game(client: TestClient, oracle: StubOracle) -> None:
    _with_key(client)
    client.post("/game/start", json=START_BODY)
    client.post("/game/reset")
    assert client.get("/game").json()["status"] == "not_started"

    resumed = client.post("/game/continue")

    assert resumed.status_code == 200
    assert resumed.json()["status"] == "active"
    assert resumed.json()["state"]["settings"]["projectName"] == "Solana"
    assert oracle.restore_calls == 1


def test_continue_without_save(client: TestClient) -> None:
    _with_key(client)
    assert client.post("/game/continue").status_code == 404


def test_corrupt_save_is_discarded(client: TestClient, kv_store: KeyValueStore) -> None:
    _with_key(client)
    kv_store.put(SAVE_KEY, "{broken")
    response = client.post("/game/continue")
    assert response.status_code == 409
    assert kv_store.get(SAVE_KEY) is None


def test_catalog_lists_modules(client: TestClient) -> None:
    catalog = {item["type"]: item for item in client.get("/infrastructure/catalog").json()}
    assert set(catalog) == {"miner", "validator", "rpc", "firewall"}
    assert catalog["miner"]["cost"] == 1500
    assert catalog["firewall"]["statsEffect"] == {"security": 10}


def test_pending_action_survives_reload(client: TestClient, kv_store: KeyValueStore) -> None:
    state = GameState(
        settings=GameSettings(project_name="Solana", ticker="SOL", founder_name="Anatoly"),
        turn_count=2,
    )
    state.history.append(new_event(2, "Fees spike.", type="narrative", choices=["Stake"]))
    state.history.append(new_event(2, "Stake", type="choice", tag="user"))
    SessionStore(kv_store).save(state)
    _with_key(client)

    resumed = client.post("/game/continue").json()
    assert resumed["pending_action"] == "Stake"

    played = client.post("/game/turn/pending").json()
    assert played["pending_action"] is None
    assert played["state"]["turnCount"] == 3
    assert [event["type"] for event in played["state"]["history"]] == [
        "narrative",
        "choice",
        "narrative",
    ]
    assert client.post("/game/turn/pending").status_code == 400
