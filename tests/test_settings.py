import pytest
from pydantic import ValidationError

from rules.core import GameSettings, GameState, new_event


def test_settings_accept_persisted_camel_case() -> None:
    settings = GameSettings.model_validate(
        {"projectName": "Bitcoin", "ticker": "btc", "founderName": "Satoshi", "language": "fa"}
    )
    assert settings.project_name == "Bitcoin"
    assert settings.ticker == "BTC"
    assert settings.language == "fa"


def test_settings_require_identity_fields() -> None:
    with pytest.raises(ValidationError):
        GameSettings(project_name="  ", ticker="BTC", founder_name="Satoshi")
    with pytest.raises(ValidationError):
        GameSettings(project_name="Bitcoin", ticker="TOOLONG", founder_name="Satoshi")
    with pytest.raises(ValidationError):
        GameSettings(project_name="Bitcoin", ticker="BTC", founder_name="Satoshi", language="de")


def test_latest_choices_come_from_last_event() -> None:
    state = GameState(
        settings=GameSettings(project_name="Bitcoin", ticker="BTC", founder_name="Satoshi")
    )
    assert state.latest_choices() == []
    state.history.append(new_event(0, "Pick a consensus.", type="narrative", choices=["PoW", "PoS"]))
    assert state.latest_choices() == ["PoW", "PoS"]
    state.history.append(new_event(0, "PoW", type="choice", tag="user"))
    assert state.latest_choices() == []
