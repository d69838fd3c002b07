from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any

import requests
from pydantic import ValidationError

from llm.schemas import RESPONSE_SCHEMA, OracleResponse, TurnResult
from rules.core import GameSettings
from rules.eras import (
    VICTORY_HYPE,
    era_opening,
    era_stage,
    era_stage_lines,
    victory_user_threshold,
)
from rules.infrastructure import InfrastructureGrid
from rules.narrative import hardware_summary
from rules.stats import StatVector

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "en": "ENGLISH",
    "fa": "PERSIAN (Farsi)",
    "ru": "RUSSIAN",
    "zh": "CHINESE (Simplified)",
}

FALLBACK_NARRATIVE = "Connection lost. The blockchain is congested. Try again."
RETRY_CHOICE = "Retry"
AUTH_FAILURE_STATUSES = {401, 403}


class OracleError(RuntimeError):
    pass


class CredentialMissingError(OracleError):
    pass


class OracleTransportError(OracleError):
    pass


class OracleAuthError(OracleTransportError):
    pass


class OracleParseError(OracleError):
    pass


class SessionNotInitializedError(OracleError):
    pass


@dataclass
class OracleSession:
    credentials: str
    system_instruction: str
    temperature: float
    messages: list[dict[str, Any]] = field(default_factory=list)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class OracleClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        timeout: int | None = None,
        max_attempts: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self.base_url = (
            base_url or os.getenv("ORACLE_URL") or "https://generativelanguage.googleapis.com"
        ).rstrip("/")
        self.model = model or os.getenv("ORACLE_MODEL") or "gemini-2.5-flash"
        if timeout is None:
            timeout = int(os.getenv("ORACLE_TIMEOUT", "30"))
        self.timeout = timeout
        if max_attempts is None:
            max_attempts = int(os.getenv("ORACLE_MAX_ATTEMPTS", "2"))
        self.max_attempts = max(1, max_attempts)
        if temperature is None:
            temperature = float(os.getenv("ORACLE_TEMPERATURE", "0.95"))
        self.temperature = temperature

    def initialize(
        self,
        credentials: str | None,
        settings: GameSettings,
        era: int,
    ) -> tuple[OracleSession, TurnResult]:
        session = self._open_session(credentials, settings, era)
        response = self._exchange(session, _initiation_prompt(settings, era))
        return session, TurnResult.from_response(response)

    def restore(
        self,
        credentials: str | None,
        settings: GameSettings,
        stats: StatVector,
        infrastructure: InfrastructureGrid,
        history_summary: str,
    ) -> OracleSession:
        session = self._open_session(credentials, settings, stats.era)
        prompt = _restore_prompt(settings, stats, infrastructure, history_summary)
        try:
            self._exchange(session, prompt)
        except OracleAuthError:
            raise
        except (OracleTransportError, OracleParseError) as exc:
            logger.warning("Restoration prompt failed, continuing with a fresh context: %s", exc)
        return session

    def resolve_turn(
        self,
        session: OracleSession | None,
        user_action: str,
        stats: StatVector,
        infrastructure: InfrastructureGrid,
    ) -> TurnResult:
        if session is None:
            raise SessionNotInitializedError("Game not initialized.")
        prompt = _turn_prompt(user_action, stats, infrastructure)
        try:
            response = self._exchange(session, prompt)
        except (OracleTransportError, OracleParseError) as exc:
            logger.warning("Turn processing failed, returning fallback result: %s", exc)
            return fallback_turn_result()
        return TurnResult.from_response(response)

    def _open_session(
        self,
        credentials: str | None,
        settings: GameSettings,
        era: int,
    ) -> OracleSession:
        if not credentials or not credentials.strip():
            raise CredentialMissingError("Oracle API key missing.")
        return OracleSession(
            credentials=credentials.strip(),
            system_instruction=_system_instruction(settings, era),
            temperature=self.temperature,
        )

    def _exchange(self, session: OracleSession, prompt: str) -> OracleResponse:
        attempts = 0
        last_error: str | None = None
        while attempts < self.max_attempts:
            attempts += 1
            text = prompt
            if attempts > 1 and last_error:
                text += f"\nPrevious output invalid: {last_error}. Return JSON only."
            user_message = {"role": "user", "parts": [{"text": text}]}
            try:
                content = self._generate(session, [*session.messages, user_message])
                response = _parse_oracle_response(content)
            except OracleParseError as exc:
                last_error = str(exc)
                logger.warning("Oracle reply rejected (attempt %s): %s", attempts, exc)
                continue
            session.messages.append(user_message)
            session.messages.append({"role": "model", "parts": [{"text": content}]})
            return response
        raise OracleParseError(f"Failed to build oracle response JSON: {last_error}")

    def _generate(self, session: OracleSession, contents: list[dict[str, Any]]) -> str:
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        payload = {
            "systemInstruction": {"parts": [{"text": session.system_instruction}]},
            "contents": contents,
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
                "temperature": session.temperature,
            },
        }
        try:
            response = requests.post(
                url,
                json=payload,
                headers={"x-goog-api-key": session.credentials},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OracleTransportError(f"Oracle request failed: {exc}") from exc
        if _is_auth_failure(response):
            raise OracleAuthError("Oracle rejected the API key.")
        try:
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as exc:
            raise OracleTransportError(f"Oracle returned an error: {exc}") from exc
        except ValueError as exc:
            raise OracleTransportError("Oracle returned a non-JSON body.") from exc
        return _candidate_text(data)


def fallback_turn_result() -> TurnResult:
    return TurnResult(
        narrative=FALLBACK_NARRATIVE,
        choices=[RETRY_CHOICE],
        event_type="normal",
        is_fallback=True,
    )


def _is_auth_failure(response: Any) -> bool:
    if response.status_code in AUTH_FAILURE_STATUSES:
        return True
    return response.status_code == 400 and "API_KEY_INVALID" in (response.text or "")


def _candidate_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise OracleParseError("No response from oracle.")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise OracleParseError("No response from oracle.")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts:
        raise OracleParseError("No response from oracle.")
    text = "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )
    if not text.strip():
        raise OracleParseError("No response from oracle.")
    return text


def _system_instruction(settings: GameSettings, era: int) -> str:
    language = LANGUAGE_NAMES.get(settings.language, LANGUAGE_NAMES["en"])
    stages = "\n".join(era_stage_lines())
    return (
        'You are "CryptoMaster", a ruthless and sophisticated simulation engine for a '
        "cryptocurrency text-adventure.\n"
        f'Player Project: "{settings.project_name}" ({settings.ticker}).\n'
        f'Founder/CEO Name: "{settings.founder_name}". '
        "Address the player by this name occasionally.\n"
        f"Current Era: {era} (Higher era = exponentially harder difficulty).\n"
        f"Target Language: {language}.\n\n"
        "Role:\n"
        "Guide the user through a realistic, volatile journey.\n"
        f"{stages}\n\n"
        "Rules:\n"
        "1. Language: ALL output (narrative and choices) MUST be in the Target Language.\n"
        "2. Realism: Simulate black swan events (SEC lawsuits, Exchange hacks, Bear markets).\n"
        '3. Deep Strategy: Do not reward generic actions. "Marketing" without "Product" '
        'fails. "Scaling" without "Security" leads to hacks.\n'
        "4. Prestige: If the user is in Era > 1, the market is smarter. "
        "Competition is fierce.\n"
        "5. Infrastructure: The user has a physical server room. Pay attention to their "
        "installed hardware (Miners, Validators, Firewalls).\n"
        "   - If they have many miners but low security, simulate a 51% attack.\n"
        "   - If they have high hardware upkeep but low funds, simulate electricity bill "
        "issues.\n"
        "6. Output: Strict JSON only, at most 4 choices.\n\n"
        "Context:\n"
        "The user is the Founder.\n"
        "If Stats reach 0 (except Users/Funds depending on context) or Funds < 0, "
        "trigger 'game_over'.\n"
        f"If Users > {victory_user_threshold(era)} AND Hype > {VICTORY_HYPE}, "
        "trigger 'victory'."
    )


def _initiation_prompt(settings: GameSettings, era: int) -> str:
    return (
        f"{era_opening(settings.founder_name, settings.project_name, era)}\n"
        "Initialize the narrative.\n"
        "Ask the user for their first major decision regarding the Whitepaper or "
        "Consensus Mechanism."
    )


def _restore_prompt(
    settings: GameSettings,
    stats: StatVector,
    infrastructure: InfrastructureGrid,
    history_summary: str,
) -> str:
    return (
        "SYSTEM: RESTORING SAVED GAME SESSION.\n\n"
        "Current State:\n"
        f"{_stats_lines(stats)}\n\n"
        f"Installed Infrastructure: [{hardware_summary(infrastructure)}]\n\n"
        f"Recent History Summary: {history_summary}\n\n"
        "INSTRUCTION:\n"
        "1. Acknowledge the restoration silently.\n"
        "2. Set internal state to match these stats.\n"
        "3. Output a 'normal' event with a short narrative like "
        f'"System online. Welcome back, {settings.founder_name}." in the target language.'
    )


def _turn_prompt(
    user_action: str,
    stats: StatVector,
    infrastructure: InfrastructureGrid,
) -> str:
    return (
        f"User Action: {json.dumps(user_action, ensure_ascii=False)}\n\n"
        f"Current Stats (Era {stats.era}: {era_stage(stats.era)}):\n"
        f"{_stats_lines(stats)}\n\n"
        "Physical Infrastructure Installed:\n"
        f"[{hardware_summary(infrastructure)}]\n"
        f"Monthly hardware upkeep: ${infrastructure.maintenance_total()}\n"
        '(Take this hardware into account. e.g., if "Quantum Firewall" is installed, hacks '
        'fail. If "ASIC Miner" is installed, energy usage is high).\n\n'
        "Analyze impact. Be strict.\n"
        "High hype + Low Tech = Crash risk.\n"
        "High Funds + Low Security = Hack risk.\n\n"
        "Advance the story."
    )


def _stats_lines(stats: StatVector) -> str:
    return "\n".join(
        [
            f"- Funds: ${stats.funds}",
            f"- Users: {stats.users}",
            f"- Security: {stats.security}%",
            f"- Hype: {stats.hype}%",
            f"- Tech Level: {stats.tech_level}%",
            f"- Decentralization: {stats.decentralization}%",
            f"- Era: {stats.era}",
        ]
    )


def _parse_oracle_response(content: str) -> OracleResponse:
    payload = _extract_json(content)
    try:
        return OracleResponse.model_validate(payload)
    except ValidationError as exc:
        raise OracleParseError(f"Response does not match schema: {exc}") from exc


def _extract_json(content: str) -> dict[str, Any]:
    try:
        data = json.loads(content)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    start = content.find("{")
    end = content.rfind("}")
    if start >= 0 and end > start:
        try:
            data = json.loads(content[start : end + 1])
        except json.JSONDecodeError as exc:
            raise OracleParseError("Failed to parse oracle JSON.") from exc
        if isinstance(data, dict):
            return data
    raise OracleParseError("Failed to parse oracle JSON.")
