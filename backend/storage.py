from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import SessionLocal
from models import StorageEntry
from rules.core import GameState

SAVE_KEY = "crypto_genesis_save_v2"
API_KEY_STORAGE = "crypto_genesis_api_key"


class StorageError(RuntimeError):
    pass


class SaveCorruptError(ValueError):
    pass


class KeyValueStore:
    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self.session_factory = session_factory or SessionLocal

    def get(self, key: str) -> str | None:
        try:
            with self.session_factory() as db:
                entry = db.get(StorageEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read {key}.") from exc

    def put(self, key: str, value: str) -> None:
        try:
            with self.session_factory() as db:
                entry = db.get(StorageEntry, key)
                if entry is None:
                    db.add(StorageEntry(key=key, value=value))
                else:
                    entry.value = value
                db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write {key}.") from exc

    def delete(self, key: str) -> None:
        try:
            with self.session_factory() as db:
                entry = db.get(StorageEntry, key)
                if entry is not None:
                    db.delete(entry)
                    db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to delete {key}.") from exc


class SessionStore:
    """Single-slot save game. Every save overwrites the previous one."""

    def __init__(self, store: KeyValueStore | None = None, *, key: str = SAVE_KEY) -> None:
        self.store = store or KeyValueStore()
        self.key = key

    def save(self, state: GameState) -> None:
        state.last_saved = datetime.now(timezone.utc).isoformat()
        self.store.put(self.key, json.dumps(state.to_payload(), ensure_ascii=False))

    def load(self) -> GameState | None:
        raw = self.store.get(self.key)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SaveCorruptError("Save file is not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise SaveCorruptError("Save file must contain a JSON object.")
        try:
            # older saves without an infrastructure grid get an empty one
            return GameState.model_validate(payload)
        except ValidationError as exc:
            raise SaveCorruptError(f"Save file is incompatible: {exc}") from exc

    def exists(self) -> bool:
        return self.store.get(self.key) is not None

    def delete(self) -> None:
        self.store.delete(self.key)


class CredentialStore:
    def __init__(self, store: KeyValueStore | None = None, *, key: str = API_KEY_STORAGE) -> None:
        self.store = store or KeyValueStore()
        self.key = key

    def get(self) -> str | None:
        stored = self.store.get(self.key)
        if stored:
            return stored
        return os.getenv("ORACLE_API_KEY") or None

    def set(self, value: str) -> None:
        cleaned = (value or "").strip()
        if not cleaned:
            self.clear()
            return
        self.store.put(self.key, cleaned)

    def clear(self) -> None:
        self.store.delete(self.key)
