"""Snapshot persistence over a simple key/value blob store.

Three top-level keys hold the engine state:
- ``characterSheet``: ``{"categories": {id: category}}``
- ``activityLog``: list of log entries, insertion order
- ``decaySettings``: ``{encoded stat key: setting}``

Backends (``STATE_BACKEND``):
- ``sql``: one row per key in ``state_blobs`` via Flask-SQLAlchemy (default)
- ``redis``: plain string keys, optionally prefixed
- ``memory``: process-local dict (tests, throwaway runs)

Every backend writes the three keys of a save cycle as one unit. Loading is
forgiving: a key that cannot be read or parsed falls back to its empty default
and the error is logged; startup never aborts because of stored data.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import redis

from extensions import db
from models_blobs import StoredBlob
from models_decay import DecaySetting
from models_ledger import ActivityLogEntry, LedgerSnapshot, StatCategory

logger = logging.getLogger(__name__)

CHARACTER_SHEET_KEY = "characterSheet"
ACTIVITY_LOG_KEY = "activityLog"
DECAY_SETTINGS_KEY = "decaySettings"
STATE_KEYS = (CHARACTER_SHEET_KEY, ACTIVITY_LOG_KEY, DECAY_SETTINGS_KEY)

# Top-level keys of the pre-categories character sheet.
LEGACY_SHEET_KEYS = ("physical", "mind", "social")


class PersistenceGateway(Protocol):
    def get(self, key: str) -> str | None: ...

    def set_many(self, items: Mapping[str, str]) -> None: ...


class MemoryBlobGateway:
    def __init__(self, initial: Mapping[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set_many(self, items: Mapping[str, str]) -> None:
        with self._lock:
            self._data.update(items)


class SqlBlobGateway:
    """Blob rows in the application database.

    Pushes its own app context so it also works from the ticker thread.
    """

    def __init__(self, app, prefix: str = ""):
        self._app = app
        self._prefix = prefix

    def get(self, key: str) -> str | None:
        with self._app.app_context():
            row = db.session.get(StoredBlob, self._prefix + key)
            return row.payload if row else None

    def set_many(self, items: Mapping[str, str]) -> None:
        with self._app.app_context():
            try:
                for key, payload in items.items():
                    db.session.merge(StoredBlob(key=self._prefix + key, payload=payload))
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise


class RedisBlobGateway:
    def __init__(self, client: "redis.Redis", prefix: str = ""):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisBlobGateway":
        return cls(redis.from_url(url), prefix=prefix)

    def get(self, key: str) -> str | None:
        raw = self._client.get(self._prefix + key)
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    def set_many(self, items: Mapping[str, str]) -> None:
        # MULTI/EXEC so a reader never sees a half-written save cycle.
        pipe = self._client.pipeline(transaction=True)
        pipe.mset({self._prefix + k: v for k, v in items.items()})
        pipe.execute()


def build_gateway(backend: str, app=None, redis_url: str | None = None, prefix: str = "") -> PersistenceGateway:
    backend = (backend or "sql").strip().lower()
    if backend == "memory":
        return MemoryBlobGateway()
    if backend == "redis":
        if not redis_url:
            raise RuntimeError("STATE_BACKEND=redis but REDIS_URL is not set")
        return RedisBlobGateway.from_url(redis_url, prefix=prefix)
    if backend == "sql":
        if app is None:
            raise RuntimeError("STATE_BACKEND=sql needs a Flask app")
        return SqlBlobGateway(app, prefix=prefix)
    raise RuntimeError(f"Unknown STATE_BACKEND: {backend!r}")


# -------------------------------
# Snapshot codec
# -------------------------------

def migrate_character_sheet(parsed: dict) -> dict:
    """Upgrade a legacy fixed-category sheet: keep only a nested ``categories`` map."""
    if any(k in parsed for k in LEGACY_SHEET_KEYS):
        logger.info("Migrating legacy character sheet (dropping %s)",
                    ", ".join(k for k in parsed if k != "categories"))
        return {"categories": dict(parsed.get("categories") or {})}
    return parsed


def decode_categories(payload: str) -> dict[str, StatCategory]:
    sheet = migrate_character_sheet(json.loads(payload))
    return {str(cid): StatCategory.from_dict(data, category_id=cid)
            for cid, data in (sheet.get("categories") or {}).items()}


def decode_activity_log(payload: str) -> list[ActivityLogEntry]:
    return [ActivityLogEntry.from_dict(item) for item in json.loads(payload)]


def decode_decay_settings(payload: str) -> list[DecaySetting]:
    # The key is rebuilt from each value, so older key formats load too.
    return [DecaySetting.from_dict(item) for item in json.loads(payload).values()]


def encode_state(snapshot: LedgerSnapshot, settings: Mapping) -> dict[str, str]:
    return {
        CHARACTER_SHEET_KEY: json.dumps(snapshot.character_sheet_dict(), ensure_ascii=False),
        ACTIVITY_LOG_KEY: json.dumps(snapshot.activity_log_list(), ensure_ascii=False),
        DECAY_SETTINGS_KEY: json.dumps(
            {key.encode(): setting.to_dict() for key, setting in sorted(settings.items())},
            ensure_ascii=False,
        ),
    }


@dataclass
class LoadedState:
    snapshot: LedgerSnapshot
    settings: list[DecaySetting] = field(default_factory=list)
    failed_keys: list[str] = field(default_factory=list)


def _load_key(gateway: PersistenceGateway, key: str, decoder, default, failed: list[str]):
    try:
        payload = gateway.get(key)
        if payload is None:
            return default
        return decoder(payload)
    except Exception:
        logger.exception("Failed to load %s; falling back to empty default", key)
        failed.append(key)
        return default


def load_state(gateway: PersistenceGateway) -> LoadedState:
    failed: list[str] = []
    categories = _load_key(gateway, CHARACTER_SHEET_KEY, decode_categories, {}, failed)
    activity_log = _load_key(gateway, ACTIVITY_LOG_KEY, decode_activity_log, [], failed)
    settings = _load_key(gateway, DECAY_SETTINGS_KEY, decode_decay_settings, [], failed)
    logger.info("Loaded %d categories, %d log entries, %d decay settings",
                len(categories), len(activity_log), len(settings))
    return LoadedState(LedgerSnapshot.build(categories, activity_log), settings, failed)


def save_state(gateway: PersistenceGateway, snapshot: LedgerSnapshot, settings: Mapping) -> bool:
    """Write all three keys; returns False (and logs) on failure, never raises."""
    try:
        gateway.set_many(encode_state(snapshot, settings))
        return True
    except Exception:
        logger.exception("Failed to save engine state")
        return False
