"""Decay settings APIs.

Routes:
- GET    /api/decay/settings
- GET    /api/decay/<category_id>/<stat_name>     (evaluates the stat first)
- PUT    /api/decay/<category_id>/<stat_name>     create or replace
- PATCH  /api/decay/<category_id>/<stat_name>     partial update
- DELETE /api/decay/<category_id>/<stat_name>
- POST   /api/decay/evaluate                      catch-up for every stat
"""

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from coordinator import StatEngine
from extensions import limiter
from models_decay import (
    DEFAULT_DECAY_ENABLED,
    DEFAULT_DECAY_POINTS,
    DEFAULT_DECAY_TIME_UNIT,
    DEFAULT_DECAY_TIME_VALUE,
)
from stat_keys import setting_key
from validation import ValidationError, validate_decay_setting

decay_api = Blueprint("decay_api", __name__)


def _engine() -> StatEngine:
    return current_app.extensions["stat_engine"]


def _setting_payload(engine: StatEngine, category_id: str, stat_name: str) -> dict:
    setting = engine.get_decay_setting_for_stat(category_id, stat_name)
    countdown = engine.get_time_until_next_decay(category_id, stat_name)
    category = engine.get_category(category_id)
    stat = category.get_stat(stat_name) if category else None
    return {
        "ok": True,
        "categoryId": category_id,
        "statName": stat_name,
        "statValue": stat.value if stat else None,
        "setting": setting.to_dict() if setting else None,
        "countdown": countdown.to_dict() if countdown else None,
        # Values a fresh settings form starts from.
        "defaults": {
            "points": DEFAULT_DECAY_POINTS,
            "timeValue": DEFAULT_DECAY_TIME_VALUE,
            "timeUnit": DEFAULT_DECAY_TIME_UNIT,
            "enabled": DEFAULT_DECAY_ENABLED,
        },
    }


@decay_api.errorhandler(ValidationError)
def _validation_failed(err: ValidationError):
    return jsonify(err.to_dict()), 400


@decay_api.errorhandler(Exception)
def _unexpected(err: Exception):
    if isinstance(err, HTTPException):
        return err
    current_app.logger.exception("Decay API request failed")
    return jsonify({"ok": False, "error": "Internal server error"}), 500


@decay_api.get("/api/decay/settings")
def list_settings():
    engine = _engine()
    out = []
    for key, setting in sorted(engine.decay_settings().items()):
        countdown = engine.get_time_until_next_decay(key.category_id, key.stat_name)
        out.append({**setting.to_dict(), "countdown": countdown.to_dict() if countdown else None})
    return jsonify({"ok": True, "settings": out})


@decay_api.get("/api/decay/<category_id>/<stat_name>")
def get_setting(category_id: str, stat_name: str):
    engine = _engine()
    # Opening the settings view catches the stat up before showing the countdown.
    engine.evaluate_now(category_id, stat_name)
    return jsonify(_setting_payload(engine, category_id, stat_name))


@decay_api.put("/api/decay/<category_id>/<stat_name>")
@limiter.limit("30 per minute")
def save_setting(category_id: str, stat_name: str):
    data = validate_decay_setting(request.get_json(silent=True) or {})
    engine = _engine()
    category = engine.get_category(category_id)
    if category is None or category.get_stat(stat_name) is None:
        return jsonify({"ok": False, "error": "Stat not found"}), 404
    engine.save_decay_setting(category_id, stat_name, data)
    return jsonify(_setting_payload(engine, category_id, stat_name))


@decay_api.patch("/api/decay/<category_id>/<stat_name>")
@limiter.limit("30 per minute")
def patch_setting(category_id: str, stat_name: str):
    updates = validate_decay_setting(request.get_json(silent=True) or {}, partial=True)
    engine = _engine()
    if engine.update_decay_setting(setting_key(category_id, stat_name), updates) is None:
        return jsonify({"ok": False, "error": "Decay setting not found"}), 404
    return jsonify(_setting_payload(engine, category_id, stat_name))


@decay_api.delete("/api/decay/<category_id>/<stat_name>")
def delete_setting(category_id: str, stat_name: str):
    if not _engine().remove_decay_setting(setting_key(category_id, stat_name)):
        return jsonify({"ok": False, "error": "Decay setting not found"}), 404
    return jsonify({"ok": True})


@decay_api.post("/api/decay/evaluate")
@limiter.limit("10 per minute")
def evaluate_all():
    results = _engine().evaluate_now()
    return jsonify({"ok": True, "applied": [r.to_dict() for r in results]})
