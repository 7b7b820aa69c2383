"""Ledger APIs (categories, stats, activity log).

Routes:
- GET    /api/categories
- POST   /api/categories
- GET    /api/categories/<id>
- PUT    /api/categories/<id>
- DELETE /api/categories/<id>
- POST   /api/categories/<id>/stats
- DELETE /api/categories/<id>/stats/<name>
- POST   /api/categories/<id>/stats/<name>/adjust
- GET    /api/activities?category_id=...
- POST   /api/activities
- PUT    /api/activities/<id>
- DELETE /api/activities/<id>

Unknown ids are 404s; nothing about the stored state changes in that case.
Deleting an activity keeps the points it applied (the log is history, not an undo).
"""

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from coordinator import StatEngine
from extensions import limiter
from validation import (
    ValidationError,
    validate_activity,
    validate_activity_update,
    validate_category,
    validate_delta,
    validate_stat,
)

ledger_api = Blueprint("ledger_api", __name__)


def _engine() -> StatEngine:
    return current_app.extensions["stat_engine"]


def _not_found(what: str):
    return jsonify({"ok": False, "error": f"{what} not found"}), 404


@ledger_api.errorhandler(ValidationError)
def _validation_failed(err: ValidationError):
    return jsonify(err.to_dict()), 400


@ledger_api.errorhandler(Exception)
def _unexpected(err: Exception):
    if isinstance(err, HTTPException):
        return err
    # Always JSON, never an HTML 500 page.
    current_app.logger.exception("Ledger API request failed")
    return jsonify({"ok": False, "error": "Internal server error"}), 500


# ---------- Categories ----------

@ledger_api.get("/api/categories")
def list_categories():
    categories = _engine().snapshot().categories
    return jsonify({"ok": True, "categories": [c.to_dict() for c in categories.values()]})


@ledger_api.post("/api/categories")
@limiter.limit("30 per minute")
def create_category():
    data = validate_category(request.get_json(silent=True) or {})
    engine = _engine()
    category_id = engine.add_category(data)
    return jsonify({"ok": True, "category": engine.get_category(category_id).to_dict()}), 201


@ledger_api.get("/api/categories/<category_id>")
def get_category(category_id: str):
    category = _engine().get_category(category_id)
    if category is None:
        return _not_found("Category")
    return jsonify({"ok": True, "category": category.to_dict()})


@ledger_api.put("/api/categories/<category_id>")
@limiter.limit("60 per minute")
def update_category(category_id: str):
    updates = validate_category(request.get_json(silent=True) or {}, partial=True)
    engine = _engine()
    if not engine.update_category(category_id, updates):
        return _not_found("Category")
    return jsonify({"ok": True, "category": engine.get_category(category_id).to_dict()})


@ledger_api.delete("/api/categories/<category_id>")
def delete_category(category_id: str):
    if not _engine().delete_category(category_id):
        return _not_found("Category")
    return jsonify({"ok": True})


# ---------- Stats ----------

@ledger_api.post("/api/categories/<category_id>/stats")
@limiter.limit("60 per minute")
def create_stat(category_id: str):
    data = validate_stat(request.get_json(silent=True) or {})
    engine = _engine()
    category = engine.get_category(category_id)
    if category is None:
        return _not_found("Category")
    if category.get_stat(data["name"]) is not None:
        return jsonify({"ok": False, "error": "Stat already exists", "field": "name"}), 409
    engine.add_stat(category_id, data["name"], data["value"])
    return jsonify({"ok": True, "category": engine.get_category(category_id).to_dict()}), 201


@ledger_api.delete("/api/categories/<category_id>/stats/<stat_name>")
def delete_stat(category_id: str, stat_name: str):
    engine = _engine()
    if not engine.delete_stat(category_id, stat_name):
        return _not_found("Stat")
    return jsonify({"ok": True, "category": engine.get_category(category_id).to_dict()})


@ledger_api.post("/api/categories/<category_id>/stats/<stat_name>/adjust")
@limiter.limit("60 per minute")
def adjust_stat(category_id: str, stat_name: str):
    delta = validate_delta(request.get_json(silent=True) or {})
    engine = _engine()
    if not engine.update_stat(category_id, stat_name, delta):
        return _not_found("Stat")
    return jsonify({"ok": True, "category": engine.get_category(category_id).to_dict()})


# ---------- Activity log ----------

@ledger_api.get("/api/activities")
def list_activities():
    category_id = (request.args.get("category_id") or "").strip() or None
    entries = _engine().list_activities(category_id)
    return jsonify({"ok": True, "activities": [e.to_dict() for e in entries]})


@ledger_api.post("/api/activities")
@limiter.limit("60 per minute")
def log_activity():
    data = request.get_json(silent=True) or {}
    category_id = str(data.get("category_id") or "").strip()
    engine = _engine()
    category = engine.get_category(category_id)
    if category is None:
        return _not_found("Category")

    clean = validate_activity(data, category)
    entry = engine.log_activity(clean["description"], category_id, clean["target_stats"], clean["points"])
    if entry is None:
        # Category vanished between the lookup and the write.
        return _not_found("Category")
    return jsonify({
        "ok": True,
        "activity": entry.to_dict(),
        "category": engine.get_category(category_id).to_dict(),
    }), 201


@ledger_api.put("/api/activities/<activity_id>")
@limiter.limit("60 per minute")
def edit_activity(activity_id: str):
    engine = _engine()
    original = engine.get_activity(activity_id)
    if original is None:
        return _not_found("Activity")

    updates = validate_activity_update(request.get_json(silent=True) or {}, engine.get_category(original.category_id))
    entry = engine.edit_activity(activity_id, updates)
    if entry is None:
        return _not_found("Activity")
    category = engine.get_category(entry.category_id)
    return jsonify({
        "ok": True,
        "activity": entry.to_dict(),
        "category": category.to_dict() if category else None,
    })


@ledger_api.delete("/api/activities/<activity_id>")
def delete_activity(activity_id: str):
    if not _engine().delete_activity(activity_id):
        return _not_found("Activity")
    return jsonify({"ok": True})
