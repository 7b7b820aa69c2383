"""Request validation for the JSON API.

The engine assumes clean input; everything a client sends is checked here
first, and failures surface as HTTP 400 with the offending field.
"""

from __future__ import annotations

from typing import Any, Mapping

from models_ledger import StatCategory
from timeutil import DURATION_UNITS

MIN_ACTIVITY_POINTS = 1
MAX_ACTIVITY_POINTS = 5
MAX_DESCRIPTION_LEN = 500
MAX_NAME_LEN = 80


class ValidationError(ValueError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "error": self.message, "field": self.field}


def _int(data: Mapping[str, Any], field: str) -> int:
    value = data.get(field)
    if isinstance(value, bool):
        raise ValidationError(field, f"{field} must be a whole number")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(field, f"{field} must be a whole number")


def _text(data: Mapping[str, Any], field: str, required: bool, max_len: int) -> str:
    value = (data.get(field) or "")
    if not isinstance(value, str):
        raise ValidationError(field, f"{field} must be text")
    value = value.strip()
    if required and not value:
        raise ValidationError(field, f"{field} is required")
    if len(value) > max_len:
        raise ValidationError(field, f"{field} is too long (max {max_len})")
    return value


def _stat_list(data: Mapping[str, Any], field: str) -> list[str]:
    value = data.get(field)
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ValidationError(field, f"{field} must be a list of stat names")
    return [v.strip() for v in value]


def _signed_points(data: Mapping[str, Any]) -> int:
    points = _int(data, "points")
    magnitude = abs(points)
    if magnitude < MIN_ACTIVITY_POINTS or magnitude > MAX_ACTIVITY_POINTS:
        raise ValidationError("points", f"Points must be between {MIN_ACTIVITY_POINTS} and {MAX_ACTIVITY_POINTS}")
    if data.get("negative"):
        points = -magnitude
    return points


def _known_stats(category: StatCategory, names: list[str]) -> None:
    if names == [category.name]:
        return
    unknown = [n for n in names if category.get_stat(n) is None]
    if unknown:
        raise ValidationError("target_stats", f"Unknown stat(s): {', '.join(unknown)}")


def validate_activity(data: Mapping[str, Any], category: StatCategory) -> dict[str, Any]:
    """Validate a new activity. No selected stat means the whole category."""
    description = _text(data, "description", required=True, max_len=MAX_DESCRIPTION_LEN)
    targets = _stat_list(data, "target_stats")
    if not targets:
        targets = [category.name]
    _known_stats(category, targets)
    return {"description": description, "target_stats": targets, "points": _signed_points(data)}


def validate_activity_update(data: Mapping[str, Any], category: StatCategory | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if "description" in data:
        out["description"] = _text(data, "description", required=True, max_len=MAX_DESCRIPTION_LEN)
    if "target_stats" in data:
        targets = _stat_list(data, "target_stats")
        if category is not None:
            targets = targets or [category.name]
            _known_stats(category, targets)
        out["target_stats"] = targets
    if "points" in data:
        out["points"] = _signed_points(data)
    if not out:
        raise ValidationError("body", "Nothing to update")
    return out


def _gradient(data: Mapping[str, Any]) -> list[str]:
    value = data.get("gradient")
    if not isinstance(value, list) or len(value) != 2 or not all(isinstance(c, str) and c for c in value):
        raise ValidationError("gradient", "gradient must be a pair of colours")
    return value


def _stats_payload(data: Mapping[str, Any]) -> list[dict[str, Any]]:
    value = data.get("stats")
    if not isinstance(value, list):
        raise ValidationError("stats", "stats must be a list")
    out = []
    seen = set()
    for item in value:
        item = {"name": item} if isinstance(item, str) else item
        if not isinstance(item, Mapping):
            raise ValidationError("stats", "each stat needs a name")
        name = _text(item, "name", required=True, max_len=MAX_NAME_LEN)
        if name in seen:
            raise ValidationError("stats", f"Duplicate stat name: {name}")
        seen.add(name)
        out.append({"name": name, "value": _int(item, "value") if "value" in item else 0})
    return out


def validate_category(data: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "name" in data:
        out["name"] = _text(data, "name", required=True, max_len=MAX_NAME_LEN)
    for field in ("description", "icon"):
        if field in data:
            out[field] = _text(data, field, required=False, max_len=MAX_DESCRIPTION_LEN)
    if "gradient" in data:
        out["gradient"] = _gradient(data)
    if "stats" in data:
        out["stats"] = _stats_payload(data)
    if "score" in data:
        out["score"] = _int(data, "score")
    elif not partial or "stats" in out:
        out["score"] = sum(s["value"] for s in out.get("stats", []))
    if partial and not out:
        raise ValidationError("body", "Nothing to update")
    return out


def validate_stat(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": _text(data, "name", required=True, max_len=MAX_NAME_LEN),
        "value": _int(data, "value") if "value" in data else 0,
    }


def validate_delta(data: Mapping[str, Any]) -> int:
    delta = _int(data, "delta")
    if delta == 0:
        raise ValidationError("delta", "delta must not be zero")
    return delta


def validate_decay_setting(data: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "points" in data:
        points = _int(data, "points")
        if points <= 0:
            raise ValidationError("points", "Points must be a positive number")
        out["points"] = points
    if not partial or "time_value" in data:
        time_value = _int(data, "time_value")
        if time_value <= 0:
            raise ValidationError("time_value", "Time value must be a positive number")
        out["time_value"] = time_value
    if not partial or "time_unit" in data:
        unit = data.get("time_unit")
        if unit not in DURATION_UNITS:
            raise ValidationError("time_unit", f"time_unit must be one of {', '.join(DURATION_UNITS)}")
        out["time_unit"] = unit
    if "enabled" in data:
        if not isinstance(data["enabled"], bool):
            raise ValidationError("enabled", "enabled must be true or false")
        out["enabled"] = data["enabled"]
    return out
