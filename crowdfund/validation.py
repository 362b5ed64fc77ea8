from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Optional, Tuple, cast

from flask import request

from crowdfund.constants import MAX_GOAL, MIN_GOAL
from crowdfund.errors import ApiError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_PROTO_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_ATTR_RE = re.compile(r"\bon\w+\s*=", re.IGNORECASE)

_TRUTHY = {"1", "true", "yes", "on", "y"}


# ----------------------------
# Text + identity checks
# ----------------------------
def sanitize_input(text: Any) -> str:
    s = str(text or "")
    s = _SCRIPT_RE.sub("", s)
    s = _JS_PROTO_RE.sub("", s)
    s = _EVENT_ATTR_RE.sub("", s)
    return s.strip()


def is_valid_email(email: Any) -> bool:
    return bool(_EMAIL_RE.match(str(email or "")))


def is_valid_password(password: Any) -> bool:
    """At least 8 chars with upper-case, lower-case and a digit."""
    p = str(password or "")
    return (
        len(p) >= 8
        and any(c.isupper() for c in p)
        and any(c.islower() for c in p)
        and any(c.isdigit() for c in p)
    )


def validate_campaign_data(data: Dict[str, Any]) -> List[str]:
    errors: List[str] = []

    title = str(data.get("title") or "").strip()
    if len(title) < 5:
        errors.append("Title must be at least 5 characters long")

    description = str(data.get("description") or "").strip()
    if len(description) < 50:
        errors.append("Description must be at least 50 characters long")

    goal = to_number(data.get("goal_amount"))
    if goal is None or goal < MIN_GOAL:
        errors.append(f"Goal amount must be at least ${MIN_GOAL}")
    elif goal > MAX_GOAL:
        errors.append(f"Goal amount cannot exceed ${MAX_GOAL:,}")

    return errors


def calculate_percentage(current: float, goal: float) -> float:
    if not goal or goal <= 0:
        return 0.0
    return round(min((float(current) / float(goal)) * 100.0, 100.0), 2)


# ----------------------------
# Number coercion
# ----------------------------
def to_number(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        n = float(str(v).strip())
    except ValueError:
        return None
    return n if math.isfinite(n) else None


def to_int(v: Any) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    s = str(v).strip()
    if not s.lstrip("-").isdigit():
        return None
    return int(s)


def dollars_to_cents(dollars: float) -> int:
    return int(round(float(dollars) * 100))


def truthy(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v or "").strip().lower() in _TRUTHY


# ----------------------------
# Request helpers
# ----------------------------
def request_payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return cast(Dict[str, Any], data)
    if request.form:
        return cast(Dict[str, Any], request.form.to_dict(flat=True))
    return {}


def pick(data: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among snake_case / camelCase aliases."""
    for n in names:
        if n in data and data[n] is not None:
            return data[n]
    return default


def arg(*names: str, default: Any = None) -> Any:
    for n in names:
        v = request.args.get(n)
        if v is not None and v != "":
            return v
    return default


def require_id(value: Any, label: str) -> int:
    i = to_int(value)
    if i is None or i <= 0:
        raise ApiError(f"{label} is required", 400)
    return i


def page_args(default_limit: int, maximum: int = 100) -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ApiError("page and limit must be integers", 400)
    return max(1, page), max(1, min(maximum, limit))


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = (total + limit - 1) // limit if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_more": page * limit < total,
    }
