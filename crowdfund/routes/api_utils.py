# crowdfund/routes/api_utils.py
# ─────────────────────────────────────────────────────────────────────────────
# JSON response + lookup helpers shared by the /api blueprints
# ─────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

from typing import Any, Dict, Optional, Type, TypeVar

from flask import jsonify

from crowdfund.errors import ApiError
from crowdfund.extensions import db

T = TypeVar("T")


def json_response(payload: Dict[str, Any], status: int = 200):
    resp = jsonify(payload)
    resp.status_code = int(status)
    resp.headers.setdefault("Cache-Control", "no-store")
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    return resp


def json_ok(payload: Optional[Dict[str, Any]] = None, status: int = 200):
    body = dict(payload or {})
    body.setdefault("ok", True)
    return json_response(body, status)


def get_or_404(model: Type[T], ident: Any, label: Optional[str] = None) -> T:
    obj = db.session.get(model, ident) if ident is not None else None
    if obj is None:
        raise ApiError(f"{label or model.__name__} not found", 404)
    return obj
