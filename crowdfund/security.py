# crowdfund/security.py
# ─────────────────────────────────────────────────────────────────────────────
# Auth helpers: session (Flask-Login) or Bearer (JWT / static API token)
# ─────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Set

import jwt
from flask import current_app, g, request
from flask_login import current_user

from crowdfund.errors import ApiError
from crowdfund.extensions import db
from crowdfund.models import User
from crowdfund.models.mixins import utcnow

log = logging.getLogger(__name__)

_ANON = object()


# =============================================================================
# Token Helpers
# =============================================================================
def _api_tokens() -> Set[str]:
    raw = str(current_app.config.get("API_TOKENS") or "")
    return {t.strip() for t in raw.split(",") if t.strip()}


def _bearer_token() -> Optional[str]:
    h = request.headers.get("Authorization", "")
    if h.lower().startswith("bearer "):
        tok = h.split(" ", 1)[1].strip()
        return tok or None
    return None


def issue_token(user: User) -> str:
    now = utcnow()
    minutes = int(current_app.config.get("JWT_EXPIRES_MINUTES", 1440))
    claims: Dict[str, Any] = {
        "sub": str(user.id),
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, current_app.config["JWT_SECRET"], algorithm=current_app.config.get("JWT_ALG", "HS256"))


def _user_from_jwt(tok: str) -> Optional[User]:
    try:
        claims = jwt.decode(
            tok,
            key=current_app.config["JWT_SECRET"],
            algorithms=[current_app.config.get("JWT_ALG", "HS256")],
        )
    except jwt.PyJWTError as e:
        raise ApiError("Invalid or expired token", 401) from e
    sub = str(claims.get("sub") or "")
    if not sub.isdigit():
        raise ApiError("Invalid token subject", 401)
    return db.session.get(User, int(sub))


def is_service_request() -> bool:
    """True when the caller presented one of the static API_TOKENS."""
    tok = _bearer_token()
    return bool(tok and tok in _api_tokens())


def current_account() -> Optional[User]:
    """Resolve the calling user from the session, then from a JWT bearer token."""
    cached = g.get("_account", _ANON)
    if cached is not _ANON:
        return cached

    user: Optional[User] = None
    if current_user and current_user.is_authenticated:
        user = current_user._get_current_object()  # type: ignore[attr-defined]
    else:
        tok = _bearer_token()
        if tok and tok not in _api_tokens():
            user = _user_from_jwt(tok)

    if user is not None and not user.is_active:
        user = None
    g._account = user
    return user


def require_account() -> User:
    user = current_account()
    if user is None:
        raise ApiError("Authentication required", 401)
    return user


def require_admin() -> User:
    user = require_account()
    if not user.is_admin:
        raise ApiError("Admin access required", 403)
    return user


def can_manage(user: User, owner_id: Optional[int]) -> bool:
    return user.is_admin or (owner_id is not None and user.id == owner_id)
