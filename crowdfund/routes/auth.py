from __future__ import annotations

from flask import Blueprint, current_app
from flask_login import login_user, logout_user

from crowdfund.constants import USER_ROLES
from crowdfund.errors import ApiError
from crowdfund.extensions import db, safe_commit
from crowdfund.models import User
from crowdfund.routes.api_utils import json_ok
from crowdfund.security import issue_token, require_account
from crowdfund.validation import is_valid_email, is_valid_password, request_payload, truthy

bp = Blueprint("auth", __name__)


def _is_admin_domain(email: str) -> bool:
    domains = current_app.config.get("ADMIN_DOMAINS") or []
    domain = email.rsplit("@", 1)[-1].lower()
    return domain in {d.lower() for d in domains}


@bp.post("/register")
def register():
    data = request_payload()
    name = str(data.get("name") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    role = str(data.get("role") or "donor").strip().lower()

    details = []
    if len(name) < 2:
        details.append("Name must be at least 2 characters long")
    if not is_valid_email(email):
        details.append("Please provide a valid email address")
    if not is_valid_password(password):
        details.append(
            "Password must be at least 8 characters long and contain uppercase, lowercase, and numbers"
        )
    if role not in USER_ROLES:
        details.append(f"Role must be one of: {', '.join(USER_ROLES)}")
    if details:
        raise ApiError("Validation failed", 400, details=details)

    if User.query.filter_by(email=email).first():
        raise ApiError("User with this email already exists", 409)

    user = User(name=name, email=email, role=role)
    user.set_password(password)
    db.session.add(user)
    safe_commit()
    current_app.logger.info("registered user %s (%s)", user.id, role)

    return json_ok({"message": "User created successfully", "user": user.as_dict()}, 201)


@bp.post("/login")
def login():
    data = request_payload()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    if not email or not password:
        raise ApiError("Email and password are required", 400)

    user = User.query.filter_by(email=email).first()
    if user is None or not user.check_password(password):
        raise ApiError("Invalid email or password", 401)
    if not user.is_active:
        raise ApiError("Account is disabled", 403)

    if not user.is_admin and _is_admin_domain(email):
        user.role = "admin"
        safe_commit()
        current_app.logger.info("auto-promoted %s to admin by domain", user.id)

    login_user(user, remember=truthy(data.get("remember")))
    return json_ok({"user": user.as_dict(), "token": issue_token(user), "token_type": "Bearer"})


@bp.post("/logout")
def logout():
    logout_user()
    return json_ok({"message": "Signed out"})


@bp.get("/me")
def me():
    user = require_account()
    return json_ok({"user": user.as_dict()})
