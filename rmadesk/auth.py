"""Staff accounts: register, login, logout and the login_required guard."""

from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from rmadesk.errors import ValidationError
from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.observability.structured_logger import app_logger
from rmadesk.reference.repo import require
from rmadesk.schemas import User, load
from rmadesk.web import get_store, json_body

bp = Blueprint("auth", __name__, url_prefix="/auth")

MIN_PASSWORD_LENGTH = 6


def login_required(f):
    """Decorator to require a logged-in staff user."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_app.config.get("LOGIN_DISABLED"):
            return f(*args, **kwargs)
        if "user_id" not in session:
            return jsonify({"error": "Unauthorized", "details": "Login required"}), 401
        return f(*args, **kwargs)
    return decorated


def current_actor():
    """Name recorded in status history for the logged-in user."""
    return session.get("user_name")


def _public(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


def _find_by_email(email: str):
    email = email.strip().lower()
    for doc in get_store().collection("users").list():
        if doc.get("email", "").lower() == email:
            return load(User, doc)
    return None


@bp.route("/register", methods=["POST"])
def register():
    data = json_body()
    require(data, (("name", "Name"), ("email", "Email"), ("password", "Password")))
    if len(data["password"]) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if _find_by_email(data["email"]):
        raise ValidationError("An account with this email already exists")

    user = load(User, {
        "name": data["name"].strip(),
        "email": data["email"].strip().lower(),
        "role": "Staff",
        "passwordHash": generate_password_hash(data["password"], method="pbkdf2:sha256"),
    })
    user_id = get_store().collection("users").create(user.to_document())
    user.id = user_id
    app_logger.info("Staff user registered", user_id=user_id, role=user.role)
    return jsonify({"success": True, "user": _public(user)}), 201


@bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    require(data, (("email", "Email"), ("password", "Password")))
    user = _find_by_email(data["email"])
    if user is None or not user.is_active or not check_password_hash(user.password_hash, data["password"]):
        metrics_collector.increment_counter('login_failures_total')
        app_logger.warning("Failed login attempt", email=data["email"])
        return jsonify({"error": "Unauthorized", "details": "Invalid email or password"}), 401

    session.clear()
    session["user_id"] = user.id
    session["user_name"] = user.name
    session["user_role"] = user.role
    app_logger.info("User logged in", user_id=user.id)
    return jsonify({"success": True, "user": _public(user)})


@bp.route("/logout", methods=["POST"])
def logout():
    user_id = session.get("user_id")
    session.clear()
    if user_id:
        app_logger.info("User logged out", user_id=user_id)
    return jsonify({"success": True})


@bp.route("/me", methods=["GET"])
@login_required
def me():
    user_id = session.get("user_id")
    if not user_id:
        return jsonify({"user": None})
    user = load(User, get_store().collection("users").get(user_id))
    return jsonify({"user": _public(user)})
