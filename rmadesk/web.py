"""Request-scoped helpers shared by the blueprints."""

from flask import current_app, g, jsonify, request

from rmadesk.errors import ValidationError
from rmadesk.notifications import NotificationService
from rmadesk.reference.repo import SettingsRepo
from rmadesk.rma.manager import RMAManager
from rmadesk.store import DocumentStore


SENDER_EXTENSION = "rmadesk.email_sender"


def get_store() -> DocumentStore:
    """Store for the current request, opened on first use."""
    if "store" not in g:
        g.store = DocumentStore.open(current_app.config["DB_PATH"])
    return g.store


def close_store(exc=None):
    store = g.pop("store", None)
    if store is not None:
        store.close()


def get_settings_repo() -> SettingsRepo:
    return SettingsRepo(get_store())


def get_manager() -> RMAManager:
    settings = get_settings_repo()
    notifier = NotificationService(
        current_app.extensions[SENDER_EXTENSION],
        company_name=settings.fetch().company_info.name,
    )
    return RMAManager(get_store(), notifier, settings)


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    return data


def error_response(kind: str, details, status: int):
    return jsonify({"error": kind, "details": details}), status
