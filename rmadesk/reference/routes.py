"""CRUD API for reference data and the settings document."""

from flask import Blueprint, jsonify

from rmadesk.auth import login_required
from rmadesk.errors import NotFoundError
from rmadesk.observability.structured_logger import app_logger, log_request
from rmadesk.reference.repo import BrandRepo, ContactRepo, CustomFieldRepo, ServiceCentreRepo
from rmadesk.web import get_settings_repo, get_store, json_body


def _dump(record) -> dict:
    return record.model_dump(by_alias=True, mode="json", exclude_none=True)


def crud_blueprint(name: str, url_prefix: str, repo_class) -> Blueprint:
    """list / create / get / update / delete routes for one reference collection."""
    bp = Blueprint(name, __name__, url_prefix=url_prefix)

    @bp.route("", methods=["GET"])
    @login_required
    def list_records():
        records = repo_class(get_store()).list()
        return jsonify({"success": True, "count": len(records), "items": [_dump(r) for r in records]})

    @bp.route("", methods=["POST"])
    @login_required
    def create_record():
        record = repo_class(get_store()).create(json_body())
        return jsonify({"success": True, "item": _dump(record)}), 201

    @bp.route("/<doc_id>", methods=["GET"])
    @login_required
    def get_record(doc_id: str):
        return jsonify({"success": True, "item": _dump(repo_class(get_store()).get(doc_id))})

    @bp.route("/<doc_id>", methods=["PUT"])
    @login_required
    def update_record(doc_id: str):
        record = repo_class(get_store()).update(doc_id, json_body())
        return jsonify({"success": True, "item": _dump(record)})

    @bp.route("/<doc_id>", methods=["DELETE"])
    @login_required
    def delete_record(doc_id: str):
        repo = repo_class(get_store())
        if not repo.delete(doc_id):
            raise NotFoundError(repo.collection_name, doc_id)
        return jsonify({"success": True})

    return bp


contacts_bp = crud_blueprint("contacts", "/contacts", ContactRepo)
brands_bp = crud_blueprint("brands", "/brands", BrandRepo)
service_centres_bp = crud_blueprint("service_centres", "/service-centres", ServiceCentreRepo)
custom_fields_bp = crud_blueprint("custom_fields", "/custom-fields", CustomFieldRepo)


@contacts_bp.route("/import", methods=["POST"])
@login_required
@log_request(app_logger)
def import_contacts():
    """
    Bulk-create contacts from rows already parsed out of a spreadsheet.

    POST /contacts/import
    Body: {"rows": [{"Name": "Jordan Lee", "Email": "jordan@example.com",
                     "Phone": "+1 555 0123", "Company": "Example Retail Ltd"}]}
    """
    ids = ContactRepo(get_store()).import_rows(json_body().get("rows"))
    return jsonify({"success": True, "imported": len(ids), "ids": ids}), 201


settings_bp = Blueprint("settings", __name__, url_prefix="/settings")


@settings_bp.route("", methods=["GET"])
@login_required
def get_settings():
    return jsonify({"success": True, "settings": get_settings_repo().fetch().to_document()})


@settings_bp.route("", methods=["PUT"])
@login_required
def save_settings():
    settings = get_settings_repo().save(json_body())
    return jsonify({"success": True, "settings": settings.to_document()})


BLUEPRINTS = (contacts_bp, brands_bp, service_centres_bp, custom_fields_bp, settings_bp)
