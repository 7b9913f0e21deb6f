"""RMA API Routes"""

from flask import Blueprint, Response, jsonify, request

from rmadesk.auth import current_actor, login_required
from rmadesk.errors import ValidationError
from rmadesk.observability.structured_logger import app_logger, log_request
from rmadesk.pdf import render_rma_pdf
from rmadesk.rma.manager import serialize_case
from rmadesk.web import get_manager, get_settings_repo, json_body

bp = Blueprint("rma", __name__, url_prefix="/rma")


def _action_response(result: dict, status: int = 200):
    return jsonify({
        "success": True,
        "rma": serialize_case(result["rma"]),
        "notification": result["notification"],
    }), status


def _product_ids(data: dict) -> list:
    product_ids = data.get("productIds") or []
    if not isinstance(product_ids, list):
        raise ValidationError("productIds must be a list")
    return product_ids


def _string_map(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict) or not all(v is None or isinstance(v, str) for v in value.values()):
        raise ValidationError(f"{key} must be an object mapping product ids to text")
    return value


# =============================
# Raise / read / edit
# =============================

@bp.route("", methods=["POST"])
@login_required
@log_request(app_logger)
def raise_rma():
    """
    Raise a new RMA for a contact.

    POST /rma
    Body: {
        "contactId": "c1",
        "comments": "Customer drop-off",
        "products": [
            {"brand": "Acme", "modelNumber": "X1", "serialNumber": "SN1",
             "problemsReported": "No power", "customFields": {}, "isSaved": true}
        ]
    }
    """
    result = get_manager().raise_rma(json_body(), actor=current_actor())
    return _action_response(result, 201)


@bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    return jsonify({"success": True, **get_manager().dashboard()})


@bp.route("/search", methods=["GET"])
@login_required
def search_rmas():
    """GET /rma/search?q=SN123 - one row per matching product."""
    results = get_manager().search(request.args.get("q", ""))
    return jsonify({"success": True, "count": len(results), "results": results})


@bp.route("/stage/<status>", methods=["GET"])
@login_required
def list_stage(status: str):
    """GET /rma/stage/ready?q=acme"""
    cases = get_manager().list_stage(status, request.args.get("q", ""))
    return jsonify({"success": True, "count": len(cases), "rmas": [serialize_case(c) for c in cases]})


@bp.route("/<rma_id>", methods=["GET"])
@login_required
def get_rma(rma_id: str):
    return jsonify({"success": True, "rma": serialize_case(get_manager().get_rma(rma_id))})


@bp.route("/<rma_id>", methods=["PUT"])
@login_required
@log_request(app_logger)
def update_rma(rma_id: str):
    case = get_manager().update_rma(rma_id, json_body(), actor=current_actor())
    return jsonify({"success": True, "rma": serialize_case(case)})


@bp.route("/<rma_id>", methods=["DELETE"])
@login_required
@log_request(app_logger)
def delete_rma(rma_id: str):
    get_manager().delete_rma(rma_id, actor=current_actor())
    return jsonify({"success": True})


# =============================
# Workflow actions
# =============================

@bp.route("/<rma_id>/send-to-service-centre", methods=["POST"])
@login_required
@log_request(app_logger)
def send_to_service_centre(rma_id: str):
    """
    POST /rma/<id>/send-to-service-centre
    Body: {"productIds": ["p1"], "serviceCentreId": "sc1",
           "assignments": {"p2": "sc2"}, "remark": "..."}
    """
    data = json_body()
    result = get_manager().send_to_service_centre(
        rma_id,
        _product_ids(data),
        service_centre_id=data.get("serviceCentreId"),
        assignments=_string_map(data, "assignments"),
        remark=data.get("remark"),
        actor=current_actor(),
    )
    return _action_response(result)


@bp.route("/<rma_id>/remarks", methods=["POST"])
@login_required
@log_request(app_logger)
def save_remarks(rma_id: str):
    """Body: {"remarks": {"p1": "Screen replaced"}}"""
    data = json_body()
    case = get_manager().save_remarks(rma_id, _string_map(data, "remarks"), actor=current_actor())
    return jsonify({"success": True, "rma": serialize_case(case)})


@bp.route("/<rma_id>/mark-ready", methods=["POST"])
@login_required
@log_request(app_logger)
def mark_ready(rma_id: str):
    data = json_body()
    result = get_manager().mark_ready(rma_id, _product_ids(data), remark=data.get("remark"),
                                      actor=current_actor())
    return _action_response(result)


@bp.route("/<rma_id>/mark-delivered", methods=["POST"])
@login_required
@log_request(app_logger)
def mark_delivered(rma_id: str):
    """Body: {"productIds": ["p1"], "otps": {"p1": "123456"}} or a shared "otp"."""
    data = json_body()
    result = get_manager().mark_delivered(
        rma_id,
        _product_ids(data),
        otps=_string_map(data, "otps"),
        otp=data.get("otp"),
        remark=data.get("remark"),
        actor=current_actor(),
    )
    return _action_response(result)


@bp.route("/<rma_id>/products/<product_id>/resend-otp", methods=["POST"])
@login_required
@log_request(app_logger)
def resend_otp(rma_id: str, product_id: str):
    result = get_manager().resend_otp(rma_id, product_id, actor=current_actor())
    return _action_response(result)


@bp.route("/<rma_id>/pdf", methods=["GET"])
@login_required
def download_pdf(rma_id: str):
    case = get_manager().get_rma(rma_id)
    company = get_settings_repo().fetch().company_info
    return Response(
        render_rma_pdf(case, company),
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{case.id}.pdf"'},
    )
