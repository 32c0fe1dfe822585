"""
Access Request Blueprint.

HTTP surface over the access-request lifecycle service. The requester's
identity is resolved upstream and forwarded in headers:

    X-Requester-Id          opaque requester identifier
    X-Requester-Department  IT | FINANCE | HR | OPERATIONS | OTHER

Endpoints:
    POST   /api/v1/access-requests
           Body: {"module_ids": [1, 2], "justification": "...", "urgent": false}
           Returns: 201 with the ACTIVE or DENIED record.

    GET    /api/v1/access-requests
           Query: status, urgent, search, requested_from, requested_to, page, per_page
           Returns: 200 {items, total, page, per_page, pages}, most recent first.

    GET    /api/v1/access-requests/<id>
    GET    /api/v1/access-requests/<id>/history
    POST   /api/v1/access-requests/<id>/renew     → 201 with the new request
    POST   /api/v1/access-requests/<id>/cancel    Body: {"reason": "..."}

Layer contract:
    - Blueprint: read identity, parse input, call service, serialize.
    - NO db.session calls here; all writes are owned by the service.
    - Denied decisions are successful responses (201), not errors.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from app.core.exceptions import ValidationError
from app.services import history_service
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

access_request_bp = Blueprint("access_requests", __name__, url_prefix="/api/v1/access-requests")
register_error_handlers(access_request_bp)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _service():
    return current_app.extensions["access_requests"]


def _requester():
    """Return (requester_id, department, err_response)."""
    requester_id = (request.headers.get("X-Requester-Id") or "").strip()
    department = (request.headers.get("X-Requester-Department") or "").strip()
    if not requester_id:
        return None, None, api_error(E.UNAUTHENTICATED, "Requester identity is missing")
    return requester_id, department, None


def _parse_bool(value):
    if value is None or value == "":
        return None
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes"):
        return True
    if lowered in ("0", "false", "no"):
        return False
    raise ValidationError(f"Invalid boolean '{value}'")


def _parse_datetime(name: str, value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}", details={name: "expected ISO 8601"}) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _serialize(req) -> dict:
    return req.to_dict(now=_service().now())


# ── Routes ───────────────────────────────────────────────────────────────────


@access_request_bp.route("", methods=["POST"])
def create_access_request():
    """Submit a new request; the decision is made synchronously."""
    requester_id, department, err = _requester()
    if err:
        return err
    if not department:
        return api_error(E.UNAUTHENTICATED, "Requester department is missing")

    data = request.get_json(silent=True) or {}
    module_ids = data.get("module_ids")
    if not isinstance(module_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "Field 'module_ids' must be a list.")
    urgent = data.get("urgent", False)
    if not isinstance(urgent, bool):
        return api_error(E.VALIDATION_INVALID, "Field 'urgent' must be a boolean.",
                         details={"urgent": "expected true or false"})

    req = _service().create(
        requester_id=requester_id,
        department=department,
        module_ids=module_ids,
        justification=data.get("justification") or "",
        urgent=urgent,
    )
    return jsonify(_serialize(req)), 201


@access_request_bp.route("", methods=["GET"])
def list_access_requests():
    requester_id, _, err = _requester()
    if err:
        return err

    args = request.args
    try:
        page = int(args.get("page", 1))
        per_page = int(args.get("per_page", 20))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "page and per_page must be integers")

    result = _service().list_requests(
        requester_id,
        status=(args.get("status") or "").upper() or None,
        urgent=_parse_bool(args.get("urgent")),
        search=args.get("search"),
        requested_from=_parse_datetime("requested_from", args.get("requested_from")),
        requested_to=_parse_datetime("requested_to", args.get("requested_to")),
        page=page,
        per_page=per_page,
    )
    result["items"] = [_serialize(r) for r in result["items"]]
    return jsonify(result), 200


@access_request_bp.route("/<int:request_id>", methods=["GET"])
def get_access_request(request_id: int):
    """Request detail with its history."""
    requester_id, _, err = _requester()
    if err:
        return err

    req = _service().get_request(request_id, requester_id)
    body = _serialize(req)
    body["history"] = [h.to_dict() for h in history_service.history_for(req.id)]
    return jsonify(body), 200


@access_request_bp.route("/<int:request_id>/history", methods=["GET"])
def get_access_request_history(request_id: int):
    requester_id, _, err = _requester()
    if err:
        return err

    entries = _service().get_history(request_id, requester_id)
    return jsonify({"history": [h.to_dict() for h in entries], "total": len(entries)}), 200


@access_request_bp.route("/<int:request_id>/renew", methods=["POST"])
def renew_access_request(request_id: int):
    requester_id, _, err = _requester()
    if err:
        return err

    renewed = _service().renew(request_id, requester_id)
    return jsonify(_serialize(renewed)), 201


@access_request_bp.route("/<int:request_id>/cancel", methods=["POST"])
def cancel_access_request(request_id: int):
    requester_id, _, err = _requester()
    if err:
        return err

    data = request.get_json(silent=True) or {}
    req = _service().cancel(request_id, requester_id, data.get("reason") or "")
    return jsonify(_serialize(req)), 200
