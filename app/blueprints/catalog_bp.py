"""
Catalog Blueprint — read-only module and department listings.

Endpoints:
    GET /api/v1/modules              ?active=true to hide deactivated modules
    GET /api/v1/modules/<id>         includes incompatible module ids
    GET /api/v1/departments
"""

import logging

from flask import Blueprint, jsonify, request

from app.services.catalog_service import Catalog
from app.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1")
register_error_handlers(catalog_bp)


@catalog_bp.route("/modules", methods=["GET"])
def list_modules():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    modules = Catalog().list_modules(active_only=active_only)
    return jsonify({"items": [m.to_dict() for m in modules], "total": len(modules)}), 200


@catalog_bp.route("/modules/<int:module_id>", methods=["GET"])
def get_module(module_id: int):
    catalog = Catalog()
    module = catalog.get_module(module_id)
    body = module.to_dict()
    body["incompatible_with"] = [
        {"id": other.id, "name": other.name}
        for other in (catalog.get_module(i) for i in catalog.incompatible_with(module_id))
    ]
    return jsonify(body), 200


@catalog_bp.route("/departments", methods=["GET"])
def list_departments():
    departments = Catalog().list_departments()
    return jsonify({"items": [d.to_dict() for d in departments], "total": len(departments)}), 200
