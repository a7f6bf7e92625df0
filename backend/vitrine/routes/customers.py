# Overview: Flask API routes for customers; parses input and returns JSON responses.

from __future__ import annotations

from flask import Blueprint, jsonify, request, g

from ..extensions import db
from ..decorators import require_auth
from ..models import Customer
from ..services import customers_service
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_customer,
    validate_payload,
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "phone", "email", "document",
        "zip_code", "address", "address_number", "neighborhood", "city", "state",
        "notes", "status",
    },
    required_on_create={"name", "phone"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes"}


@customers_bp.route("", methods=["GET"])
@require_auth
def list_customers():
    result = customers_service.list_customers(
        g.owner_id,
        search=request.args.get("q"),
        include_inactive=_truthy(request.args.get("include_inactive")),
    )
    return jsonify({"items": [c.to_dict() for c in result], "count": len(result)})


@customers_bp.route("", methods=["POST"])
@require_auth
def create_customer():
    data = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        customer = customers_service.create_customer(g.owner_id, patch)
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    return jsonify(customer.to_dict()), 201


@customers_bp.route("/<int:customer_id>", methods=["GET"])
@require_auth
def get_customer(customer_id: int):
    customer = customers_service.get_customer(g.owner_id, customer_id)
    if customer is None:
        return jsonify({"error": "Not found"}), 404
    return jsonify(customer.to_dict())


@customers_bp.route("/<int:customer_id>", methods=["PATCH"])
@require_auth
def update_customer(customer_id: int):
    data = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        customer = customers_service.update_customer(g.owner_id, customer_id, patch)
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    if customer is None:
        return jsonify({"error": "Not found"}), 404
    return jsonify(customer.to_dict())


@customers_bp.route("/<int:customer_id>", methods=["DELETE"])
@require_auth
def deactivate_customer(customer_id: int):
    """Deactivates; the record stays for its orders and coupon usages."""
    customer = customers_service.deactivate_customer(g.owner_id, customer_id)
    if customer is None:
        return jsonify({"error": "Not found"}), 404
    return jsonify(customer.to_dict())
