from __future__ import annotations

from flask import Blueprint, jsonify, request, g

from ..extensions import db
from ..decorators import require_auth
from ..models import Promotion
from ..services import promotions_service
from ..services.tenant_service import get_owned
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_promotion,
    validate_payload,
)

PROMOTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "description", "discount_type", "discount_value",
        "min_order_value_cents", "max_discount_value_cents", "usage_limit",
        "status", "expiry_date", "show_on_storefront",
    },
    required_on_create={"code", "discount_type", "discount_value"},
)

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


@promotions_bp.route("", methods=["GET"])
@require_auth
def list_promotions():
    result = promotions_service.list_promotions(g.owner_id, status=request.args.get("status"))
    return jsonify({"items": [p.to_dict() for p in result], "count": len(result)})


@promotions_bp.route("", methods=["POST"])
@require_auth
def create_promotion():
    data = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Promotion, payload=data, policy=PROMOTION_POLICY, partial=False)
        enforce_rules_promotion(patch)
        promo = promotions_service.create_promotion(g.owner_id, patch)
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    return jsonify(promo.to_dict()), 201


@promotions_bp.route("/<int:promo_id>", methods=["PATCH"])
@require_auth
def update_promotion(promo_id: int):
    data = request.get_json(silent=True) or {}
    existing = get_owned(Promotion, promo_id, g.owner_id)
    if existing is None:
        return jsonify({"error": "Not found"}), 404
    try:
        patch = validate_payload(model=Promotion, payload=data, policy=PROMOTION_POLICY, partial=True)
        enforce_rules_promotion(patch, discount_type=existing.discount_type)
        promo = promotions_service.update_promotion(g.owner_id, promo_id, patch)
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    if not promo:
        return jsonify({"error": "Not found"}), 404
    return jsonify(promo.to_dict())


@promotions_bp.route("/<int:promo_id>", methods=["DELETE"])
@require_auth
def delete_promotion(promo_id: int):
    try:
        deleted = promotions_service.delete_promotion(g.owner_id, promo_id)
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    if not deleted:
        return jsonify({"error": "Not found"}), 404
    return jsonify({"ok": True})
