# Overview: Public storefront API addressed by tenant slug; no authentication.

from flask import Blueprint, jsonify, request, current_app

from ..extensions import db
from ..services import storefront_service
from ..services.order_service import OrderError
from ..services.promotions_service import CouponError, list_storefront_promotions
from ..services.tenant_service import TenantAccessError, get_storefront_tenant
from ..validation import ValidationError
from vitrine.time_utils import to_utc_z

storefront_bp = Blueprint("storefront", __name__, url_prefix="/api/storefront/<slug>")


def _public_promotion(promo) -> dict:
    # Usage counters and limits stay private to the admin
    return {
        "code": promo.code,
        "description": promo.description,
        "discount_type": promo.discount_type,
        "discount_value": promo.discount_value,
        "min_order_value_cents": promo.min_order_value_cents,
        "max_discount_value_cents": promo.max_discount_value_cents,
        "expiry_date": to_utc_z(promo.expiry_date) if promo.expiry_date else None,
    }


@storefront_bp.get("/promotions")
def promotions(slug: str):
    try:
        tenant = get_storefront_tenant(slug)
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    promos = list_storefront_promotions(tenant.id)
    return jsonify({"items": [_public_promotion(p) for p in promos]})


@storefront_bp.post("/coupons/apply")
def apply_coupon(slug: str):
    """{code, subtotal_cents, customer_phone?} -> evaluation. Writes nothing."""
    data = request.get_json(silent=True) or {}
    try:
        tenant = get_storefront_tenant(slug)
        evaluation = storefront_service.preview_coupon(
            tenant.id,
            data.get("code"),
            data.get("subtotal_cents"),
            customer_phone=data.get("customer_phone"),
        )
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(evaluation.to_dict())


@storefront_bp.post("/orders")
def place_order(slug: str):
    data = request.get_json(silent=True) or {}
    try:
        tenant = get_storefront_tenant(slug)
        result = storefront_service.place_order(tenant.id, data)
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except CouponError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "reason": e.reason}), 400
    except OrderError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "details": e.details}), 400
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to place storefront order")
        return jsonify({"error": "Internal server error"}), 500

    order = result.order
    return jsonify({
        "order_id": order.id,
        "status": order.status,
        "items": [item.to_dict() for item in order.items],
        "items_total_cents": order.items_total_cents,
        "coupon_code": order.coupon_code,
        "coupon_discount_cents": order.coupon_discount_cents,
        "total_cents": order.total_cents,
    }), 201
