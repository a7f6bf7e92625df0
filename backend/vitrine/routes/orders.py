# Overview: Flask API routes for orders; parses input and returns JSON responses.

from __future__ import annotations

from flask import Blueprint, jsonify, request, g, current_app

from ..extensions import db
from ..decorators import require_auth, current_actor_name
from ..services import order_service
from ..services.order_service import OrderError
from ..services.promotions_service import CouponError
from ..validation import ValidationError

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _domain_error(e: Exception):
    db.session.rollback()
    if isinstance(e, CouponError):
        return jsonify({"error": str(e), "reason": e.reason, "details": e.details}), 400
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    status = 404 if str(e) == "Order not found" else 400
    return jsonify({"error": str(e), "details": e.details}), status


@orders_bp.route("", methods=["GET"])
@require_auth
def list_orders():
    try:
        orders = order_service.list_orders(
            g.owner_id,
            status=request.args.get("status"),
            source=request.args.get("source"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)})


@orders_bp.route("", methods=["POST"])
@require_auth
def create_order():
    data = request.get_json(silent=True) or {}
    try:
        result = order_service.create_order(g.owner_id, data, actor=current_actor_name())
    except (OrderError, CouponError, ValidationError) as e:
        return _domain_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result.to_dict()), 201


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_auth
def get_order(order_id: int):
    order = order_service.get_order(g.owner_id, order_id)
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    return jsonify(order.to_dict())


@orders_bp.route("/<int:order_id>", methods=["PUT"])
@require_auth
def save_order(order_id: int):
    """
    Edit header fields, items, coupon_code and/or status. Moving the order
    into delivered fulfills it; "outcomes" reports each line.
    """
    data = request.get_json(silent=True) or {}
    try:
        result = order_service.save_order(g.owner_id, order_id, data, actor=current_actor_name())
    except (OrderError, CouponError, ValidationError) as e:
        return _domain_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to save order")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result.to_dict())


@orders_bp.route("/<int:order_id>", methods=["DELETE"])
@require_auth
def delete_order(order_id: int):
    try:
        deleted = order_service.delete_order(g.owner_id, order_id)
    except OrderError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "details": e.details}), 409
    if not deleted:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"ok": True}), 200


@orders_bp.route("/<int:order_id>/confirm", methods=["POST"])
@require_auth
def confirm_order(order_id: int):
    try:
        result = order_service.confirm_order(g.owner_id, order_id, actor=current_actor_name())
    except (OrderError, CouponError, ValidationError) as e:
        return _domain_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result.to_dict())
