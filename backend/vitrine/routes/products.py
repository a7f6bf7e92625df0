# Overview: Flask API routes for products and stock; parses input and returns JSON responses.

# backend/vitrine/routes/products.py
"""
Product and stock routes with multi-tenant support.

MULTI-TENANT: All operations are scoped to the caller's tenant (g.owner_id,
set by @require_auth). Products of another tenant answer 404.

Stock is never written through the product fields. It changes only via the
stock endpoints below, each of which appends a ledger row.
"""
from flask import Blueprint, request, g, jsonify, current_app

from ..extensions import db
from ..models import Product
from ..services import products_service
from ..services import stock_ledger_service
from ..services import variant_stock_service
from ..services.stock_ledger_service import StockError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, current_actor_name

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "description", "price_cents", "is_active", "low_stock_threshold"},
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _stock_error(e: StockError):
    db.session.rollback()
    status = 404 if str(e) == "Product not found" else 400
    return jsonify({"error": str(e), "details": e.details}), status


@products_bp.get("")
@require_auth
def list_products():
    """Query params: active_only=true hides inactive products."""
    active_only = request.args.get("active_only", "false").lower() == "true"
    products = products_service.list_products(g.owner_id, include_inactive=not active_only)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Create a product. "stock" (default 0) becomes the initial_stock ledger row.
    """
    payload = dict(request.get_json(silent=True) or {})
    initial_stock = payload.pop("stock", 0)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = products_service.create_product(
            owner_id=g.owner_id,
            patch=patch,
            initial_stock=initial_stock,
            actor=current_actor_name(),
        )
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(product.to_dict(include_history=True)), 201


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = products_service.get_product(g.owner_id, product_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    include_history = request.args.get("include_history", "false").lower() == "true"
    return jsonify(product.to_dict(include_history=include_history))


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    if isinstance(payload, dict) and "stock" in payload:
        return jsonify({"error": "stock is changed through /stock, /variants or /returns"}), 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(owner_id=g.owner_id, product_id=product_id, patch=patch)
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409

    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify(product.to_dict())


@products_bp.put("/<int:product_id>/stock")
@require_auth
def adjust_stock_route(product_id: int):
    """
    Manual stock edit: {"new_stock": int, "notes": str?}.
    Setting the current value is a no-op and returns entry=null.
    """
    data = request.get_json(silent=True) or {}
    if "new_stock" not in data:
        return jsonify({"error": "new_stock is required"}), 400

    try:
        product, entry = stock_ledger_service.adjust_stock(
            owner_id=g.owner_id,
            product_id=product_id,
            new_stock=data["new_stock"],
            note=data.get("notes"),
            actor=current_actor_name(),
        )
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except StockError as e:
        return _stock_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "product": product.to_dict(),
        "entry": entry.to_dict() if entry else None,
    })


@products_bp.put("/<int:product_id>/variants")
@require_auth
def update_variants_route(product_id: int):
    """
    {"variant_ids": [...], "quantities": {variant_id: int}, "notes": str?}
    An empty variant_ids list turns aggregation off and keeps stock as is.
    """
    data = request.get_json(silent=True) or {}

    try:
        product, entry = variant_stock_service.apply_variant_stock(
            owner_id=g.owner_id,
            product_id=product_id,
            selected_variant_ids=data.get("variant_ids") or [],
            quantities=data.get("quantities") or {},
            note=data.get("notes"),
            actor=current_actor_name(),
        )
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except StockError as e:
        return _stock_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update variant stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "product": product.to_dict(),
        "entry": entry.to_dict() if entry else None,
    })


@products_bp.post("/<int:product_id>/returns")
@require_auth
def return_stock_route(product_id: int):
    """{"quantity": int, "reference_id": str?, "notes": str?, "variant_id": str?}"""
    data = request.get_json(silent=True) or {}
    if "quantity" not in data:
        return jsonify({"error": "quantity is required"}), 400

    try:
        product, entry = stock_ledger_service.return_stock(
            owner_id=g.owner_id,
            product_id=product_id,
            quantity=data["quantity"],
            reference_id=data.get("reference_id"),
            note=data.get("notes"),
            actor=current_actor_name(),
            variant_id=data.get("variant_id"),
        )
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except StockError as e:
        return _stock_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record return")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": product.to_dict(), "entry": entry.to_dict()}), 201


@products_bp.post("/stock/bulk")
@require_auth
def bulk_adjust_route():
    """{"updates": [{"product_id", "new_stock", "notes"?}, ...]}"""
    data = request.get_json(silent=True) or {}

    try:
        outcomes = stock_ledger_service.bulk_adjust_stock(
            owner_id=g.owner_id,
            updates=data.get("updates"),
            actor=current_actor_name(),
        )
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to apply bulk stock adjustment")
        return jsonify({"error": "Internal server error"}), 500

    summary = {
        status: sum(1 for o in outcomes if o["status"] == status)
        for status in ("adjusted", "unchanged", "failed")
    }
    return jsonify({"outcomes": outcomes, "summary": summary})


@products_bp.get("/<int:product_id>/stock-history")
@require_auth
def stock_history_route(product_id: int):
    """Oldest-first ledger plus any integrity warnings found replaying it."""
    try:
        entries = stock_ledger_service.list_stock_history(owner_id=g.owner_id, product_id=product_id)
    except StockError as e:
        return _stock_error(e)

    product = products_service.get_product(g.owner_id, product_id)
    warnings = stock_ledger_service.verify_stock_history(product)
    return jsonify({
        "product_id": product_id,
        "stock": product.stock,
        "entries": [e.to_dict() for e in entries],
        "integrity_warnings": [w.to_dict() for w in warnings],
    })


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    products = stock_ledger_service.low_stock_products(g.owner_id)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})
