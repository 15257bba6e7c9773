# Overview: Flask API routes for products and manual stock adjustments; parses input and returns JSON responses.

# backend/dairyflow/routes/products.py
"""Product catalog and stock API routes with permission enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError
from ..services import products_service, stock_service
from ._params import json_body

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/")
@require_auth
@require_permission("VIEW_DATA")
def list_products_route():
    try:
        products = products_service.list_products(
            category=request.args.get("category"),
            status=request.args.get("status"),
            search=request.args.get("search"),
        )
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.get("/low-stock")
@require_auth
@require_permission("VIEW_DATA")
def low_stock_route():
    """Products whose status is low, critical or out-of-stock, lowest stock first."""
    products = stock_service.list_low_stock()
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("VIEW_DATA")
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.post("/")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    """
    Create product.

    Requires: MANAGE_PRODUCTS permission
    Available to: admin, manager
    """
    try:
        product = products_service.create_product(json_body())
        current_app.logger.info("Product %s created by user %s", product.sku, g.current_user.id)
        return jsonify({"product": product.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    """
    Patch catalog fields (never current_stock).

    Requires: MANAGE_PRODUCTS permission
    Available to: admin, manager
    """
    try:
        product = products_service.update_product(product_id, json_body())
        return jsonify({"product": product.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>/stock")
@require_auth
@require_permission("ADJUST_STOCK")
def adjust_stock_route(product_id: int):
    """
    Manual stock adjustment.

    Body: {"type": "add" | "subtract" | "set", "quantity": number}

    Requires: ADJUST_STOCK permission
    Available to: admin, manager, operator
    """
    try:
        data = json_body()
        product = stock_service.adjust_stock(product_id, data.get("type"), data.get("quantity"))
        current_app.logger.info(
            "Stock %s of %s on product %s by user %s",
            data.get("type"),
            data.get("quantity"),
            product_id,
            g.current_user.id,
        )
        return jsonify({"product": product.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
