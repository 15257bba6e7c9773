# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/dairyflow/routes/orders.py
"""Order API routes with permission enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError, ValidationError
from ..services import order_service
from ._params import json_body, query_datetime, query_int

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/")
@require_auth
@require_permission("VIEW_DATA")
def list_orders_route():
    try:
        orders = order_service.list_orders(
            status=request.args.get("status"),
            client_id=query_int("client_id"),
            start=query_datetime("start"),
            end=query_datetime("end"),
        )
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("VIEW_DATA")
def get_order_route(order_id: int):
    try:
        return jsonify({"order": order_service.get_order(order_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.post("/")
@require_auth
@require_permission("CREATE_ORDER")
def create_order_route():
    """
    Create order and reserve stock for every line.

    Body: {"client_id": int, "items": [{"product_id", "quantity"}],
           "delivery": {"address": {...}, "date": iso, "time"?, "special_instructions"?}}

    Requires: CREATE_ORDER permission
    Available to: admin, manager
    """
    try:
        data = json_body()
        client_id = data.get("client_id")
        if isinstance(client_id, bool) or not isinstance(client_id, int):
            raise ValidationError("client_id must be an integer", details={"field": "client_id"})

        order = order_service.create_order(
            client_id,
            data.get("items"),
            data.get("delivery"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"order": order.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
@require_auth
@require_permission("UPDATE_ORDER_STATUS")
def update_status_route(order_id: int):
    """
    Advance order status and append a tracking event.

    Requires: UPDATE_ORDER_STATUS permission
    Available to: admin, manager, operator, driver
    """
    try:
        data = json_body()
        order = order_service.update_order_status(
            order_id,
            data.get("status"),
            note=data.get("note"),
            location=data.get("location"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/delivery")
@require_auth
@require_permission("EDIT_ORDER")
def update_delivery_route(order_id: int):
    """
    Edit delivery details of an open order.

    Body: {"address"?: {...}, "date"?, "time"?, "special_instructions"?}

    Requires: EDIT_ORDER permission
    Available to: admin, manager
    """
    try:
        order = order_service.update_order_delivery(order_id, json_body(), actor_user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order delivery")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/assign-driver")
@require_auth
@require_permission("ASSIGN_DRIVER")
def assign_driver_route(order_id: int):
    try:
        data = json_body()
        order = order_service.assign_driver(
            order_id,
            data.get("driver_id"),
            driver_name=data.get("driver_name"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to assign driver")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_permission("CANCEL_ORDER")
def cancel_order_route(order_id: int):
    """
    Cancel order and release its stock.

    Requires: CANCEL_ORDER permission
    Available to: admin, manager
    """
    try:
        order = order_service.cancel_order(
            order_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
