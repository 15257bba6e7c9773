# Overview: Flask API routes for clients and the client counters cache; parses input and returns JSON responses.

# backend/dairyflow/routes/clients.py
"""Client API routes with permission enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError
from ..services import client_service
from ._params import json_body, query_int

clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


@clients_bp.get("/")
@require_auth
@require_permission("VIEW_DATA")
def list_clients_route():
    clients = client_service.list_clients(
        status=request.args.get("status"),
        client_type=request.args.get("type"),
        search=request.args.get("search"),
    )
    return jsonify({"clients": [c.to_dict() for c in clients]}), 200


@clients_bp.get("/<int:client_id>")
@require_auth
@require_permission("VIEW_DATA")
def get_client_route(client_id: int):
    try:
        return jsonify({"client": client_service.get_client(client_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@clients_bp.get("/<int:client_id>/stats")
@require_auth
@require_permission("VIEW_DATA")
def client_stats_route(client_id: int):
    try:
        return jsonify({"stats": client_service.get_client_stats(client_id)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@clients_bp.post("/")
@require_auth
@require_permission("MANAGE_CLIENTS")
def create_client_route():
    try:
        client = client_service.create_client(json_body())
        current_app.logger.info("Client %s created by user %s", client.id, g.current_user.id)
        return jsonify({"client": client.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create client")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.patch("/<int:client_id>")
@require_auth
@require_permission("MANAGE_CLIENTS")
def update_client_route(client_id: int):
    """Contact and terms fields only; cached counters are read-only."""
    try:
        client = client_service.update_client(client_id, json_body())
        return jsonify({"client": client.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update client")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.post("/rebuild-counters")
@require_auth
@require_permission("REBUILD_COUNTERS")
def rebuild_counters_route():
    """
    Recompute cached counters from orders.

    Query: ?client_id=<id> limits the rebuild to one client.

    Requires: REBUILD_COUNTERS permission
    Available to: admin
    """
    try:
        clients = client_service.rebuild_client_counters(query_int("client_id"))
        return jsonify({"clients": [c.to_dict() for c in clients]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to rebuild client counters")
        return jsonify({"error": "Internal server error"}), 500
