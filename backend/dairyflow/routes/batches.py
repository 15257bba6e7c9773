# Overview: Flask API routes for production batches; parses input and returns JSON responses.

# backend/dairyflow/routes/batches.py
"""Production batch API routes with permission enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError
from ..services import batch_service
from ._params import json_body, query_datetime

batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.get("/")
@require_auth
@require_permission("VIEW_DATA")
def list_batches_route():
    try:
        batches = batch_service.list_batches(
            status=request.args.get("status"),
            product_type=request.args.get("product_type"),
            start=query_datetime("start"),
            end=query_datetime("end"),
        )
        return jsonify({"batches": [b.to_dict() for b in batches]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@batches_bp.get("/expiring")
@require_auth
@require_permission("VIEW_DATA")
def expiring_batches_route():
    try:
        within_days = request.args.get("days", default=7, type=int)
        return jsonify({"batches": batch_service.find_expiring_batches(within_days)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@batches_bp.get("/<int:batch_id>")
@require_auth
@require_permission("VIEW_DATA")
def get_batch_route(batch_id: int):
    try:
        return jsonify({"batch": batch_service.get_batch(batch_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@batches_bp.post("/")
@require_auth
@require_permission("MANAGE_BATCHES")
def create_batch_route():
    """
    Create batch (status pending). Operator defaults to the caller.

    Requires: MANAGE_BATCHES permission
    Available to: admin, manager, operator
    """
    try:
        batch = batch_service.create_batch(json_body(), actor_user_id=g.current_user.id)
        return jsonify({"batch": batch.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.post("/<int:batch_id>/start")
@require_auth
@require_permission("MANAGE_BATCHES")
def start_batch_route(batch_id: int):
    try:
        batch = batch_service.start_batch(batch_id, actor_user_id=g.current_user.id)
        return jsonify({"batch": batch.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to start batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.patch("/<int:batch_id>")
@require_auth
@require_permission("MANAGE_BATCHES")
def update_batch_route(batch_id: int):
    """Body: any of temperature, ph, notes. Rejected once the batch is terminal."""
    try:
        batch = batch_service.update_batch(batch_id, json_body(), actor_user_id=g.current_user.id)
        return jsonify({"batch": batch.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.patch("/<int:batch_id>/quality-checks")
@require_auth
@require_permission("MANAGE_BATCHES")
def quality_checks_route(batch_id: int):
    """Body: {"quality_checks": {"ph": "passed", ...}} merged into the stored map."""
    try:
        data = json_body()
        batch = batch_service.record_quality_checks(batch_id, data.get("quality_checks"))
        return jsonify({"batch": batch.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record quality checks")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.post("/<int:batch_id>/complete")
@require_auth
@require_permission("MANAGE_BATCHES")
def complete_batch_route(batch_id: int):
    """
    Complete batch; credits quantity * yield_pct / 100 to the linked product.

    Body: {"yield_pct": number?, "quality_checks": {...}?}
    """
    try:
        data = json_body()
        batch = batch_service.complete_batch(
            batch_id,
            yield_pct=data.get("yield_pct"),
            quality_checks=data.get("quality_checks"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"batch": batch.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.post("/<int:batch_id>/fail")
@require_auth
@require_permission("MANAGE_BATCHES")
def fail_batch_route(batch_id: int):
    try:
        batch = batch_service.fail_batch(
            batch_id, reason=json_body().get("reason"), actor_user_id=g.current_user.id
        )
        return jsonify({"batch": batch.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to fail batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.post("/<int:batch_id>/cancel")
@require_auth
@require_permission("MANAGE_BATCHES")
def cancel_batch_route(batch_id: int):
    try:
        batch = batch_service.cancel_batch(
            batch_id, reason=json_body().get("reason"), actor_user_id=g.current_user.id
        )
        return jsonify({"batch": batch.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel batch")
        return jsonify({"error": "Internal server error"}), 500
