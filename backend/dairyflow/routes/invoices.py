# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/dairyflow/routes/invoices.py
"""Invoice API routes with permission enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError, ValidationError
from ..services import invoice_service
from ._params import json_body, query_datetime, query_int

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("/")
@require_auth
@require_permission("VIEW_DATA")
def list_invoices_route():
    try:
        invoices = invoice_service.list_invoices(
            status=request.args.get("status"),
            client_id=query_int("client_id"),
            start=query_datetime("start"),
            end=query_datetime("end"),
        )
        return jsonify({"invoices": [i.to_dict(include_lines=False) for i in invoices]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission("VIEW_DATA")
def get_invoice_route(invoice_id: int):
    try:
        return jsonify({"invoice": invoice_service.get_invoice(invoice_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.post("/from-order/<int:order_id>")
@require_auth
@require_permission("MANAGE_INVOICES")
def invoice_from_order_route(order_id: int):
    """
    Snapshot an order into an invoice.

    Body (optional): {"payment_terms_days": int, "initial_status": "draft" | "sent"}

    Requires: MANAGE_INVOICES permission
    Available to: admin, manager
    """
    try:
        data = json_body()
        invoice = invoice_service.create_invoice_from_order(
            order_id,
            payment_terms_days=data.get("payment_terms_days"),
            initial_status=data.get("initial_status"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice from order")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/")
@require_auth
@require_permission("MANAGE_INVOICES")
def create_invoice_route():
    """
    Ad-hoc invoice.

    Body: {"client_id": int, "items": [{"description", "quantity", "unit_price_cents"}],
           "discount_cents"?, "due_date"?, "payment_terms_days"?, "notes"?, "terms_and_conditions"?}
    """
    try:
        data = json_body()
        client_id = data.get("client_id")
        if isinstance(client_id, bool) or not isinstance(client_id, int):
            raise ValidationError("client_id must be an integer", details={"field": "client_id"})

        invoice = invoice_service.create_invoice(
            client_id,
            data.get("items"),
            discount_cents=data.get("discount_cents", 0),
            due_date=data.get("due_date"),
            payment_terms_days=data.get("payment_terms_days"),
            notes=data.get("notes"),
            terms_and_conditions=data.get("terms_and_conditions"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>")
@require_auth
@require_permission("MANAGE_INVOICES")
def update_invoice_route(invoice_id: int):
    """
    Edit a draft invoice.

    Body: any of notes, terms_and_conditions, due_date, payment_terms_days.
    Lines and totals are fixed at creation.
    """
    try:
        invoice = invoice_service.update_invoice(invoice_id, json_body(), actor_user_id=g.current_user.id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/send")
@require_auth
@require_permission("MANAGE_INVOICES")
def send_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.send_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to send invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/pay")
@require_auth
@require_permission("MANAGE_INVOICES")
def pay_invoice_route(invoice_id: int):
    """Body: {"payment_method": "cash" | "bank_transfer" | "card" | "check" | "other", "payment_reference"?}"""
    try:
        data = json_body()
        invoice = invoice_service.mark_invoice_paid(
            invoice_id,
            data.get("payment_method"),
            reference=data.get("payment_reference"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record invoice payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_permission("CANCEL_INVOICE")
def cancel_invoice_route(invoice_id: int):
    """
    Requires: CANCEL_INVOICE permission
    Available to: admin, manager
    """
    try:
        invoice = invoice_service.cancel_invoice(
            invoice_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"error": "Internal server error"}), 500
