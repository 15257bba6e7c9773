# Overview: Service-layer invoicing; order snapshots, ad-hoc invoices, payment recording and the overdue sweep.

"""
Invoice Generator

- Invoices never touch stock.
- Lines and totals are snapshots written once at creation; the invariant
  total_cents == subtotal_cents + tax_cents - discount_cents always holds.
- An invoice from an order copies the order's lines and totals verbatim.
  The initial status is policy: argument, else INVOICE_INITIAL_STATUS.

LIFECYCLE:
    draft -> sent -> paid
    sent -> overdue -> paid          (overdue set by sweep_overdue_invoices)
    draft | sent | overdue -> cancelled
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..identifiers import new_invoice_number
from ..models import Client, Invoice, InvoiceLine, Order
from ..models.invoices import (
    INVOICE_CANCELLED,
    INVOICE_DRAFT,
    INVOICE_OVERDUE,
    INVOICE_PAID,
    INVOICE_SENT,
    INVOICE_STATUSES,
    PAYMENT_METHODS,
)
from ..models.orders import ORDER_CANCELLED
from ..pricing import document_totals, line_total_cents
from ..validation import (
    ModelValidationPolicy,
    clean_text,
    parse_cents,
    parse_datetime_field,
    parse_quantity,
    require_choice,
    validate_payload,
)
from dairyflow.time_utils import utcnow, to_utc_z
from .concurrency import begin_write, lock_for_update, run_with_retry
from .notification_service import KIND_PAYMENT_DUE, notify

INITIAL_STATUSES = {INVOICE_DRAFT, INVOICE_SENT}
PAYABLE_STATUSES = {INVOICE_SENT, INVOICE_OVERDUE}
CANCELLABLE_STATUSES = {INVOICE_DRAFT, INVOICE_SENT, INVOICE_OVERDUE}

# Draft-only edits; payment_terms_days is handled beside the policy since it is not a column
INVOICE_EDIT_POLICY = ModelValidationPolicy(
    writable_fields={"notes", "terms_and_conditions", "due_date"},
)
INVOICE_EDITABLE_FIELDS = INVOICE_EDIT_POLICY.writable_fields | {"payment_terms_days"}


def _payment_terms(value) -> int:
    if value is None:
        return current_app.config.get("DEFAULT_PAYMENT_TERMS_DAYS", 30)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("payment_terms_days must be an integer", details={"field": "payment_terms_days"})
    if value < 0:
        raise ValidationError("payment_terms_days must be >= 0", details={"field": "payment_terms_days"})
    return value


def _initial_status(value) -> str:
    status = value or current_app.config.get("INVOICE_INITIAL_STATUS", INVOICE_DRAFT)
    return require_choice(status, "initial_status", INITIAL_STATUSES)


def _load_for_update(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def _invalid(invoice: Invoice, target: str) -> InvalidTransitionError:
    return InvalidTransitionError(
        f"Cannot move invoice from {invoice.status} to {target}",
        details={"invoice_id": invoice.id, "from": invoice.status, "to": target},
    )


def payment_due_payload(invoice: Invoice) -> dict:
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "client_id": invoice.client_id,
        "client_name": invoice.client_name,
        "total_cents": invoice.total_cents,
        "due_date": to_utc_z(invoice.due_date),
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(
    status: str | None = None,
    client_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Invoice]:
    q = db.session.query(Invoice)
    if status:
        require_choice(status, "status", INVOICE_STATUSES)
        q = q.filter(Invoice.status == status)
    if client_id is not None:
        q = q.filter(Invoice.client_id == client_id)
    if start is not None:
        q = q.filter(Invoice.issue_date >= start)
    if end is not None:
        q = q.filter(Invoice.issue_date <= end)
    return q.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).all()


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def create_invoice_from_order(
    order_id: int,
    payment_terms_days: int | None = None,
    initial_status: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Snapshot an order into an invoice.

    Lines and totals are copied, never recomputed, so the invoice matches the
    order to the cent. Cancelled orders and orders that already carry a
    non-cancelled invoice raise InvalidTransitionError.
    """
    terms = _payment_terms(payment_terms_days)
    status = _initial_status(initial_status)

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        if order.status == ORDER_CANCELLED:
            raise InvalidTransitionError(
                "Cannot invoice a cancelled order",
                details={"order_id": order.id, "status": order.status},
            )

        existing = (
            db.session.query(Invoice.id, Invoice.invoice_number)
            .filter(Invoice.order_id == order.id, Invoice.status != INVOICE_CANCELLED)
            .first()
        )
        if existing is not None:
            raise InvalidTransitionError(
                "Order is already invoiced",
                details={"order_id": order.id, "invoice_id": existing[0], "invoice_number": existing[1]},
            )

        now = utcnow()
        invoice = Invoice(
            invoice_number=new_invoice_number(),
            order_id=order.id,
            client_id=order.client_id,
            client_name=order.client_name,
            subtotal_cents=order.subtotal_cents,
            tax_cents=order.tax_cents,
            discount_cents=order.discount_cents,
            total_cents=order.total_cents,
            status=status,
            issue_date=now,
            due_date=now + timedelta(days=terms),
            sent_at=now if status == INVOICE_SENT else None,
            created_by_user_id=actor_user_id,
        )
        db.session.add(invoice)
        db.session.flush()

        for line in order.lines:
            db.session.add(InvoiceLine(
                invoice_id=invoice.id,
                line_number=line.line_number,
                description=line.product_name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                total_cents=line.line_total_cents,
            ))

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Invoice %s (%s) created from order %s by user %s",
        invoice.invoice_number,
        invoice.status,
        order_id,
        actor_user_id,
    )
    return invoice


def _parse_invoice_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", details={"field": "items"})

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        description = item.get("description")
        if not isinstance(description, str) or not description.strip():
            raise ValidationError(
                f"items[{index}].description is required",
                details={"field": f"items[{index}].description"},
            )
        if len(description.strip()) > 255:
            raise ValidationError(f"items[{index}].description exceeds max length 255")
        qty = parse_quantity(item.get("quantity"), f"items[{index}].quantity")
        unit_price = parse_cents(item.get("unit_price_cents"), f"items[{index}].unit_price_cents")
        parsed.append({
            "description": description.strip(),
            "quantity": qty,
            "unit_price_cents": unit_price,
            "total_cents": line_total_cents(unit_price, qty),
        })
    return parsed


def create_invoice(
    client_id: int,
    items,
    discount_cents=0,
    due_date=None,
    payment_terms_days: int | None = None,
    notes: str | None = None,
    terms_and_conditions: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Ad-hoc invoice not tied to an order.

    total = subtotal + 20% tax - discount, with 0 <= discount <= subtotal + tax.
    due_date wins over payment_terms_days when both are given.
    """
    lines = _parse_invoice_items(items)
    discount = parse_cents(discount_cents if discount_cents is not None else 0, "discount_cents")
    totals = document_totals([line["total_cents"] for line in lines], discount)
    gross = totals["subtotal_cents"] + totals["tax_cents"]
    if discount > gross:
        raise ValidationError(
            "discount_cents cannot exceed subtotal plus tax",
            details={"field": "discount_cents", "max": gross},
        )

    explicit_due = parse_datetime_field(due_date, "due_date")
    terms = _payment_terms(payment_terms_days)
    notes = clean_text(notes, "notes")
    terms_and_conditions = clean_text(terms_and_conditions, "terms_and_conditions")

    def _op():
        begin_write()
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFoundError("Client not found", details={"client_id": client_id})

        now = utcnow()
        invoice = Invoice(
            invoice_number=new_invoice_number(),
            client_id=client.id,
            client_name=client.name,
            status=INVOICE_DRAFT,
            issue_date=now,
            due_date=explicit_due or now + timedelta(days=terms),
            notes=notes,
            terms_and_conditions=terms_and_conditions,
            created_by_user_id=actor_user_id,
            **totals,
        )
        db.session.add(invoice)
        db.session.flush()

        for line_number, line in enumerate(lines, start=1):
            db.session.add(InvoiceLine(invoice_id=invoice.id, line_number=line_number, **line))

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Invoice %s created for client %s (%s cents) by user %s",
        invoice.invoice_number,
        client_id,
        invoice.total_cents,
        actor_user_id,
    )
    return invoice


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def update_invoice(invoice_id: int, payload: dict, actor_user_id: int | None = None) -> Invoice:
    """
    Edit the free-text fields and due date of a draft invoice.

    payment_terms_days recomputes due_date from issue_date; an explicit
    due_date wins when both are given. Lines and totals are never editable.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = dict(payload)
    has_terms = "payment_terms_days" in payload
    terms = payload.pop("payment_terms_days", None)
    if has_terms and terms is None:
        raise ValidationError("payment_terms_days cannot be null", details={"field": "payment_terms_days"})
    terms = _payment_terms(terms) if has_terms else None

    patch = validate_payload(model=Invoice, payload=payload, policy=INVOICE_EDIT_POLICY, partial=True)
    if not patch and terms is None:
        raise ValidationError("No editable fields supplied", details={"allowed": sorted(INVOICE_EDITABLE_FIELDS)})
    for key in ("notes", "terms_and_conditions"):
        if key in patch:
            patch[key] = patch[key] or None
    edited = sorted(patch) + (["payment_terms_days"] if has_terms else [])

    def _op():
        begin_write()
        invoice = _load_for_update(invoice_id)
        if invoice.status != INVOICE_DRAFT:
            raise InvalidTransitionError(
                f"Cannot edit a {invoice.status} invoice",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        if terms is not None and "due_date" not in patch:
            invoice.due_date = invoice.issue_date + timedelta(days=terms)
        for key, value in patch.items():
            setattr(invoice, key, value)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Invoice %s edited (%s) by user %s",
        invoice.invoice_number,
        ", ".join(edited),
        actor_user_id,
    )
    return invoice


def send_invoice(invoice_id: int) -> Invoice:
    def _op():
        begin_write()
        invoice = _load_for_update(invoice_id)
        if invoice.status != INVOICE_DRAFT:
            raise _invalid(invoice, INVOICE_SENT)
        invoice.status = INVOICE_SENT
        invoice.sent_at = utcnow()
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def mark_invoice_paid(invoice_id: int, method, reference: str | None = None) -> Invoice:
    """Record payment; only sent or overdue invoices can be paid."""
    method = require_choice(method, "payment_method", PAYMENT_METHODS)
    reference = clean_text(reference, "payment_reference")
    if reference and len(reference) > 128:
        raise ValidationError("payment_reference exceeds max length 128")

    def _op():
        begin_write()
        invoice = _load_for_update(invoice_id)
        if invoice.status not in PAYABLE_STATUSES:
            raise _invalid(invoice, INVOICE_PAID)
        invoice.status = INVOICE_PAID
        invoice.paid_date = utcnow()
        invoice.payment_method = method
        invoice.payment_reference = reference
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Invoice %s paid (%s)", invoice.invoice_number, method)
    return invoice


def cancel_invoice(invoice_id: int, reason: str | None = None, actor_user_id: int | None = None) -> Invoice:
    reason = clean_text(reason, "reason")

    def _op():
        begin_write()
        invoice = _load_for_update(invoice_id)
        if invoice.status not in CANCELLABLE_STATUSES:
            raise _invalid(invoice, INVOICE_CANCELLED)
        invoice.status = INVOICE_CANCELLED
        invoice.cancelled_at = utcnow()
        invoice.cancel_reason = reason[:255] if reason else None
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Invoice %s cancelled by user %s", invoice.invoice_number, actor_user_id)
    return invoice


def sweep_overdue_invoices(now: datetime | None = None) -> list[Invoice]:
    """
    Flip sent invoices past their due date to overdue.

    One conditional UPDATE; rows already overdue are untouched, so running
    the sweep twice changes nothing the second time. Each newly overdue
    invoice gets one payment-due notification.
    """
    now = now or utcnow()

    def _op():
        begin_write()
        ids = [
            row[0]
            for row in db.session.query(Invoice.id)
            .filter(Invoice.status == INVOICE_SENT, Invoice.due_date < now)
            .all()
        ]
        if not ids:
            db.session.commit()
            return []

        db.session.execute(
            update(Invoice)
            .where(Invoice.id.in_(ids), Invoice.status == INVOICE_SENT, Invoice.due_date < now)
            .values(status=INVOICE_OVERDUE, version_id=Invoice.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return (
            db.session.query(Invoice)
            .filter(Invoice.id.in_(ids), Invoice.status == INVOICE_OVERDUE)
            .populate_existing()
            .order_by(Invoice.due_date.asc())
            .all()
        )

    overdue = run_with_retry(_op)
    for invoice in overdue:
        notify(KIND_PAYMENT_DUE, payment_due_payload(invoice))
    if overdue:
        current_app.logger.info("Marked %d invoice(s) overdue", len(overdue))
    return overdue
