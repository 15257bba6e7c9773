from __future__ import annotations

from ..extensions import db
from dairyflow.time_utils import to_utc_z

INVOICE_DRAFT = "draft"
INVOICE_SENT = "sent"
INVOICE_PAID = "paid"
INVOICE_OVERDUE = "overdue"
INVOICE_CANCELLED = "cancelled"

INVOICE_STATUSES = {INVOICE_DRAFT, INVOICE_SENT, INVOICE_PAID, INVOICE_OVERDUE, INVOICE_CANCELLED}
INVOICE_TERMINAL_STATUSES = {INVOICE_PAID, INVOICE_CANCELLED}

PAYMENT_METHODS = {"cash", "bank_transfer", "card", "check", "other"}


class Invoice(db.Model):
    """
    Invoice document.

    Lines are snapshots independent of live product data. Totals obey
    total_cents == subtotal_cents + tax_cents - discount_cents and are
    written once at creation.

    LIFECYCLE: draft -> sent -> paid, sent -> overdue -> paid,
    draft/sent/overdue -> cancelled. paid and cancelled are terminal.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_status_due", "status", "due_date"),
        db.Index("ix_invoices_client_issue", "client_id", "issue_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    client_name = db.Column(db.String(255), nullable=False)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_DRAFT, index=True)

    issue_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    terms_and_conditions = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("invoices", lazy=True))
    client = db.relationship("Client", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="InvoiceLine.line_number",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "issue_date": to_utc_z(self.issue_date),
            "due_date": to_utc_z(self.due_date),
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
            "paid_date": to_utc_z(self.paid_date) if self.paid_date else None,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "notes": self.notes,
            "terms_and_conditions": self.terms_and_conditions,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """Invoice line snapshot."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_invoice_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "description": self.description,
            "quantity": float(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }
