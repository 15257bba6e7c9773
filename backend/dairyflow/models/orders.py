from __future__ import annotations

from ..extensions import db
from dairyflow.time_utils import to_utc_z

ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_PREPARING = "preparing"
ORDER_READY = "ready"
ORDER_IN_TRANSIT = "in-transit"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

# Canonical forward flow; cancelled is reachable from any non-terminal state
ORDER_FLOW = [
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_PREPARING,
    ORDER_READY,
    ORDER_IN_TRANSIT,
    ORDER_DELIVERED,
]
ORDER_STATUSES = set(ORDER_FLOW) | {ORDER_CANCELLED}
ORDER_TERMINAL_STATUSES = {ORDER_DELIVERED, ORDER_CANCELLED}

# Short vocabulary used by older clients
LEGACY_ORDER_STATUS_MAP = {"processing": ORDER_PREPARING}

DELIVERY_ADDRESS_KEYS = {"street", "city", "zip_code", "country"}


class Order(db.Model):
    """
    Client order document.

    Lines are snapshots (name, unit price, quantity) taken at creation and
    match exactly the stock reserved for the order. Totals are computed once.
    Tracking is the append-only OrderTrackingEvent log; `status` mirrors the
    latest event.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_client_created", "client_id", "created_at"),
        db.Index("ix_orders_status_delivery", "status", "delivery_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    client_name = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    delivery_address = db.Column(db.JSON, nullable=False)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=False)
    delivery_time = db.Column(db.String(32), nullable=True)
    special_instructions = db.Column(db.Text, nullable=True)

    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    driver_name = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.line_number",
    )
    tracking_events = db.relationship(
        "OrderTrackingEvent",
        backref="order",
        lazy=True,
        order_by="OrderTrackingEvent.sequence",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in ORDER_TERMINAL_STATUSES

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "delivery_address": dict(self.delivery_address or {}),
            "delivery_date": to_utc_z(self.delivery_date),
            "delivery_time": self.delivery_time,
            "special_instructions": self.special_instructions,
            "driver_id": self.driver_id,
            "driver_name": self.driver_name,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
            data["tracking"] = {
                "status": self.status,
                "events": [ev.to_dict() for ev in self.tracking_events],
            }
        return data


class OrderLine(db.Model):
    """Immutable line snapshot; quantity is exactly what was reserved."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_number", name="uq_order_lines_order_line"),
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(8), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit": self.unit,
            "quantity": float(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderTrackingEvent(db.Model):
    """
    Append-only tracking log entry.

    Rows are inserted by order_service and never updated or deleted.
    sequence is 1-based and unique per order.
    """
    __tablename__ = "order_tracking_events"
    __table_args__ = (
        db.UniqueConstraint("order_id", "sequence", name="uq_order_tracking_order_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    note = db.Column(db.String(500), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "status": self.status,
            "timestamp": to_utc_z(self.occurred_at),
            "note": self.note,
            "location": self.location,
            "updated_by": self.updated_by_user_id,
        }
