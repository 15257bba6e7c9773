from __future__ import annotations

from ..extensions import db
from dairyflow.time_utils import to_utc_z

CLIENT_TYPES = {"Restaurant", "Grocery", "Hotel", "Cafe", "Retail", "Wholesaler", "Other"}
CLIENT_STATUSES = {"active", "inactive", "suspended"}


class Client(db.Model):
    """
    Client master data.

    Denormalized aggregates (total_orders, total_revenue_cents,
    monthly_revenue_cents, last_order_date) are a cache maintained by
    client_service.bump after each order. They are not a ledger of record:
    client_service.rebuild_client_counters recomputes them from orders.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.Index("ix_clients_type_status", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=False)
    address = db.Column(db.Text, nullable=False)
    contact_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    rating = db.Column(db.Numeric(2, 1), nullable=True)
    payment_terms_days = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Denormalized aggregates (cache, see class docstring)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    monthly_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    last_order_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "contact_name": self.contact_name,
            "status": self.status,
            "rating": float(self.rating) if self.rating is not None else None,
            "payment_terms_days": self.payment_terms_days,
            "notes": self.notes,
            "total_orders": self.total_orders,
            "total_revenue_cents": self.total_revenue_cents,
            "monthly_revenue_cents": self.monthly_revenue_cents,
            "last_order_date": to_utc_z(self.last_order_date) if self.last_order_date else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
