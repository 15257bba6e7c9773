from __future__ import annotations

from ..extensions import db
from dairyflow.time_utils import to_utc_z

PRODUCT_CATEGORIES = {"Milk", "Yogurt", "Cheese", "Butter", "Cream", "Other"}
PRODUCT_UNITS = {"L", "kg", "units", "g", "ml"}

STOCK_NORMAL = "normal"
STOCK_LOW = "low"
STOCK_CRITICAL = "critical"
STOCK_OUT = "out-of-stock"
STOCK_STATUSES = {STOCK_NORMAL, STOCK_LOW, STOCK_CRITICAL, STOCK_OUT}


def _qty(value):
    return float(value) if value is not None else None


class Product(db.Model):
    """
    Product master data and on-hand stock.

    STOCK OWNERSHIP:
    current_stock, status and last_restocked are written only by
    services/stock_service.py, always as a single conditional UPDATE that
    also recomputes status. Metadata edits (name, prices, thresholds) go
    through products_service and never touch current_stock.

    STATUS (pure function of current_stock and min_threshold):
    - out-of-stock: current_stock == 0
    - critical:     current_stock < 0.5 * min_threshold
    - low:          current_stock < min_threshold
    - normal:       otherwise
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category_name", "category", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(16), nullable=False, index=True)
    unit = db.Column(db.String(8), nullable=False)

    # Authoritative storage in cents
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    current_stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    min_threshold = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    max_capacity = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=STOCK_OUT, index=True)

    shelf_life_days = db.Column(db.Integer, nullable=True)
    supplier = db.Column(db.String(255), nullable=True)
    last_restocked = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "current_stock": _qty(self.current_stock),
            "min_threshold": _qty(self.min_threshold),
            "max_capacity": _qty(self.max_capacity),
            "status": self.status,
            "shelf_life_days": self.shelf_life_days,
            "supplier": self.supplier,
            "last_restocked": to_utc_z(self.last_restocked) if self.last_restocked else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
