from __future__ import annotations

from ..extensions import db
from dairyflow.time_utils import to_utc_z

BATCH_PENDING = "pending"
BATCH_IN_PROGRESS = "in-progress"
BATCH_COMPLETED = "completed"
BATCH_FAILED = "failed"
BATCH_CANCELLED = "cancelled"

BATCH_STATUSES = {BATCH_PENDING, BATCH_IN_PROGRESS, BATCH_COMPLETED, BATCH_FAILED, BATCH_CANCELLED}
BATCH_TERMINAL_STATUSES = {BATCH_COMPLETED, BATCH_FAILED, BATCH_CANCELLED}

BATCH_PRODUCT_TYPES = {"milk", "yogurt", "cheese", "butter", "cream", "other"}
BATCH_UNITS = {"L", "kg", "units"}

# Closed vocabulary for quality checks
QUALITY_CHECK_KEYS = {"temperature", "ph", "bacteria", "fat_content"}
QUALITY_CHECK_RESULTS = {"pending", "passed", "failed"}
DEFAULT_QUALITY_CHECKS = {key: "pending" for key in QUALITY_CHECK_KEYS}


def _num(value):
    return float(value) if value is not None else None


class Batch(db.Model):
    """
    Production batch.

    LIFECYCLE: pending -> in-progress -> completed | failed | cancelled.
    completed/failed/cancelled are terminal. Only the transition into
    completed credits stock (quantity * yield_pct / 100 to product_id),
    and it happens in the same transaction as the status change.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.Index("ix_batches_status_start", "status", "start_time"),
        db.CheckConstraint("quantity > 0", name="ck_batches_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_number = db.Column(db.String(64), nullable=False, unique=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_type = db.Column(db.String(16), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit = db.Column(db.String(8), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=BATCH_PENDING, index=True)

    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    operator_name = db.Column(db.String(255), nullable=False)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    temperature = db.Column(db.Numeric(5, 2), nullable=True)
    ph = db.Column(db.Numeric(4, 2), nullable=True)
    yield_pct = db.Column(db.Numeric(5, 2), nullable=True)

    quality_checks = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in BATCH_TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_number": self.batch_number,
            "product_name": self.product_name,
            "product_type": self.product_type,
            "product_id": self.product_id,
            "quantity": _num(self.quantity),
            "unit": self.unit,
            "status": self.status,
            "operator_id": self.operator_id,
            "operator_name": self.operator_name,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time) if self.end_time else None,
            "temperature": _num(self.temperature),
            "ph": _num(self.ph),
            "yield_pct": _num(self.yield_pct),
            "quality_checks": dict(self.quality_checks or {}),
            "notes": self.notes,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
