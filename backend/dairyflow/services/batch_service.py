# Overview: Service-layer operations for production batches; lifecycle, quality checks and yield crediting.

"""
Batch Production Tracker

LIFECYCLE:
    pending -> in-progress -> completed | failed | cancelled
    (complete / fail / cancel are also accepted straight from pending)

- completed, failed and cancelled are terminal. Any further transition raises
  InvalidTransitionError, which is what makes completion credit stock at most
  once.
- Completion of a batch linked to a product credits
  quantity * yield_pct / 100 via stock_service.credit in the SAME transaction
  as the status change. The batch row is flushed first so a lost version_id
  race aborts before stock moves.
- quality_checks is a closed map (temperature, ph, bacteria, fat_content) of
  pending / passed / failed. Updates merge into the stored map.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..identifiers import new_batch_number
from ..models import Batch, Product, User
from ..models.production import (
    BATCH_CANCELLED,
    BATCH_COMPLETED,
    BATCH_FAILED,
    BATCH_IN_PROGRESS,
    BATCH_PENDING,
    BATCH_PRODUCT_TYPES,
    BATCH_STATUSES,
    BATCH_UNITS,
    DEFAULT_QUALITY_CHECKS,
    QUALITY_CHECK_KEYS,
    QUALITY_CHECK_RESULTS,
)
from ..validation import (
    clean_text,
    parse_datetime_field,
    parse_quantity,
    require_choice,
    validate_closed_map,
)
from dairyflow.time_utils import day_bounds, expires_at, utcnow, to_utc_z
from . import stock_service
from .concurrency import begin_write, lock_for_update, run_with_retry

# Shelf life assumed when the batch has no linked product (or the product has none)
DEFAULT_SHELF_LIFE_DAYS = 7

QUANTITY_EXPONENT = Decimal("0.001")

# Process readings (degrees Celsius, pH scale)
READING_BOUNDS = {
    "temperature": (Decimal("-50"), Decimal("150")),
    "ph": (Decimal("0"), Decimal("14")),
}

BATCH_EDIT_FIELDS = {"temperature", "ph", "notes"}


def _parse_yield(value) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError("yield_pct must be a number")
    try:
        pct = Decimal(str(value))
    except ArithmeticError:
        raise ValidationError("yield_pct must be a number")
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise ValidationError("yield_pct must be between 0 and 100")
    return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _parse_optional_decimal(value, field_name: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        parsed = Decimal(str(value))
    except ArithmeticError:
        raise ValidationError(f"{field_name} must be a number")
    if not parsed.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    low, high = READING_BOUNDS[field_name]
    if parsed < low or parsed > high:
        raise ValidationError(
            f"{field_name} must be between {low} and {high}",
            details={"field": field_name, "min": float(low), "max": float(high)},
        )
    return parsed.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _validate_checks(checks) -> dict:
    return validate_closed_map(
        checks,
        "quality_checks",
        allowed_keys=QUALITY_CHECK_KEYS,
        allowed_values=QUALITY_CHECK_RESULTS,
    )


def _merge_checks(batch: Batch, checks: dict) -> None:
    # JSON column: assign a new dict so the change is detected
    merged = dict(batch.quality_checks or {})
    merged.update(checks)
    batch.quality_checks = merged


def _load_for_update(batch_id: int) -> Batch:
    batch = lock_for_update(db.session.query(Batch).filter_by(id=batch_id)).first()
    if batch is None:
        raise NotFoundError("Batch not found", details={"batch_id": batch_id})
    return batch


def _reject_terminal(batch: Batch, target: str) -> None:
    if batch.is_terminal:
        raise InvalidTransitionError(
            f"Cannot move batch from {batch.status} to {target}",
            details={"batch_id": batch.id, "from": batch.status, "to": target},
        )


def _resolve_operator(data: dict, actor_user_id: int | None) -> tuple[int, str]:
    operator_id = data.get("operator_id", actor_user_id)
    if operator_id is None:
        raise ValidationError("operator_id is required", details={"field": "operator_id"})
    operator = db.session.get(User, operator_id)
    if operator is None:
        raise NotFoundError("Operator not found", details={"operator_id": operator_id})
    operator_name = data.get("operator_name") or operator.name
    return operator.id, str(operator_name).strip()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_batch(batch_id: int) -> Batch:
    batch = db.session.get(Batch, batch_id)
    if batch is None:
        raise NotFoundError("Batch not found", details={"batch_id": batch_id})
    return batch


def list_batches(
    status: str | None = None,
    product_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Batch]:
    q = db.session.query(Batch)
    if status:
        require_choice(status, "status", BATCH_STATUSES)
        q = q.filter(Batch.status == status)
    if product_type:
        require_choice(product_type, "product_type", BATCH_PRODUCT_TYPES)
        q = q.filter(Batch.product_type == product_type)
    if start is not None:
        q = q.filter(Batch.start_time >= start)
    if end is not None:
        q = q.filter(Batch.start_time <= end)
    return q.order_by(Batch.start_time.desc(), Batch.id.desc()).all()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def create_batch(data: dict, actor_user_id: int | None = None) -> Batch:
    """
    Register a new batch in status pending.

    batch_number is generated when absent; quality_checks default to every
    tracked check pending; start_time defaults to now.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    product_name = clean_text(data.get("product_name"), "product_name", 255)
    if not product_name:
        raise ValidationError("product_name is required", details={"field": "product_name"})
    product_type = require_choice(data.get("product_type"), "product_type", BATCH_PRODUCT_TYPES)
    unit = require_choice(data.get("unit"), "unit", BATCH_UNITS)
    quantity = parse_quantity(data.get("quantity"))

    checks = dict(DEFAULT_QUALITY_CHECKS)
    if data.get("quality_checks") is not None:
        checks.update(_validate_checks(data["quality_checks"]))

    start_time = parse_datetime_field(data.get("start_time"), "start_time") or utcnow()
    yield_pct = _parse_yield(data["yield_pct"]) if data.get("yield_pct") is not None else None
    batch_number = clean_text(data.get("batch_number"), "batch_number", 64)
    notes = clean_text(data.get("notes"), "notes")
    temperature = _parse_optional_decimal(data.get("temperature"), "temperature")
    ph = _parse_optional_decimal(data.get("ph"), "ph")

    def _op():
        begin_write()
        operator_id, operator_name = _resolve_operator(data, actor_user_id)

        product_id = data.get("product_id")
        if product_id is not None:
            if db.session.get(Product, product_id) is None:
                raise NotFoundError("Product not found", details={"product_id": product_id})

        batch = Batch(
            batch_number=batch_number or new_batch_number(),
            product_name=product_name,
            product_type=product_type,
            product_id=product_id,
            quantity=quantity,
            unit=unit,
            status=BATCH_PENDING,
            operator_id=operator_id,
            operator_name=operator_name,
            start_time=start_time,
            temperature=temperature,
            ph=ph,
            yield_pct=yield_pct,
            quality_checks=checks,
            notes=notes,
        )
        if db.session.query(Batch.id).filter_by(batch_number=batch.batch_number).first():
            raise ValidationError("batch_number already exists", details={"field": "batch_number"})

        db.session.add(batch)
        db.session.commit()
        return batch

    return run_with_retry(_op)


def start_batch(batch_id: int, actor_user_id: int | None = None) -> Batch:
    def _op():
        begin_write()
        batch = _load_for_update(batch_id)
        if batch.status != BATCH_PENDING:
            raise InvalidTransitionError(
                f"Cannot move batch from {batch.status} to {BATCH_IN_PROGRESS}",
                details={"batch_id": batch.id, "from": batch.status, "to": BATCH_IN_PROGRESS},
            )
        batch.status = BATCH_IN_PROGRESS
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    current_app.logger.info("Batch %s started by user %s", batch.batch_number, actor_user_id)
    return batch


def update_batch(batch_id: int, payload, actor_user_id: int | None = None) -> Batch:
    """
    Edit process readings (temperature, ph) and notes while not terminal.

    Lifecycle, quantity, yield and quality checks have their own operations
    and are not editable here. A null value clears the field.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(payload) - BATCH_EDIT_FIELDS)
    if unknown:
        raise ValidationError(
            f"Field not allowed: {unknown[0]}",
            details={"field": unknown[0], "allowed": sorted(BATCH_EDIT_FIELDS)},
        )
    if not payload:
        raise ValidationError("No editable fields supplied", details={"allowed": sorted(BATCH_EDIT_FIELDS)})

    patch = {}
    for key in ("temperature", "ph"):
        if key in payload:
            patch[key] = _parse_optional_decimal(payload[key], key)
    if "notes" in payload:
        patch["notes"] = clean_text(payload["notes"], "notes")

    def _op():
        begin_write()
        batch = _load_for_update(batch_id)
        if batch.is_terminal:
            raise InvalidTransitionError(
                f"Cannot edit a {batch.status} batch",
                details={"batch_id": batch.id, "status": batch.status},
            )
        for key, value in patch.items():
            setattr(batch, key, value)
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    current_app.logger.info(
        "Batch %s edited (%s) by user %s", batch.batch_number, ", ".join(sorted(patch)), actor_user_id
    )
    return batch


def record_quality_checks(batch_id: int, checks: dict) -> Batch:
    """Merge check results into the batch; allowed while not terminal."""
    cleaned = _validate_checks(checks)

    def _op():
        begin_write()
        batch = _load_for_update(batch_id)
        if batch.is_terminal:
            raise InvalidTransitionError(
                f"Cannot record quality checks on a {batch.status} batch",
                details={"batch_id": batch.id, "status": batch.status},
            )
        _merge_checks(batch, cleaned)
        db.session.commit()
        return batch

    return run_with_retry(_op)


def complete_batch(
    batch_id: int,
    yield_pct=None,
    quality_checks: dict | None = None,
    actor_user_id: int | None = None,
) -> Batch:
    """
    Complete a batch and credit its yield to the linked product.

    CRITICAL: status change and stock credit commit together. A second call
    finds the batch terminal and raises InvalidTransitionError, so stock is
    credited exactly once.
    """
    parsed_yield = _parse_yield(yield_pct) if yield_pct is not None else None
    cleaned_checks = _validate_checks(quality_checks) if quality_checks is not None else None

    def _op():
        begin_write()
        batch = _load_for_update(batch_id)
        _reject_terminal(batch, BATCH_COMPLETED)

        if parsed_yield is not None:
            batch.yield_pct = parsed_yield
        if cleaned_checks:
            _merge_checks(batch, cleaned_checks)

        if batch.product_id is not None and batch.yield_pct is None:
            raise ValidationError(
                "yield_pct is required to complete a batch linked to a product",
                details={"field": "yield_pct", "batch_id": batch.id},
            )

        batch.status = BATCH_COMPLETED
        batch.end_time = utcnow()
        # Version check happens here, before any stock moves
        db.session.flush()

        if batch.product_id is not None:
            produced = (
                Decimal(batch.quantity) * Decimal(batch.yield_pct) / Decimal(100)
            ).quantize(QUANTITY_EXPONENT, rounding=ROUND_HALF_UP)
            if produced > 0:
                stock_service.credit(batch.product_id, produced, commit=False)

        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    current_app.logger.info(
        "Batch %s completed (yield %s%%) by user %s",
        batch.batch_number,
        batch.yield_pct,
        actor_user_id,
    )
    return batch


def fail_batch(batch_id: int, reason: str | None = None, actor_user_id: int | None = None) -> Batch:
    """Mark a batch failed. No stock effect."""
    return _close_without_credit(batch_id, BATCH_FAILED, reason, actor_user_id)


def cancel_batch(batch_id: int, reason: str | None = None, actor_user_id: int | None = None) -> Batch:
    """Cancel a batch. No stock effect."""
    return _close_without_credit(batch_id, BATCH_CANCELLED, reason, actor_user_id)


def _close_without_credit(batch_id: int, target: str, reason: str | None, actor_user_id: int | None) -> Batch:
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string", details={"field": "reason"})

    def _op():
        begin_write()
        batch = _load_for_update(batch_id)
        _reject_terminal(batch, target)
        batch.status = target
        batch.end_time = utcnow()
        if reason:
            batch.failure_reason = reason.strip()[:255]
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    current_app.logger.info("Batch %s -> %s by user %s", batch.batch_number, target, actor_user_id)
    return batch


# ---------------------------------------------------------------------------
# Scheduled job inputs
# ---------------------------------------------------------------------------

def find_expiring_batches(within_days: int = 7, now: datetime | None = None) -> list[dict]:
    """
    Batches whose produce expires within the next `within_days` days.

    Expiry is start_time + shelf_life_days of the linked product
    (DEFAULT_SHELF_LIFE_DAYS when unknown). Only completed and in-progress
    batches hold product worth tracking.
    """
    if within_days < 0:
        raise ValidationError("within_days must be >= 0")
    now = now or utcnow()
    horizon = now + timedelta(days=within_days)

    rows = (
        db.session.query(Batch, Product.shelf_life_days)
        .outerjoin(Product, Batch.product_id == Product.id)
        .filter(Batch.status.in_([BATCH_COMPLETED, BATCH_IN_PROGRESS]))
        .order_by(Batch.start_time.asc())
        .all()
    )

    expiring = []
    for batch, shelf_life_days in rows:
        expiry = expires_at(batch.start_time, shelf_life_days or DEFAULT_SHELF_LIFE_DAYS)
        if now <= expiry <= horizon:
            expiring.append({
                "batch_id": batch.id,
                "batch_number": batch.batch_number,
                "product_name": batch.product_name,
                "product_id": batch.product_id,
                "status": batch.status,
                "expires_at": to_utc_z(expiry),
                "days_left": (expiry - now).days,
            })
    return expiring


def daily_production_summary(day: datetime | None = None) -> dict:
    """Totals of batches completed during one UTC calendar day."""
    day_start, day_end = day_bounds(day or utcnow())

    batches = (
        db.session.query(Batch)
        .filter(
            Batch.status == BATCH_COMPLETED,
            Batch.end_time >= day_start,
            Batch.end_time < day_end,
        )
        .order_by(Batch.end_time.asc())
        .all()
    )

    by_product: dict[str, Decimal] = {}
    total = Decimal("0")
    operators = set()
    for batch in batches:
        qty = Decimal(batch.quantity)
        total += qty
        by_product[batch.product_name] = by_product.get(batch.product_name, Decimal("0")) + qty
        operators.add(batch.operator_name)

    failed_count = (
        db.session.query(func.count(Batch.id))
        .filter(
            Batch.status == BATCH_FAILED,
            Batch.end_time >= day_start,
            Batch.end_time < day_end,
        )
        .scalar()
    )

    return {
        "date": day_start.date().isoformat(),
        "completed_batches": len(batches),
        "failed_batches": int(failed_count or 0),
        "total_quantity": float(total),
        "quantity_by_product": {name: float(qty) for name, qty in sorted(by_product.items())},
        "operators": sorted(operators),
    }
