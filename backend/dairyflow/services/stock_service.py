# Overview: Service-layer stock ledger; every stock mutation is one conditional UPDATE per product row.

"""
DairyFlow Stock Invariants (authoritative)

Ownership:
- Product.current_stock, Product.status and Product.last_restocked are written
  only by this module. Everything else (orders, batches, the manual stock
  endpoint) calls reserve / release / credit / set_absolute.

Atomicity:
- Each operation is a single UPDATE ... WHERE statement that changes the stock,
  recomputes status from the new stock and bumps version_id. Stock is never
  read into Python, modified and written back.
- reserve only succeeds WHERE current_stock >= qty, so stock can never go
  negative regardless of interleaving.
- commit=False leaves the statement inside the caller's transaction so order
  creation, order cancellation and batch completion stay all-or-nothing.

Status (pure function of current_stock and min_threshold):
- out-of-stock: stock <= 0
- critical:     stock <  0.5 * min_threshold
- low:          stock <  min_threshold
- normal:       otherwise
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import case, func, literal, update

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product
from ..models.catalog import STOCK_CRITICAL, STOCK_LOW, STOCK_NORMAL, STOCK_OUT
from ..validation import parse_quantity
from dairyflow.time_utils import utcnow, to_utc_z
from .concurrency import begin_write, run_with_retry
from .notification_service import KIND_LOW_STOCK, notify

ADJUST_ADD = "add"
ADJUST_SUBTRACT = "subtract"
ADJUST_SET = "set"
ADJUSTMENT_TYPES = {ADJUST_ADD, ADJUST_SUBTRACT, ADJUST_SET}

CRITICAL_RATIO = Decimal("0.5")
QTY_PLACES = 3


def compute_stock_status(stock, min_threshold) -> str:
    """Python twin of the SQL CASE used by every stock UPDATE."""
    stock = Decimal(str(stock))
    min_threshold = Decimal(str(min_threshold))
    if stock <= 0:
        return STOCK_OUT
    if stock < min_threshold * CRITICAL_RATIO:
        return STOCK_CRITICAL
    if stock < min_threshold:
        return STOCK_LOW
    return STOCK_NORMAL


def quantize_expression(expr, places: int = QTY_PLACES):
    """
    Round a SQL quantity expression to the column scale.

    SQLite keeps Numeric columns as REAL, so arithmetic inside an UPDATE runs
    in binary floating point. Every stored value, WHERE guard and status
    comparison goes through this so the database agrees with the Decimal the
    ORM reads back.
    """
    return func.round(expr, places)


def status_expression(stock_expr, min_expr=None):
    """SQL CASE deriving status from a stock expression (evaluated on the pre-update row)."""
    if min_expr is None:
        min_expr = Product.min_threshold
    stock = quantize_expression(stock_expr)
    minimum = quantize_expression(min_expr)
    # Half the threshold can carry one extra decimal place
    critical = quantize_expression(min_expr * CRITICAL_RATIO, QTY_PLACES + 1)
    return case(
        (stock <= 0, STOCK_OUT),
        (stock < critical, STOCK_CRITICAL),
        (stock < minimum, STOCK_LOW),
        else_=STOCK_NORMAL,
    )


def _load(product_id: int) -> Product:
    # populate_existing: the UPDATE bypassed the identity map
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _apply(product_id: int, new_stock_expr, *, where=None, extra_values=None) -> Product | None:
    new_stock_expr = quantize_expression(new_stock_expr)
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            current_stock=new_stock_expr,
            status=status_expression(new_stock_expr),
            version_id=Product.version_id + 1,
            **(extra_values or {}),
        )
        .execution_options(synchronize_session=False)
    )
    if where is not None:
        stmt = stmt.where(where)

    result = db.session.execute(stmt)
    if result.rowcount == 0:
        return None
    return _load(product_id)


def _reserve(product_id: int, qty: Decimal) -> Product:
    product = _apply(
        product_id,
        Product.current_stock - qty,
        where=quantize_expression(Product.current_stock - qty) >= 0,
    )
    if product is not None:
        return product

    # Zero rows: either the product is missing or it ran short
    available = db.session.query(Product.current_stock).filter(Product.id == product_id).scalar()
    if available is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    raise InsufficientStockError(
        "Insufficient stock",
        details={
            "product_id": product_id,
            "requested": float(qty),
            "available": float(available),
        },
    )


def _increment(product_id: int, qty: Decimal, *, restock: bool) -> Product:
    extra = {"last_restocked": utcnow()} if restock else None
    product = _apply(product_id, Product.current_stock + qty, extra_values=extra)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _set(product_id: int, qty: Decimal) -> Product:
    product = _apply(
        product_id,
        literal(qty, Product.current_stock.type),
        extra_values={"last_restocked": utcnow()},
    )
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _standalone(op) -> Product:
    def _tx():
        begin_write()
        product = op()
        db.session.commit()
        return product

    return run_with_retry(_tx)


# ---------------------------------------------------------------------------
# Public ledger operations
# ---------------------------------------------------------------------------

def reserve(product_id: int, qty, *, commit: bool = True) -> Product:
    """
    Decrement stock if and only if enough is on hand.

    Raises NotFoundError / InsufficientStockError (details: product_id,
    requested, available). Triggers a low-stock notification after commit
    when the product ends below normal.
    """
    qty = parse_quantity(qty)
    if not commit:
        return _reserve(product_id, qty)

    product = _standalone(lambda: _reserve(product_id, qty))
    notify_low_stock([product])
    return product


def release(product_id: int, qty, *, commit: bool = True) -> Product:
    """Reverse a prior reserve."""
    qty = parse_quantity(qty)
    if not commit:
        return _increment(product_id, qty, restock=False)
    return _standalone(lambda: _increment(product_id, qty, restock=False))


def credit(product_id: int, qty, *, commit: bool = True) -> Product:
    """Add produced or received stock and stamp last_restocked."""
    qty = parse_quantity(qty)
    if not commit:
        return _increment(product_id, qty, restock=True)
    return _standalone(lambda: _increment(product_id, qty, restock=True))


def set_absolute(product_id: int, qty, *, commit: bool = True) -> Product:
    """Administrative override (stock count correction)."""
    qty = parse_quantity(qty, allow_zero=True)
    if not commit:
        return _set(product_id, qty)

    product = _standalone(lambda: _set(product_id, qty))
    notify_low_stock([product])
    current_app.logger.info("Stock for product %s set to %s", product_id, qty)
    return product


def adjust_stock(product_id: int, adjustment_type: str, qty) -> Product:
    """
    Manual stock adjustment entry point.

    add -> credit, subtract -> reserve, set -> set_absolute.
    """
    if adjustment_type == ADJUST_ADD:
        return credit(product_id, qty)
    if adjustment_type == ADJUST_SUBTRACT:
        return reserve(product_id, qty)
    if adjustment_type == ADJUST_SET:
        return set_absolute(product_id, qty)
    raise ValidationError(
        f"type must be one of: {', '.join(sorted(ADJUSTMENT_TYPES))}",
        details={"field": "type", "allowed": sorted(ADJUSTMENT_TYPES)},
    )


def list_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.status != STOCK_NORMAL)
        .order_by(Product.current_stock.asc(), Product.id.asc())
        .all()
    )


def low_stock_payload(product: Product) -> dict:
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "status": product.status,
        "current_stock": float(product.current_stock),
        "min_threshold": float(product.min_threshold),
        "unit": product.unit,
        "last_restocked": to_utc_z(product.last_restocked) if product.last_restocked else None,
    }


def notify_low_stock(products) -> int:
    """Must run after commit. Returns the number of notifications sent."""
    sent = 0
    seen = set()
    for product in products:
        if product is None or product.id in seen:
            continue
        seen.add(product.id)
        if product.status != STOCK_NORMAL:
            notify(KIND_LOW_STOCK, low_stock_payload(product))
            sent += 1
    return sent
