# Overview: Service-layer operations for product master data (catalog fields, prices, thresholds).

"""
Products Service

Stock is not editable here: current_stock, status and last_restocked belong to
stock_service. The only stock touched by this module is the opening quantity
given on create. A change to min_threshold recomputes status in SQL from the
row's live stock so a concurrent reserve cannot be overwritten.
"""

from __future__ import annotations

from sqlalchemy import or_, update

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Product
from ..models.catalog import PRODUCT_CATEGORIES, PRODUCT_UNITS, STOCK_STATUSES
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    validate_payload,
)
from .concurrency import begin_write, run_with_retry
from .stock_service import compute_stock_status, status_expression

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "barcode", "name", "description", "category", "unit",
        "unit_price_cents", "cost_price_cents", "current_stock",
        "min_threshold", "max_capacity", "shelf_life_days", "supplier",
    },
    required_on_create={"sku", "name", "category", "unit", "unit_price_cents"},
    choices={"category": PRODUCT_CATEGORIES, "unit": PRODUCT_UNITS},
)

# Metadata only; stock moves through stock_service
PRODUCT_MUTABLE_FIELDS = PRODUCT_POLICY.writable_fields - {"current_stock"}


def _ensure_unique_sku(sku: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ValidationError("sku already exists", details={"field": "sku"})


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def list_products(
    category: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> list[Product]:
    q = db.session.query(Product)
    if category:
        q = q.filter(Product.category == category)
    if status:
        if status not in STOCK_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(STOCK_STATUSES))}")
        q = q.filter(Product.status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
    return q.order_by(Product.category.asc(), Product.name.asc()).all()


def create_product(payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op():
        begin_write()
        _ensure_unique_sku(patch["sku"])
        product = Product(**patch)
        product.current_stock = patch.get("current_stock") or 0
        product.min_threshold = patch.get("min_threshold") or 0
        product.max_capacity = patch.get("max_capacity") or 0
        product.status = compute_stock_status(product.current_stock, product.min_threshold)
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, payload: dict) -> Product:
    """
    Patch catalog fields.

    WHY min_threshold recomputes in SQL: status is derived from the live stock
    value, which may have moved since this request loaded the row.
    """
    if payload and "current_stock" in payload:
        raise ValidationError(
            "current_stock cannot be edited here; use the stock adjustment endpoint",
            details={"field": "current_stock"},
        )
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)

    def _op():
        begin_write()
        product = get_product(product_id)

        merged_min = patch.get("min_threshold", product.min_threshold)
        merged_max = patch.get("max_capacity", product.max_capacity)
        enforce_rules_product({**patch, "min_threshold": merged_min, "max_capacity": merged_max})

        if "sku" in patch:
            _ensure_unique_sku(patch["sku"], exclude_id=product.id)

        for key, value in patch.items():
            if key in PRODUCT_MUTABLE_FIELDS:
                setattr(product, key, value)
        db.session.flush()

        if "min_threshold" in patch:
            db.session.execute(
                update(Product)
                .where(Product.id == product.id)
                .values(status=status_expression(Product.current_stock))
                .execution_options(synchronize_session=False)
            )
            db.session.refresh(product)

        db.session.commit()
        return product

    return run_with_retry(_op)
