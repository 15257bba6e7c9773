# Overview: Service-layer order fulfillment; reserves stock, records tracking and coordinates side effects.

"""
DairyFlow Order Fulfillment Invariants (authoritative)

Creation:
- Every line reserves stock through stock_service.reserve(commit=False) inside
  ONE write transaction together with the Order, its lines and the initial
  tracking event. Any failure (unknown product, insufficient stock, lost race)
  rolls the whole transaction back, so no line stays reserved.
- Lines snapshot product name, unit and unit price. Totals are computed once:
  subtotal = sum(line totals), tax = 20% of subtotal, total = subtotal + tax.

Status:
- Canonical flow: pending -> confirmed -> preparing -> ready -> in-transit -> delivered
- Moves go forward only (skipping steps is allowed). delivered and cancelled
  are terminal. Entering cancelled goes through cancel_order only, because it
  releases stock.
- Tracking events are append-only; Order.status mirrors the latest event.

Cancellation:
- Appends the cancelled event, sets cancelled_at and releases every line's
  snapshot quantity in the same transaction.

Side effects (after commit, never roll the order back):
- client_service.bump (best-effort counters cache)
- order-confirmed notification, low-stock notifications
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..identifiers import new_order_number
from ..models import Client, Order, OrderLine, OrderTrackingEvent, Product, User
from ..models.auth import ROLE_DRIVER
from ..models.orders import (
    DELIVERY_ADDRESS_KEYS,
    LEGACY_ORDER_STATUS_MAP,
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_FLOW,
    ORDER_PENDING,
    ORDER_STATUSES,
)
from ..pricing import document_totals, line_total_cents
from ..validation import clean_text, parse_datetime_field, parse_quantity, validate_closed_map
from dairyflow.time_utils import utcnow, to_utc_z
from . import client_service, stock_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .notification_service import KIND_ORDER_CONFIRMED, notify

MAX_NOTE_LENGTH = 500

DELIVERY_EDIT_FIELDS = {"address", "date", "time", "special_instructions"}


def normalize_order_status(value) -> str:
    """
    Map incoming status vocabulary onto the canonical set.

    Legacy short forms (processing) are accepted and logged; anything else
    unknown is a ValidationError.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("status is required", details={"field": "status"})
    status = value.strip()
    if status in LEGACY_ORDER_STATUS_MAP:
        mapped = LEGACY_ORDER_STATUS_MAP[status]
        current_app.logger.info("Mapped legacy order status %r to %r", status, mapped)
        return mapped
    if status not in ORDER_STATUSES:
        allowed = sorted(ORDER_STATUSES)
        raise ValidationError(
            f"status must be one of: {', '.join(allowed)}",
            details={"field": "status", "allowed": allowed},
        )
    return status


def _parse_items(items) -> list[tuple[int, object]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", details={"field": "items"})

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = item.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError(
                f"items[{index}].product_id must be an integer",
                details={"field": f"items[{index}].product_id"},
            )
        qty = parse_quantity(item.get("quantity"), f"items[{index}].quantity")
        parsed.append((product_id, qty))
    return parsed


def _parse_delivery(delivery) -> dict:
    if delivery is None:
        delivery = {}
    if not isinstance(delivery, dict):
        raise ValidationError("delivery must be an object", details={"field": "delivery"})

    address = validate_closed_map(
        delivery.get("address") or {},
        "delivery.address",
        allowed_keys=DELIVERY_ADDRESS_KEYS,
    )
    delivery_date = parse_datetime_field(delivery.get("date"), "delivery.date")
    if delivery_date is None:
        raise ValidationError("delivery.date is required", details={"field": "delivery.date"})

    return {
        "delivery_address": address,
        "delivery_date": delivery_date,
        "delivery_time": clean_text(delivery.get("time"), "delivery.time", 32),
        "special_instructions": clean_text(
            delivery.get("special_instructions"), "delivery.special_instructions", 2000
        ),
    }


def _append_event(
    order: Order,
    status: str,
    *,
    note: str | None = None,
    location: str | None = None,
    actor_user_id: int | None = None,
    occurred_at: datetime | None = None,
) -> OrderTrackingEvent:
    last_seq = (
        db.session.query(func.max(OrderTrackingEvent.sequence))
        .filter(OrderTrackingEvent.order_id == order.id)
        .scalar()
    )
    event = OrderTrackingEvent(
        order_id=order.id,
        sequence=(last_seq or 0) + 1,
        status=status,
        occurred_at=occurred_at or utcnow(),
        note=note,
        location=location,
        updated_by_user_id=actor_user_id,
    )
    db.session.add(event)
    order.status = status
    return event


def _load_for_update(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def confirmation_payload(order: Order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "client_id": order.client_id,
        "client_name": order.client_name,
        "total_cents": order.total_cents,
        "delivery_date": to_utc_z(order.delivery_date),
        "items": [
            {"product_name": line.product_name, "quantity": float(line.quantity), "unit": line.unit}
            for line in order.lines
        ],
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_orders(
    status: str | None = None,
    client_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Order]:
    q = db.session.query(Order)
    if status:
        q = q.filter(Order.status == normalize_order_status(status))
    if client_id is not None:
        q = q.filter(Order.client_id == client_id)
    if start is not None:
        q = q.filter(Order.created_at >= start)
    if end is not None:
        q = q.filter(Order.created_at <= end)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def create_order(client_id: int, items, delivery=None, actor_user_id: int | None = None) -> Order:
    """
    Create an order and reserve stock for every line, all-or-nothing.

    Raises NotFoundError (client/product), ValidationError (inactive client,
    bad items), InsufficientStockError (details name the short product) or
    ConcurrencyConflictError. On any of them nothing is persisted.
    """
    parsed_items = _parse_items(items)
    delivery_fields = _parse_delivery(delivery)

    def _op():
        begin_write()
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFoundError("Client not found", details={"client_id": client_id})
        if client.status != "active":
            raise ValidationError(
                f"Client is {client.status}; orders require an active client",
                details={"client_id": client_id, "status": client.status},
            )

        order = Order(
            order_number=new_order_number(),
            client_id=client.id,
            client_name=client.name,
            status=ORDER_PENDING,
            subtotal_cents=0,
            tax_cents=0,
            discount_cents=0,
            total_cents=0,
            created_by_user_id=actor_user_id,
            **delivery_fields,
        )
        db.session.add(order)
        db.session.flush()

        touched: list[Product] = []
        line_totals = []
        for line_number, (product_id, qty) in enumerate(parsed_items, start=1):
            # Conditional decrement; raises before the line is written
            product = stock_service.reserve(product_id, qty, commit=False)
            touched.append(product)

            total = line_total_cents(product.unit_price_cents, qty)
            line_totals.append(total)
            db.session.add(OrderLine(
                order_id=order.id,
                line_number=line_number,
                product_id=product.id,
                product_name=product.name,
                unit=product.unit,
                quantity=qty,
                unit_price_cents=product.unit_price_cents,
                line_total_cents=total,
            ))

        totals = document_totals(line_totals)
        order.subtotal_cents = totals["subtotal_cents"]
        order.tax_cents = totals["tax_cents"]
        order.discount_cents = totals["discount_cents"]
        order.total_cents = totals["total_cents"]

        _append_event(order, ORDER_PENDING, note="Order created", actor_user_id=actor_user_id)

        db.session.commit()
        return order, touched

    order, touched = run_with_retry(_op)
    current_app.logger.info(
        "Order %s created for client %s (%s cents) by user %s",
        order.order_number,
        order.client_id,
        order.total_cents,
        actor_user_id,
    )

    # After commit: cache + notifications, never fatal
    client_service.bump(order.client_id, order.total_cents)
    notify(KIND_ORDER_CONFIRMED, confirmation_payload(order))
    stock_service.notify_low_stock(touched)
    return order


def update_order_status(
    order_id: int,
    new_status,
    note: str | None = None,
    location: str | None = None,
    actor_user_id: int | None = None,
) -> Order:
    """
    Advance an order along the delivery flow and append a tracking event.

    Only forward moves are accepted. Moves out of delivered/cancelled, moves
    backwards or to the same status, and moves to cancelled (use
    cancel_order) raise InvalidTransitionError.
    """
    target = normalize_order_status(new_status)
    note = clean_text(note, "note", MAX_NOTE_LENGTH)
    location = clean_text(location, "location", 255)

    def _op():
        begin_write()
        order = _load_for_update(order_id)
        current = order.status

        if order.is_terminal:
            raise InvalidTransitionError(
                f"Order is {current}; no further status changes are allowed",
                details={"order_id": order.id, "from": current, "to": target},
            )
        if target == ORDER_CANCELLED:
            raise InvalidTransitionError(
                "Use cancel to cancel an order",
                details={"order_id": order.id, "from": current, "to": target},
            )
        if ORDER_FLOW.index(target) <= ORDER_FLOW.index(current):
            raise InvalidTransitionError(
                f"Cannot move order from {current} to {target}",
                details={"order_id": order.id, "from": current, "to": target},
            )

        _append_event(order, target, note=note, location=location, actor_user_id=actor_user_id)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s -> %s by user %s", order.order_number, order.status, actor_user_id)
    return order


def assign_driver(
    order_id: int,
    driver_id,
    driver_name: str | None = None,
    actor_user_id: int | None = None,
) -> Order:
    if isinstance(driver_id, bool) or not isinstance(driver_id, int):
        raise ValidationError("driver_id must be an integer", details={"field": "driver_id"})
    driver_name = clean_text(driver_name, "driver_name", 255)

    def _op():
        begin_write()
        order = _load_for_update(order_id)
        if order.is_terminal:
            raise InvalidTransitionError(
                f"Cannot assign a driver to a {order.status} order",
                details={"order_id": order.id, "status": order.status},
            )

        driver = db.session.get(User, driver_id)
        if driver is None:
            raise NotFoundError("Driver not found", details={"driver_id": driver_id})
        if driver.role != ROLE_DRIVER or not driver.is_active:
            raise ValidationError(
                "driver_id must reference an active user with role driver",
                details={"driver_id": driver_id},
            )

        order.driver_id = driver.id
        order.driver_name = driver_name or driver.name
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Driver %s assigned to order %s by user %s", order.driver_id, order.order_number, actor_user_id
    )
    return order


def _parse_delivery_patch(delivery) -> dict:
    if not isinstance(delivery, dict):
        raise ValidationError("delivery must be an object", details={"field": "delivery"})
    unknown = sorted(set(delivery) - DELIVERY_EDIT_FIELDS)
    if unknown:
        raise ValidationError(
            f"Field not allowed: delivery.{unknown[0]}",
            details={"field": f"delivery.{unknown[0]}", "allowed": sorted(DELIVERY_EDIT_FIELDS)},
        )
    if not delivery:
        raise ValidationError("No editable fields supplied", details={"allowed": sorted(DELIVERY_EDIT_FIELDS)})

    patch = {}
    if "address" in delivery:
        patch["delivery_address"] = validate_closed_map(
            delivery["address"],
            "delivery.address",
            allowed_keys=DELIVERY_ADDRESS_KEYS,
        )
    if "date" in delivery:
        delivery_date = parse_datetime_field(delivery["date"], "delivery.date")
        if delivery_date is None:
            raise ValidationError("delivery.date cannot be null", details={"field": "delivery.date"})
        patch["delivery_date"] = delivery_date
    if "time" in delivery:
        patch["delivery_time"] = clean_text(delivery["time"], "delivery.time", 32)
    if "special_instructions" in delivery:
        patch["special_instructions"] = clean_text(
            delivery["special_instructions"], "delivery.special_instructions", 2000
        )
    return patch


def update_order_delivery(order_id: int, delivery, actor_user_id: int | None = None) -> Order:
    """
    Edit delivery details of an open order.

    Only address, date, time and special_instructions are editable; lines,
    totals and status never change here. Address keys merge into the stored
    address. delivered and cancelled orders raise InvalidTransitionError.
    """
    patch = _parse_delivery_patch(delivery)

    def _op():
        begin_write()
        order = _load_for_update(order_id)
        if order.is_terminal:
            raise InvalidTransitionError(
                f"Cannot edit a {order.status} order",
                details={"order_id": order.id, "status": order.status},
            )
        if "delivery_address" in patch:
            # JSON column: assign a new dict so the change is detected
            merged = dict(order.delivery_address or {})
            merged.update(patch["delivery_address"])
            order.delivery_address = merged
        for key, value in patch.items():
            if key != "delivery_address":
                setattr(order, key, value)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Delivery details of order %s edited (%s) by user %s",
        order.order_number,
        ", ".join(sorted(patch)),
        actor_user_id,
    )
    return order


def cancel_order(order_id: int, reason: str | None = None, actor_user_id: int | None = None) -> Order:
    """
    Cancel an order and return its reserved stock.

    CRITICAL: the cancelled event, status, cancelled_at and every release
    commit together. delivered or already cancelled orders raise
    InvalidTransitionError and nothing changes.
    """
    reason = clean_text(reason, "reason", MAX_NOTE_LENGTH)

    def _op():
        begin_write()
        order = _load_for_update(order_id)
        if order.status == ORDER_DELIVERED:
            raise InvalidTransitionError(
                "Delivered orders cannot be cancelled",
                details={"order_id": order.id, "status": order.status},
            )
        if order.status == ORDER_CANCELLED:
            raise InvalidTransitionError(
                "Order is already cancelled",
                details={"order_id": order.id, "status": order.status},
            )

        now = utcnow()
        _append_event(
            order,
            ORDER_CANCELLED,
            note=reason or "Order cancelled",
            actor_user_id=actor_user_id,
            occurred_at=now,
        )
        order.cancelled_at = now
        # Version check on the order before stock moves
        db.session.flush()

        lines = db.session.query(OrderLine).filter_by(order_id=order.id).order_by(OrderLine.line_number).all()
        for line in lines:
            stock_service.release(line.product_id, line.quantity, commit=False)

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled by user %s", order.order_number, actor_user_id)
    return order
