# Overview: Client master data and the denormalized client counters cache.

"""
Client Ledger

Counters (total_orders, total_revenue_cents, monthly_revenue_cents,
last_order_date) are a cache over the Order table:

- bump() is called after an order commits, in its own transaction, as one
  UPDATE with SQL-side increments. It is best-effort: any failure is logged
  and swallowed, the order stands.
- rebuild_client_counters() recomputes the cache from non-cancelled orders
  and is the repair path for missed bumps.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func, update

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Client, Invoice, Order
from ..models.clients import CLIENT_STATUSES, CLIENT_TYPES
from ..models.invoices import INVOICE_OVERDUE, INVOICE_PAID, INVOICE_SENT
from ..models.orders import ORDER_CANCELLED
from ..validation import ModelValidationPolicy, enforce_rules_client, validate_payload
from dairyflow.time_utils import month_start, utcnow, to_utc_z
from .concurrency import begin_write, run_with_retry

OUTSTANDING_INVOICE_STATUSES = (INVOICE_SENT, INVOICE_OVERDUE)

CLIENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "type", "email", "phone", "address", "contact_name",
        "status", "rating", "payment_terms_days", "notes",
    },
    required_on_create={"name", "type", "email", "phone", "address"},
    choices={"type": CLIENT_TYPES, "status": CLIENT_STATUSES},
)


def _ensure_unique_email(email: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Client.id).filter(func.lower(Client.email) == email.lower())
    if exclude_id is not None:
        q = q.filter(Client.id != exclude_id)
    if q.first() is not None:
        raise ValidationError("email already exists", details={"field": "email"})


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found", details={"client_id": client_id})
    return client


def list_clients(
    status: str | None = None,
    client_type: str | None = None,
    search: str | None = None,
) -> list[Client]:
    q = db.session.query(Client)
    if status:
        q = q.filter(Client.status == status)
    if client_type:
        q = q.filter(Client.type == client_type)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(Client.name.ilike(like) | Client.email.ilike(like))
    return q.order_by(Client.name.asc()).all()


def create_client(payload: dict) -> Client:
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=False)
    enforce_rules_client(patch)

    def _op():
        begin_write()
        _ensure_unique_email(patch["email"])
        client = Client(**patch)
        if client.status is None:
            client.status = "active"
        db.session.add(client)
        db.session.commit()
        return client

    return run_with_retry(_op)


def update_client(client_id: int, payload: dict) -> Client:
    """Contact and terms fields only; the counters are not writable."""
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=True)
    enforce_rules_client(patch)

    def _op():
        begin_write()
        client = get_client(client_id)
        if "email" in patch:
            _ensure_unique_email(patch["email"], exclude_id=client.id)
        for key, value in patch.items():
            setattr(client, key, value)
        db.session.commit()
        return client

    return run_with_retry(_op)


def get_client_stats(client_id: int) -> dict:
    """
    Cached counters plus live order and invoice aggregates for one client.

    The cached block is what bump maintains; the live block is read from
    orders and invoices on every call and is what rebuild would restore.
    """
    client = get_client(client_id)

    by_status = dict(
        db.session.query(Order.status, func.count(Order.id))
        .filter(Order.client_id == client.id)
        .group_by(Order.status)
        .all()
    )
    live_orders, live_revenue = (
        db.session.query(func.count(Order.id), func.coalesce(func.sum(Order.total_cents), 0))
        .filter(Order.client_id == client.id, Order.status != ORDER_CANCELLED)
        .one()
    )
    invoice_rows = (
        db.session.query(Invoice.status, func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_cents), 0))
        .filter(Invoice.client_id == client.id)
        .group_by(Invoice.status)
        .all()
    )
    invoices = {status: (int(count), int(total)) for status, count, total in invoice_rows}

    live_revenue = int(live_revenue or 0)
    return {
        "client_id": client.id,
        "client_name": client.name,
        "total_orders": client.total_orders,
        "total_revenue_cents": client.total_revenue_cents,
        "monthly_revenue_cents": client.monthly_revenue_cents,
        "last_order_date": to_utc_z(client.last_order_date) if client.last_order_date else None,
        "rating": float(client.rating) if client.rating is not None else None,
        "orders_by_status": {status: int(count) for status, count in by_status.items()},
        "average_order_cents": live_revenue // live_orders if live_orders else 0,
        "outstanding_cents": sum(invoices.get(s, (0, 0))[1] for s in OUTSTANDING_INVOICE_STATUSES),
        "overdue_invoices": invoices.get(INVOICE_OVERDUE, (0, 0))[0],
        "paid_cents": invoices.get(INVOICE_PAID, (0, 0))[1],
    }


# ---------------------------------------------------------------------------
# Counters cache
# ---------------------------------------------------------------------------

def bump(client_id: int, order_total_cents: int, now: datetime | None = None) -> bool:
    """
    Increment the cached counters for one new order.

    Returns True when applied. Never raises: a failed bump leaves the cache
    stale until rebuild_client_counters runs.
    """
    now = now or utcnow()
    current_month = month_start(now)

    def _op():
        begin_write()
        result = db.session.execute(
            update(Client)
            .where(Client.id == client_id)
            .values(
                total_orders=Client.total_orders + 1,
                total_revenue_cents=Client.total_revenue_cents + order_total_cents,
                monthly_revenue_cents=case(
                    (Client.last_order_date >= current_month, Client.monthly_revenue_cents + order_total_cents),
                    else_=order_total_cents,
                ),
                last_order_date=now,
                version_id=Client.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Client not found", details={"client_id": client_id})
        db.session.commit()

    try:
        run_with_retry(_op)
        return True
    except Exception:
        current_app.logger.exception(
            "Failed to update counters for client %s (order total %s cents)",
            client_id,
            order_total_cents,
        )
        return False


def _rebuild_one(client: Client, now: datetime) -> None:
    current_month = month_start(now)
    live = (
        db.session.query(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_cents), 0),
            func.coalesce(
                func.sum(case((Order.created_at >= current_month, Order.total_cents), else_=0)),
                0,
            ),
            func.max(Order.created_at),
        )
        .filter(Order.client_id == client.id, Order.status != ORDER_CANCELLED)
        .one()
    )
    client.total_orders = int(live[0] or 0)
    client.total_revenue_cents = int(live[1] or 0)
    client.monthly_revenue_cents = int(live[2] or 0)
    client.last_order_date = live[3]


def rebuild_client_counters(client_id: int | None = None, now: datetime | None = None) -> list[Client]:
    """
    Recompute cached counters from non-cancelled orders.

    client_id=None rebuilds every client. monthly_revenue_cents covers the
    calendar month containing `now`.
    """
    now = now or utcnow()

    def _op():
        begin_write()
        if client_id is not None:
            clients = [get_client(client_id)]
        else:
            clients = db.session.query(Client).order_by(Client.id.asc()).all()
        for client in clients:
            _rebuild_one(client, now)
        db.session.commit()
        return clients

    clients = run_with_retry(_op)
    current_app.logger.info("Rebuilt counters for %d client(s)", len(clients))
    return clients
