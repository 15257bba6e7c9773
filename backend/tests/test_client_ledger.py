"""
Client ledger tests.

Verifies:
- client master data validation and unique email
- counters cache: bump increments, month rollover, best-effort failure
- rebuild_client_counters recomputes from non-cancelled orders
- client stats combine cached counters with live order and invoice totals
"""

from datetime import datetime, timedelta

import pytest

from dairyflow.errors import NotFoundError, ValidationError
from dairyflow.models import Client
from dairyflow.services import client_service, invoice_service, order_service
from dairyflow.time_utils import utcnow

from conftest import make_client

NEW_CLIENT = {
    "name": "Harbour Hotel",
    "type": "Hotel",
    "email": "kitchen@harbourhotel.test",
    "phone": "+1 555 0199",
    "address": "1 Quay Street",
}

DELIVERY = {"address": {"city": "Porto"}, "date": "2026-11-02T07:30:00Z"}


def _fresh(session, client):
    return session.get(Client, client.id, populate_existing=True)


class TestClientRecords:

    def test_create_defaults(self, db_session):
        created = client_service.create_client(dict(NEW_CLIENT, payment_terms_days=15))
        assert created.status == "active"
        assert created.total_orders == 0
        assert created.total_revenue_cents == 0
        assert created.payment_terms_days == 15

    def test_missing_fields(self, db_session):
        with pytest.raises(ValidationError):
            client_service.create_client({"name": "Nameless"})

    def test_unknown_type(self, db_session):
        with pytest.raises(ValidationError):
            client_service.create_client(dict(NEW_CLIENT, type="Spaceport"))

    def test_duplicate_email_case_insensitive(self, db_session, customer):
        with pytest.raises(ValidationError):
            client_service.create_client(dict(NEW_CLIENT, email="ORDERS@greenleaf.test"))

    def test_rating_bounds(self, db_session):
        with pytest.raises(ValidationError):
            client_service.create_client(dict(NEW_CLIENT, rating=6))

    def test_counters_not_writable(self, db_session, customer):
        with pytest.raises(ValidationError):
            client_service.update_client(customer.id, {"total_orders": 99})

    def test_update_contact(self, db_session, customer):
        updated = client_service.update_client(customer.id, {"contact_name": "Rita", "status": "suspended"})
        assert updated.contact_name == "Rita"
        assert updated.status == "suspended"

    def test_list_filters(self, db_session, customer):
        make_client(db_session, email="front@grand.test", name="Grand Hotel", status="inactive")

        assert [c.name for c in client_service.list_clients(status="active")] == ["Green Leaf Cafe"]
        assert [c.name for c in client_service.list_clients(search="grand")] == ["Grand Hotel"]
        assert len(client_service.list_clients()) == 2

    def test_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            client_service.get_client(4040)


class TestBump:

    def test_bump_increments(self, db_session, customer):
        now = datetime(2026, 10, 5, 9, 0)
        assert client_service.bump(customer.id, 1000, now=datetime(2026, 10, 1, 8, 0)) is True
        assert client_service.bump(customer.id, 500, now=now) is True

        refreshed = _fresh(db_session, customer)
        assert refreshed.total_orders == 2
        assert refreshed.total_revenue_cents == 1500
        assert refreshed.monthly_revenue_cents == 1500
        assert refreshed.last_order_date == now

    def test_bump_resets_month(self, db_session, customer):
        client_service.bump(customer.id, 1000, now=datetime(2026, 9, 15, 12, 0))
        client_service.bump(customer.id, 500, now=datetime(2026, 10, 2, 12, 0))

        refreshed = _fresh(db_session, customer)
        assert refreshed.total_orders == 2
        assert refreshed.total_revenue_cents == 1500
        assert refreshed.monthly_revenue_cents == 500

    def test_bump_unknown_client_is_swallowed(self, db_session):
        assert client_service.bump(999, 100) is False


class TestRebuild:

    def test_rebuild_from_orders(self, db_session, customer, milk):
        kept = order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 4}], DELIVERY)
        dropped = order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 2}], DELIVERY)
        order_service.cancel_order(dropped.id)

        stale = _fresh(db_session, customer)
        stale.total_orders = 42
        stale.total_revenue_cents = 1
        stale.monthly_revenue_cents = 1
        db_session.commit()

        rebuilt = client_service.rebuild_client_counters(customer.id)
        assert [c.id for c in rebuilt] == [customer.id]

        refreshed = _fresh(db_session, customer)
        assert refreshed.total_orders == 1
        assert refreshed.total_revenue_cents == kept.total_cents
        assert refreshed.monthly_revenue_cents == kept.total_cents
        assert refreshed.last_order_date is not None

    def test_rebuild_all_clients(self, db_session, customer, milk):
        other = make_client(db_session, email="bar@corner.test", name="Corner Bar")
        order_service.create_order(other.id, [{"product_id": milk.id, "quantity": 1}], DELIVERY)

        rebuilt = client_service.rebuild_client_counters()
        assert {c.id for c in rebuilt} == {customer.id, other.id}
        assert _fresh(db_session, customer).total_orders == 0
        assert _fresh(db_session, other).total_orders == 1

    def test_monthly_revenue_follows_now(self, db_session, customer, milk):
        order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 1}], DELIVERY)

        client_service.rebuild_client_counters(customer.id, now=utcnow() + timedelta(days=62))
        refreshed = _fresh(db_session, customer)
        assert refreshed.total_orders == 1
        assert refreshed.monthly_revenue_cents == 0

    def test_rebuild_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            client_service.rebuild_client_counters(4040)


class TestClientStats:

    def test_live_aggregates(self, db_session, customer, milk):
        big = order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 4}], DELIVERY)
        small = order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 2}], DELIVERY)
        dropped = order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 1}], DELIVERY)
        order_service.cancel_order(dropped.id)

        invoice_service.create_invoice_from_order(big.id, initial_status="sent")
        paid = invoice_service.create_invoice_from_order(small.id, initial_status="sent")
        invoice_service.mark_invoice_paid(paid.id, "cash")
        late = invoice_service.create_invoice(
            customer.id,
            [{"description": "Crate deposit", "quantity": 1, "unit_price_cents": 500}],
            due_date="2026-01-01T00:00:00Z",
        )
        invoice_service.send_invoice(late.id)
        invoice_service.sweep_overdue_invoices()

        stats = client_service.get_client_stats(customer.id)

        assert stats["client_id"] == customer.id
        assert stats["orders_by_status"] == {"pending": 2, "cancelled": 1}
        assert stats["average_order_cents"] == (1200 + 600) // 2
        assert stats["outstanding_cents"] == 1200 + 600
        assert stats["overdue_invoices"] == 1
        assert stats["paid_cents"] == 600

    def test_cached_block_mirrors_client(self, db_session, customer, milk):
        order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 4}], DELIVERY)
        refreshed = _fresh(db_session, customer)

        stats = client_service.get_client_stats(customer.id)

        assert stats["total_orders"] == refreshed.total_orders == 1
        assert stats["total_revenue_cents"] == refreshed.total_revenue_cents == 1200
        assert stats["monthly_revenue_cents"] == 1200
        assert stats["last_order_date"].endswith("Z")

    def test_client_without_history(self, db_session, customer):
        stats = client_service.get_client_stats(customer.id)
        assert stats["orders_by_status"] == {}
        assert stats["average_order_cents"] == 0
        assert stats["outstanding_cents"] == 0
        assert stats["last_order_date"] is None

    def test_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            client_service.get_client_stats(4040)
