"""
Order fulfillment tests.

Verifies:
- creation reserves every line or nothing
- line snapshots and 20% tax totals
- forward-only status flow with append-only tracking
- cancellation releases exactly the reserved quantities
- after-commit side effects (client counters, notifications) never undo an order
"""

from decimal import Decimal

import pytest

from dairyflow.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from dairyflow.models import Client, Order, OrderTrackingEvent, Product
from dairyflow.services import client_service, order_service

from conftest import make_client, make_product, make_user

DELIVERY = {
    "address": {"street": "12 Harbour Road", "city": "Porto", "zip_code": "4000-001", "country": "PT"},
    "date": "2026-11-02T07:30:00Z",
    "time": "07:30",
    "special_instructions": "Back door",
}


def _order(customer, *items, **kwargs):
    return order_service.create_order(
        customer.id,
        [{"product_id": product.id, "quantity": qty} for product, qty in items],
        DELIVERY,
        **kwargs,
    )


def _stock(session, product):
    return session.get(Product, product.id, populate_existing=True)


class TestCreateOrder:

    def test_reserve_and_release_roundtrip(self, db_session, customer, milk, notifications):
        order = _order(customer, (milk, 60))

        product = _stock(db_session, milk)
        assert product.current_stock == Decimal("40")
        assert product.status == "low"
        assert order.status == "pending"

        order_service.cancel_order(order.id)

        product = _stock(db_session, milk)
        assert product.current_stock == Decimal("100")
        assert product.status == "normal"

    def test_totals_and_snapshots(self, db_session, customer, yogurt):
        butter = make_product(db_session, "BUT-250", name="Butter 250g", category="Butter", unit="units", price_cents=350)
        order = _order(customer, (butter, 40), (yogurt, 10), actor_user_id=None)

        assert order.subtotal_cents == 20900
        assert order.tax_cents == 4180
        assert order.discount_cents == 0
        assert order.total_cents == 25080
        assert order.client_name == "Green Leaf Cafe"

        lines = order.lines
        assert [line.line_number for line in lines] == [1, 2]
        assert lines[0].product_name == "Butter 250g"
        assert lines[0].unit_price_cents == 350
        assert lines[0].line_total_cents == 14000
        assert lines[1].line_total_cents == 6900

    def test_snapshot_survives_price_change(self, db_session, customer, milk):
        order = _order(customer, (milk, 2))
        product = _stock(db_session, milk)
        product.unit_price_cents = 999
        db_session.commit()

        reloaded = order_service.get_order(order.id)
        assert reloaded.lines[0].unit_price_cents == 250
        assert reloaded.total_cents == 600

    def test_delivery_fields_stored(self, db_session, customer, milk):
        order = _order(customer, (milk, 1))
        assert order.delivery_address["city"] == "Porto"
        assert order.delivery_time == "07:30"
        assert order.special_instructions == "Back door"
        assert order.to_dict()["delivery_date"] == "2026-11-02T07:30:00Z"

    def test_initial_tracking_event(self, db_session, customer, milk):
        order = _order(customer, (milk, 1))
        events = order.tracking_events
        assert len(events) == 1
        assert events[0].sequence == 1
        assert events[0].status == "pending"
        assert events[0].note == "Order created"

    def test_failed_line_reserves_nothing(self, db_session, customer, milk, yogurt):
        with pytest.raises(InsufficientStockError) as exc_info:
            _order(customer, (milk, 10), (yogurt, 500))

        assert exc_info.value.details["product_id"] == yogurt.id
        assert _stock(db_session, milk).current_stock == Decimal("100")
        assert _stock(db_session, yogurt).current_stock == Decimal("100")
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderTrackingEvent).count() == 0

    def test_unknown_product_reserves_nothing(self, db_session, customer, milk):
        with pytest.raises(NotFoundError):
            order_service.create_order(
                customer.id,
                [{"product_id": milk.id, "quantity": 5}, {"product_id": 424242, "quantity": 1}],
                DELIVERY,
            )
        assert _stock(db_session, milk).current_stock == Decimal("100")
        assert db_session.query(Order).count() == 0

    def test_inactive_client_rejected(self, db_session, milk):
        dormant = make_client(db_session, email="old@shop.test", status="inactive", name="Old Shop")
        with pytest.raises(ValidationError):
            _order(dormant, (milk, 1))
        assert _stock(db_session, milk).current_stock == Decimal("100")

    def test_unknown_client(self, db_session, milk):
        with pytest.raises(NotFoundError):
            order_service.create_order(999, [{"product_id": milk.id, "quantity": 1}], DELIVERY)

    @pytest.mark.parametrize(
        "items",
        [
            [],
            None,
            [{"product_id": "1", "quantity": 1}],
            [{"product_id": 1, "quantity": 0}],
            [{"product_id": 1, "quantity": -2}],
        ],
    )
    def test_invalid_items(self, db_session, customer, items):
        with pytest.raises(ValidationError):
            order_service.create_order(customer.id, items, DELIVERY)

    def test_delivery_date_required(self, db_session, customer, milk):
        with pytest.raises(ValidationError):
            order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 1}], {"address": {}})

    def test_unknown_address_key_rejected(self, db_session, customer, milk):
        delivery = dict(DELIVERY, address={"planet": "Mars"})
        with pytest.raises(ValidationError):
            order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 1}], delivery)


class TestSideEffects:

    def test_confirmation_and_low_stock_notifications(self, db_session, customer, milk, notifications):
        order = _order(customer, (milk, 60))

        kinds = [kind for kind, _ in notifications]
        assert kinds == ["order-confirmed", "low-stock"]

        confirmed = notifications[0][1]
        assert confirmed["order_number"] == order.order_number
        assert confirmed["total_cents"] == order.total_cents
        assert confirmed["items"] == [{"product_name": "Whole Milk", "quantity": 60.0, "unit": "L"}]

        low = notifications[1][1]
        assert low["sku"] == "MILK-1L"
        assert low["status"] == "low"

    def test_no_low_stock_when_normal(self, db_session, customer, milk, notifications):
        _order(customer, (milk, 10))
        assert [kind for kind, _ in notifications] == ["order-confirmed"]

    def test_client_counters_bumped(self, db_session, customer, milk):
        order = _order(customer, (milk, 4))
        refreshed = db_session.get(Client, customer.id, populate_existing=True)
        assert refreshed.total_orders == 1
        assert refreshed.total_revenue_cents == order.total_cents
        assert refreshed.monthly_revenue_cents == order.total_cents
        assert refreshed.last_order_date is not None

    def test_counter_failure_keeps_order(self, db_session, customer, milk, monkeypatch):
        def _broken():
            raise RuntimeError("counter store unavailable")

        monkeypatch.setattr(client_service, "begin_write", _broken)
        order = _order(customer, (milk, 4))

        assert order_service.get_order(order.id).status == "pending"
        assert _stock(db_session, milk).current_stock == Decimal("96")
        refreshed = db_session.get(Client, customer.id, populate_existing=True)
        assert refreshed.total_orders == 0


class TestStatusFlow:

    def test_forward_moves_append_events(self, db_session, customer, milk, manager_user):
        order = _order(customer, (milk, 1))
        for status in ("confirmed", "preparing", "ready", "in-transit", "delivered"):
            order = order_service.update_order_status(order.id, status, actor_user_id=manager_user.id)
            assert order.status == status

        events = order_service.get_order(order.id).tracking_events
        assert [e.sequence for e in events] == [1, 2, 3, 4, 5, 6]
        assert events[-1].status == "delivered"
        assert events[-1].updated_by_user_id == manager_user.id

    def test_skipping_forward_allowed(self, db_session, customer, milk):
        order = _order(customer, (milk, 1))
        order = order_service.update_order_status(order.id, "ready", note="Packed early")
        assert order.status == "ready"
        assert order.tracking_events[-1].note == "Packed early"

    @pytest.mark.parametrize("target", ["pending", "confirmed"])
    def test_backward_or_same_rejected(self, db_session, customer, milk, target):
        order = _order(customer, (milk, 1))
        order_service.update_order_status(order.id, "confirmed")
        with pytest.raises(InvalidTransitionError):
            order_service.update_order_status(order.id, target)

    def test_cancel_via_status_rejected(self, db_session, customer, milk):
        order = _order(customer, (milk, 1))
        with pytest.raises(InvalidTransitionError):
            order_service.update_order_status(order.id, "cancelled")

    def test_legacy_processing_maps_to_preparing(self, db_session, customer, milk):
        order = _order(customer, (milk, 1))
        order = order_service.update_order_status(order.id, "processing")
        assert order.status == "preparing"

    def test_unknown_status_rejected(self, db_session, customer, milk):
        order = _order(customer, (milk, 1))
        with pytest.raises(ValidationError):
            order_service.update_order_status(order.id, "lost-at-sea")

    def test_list_filters(self, db_session, customer, milk):
        first = _order(customer, (milk, 1))
        _order(customer, (milk, 1))
        order_service.update_order_status(first.id, "confirmed")

        assert [o.id for o in order_service.list_orders(status="confirmed")] == [first.id]
        assert len(order_service.list_orders(client_id=customer.id)) == 2
        assert order_service.list_orders(client_id=customer.id + 1) == []


class TestCancelOrder:

    def test_cancel_delivered_rejected(self, db_session, customer, milk):
        order = _order(customer, (milk, 30))
        order_service.update_order_status(order.id, "delivered")

        with pytest.raises(InvalidTransitionError):
            order_service.cancel_order(order.id)

        assert _stock(db_session, milk).current_stock == Decimal("70")
        reloaded = order_service.get_order(order.id)
        assert reloaded.status == "delivered"
        assert len(reloaded.tracking_events) == 2

    def test_cancel_twice_releases_once(self, db_session, customer, milk):
        order = _order(customer, (milk, 30))
        order_service.cancel_order(order.id, reason="Client closed")

        with pytest.raises(InvalidTransitionError):
            order_service.cancel_order(order.id)

        assert _stock(db_session, milk).current_stock == Decimal("100")
        reloaded = order_service.get_order(order.id)
        assert reloaded.cancelled_at is not None
        assert reloaded.tracking_events[-1].note == "Client closed"

    def test_cancel_multi_line(self, db_session, customer, milk, yogurt):
        order = _order(customer, (milk, Decimal("12.5")), (yogurt, 3))
        order_service.cancel_order(order.id)
        assert _stock(db_session, milk).current_stock == Decimal("100")
        assert _stock(db_session, yogurt).current_stock == Decimal("100")

    def test_cancelled_order_rejects_status_updates(self, db_session, customer, milk):
        order = _order(customer, (milk, 1))
        order_service.cancel_order(order.id)
        with pytest.raises(InvalidTransitionError):
            order_service.update_order_status(order.id, "confirmed")


class TestAssignDriver:

    def test_assign_driver(self, db_session, customer, milk, driver_user):
        order = _order(customer, (milk, 1))
        order = order_service.assign_driver(order.id, driver_user.id)
        assert order.driver_id == driver_user.id
        assert order.driver_name == "Dana Driver"

    def test_driver_name_override(self, db_session, customer, milk, driver_user):
        order = _order(customer, (milk, 1))
        order = order_service.assign_driver(order.id, driver_user.id, driver_name="Dana (van 2)")
        assert order.driver_name == "Dana (van 2)"

    def test_non_driver_rejected(self, db_session, customer, milk, operator_user):
        order = _order(customer, (milk, 1))
        with pytest.raises(ValidationError):
            order_service.assign_driver(order.id, operator_user.id)

    def test_inactive_driver_rejected(self, db_session, customer, milk):
        retired = make_user(db_session, "driver", email="retired@dairyflow.test", is_active=False)
        order = _order(customer, (milk, 1))
        with pytest.raises(ValidationError):
            order_service.assign_driver(order.id, retired.id)

    def test_terminal_order_rejected(self, db_session, customer, milk, driver_user):
        order = _order(customer, (milk, 1))
        order_service.update_order_status(order.id, "delivered")
        with pytest.raises(InvalidTransitionError):
            order_service.assign_driver(order.id, driver_user.id)


class TestUpdateDelivery:

    def test_edit_date_time_and_instructions(self, db_session, customer, milk, manager_user):
        order = _order(customer, (milk, 5))
        order = order_service.update_order_delivery(
            order.id,
            {"date": "2026-11-03T08:00:00Z", "time": "08:00", "special_instructions": "  Ring twice "},
            actor_user_id=manager_user.id,
        )

        assert order.to_dict()["delivery_date"] == "2026-11-03T08:00:00Z"
        assert order.delivery_time == "08:00"
        assert order.special_instructions == "Ring twice"

    def test_address_keys_merge(self, db_session, customer, milk):
        order = _order(customer, (milk, 5))
        order = order_service.update_order_delivery(order.id, {"address": {"street": "3 Quay Lane"}})

        assert order.delivery_address["street"] == "3 Quay Lane"
        assert order.delivery_address["city"] == "Porto"

    def test_null_clears_optional_fields(self, db_session, customer, milk):
        order = _order(customer, (milk, 5))
        order = order_service.update_order_delivery(order.id, {"time": None, "special_instructions": None})
        assert order.delivery_time is None
        assert order.special_instructions is None

    def test_lines_totals_and_stock_untouched(self, db_session, customer, milk):
        order = _order(customer, (milk, 5))
        total = order.total_cents
        order_service.update_order_delivery(order.id, {"time": "09:15"})

        reloaded = order_service.get_order(order.id)
        assert reloaded.total_cents == total
        assert reloaded.status == "pending"
        assert len(reloaded.lines) == 1
        assert _stock(db_session, milk).current_stock == Decimal("95")

    @pytest.mark.parametrize(
        "delivery",
        [
            {},
            {"status": "delivered"},
            {"items": []},
            {"date": None},
            {"date": "next tuesday"},
            {"time": 730},
            {"address": {"planet": "Mars"}},
            {"address": "12 Harbour Road"},
            "12 Harbour Road",
        ],
    )
    def test_invalid_edits(self, db_session, customer, milk, delivery):
        order = _order(customer, (milk, 5))
        with pytest.raises(ValidationError):
            order_service.update_order_delivery(order.id, delivery)

    @pytest.mark.parametrize("finish", ["deliver", "cancel"])
    def test_terminal_order_rejected(self, db_session, customer, milk, finish):
        order = _order(customer, (milk, 5))
        if finish == "deliver":
            order_service.update_order_status(order.id, "delivered")
        else:
            order_service.cancel_order(order.id)

        with pytest.raises(InvalidTransitionError):
            order_service.update_order_delivery(order.id, {"time": "10:00"})

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.update_order_delivery(999_999, {"time": "10:00"})
