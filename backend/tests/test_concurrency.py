"""
Concurrency tests against a file-backed SQLite database.

Verifies:
- Concurrent orders for the same stock never oversell
- Concurrent completion of one batch credits stock exactly once
- Concurrent cancellation of one order releases stock exactly once
"""

import os
import tempfile
import threading
from decimal import Decimal

import pytest

from dairyflow import create_app
from dairyflow.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidTransitionError,
)
from dairyflow.extensions import db
from dairyflow.models import Order, Product
from dairyflow.services import batch_service, order_service

from conftest import make_client, make_product, make_user

DELIVERY = {"address": {"city": "Porto"}, "date": "2026-11-02T07:30:00Z"}


@pytest.fixture
def file_app():
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'NOTIFICATIONS_ASYNC': False,
        'BCRYPT_ROUNDS': 4,
        'WRITE_RETRY_ATTEMPTS': 5,
        'WRITE_RETRY_BACKOFF': 0.01,
        'SQLITE_BUSY_TIMEOUT': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()
    tmpdir.cleanup()


def _run_concurrently(app, worker, count):
    """Start `count` threads behind a barrier; return (successes, errors)."""
    successes = []
    errors = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def run():
        with app.app_context():
            try:
                barrier.wait()
                result = worker()
                with lock:
                    successes.append(result)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=run) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return successes, errors


def test_concurrent_orders_do_not_oversell(file_app):
    customer = make_client(db.session)
    milk = make_product(db.session, "MILK-1L", name="Whole Milk")
    client_id, product_id = customer.id, milk.id

    def worker():
        order = order_service.create_order(
            client_id, [{"product_id": product_id, "quantity": 60}], DELIVERY
        )
        return order.id

    successes, errors = _run_concurrently(file_app, worker, 5)

    assert len(successes) == 1
    assert len(errors) == 4
    for exc in errors:
        assert isinstance(exc, (InsufficientStockError, ConcurrencyConflictError)), repr(exc)

    db.session.expire_all()
    product = db.session.get(Product, product_id)
    assert product.current_stock == Decimal("40")
    assert product.status == "low"
    assert db.session.query(Order).count() == 1


def test_concurrent_batch_completion_credits_once(file_app):
    operator = make_user(db.session, "operator")
    butter = make_product(db.session, "BUT-250", name="Butter", category="Butter", unit="kg", stock="0")
    batch = batch_service.create_batch(
        {
            "product_name": "Butter",
            "product_type": "butter",
            "quantity": 100,
            "unit": "kg",
            "product_id": butter.id,
        },
        actor_user_id=operator.id,
    )
    batch_id, product_id = batch.id, butter.id

    def worker():
        return batch_service.complete_batch(batch_id, yield_pct=90).id

    successes, errors = _run_concurrently(file_app, worker, 4)

    assert len(successes) == 1
    for exc in errors:
        assert isinstance(exc, (InvalidTransitionError, ConcurrencyConflictError)), repr(exc)

    db.session.expire_all()
    assert db.session.get(Product, product_id).current_stock == Decimal("90")


def test_concurrent_cancel_releases_once(file_app):
    customer = make_client(db.session)
    milk = make_product(db.session, "MILK-1L", name="Whole Milk")
    order = order_service.create_order(customer.id, [{"product_id": milk.id, "quantity": 30}], DELIVERY)
    order_id, product_id = order.id, milk.id

    def worker():
        return order_service.cancel_order(order_id).id

    successes, errors = _run_concurrently(file_app, worker, 4)

    assert len(successes) == 1
    for exc in errors:
        assert isinstance(exc, (InvalidTransitionError, ConcurrencyConflictError)), repr(exc)

    db.session.expire_all()
    assert db.session.get(Product, product_id).current_stock == Decimal("100")
