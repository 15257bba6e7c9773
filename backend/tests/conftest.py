"""
Pytest fixtures for DairyFlow backend tests.

Provides the in-memory test database, one user per role, bearer-token
helpers, sample products and clients, and a recording notification sink.
"""

from decimal import Decimal

import pytest

from dairyflow import create_app
from dairyflow.extensions import db
from dairyflow.models import Client, Product, User
from dairyflow.services.auth_service import hash_password
from dairyflow.services.notification_service import clear_sinks, register_sink
from dairyflow.services.stock_service import compute_stock_status

TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATIONS_ASYNC': False,
        'BCRYPT_ROUNDS': 4,
        'WRITE_RETRY_BACKOFF': 0.0,
        'INVOICE_INITIAL_STATUS': 'draft',
        'DEFAULT_PAYMENT_TERMS_DAYS': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifications():
    """Record every notification dispatched during the test as (kind, payload)."""
    events = []
    register_sink(lambda kind, payload: events.append((kind, payload)))
    yield events
    clear_sinks()


def make_user(session, role: str, email: str | None = None, name: str | None = None, is_active: bool = True) -> User:
    user = User(
        name=name or f"{role.capitalize()} User",
        email=email or f"{role}@dairyflow.test",
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        is_active=is_active,
    )
    session.add(user)
    session.commit()
    return user


def make_product(session, sku: str, *, stock="100", min_threshold="50", price_cents=250, **overrides) -> Product:
    stock = Decimal(stock)
    min_threshold = Decimal(min_threshold)
    fields = dict(
        sku=sku,
        name=f"Product {sku}",
        category="Milk",
        unit="L",
        unit_price_cents=price_cents,
        cost_price_cents=price_cents // 2,
        current_stock=stock,
        min_threshold=min_threshold,
        max_capacity=Decimal("1000"),
        status=compute_stock_status(stock, min_threshold),
        shelf_life_days=7,
    )
    fields.update(overrides)
    product = Product(**fields)
    session.add(product)
    session.commit()
    return product


def make_client(session, email: str = "orders@greenleaf.test", status: str = "active", name: str = "Green Leaf Cafe") -> Client:
    customer = Client(
        name=name,
        type="Cafe",
        email=email,
        phone="+1 555 0100",
        address="12 Harbour Road",
        status=status,
        payment_terms_days=30,
    )
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user(db_session, "admin")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return make_user(db_session, "manager")


@pytest.fixture(scope='function')
def operator_user(db_session):
    return make_user(db_session, "operator")


@pytest.fixture(scope='function')
def driver_user(db_session):
    return make_user(db_session, "driver", name="Dana Driver")


@pytest.fixture(scope='function')
def viewer_user(db_session):
    return make_user(db_session, "viewer")


@pytest.fixture(scope='function')
def milk(db_session):
    """Whole milk: stock 100, min threshold 50, 2.50 per litre."""
    return make_product(db_session, "MILK-1L", name="Whole Milk", price_cents=250)


@pytest.fixture(scope='function')
def yogurt(db_session):
    """Greek yogurt: stock 100, min threshold 20, 6.90 per kg."""
    return make_product(
        db_session,
        "YOG-GR",
        name="Greek Yogurt",
        category="Yogurt",
        unit="kg",
        price_cents=690,
        min_threshold="20",
    )


@pytest.fixture(scope='function')
def customer(db_session):
    return make_client(db_session)


def get_auth_token(client, email: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.email))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, manager_user.email))


@pytest.fixture(scope='function')
def operator_headers(client, operator_user):
    return auth_headers(get_auth_token(client, operator_user.email))


@pytest.fixture(scope='function')
def driver_headers(client, driver_user):
    return auth_headers(get_auth_token(client, driver_user.email))


@pytest.fixture(scope='function')
def viewer_headers(client, viewer_user):
    return auth_headers(get_auth_token(client, viewer_user.email))
