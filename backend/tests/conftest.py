"""
Pytest fixtures for tabpos backend tests.

Provides an in-memory database, a test client and small factories for the
records every checkout test needs (register, till session, products,
customers, reward programs, coupons).
"""

import pytest

from tabpos import create_app
from tabpos.extensions import db
from tabpos.services import catalog_service, coupon_service, reward_config_service, till_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TRANSACTION_RETRY_BACKOFF': 0,
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
def register(db_session):
    return till_service.create_register("REG-01", "Front Counter", "Main Floor")


@pytest.fixture(scope='function')
def till(db_session, register):
    """OPEN till session with R$ 100.00 float."""
    return till_service.open_till_session(register.id, 10000, user_id=1)


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 0}

    def _make(price_cents=1000, stock=100, **overrides):
        counter["n"] += 1
        data = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "sale_price_cents": price_cents,
            "cost_price_cents": price_cents // 2,
            "current_stock": stock,
        }
        data.update(overrides)
        return catalog_service.create_product(data)

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """R$ 10.00 product with 5 units in stock."""
    return make_product(price_cents=1000, stock=5)


@pytest.fixture(scope='function')
def customer(db_session):
    return catalog_service.create_customer({"name": "Ana Souza", "email": "ana@example.com"})


@pytest.fixture(scope='function')
def other_customer(db_session):
    return catalog_service.create_customer({"name": "Bruno Lima", "email": "bruno@example.com"})


@pytest.fixture(scope='function')
def loyalty_program(db_session):
    """Defaults: 1 point per real, 100 points minimum, 0.01 per point, 365 day expiry."""
    return reward_config_service.update_loyalty_config({})


@pytest.fixture(scope='function')
def cashback_program(db_session):
    """Defaults: 5%, no cap, 180 day expiry, 500 cents minimum to use."""
    return reward_config_service.update_cashback_config({})


@pytest.fixture(scope='function')
def save10(db_session):
    """10% off (max R$ 20.00) on purchases from R$ 50.00."""
    return coupon_service.create_coupon({
        "code": "save10",
        "coupon_type": "PERCENTAGE",
        "discount_value": 1000,
        "max_discount_cents": 2000,
        "min_purchase_cents": 5000,
    })
