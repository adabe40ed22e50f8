"""
Pytest fixtures for the fulfillment backend tests.

Provides an in-memory database, test client, and a small seeded catalog:
one store, two products (SKU-A at 5.00, SKU-B at 8.00).
"""

import pytest

from freshroute import create_app
from freshroute.extensions import db
from freshroute.models import Store, Product
from freshroute.services import approval_service, delivery_service, order_service, stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def store(db_session):
    store = Store(name="Harbour Street", code="HS01", credit_limit_cents=0)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product_a(db_session):
    product = Product(sku="SKU-A", name="Greek Yoghurt 1kg", price_cents=500, cost_cents=300,
                      category="dairy", min_stock_level=0)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session):
    product = Product(sku="SKU-B", name="Chicken Breast 2kg", price_cents=800, cost_cents=550,
                      category="meat", min_stock_level=0)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def stocked(store, product_a, product_b):
    """SKU-A: 15, SKU-B: 5."""
    stock_service.apply_stock(store.id, product_a.id, 15, "adjust", note="opening stock")
    stock_service.apply_stock(store.id, product_b.id, 5, "adjust", note="opening stock")
    return store


@pytest.fixture(scope='function')
def approved_order(stocked, product_a):
    """SKU-A x10 at 5.00, approved."""
    order = order_service.create_order(
        stocked.id, [{"product_id": product_a.id, "quantity": 10}], status="pending"
    )
    result = approval_service.approve_order(order.id, actor="admin-1")
    assert result.warnings == []
    return result


@pytest.fixture(scope='function')
def deliver():
    """Walk a delivery through to delivered."""
    def _deliver(delivery_id: int):
        delivery_service.advance_delivery(delivery_id, "assigned", driver_id="driver-7")
        delivery_service.advance_delivery(delivery_id, "in_transit")
        return delivery_service.advance_delivery(delivery_id, "delivered", recipient_name="Store manager")
    return _deliver
