"""
Shared fixtures: an app on in-memory SQLite, row factories and fake gateways.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from ordersync import create_app
from ordersync.datetime_utils import utcnow
from ordersync.helpship.results import RemoteAck, SyncFailure, SyncSuccess
from ordersync.meta.capi import DeliveryResult
from ordersync.models import LandingPage, Order, OrderStatus, Store, db


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "QUEUE_REAPER_ON_REQUEST": False,
    "RUN_SCHEDULER": False,
    "CRON_SECRET": None,
    "HELPSHIP_ENV": "development",
    "HELPSHIP_CLIENT_ID": "test-client",
    "HELPSHIP_CLIENT_SECRET": "test-secret",
    "META_DEFAULT_PIXEL_ID": None,
    "META_DEFAULT_ACCESS_TOKEN": None,
    "META_EVENT_SOURCE_URL": "https://shop.example.ro/checkout",
    "LOG_FILE": None,
}


@pytest.fixture
def app():
    """Create Flask application for testing."""
    app = create_app(dict(TEST_CONFIG))

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def store(app):
    store = Store(name="Velaro", order_series="VLR")
    db.session.add(store)
    db.session.commit()
    return store


@pytest.fixture
def landing_page(store):
    landing_page = LandingPage(slug="perna-ortopedica", name="Perna ortopedica", store_id=store.id)
    db.session.add(landing_page)
    db.session.commit()
    return landing_page


@pytest.fixture
def make_order(app):
    """Factory for Order rows; keyword arguments override the defaults."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        values = {
            "order_number": counter["n"],
            "status": OrderStatus.PENDING,
            "full_name": "Ion Popescu",
            "phone": "0722123456",
            "county": "Cluj",
            "city": "Cluj-Napoca",
            "address": "Strada Memorandumului 28",
            "postal_code": "400114",
            "product_sku": "SKU1",
            "product_name": "Perna ortopedica",
            "product_quantity": 1,
            "subtotal": Decimal("100.00"),
            "shipping_cost": Decimal("10.00"),
            "total": Decimal("110.00"),
            "upsells": [],
            "created_at": utcnow() - timedelta(hours=1),
        }
        values.update(overrides)
        order = Order(**values)
        db.session.add(order)
        db.session.commit()
        return order

    return _make


class FakeGateway:
    """Stands in for HelpshipGateway; records calls and returns canned outcomes."""

    def __init__(self, helpship_order_id="HS-1001"):
        self.helpship_order_id = helpship_order_id
        self.sync_failures = {}
        self.failing_actions = set()
        self.calls = []

    def fail_sync_for(self, order_id, error="Helpship API error: 500 boom"):
        self.sync_failures[order_id] = error

    def sync_order(self, order, hold=True):
        self.calls.append(("sync", order.id, hold))
        if order.id in self.sync_failures or "*" in self.sync_failures:
            error = self.sync_failures.get(order.id) or self.sync_failures["*"]
            return SyncFailure(error=error, status_code=500)
        return SyncSuccess(helpship_order_id=f"{self.helpship_order_id}-{order.order_number}",
                           total=Decimal("0"), held=hold)

    def _mirror(self, action, helpship_order_id):
        self.calls.append((action, helpship_order_id))
        if action in self.failing_actions:
            return SyncFailure(error=f"{action} rejected", status_code=500)
        return RemoteAck(helpship_order_id=helpship_order_id, action=action)

    def hold(self, helpship_order_id):
        return self._mirror("hold", helpship_order_id)

    def unhold(self, helpship_order_id):
        return self._mirror("unhold", helpship_order_id)

    def cancel(self, helpship_order_id):
        return self._mirror("cancel", helpship_order_id)

    def uncancel(self, helpship_order_id):
        return self._mirror("uncancel", helpship_order_id)

    def update_address(self, order):
        return self._mirror("address update", order.helpship_order_id)

    def actions(self):
        return [call[0] for call in self.calls]


class FakeConversions:
    def __init__(self):
        self.sent = []

    def send_purchase(self, order, event_source_url=None):
        self.sent.append(order.id)
        return DeliveryResult(success=True, event_id=f"purchase_{order.id}")


@pytest.fixture
def gateway(app):
    fake = FakeGateway()
    app.extensions["ordersync.helpship"] = fake
    return fake


@pytest.fixture
def conversions():
    return FakeConversions()


@pytest.fixture
def state_machine(gateway, conversions):
    from ordersync.orders.state_machine import OrderStateMachine
    return OrderStateMachine(gateway=gateway, conversions=conversions)
