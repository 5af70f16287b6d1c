"""
Pytest fixtures for the fulfillment backend tests.

Provides the app on an in-memory database, a wiped session per test, actor
headers, and catalog / payment account / remittance type factories.
"""

import dataclasses
from decimal import Decimal

import pytest
from sqlalchemy import event

from fulfillment import create_app
from fulfillment.config import TestConfig
from fulfillment.extensions import db
from fulfillment.models import (
    Bundle,
    BundleItem,
    InventoryRecord,
    PaymentAccount,
    Product,
    RemittanceType,
    User,
)
from fulfillment.time_utils import utctoday


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def override_settings(app):
    """Swap fields of the frozen FulfillmentSettings for one test."""
    original = app.extensions["fulfillment"]

    def _override(**changes):
        app.extensions["fulfillment"] = dataclasses.replace(app.extensions["fulfillment"], **changes)

    yield _override
    app.extensions["fulfillment"] = original


@pytest.fixture(scope='function')
def no_auto_assign(override_settings):
    override_settings(auto_assign_payment_accounts=False)


# =============================================================================
# USERS
# =============================================================================


def _make_user(session, email, role="user", full_name=None):
    user = User(email=email, full_name=full_name or email.split("@")[0], role=role, is_active=True)
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "customer@example.com")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(db_session, "other@example.com")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin@example.com", role="admin")


@pytest.fixture(scope='function')
def manager(db_session):
    return _make_user(db_session, "manager@example.com", role="manager")


def actor_headers(user):
    return {"X-User-Id": str(user.id)}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return actor_headers(customer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return actor_headers(admin)


# =============================================================================
# CATALOG
# =============================================================================


@pytest.fixture(scope='function')
def make_product(db_session):
    """make_product(sku, price_cents=1000, stock=None); stock=None means non-stocked."""
    def _make(sku, price_cents=1000, stock=None, reserved=0):
        product = Product(sku=sku, name=f"Product {sku}", price_cents=price_cents, is_active=True)
        db_session.add(product)
        db_session.flush()
        if stock is not None:
            db_session.add(InventoryRecord(product_id=product.id, quantity=stock, reserved_quantity=reserved))
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_bundle(db_session):
    """make_bundle({product_id: qty, ...}, price_cents=...)"""
    def _make(components, price_cents=5000, name="Combo"):
        bundle = Bundle(name=name, price_cents=price_cents, is_active=True)
        db_session.add(bundle)
        db_session.flush()
        for product_id, qty in components.items():
            db_session.add(BundleItem(bundle_id=bundle.id, product_id=product_id, quantity=qty))
        db_session.commit()
        return bundle
    return _make


def inventory_of(product):
    return db.session.query(InventoryRecord).filter_by(product_id=product.id).one()


# =============================================================================
# PAYMENT ACCOUNTS / REMITTANCE TYPES
# =============================================================================


@pytest.fixture(scope='function')
def make_account(db_session):
    def _make(name="Zelle", **overrides):
        today = utctoday()
        values = {
            "account_name": name,
            "account_holder": f"{name} Holder",
            "is_active": True,
            "for_products": True,
            "for_remittances": True,
            "daily_limit_cents": 1_000_000,
            "monthly_limit_cents": 10_000_000,
            "security_limit_cents": None,
            "current_daily_cents": 0,
            "current_monthly_cents": 0,
            "priority": 100,
            "last_reset_date": today,
            "last_monthly_reset_date": today,
        }
        values.update(overrides)
        account = PaymentAccount(**values)
        db_session.add(account)
        db_session.commit()
        return account
    return _make


@pytest.fixture(scope='function')
def remittance_type(db_session):
    """USD -> CUP cash: fixed $2.00 + 5%, $10 to $1000, rate 320."""
    remittance_type = RemittanceType(
        name="USD to CUP cash",
        currency_code="USD",
        delivery_currency="CUP",
        exchange_rate=Decimal("320.0000"),
        commission_percentage=Decimal("5.00"),
        commission_fixed_cents=200,
        min_amount_cents=1_000,
        max_amount_cents=100_000,
        delivery_method="cash",
        max_delivery_days=3,
        is_active=True,
    )
    db_session.add(remittance_type)
    db_session.commit()
    return remittance_type


@pytest.fixture(scope='function')
def transfer_type(db_session):
    remittance_type = RemittanceType(
        name="USD to CUP transfer",
        currency_code="USD",
        delivery_currency="CUP",
        exchange_rate=Decimal("300.0000"),
        commission_percentage=Decimal("3.00"),
        commission_fixed_cents=0,
        min_amount_cents=1_000,
        max_amount_cents=None,
        delivery_method="transfer",
        max_delivery_days=2,
        is_active=True,
    )
    db_session.add(remittance_type)
    db_session.commit()
    return remittance_type


# =============================================================================
# QUERY COUNTING
# =============================================================================


@pytest.fixture(scope='function')
def count_selects(app):
    """
    Context manager factory counting SELECT statements sent to the engine.

        with count_selects() as counter:
            ...
        counter["selects"]
    """
    from contextlib import contextmanager

    @contextmanager
    def _counting():
        counter = {"selects": 0}

        def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT"):
                counter["selects"] += 1

        engine = db.engine
        event.listen(engine, "before_cursor_execute", _before_cursor_execute)
        try:
            yield counter
        finally:
            event.remove(engine, "before_cursor_execute", _before_cursor_execute)

    return _counting
