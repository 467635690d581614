"""
Pytest fixtures for order desk backend tests.

Provides an app per test against in-memory SQLite, the test client, and
small factories for catalog, customer, discount and tier rows.
"""

from datetime import timedelta

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.models import Customer, Discount, DiscountProduct, PriceList, PriceListItem, Product, RewardTier
from orderdesk.time_utils import utcnow


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "TAX_RATE_BPS": 0,
}

# Passes Luhn; expiry far in the future.
VALID_CARD = {
    "holder_name": "Dana Reyes",
    "number": "4242 4242 4242 4242",
    "expiry": "12/39",
    "cvv": "123",
}


@pytest.fixture(scope='function')
def app():
    """Create application for testing with a fresh schema."""
    app = create_app(dict(TEST_CONFIG))

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(sku=..., base_price_cents=...)."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "base_price_cents": 1000,
            "unit": "case",
            "units_per_case": 12,
            "stock_status": "in_stock",
            "is_active": True,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: make_customer(credit_limit_cents=..., credit_used_cents=..., ...)."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "business_name": f"Customer {counter['n']}",
            "email": f"buyer{counter['n']}@example.test",
            "credit_limit_cents": 1_000_000,
            "credit_used_cents": 0,
            "wallet_balance_cents": 0,
        }
        fields.update(overrides)
        customer = Customer(**fields)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def make_discount(db_session):
    """
    Factory: make_discount(discount_type, value, product_ids=None, **columns).

    Rows are inserted directly so malformed configurations can be stored too.
    """
    def _make(discount_type, value, *, product_ids=None, **overrides):
        now = utcnow()
        fields = {
            "name": f"{discount_type} {value}",
            "discount_type": discount_type,
            "value": value,
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=30),
            "is_active": True,
        }
        fields.update(overrides)
        discount = Discount(**fields)
        for pid in product_ids or []:
            discount.product_links.append(DiscountProduct(product_id=pid))
        db_session.add(discount)
        db_session.commit()
        return discount

    return _make


@pytest.fixture(scope='function')
def make_price_list(db_session):
    """Factory: make_price_list({product_id: price_cents, ...})."""
    def _make(overrides=None, **fields):
        price_list = PriceList(name=fields.pop("name", "Wholesale"), **fields)
        db_session.add(price_list)
        db_session.flush()
        for product_id, price in (overrides or {}).items():
            db_session.add(PriceListItem(price_list_id=price_list.id, product_id=product_id, price_cents=price))
        db_session.commit()
        return price_list

    return _make


@pytest.fixture(scope='function')
def make_tier(db_session):
    def _make(quarter, year, min_cartons, max_cartons, cashback, **overrides):
        fields = {
            "name": f"{min_cartons}+",
            "quarter": quarter,
            "year": year,
            "min_cartons": min_cartons,
            "max_cartons": max_cartons,
            "cashback_per_carton_cents": cashback,
            "is_active": True,
        }
        fields.update(overrides)
        tier = RewardTier(**fields)
        db_session.add(tier)
        db_session.commit()
        return tier

    return _make
