# Overview: Flask CLI commands run through the test CLI runner against the test database.

from datetime import datetime

import pytest

from orderdesk.models import Customer, DiscountProduct, Order, Product, RewardTier
from orderdesk.services import cart_service, checkout_service, order_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def delivered_order(db_session, customer, product, quantity, when):
    cart_service.add_item(customer.id, product.id, quantity)
    order = checkout_service.checkout(customer.id, payment_method="credit")
    for step in ["confirmed", "processing", "shipped", "delivered"]:
        order_service.update_order_status(order.id, step)
    db_session.query(Order).filter_by(id=order.id).update({"created_at": when})
    db_session.commit()
    return order


class TestSystemCommands:

    def test_seed_demo_runs_once(self, runner, db_session):
        first = runner.invoke(args=["system", "seed-demo"])

        assert first.exit_code == 0, first.output
        assert "PASS Seeded 4 products" in first.output
        assert db_session.query(Product).count() == 4
        assert db_session.query(Customer).count() == 2
        assert db_session.query(RewardTier).count() == 4
        assert db_session.query(DiscountProduct).count() == 2

        second = runner.invoke(args=["system", "seed-demo"])
        assert second.exit_code == 0
        assert "SKIP" in second.output
        assert db_session.query(Product).count() == 4

    def test_reset_db_needs_confirmation(self, runner, db_session, make_product):
        make_product()

        aborted = runner.invoke(args=["system", "reset-db"], input="n\n")
        assert aborted.exit_code == 1
        assert db_session.query(Product).count() == 1

        reset = runner.invoke(args=["system", "reset-db", "--yes"])
        assert reset.exit_code == 0
        assert db_session.query(Product).count() == 0


class TestRewardCommands:

    def test_calculate_and_process(self, runner, db_session, make_product, make_customer, make_tier):
        carton = make_product(base_price_cents=100)
        customer = make_customer(business_name="Corner Market", credit_limit_cents=100_000)
        make_tier(3, 2026, 50, None, 3, name="Tier B")
        delivered_order(db_session, customer, carton, 80, datetime(2026, 8, 15, 12, 0))

        calculated = runner.invoke(args=["rewards", "calculate", "--quarter", "3", "--year", "2026"])
        assert calculated.exit_code == 0, calculated.output
        assert "Corner Market" in calculated.output
        assert "2.40" in calculated.output

        processed = runner.invoke(args=["rewards", "process", "--quarter", "3", "--year", "2026", "--by", "ops"])
        assert processed.exit_code == 0, processed.output
        assert "RWD-000001" in processed.output
        assert "processed=1" in processed.output
        assert "total_paid=2.40" in processed.output

        again = runner.invoke(args=["rewards", "process", "--quarter", "3", "--year", "2026"])
        assert again.exit_code == 0
        assert "processed=0" in again.output
        assert "RWD-000002" not in again.output

    def test_bad_quarter_is_reported(self, runner, db_session):
        result = runner.invoke(args=["rewards", "calculate", "--quarter", "5", "--year", "2026"])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestOrderCommands:

    def test_advance(self, runner, db_session, make_product, make_customer):
        product = make_product()
        customer = make_customer()
        cart_service.add_item(customer.id, product.id, 1)
        order = checkout_service.checkout(customer.id, payment_method="credit")

        result = runner.invoke(args=["orders", "advance", order.order_number, "confirmed"])

        assert result.exit_code == 0, result.output
        assert f"PASS {order.order_number} is now confirmed" in result.output

    def test_invalid_step_and_unknown_order(self, runner, db_session, make_product, make_customer):
        product = make_product()
        customer = make_customer()
        cart_service.add_item(customer.id, product.id, 1)
        order = checkout_service.checkout(customer.id, payment_method="credit")

        skipped = runner.invoke(args=["orders", "advance", order.order_number, "delivered"])
        assert skipped.exit_code == 1

        missing = runner.invoke(args=["orders", "advance", "ORD-999999", "confirmed"])
        assert missing.exit_code == 1
        assert "not found" in missing.output
