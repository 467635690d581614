# Overview: Threaded tests for credit reservation, free-item claims, numbering and reward batches.

"""
Concurrency Tests

Each worker runs in its own app context (own session and connection)
against a file-backed SQLite database, started together on a barrier.
"""

import threading
from datetime import timedelta

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.models import (
    CartItem,
    Customer,
    CustomerReward,
    Discount,
    DiscountProduct,
    Order,
    Payment,
    Product,
    RewardTier,
)
from orderdesk.services import (
    cart_service,
    checkout_service,
    customer_service,
    free_item_service,
    payment_service,
    reward_service,
)
from orderdesk.services.concurrency import run_with_retry
from orderdesk.services.customer_service import BalanceError
from orderdesk.time_utils import utcnow
from orderdesk.validation import ConflictError

from conftest import TEST_CONFIG


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "concurrency.db"
    app = create_app(dict(
        TEST_CONFIG,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False, "timeout": 30}},
        CHECKOUT_RETRY_ATTEMPTS=10,
    ))
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_workers(app, worker, args_list):
    """Run worker(*args) in one thread per args tuple; returns results and errors."""
    results = []
    errors = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(args_list))

    def _target(*args):
        with app.app_context():
            try:
                barrier.wait()
                outcome = worker(*args)
                with lock:
                    results.append(outcome)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_target, args=args) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def seed(app, *rows):
    with app.app_context():
        db.session.add_all(rows)
        db.session.commit()
        return [row.id for row in rows]


def test_credit_reservations_never_exceed_limit(file_app):
    (customer_id,) = seed(file_app, Customer(business_name="Race Co", credit_limit_cents=1000))

    def worker():
        def _op():
            try:
                customer_service.reserve_credit(customer_id, 300)
            except BalanceError:
                db.session.rollback()
                return False
            db.session.commit()
            return True

        return run_with_retry(_op, attempts=10)

    results, errors = run_workers(file_app, worker, [()] * 6)

    assert errors == []
    assert results.count(True) == 3
    with file_app.app_context():
        assert db.session.get(Customer, customer_id).credit_used_cents == 900


def test_concurrent_checkouts_get_unique_numbers(file_app):
    product_id, *customer_ids = seed(
        file_app,
        Product(sku="RACE-1", name="Race Cola", base_price_cents=500),
        *[Customer(business_name=f"Buyer {n}", credit_limit_cents=100_000) for n in range(5)],
    )
    with file_app.app_context():
        for customer_id in customer_ids:
            cart_service.add_item(customer_id, product_id, 2)

    def worker(customer_id):
        return checkout_service.checkout(customer_id, payment_method="credit").order_number

    results, errors = run_workers(file_app, worker, [(cid,) for cid in customer_ids])

    assert errors == []
    assert sorted(results) == [f"ORD-{n:06d}" for n in range(1, 6)]


def test_same_customer_checkouts_respect_credit(file_app):
    """Two tabs racing checkout on one cart: one order, credit reserved once."""
    product_id, customer_id = seed(
        file_app,
        Product(sku="RACE-2", name="Race Water", base_price_cents=400),
        Customer(business_name="Two Tabs", credit_limit_cents=1000),
    )
    with file_app.app_context():
        cart_service.add_item(customer_id, product_id, 2)

    def worker():
        return checkout_service.checkout(customer_id, payment_method="credit").order_number

    results, errors = run_workers(file_app, worker, [()] * 3)

    assert len(results) == 1
    assert len(errors) == 2
    with file_app.app_context():
        assert db.session.get(Customer, customer_id).credit_used_cents == 800


def test_concurrent_claims_create_one_claim(file_app):
    now = utcnow()
    product_id, customer_id = seed(
        file_app,
        Product(sku="RACE-3", name="Race Juice", base_price_cents=1200),
        Customer(business_name="Claimer", credit_limit_cents=100_000),
    )
    with file_app.app_context():
        discount = Discount(
            name="Buy 3 get 1",
            discount_type="buy_get",
            value=0,
            min_quantity=3,
            bonus_quantity=1,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=1),
            is_active=True,
        )
        discount.product_links.append(DiscountProduct(product_id=product_id))
        db.session.add(discount)
        db.session.commit()
        discount_id = discount.id
        cart_service.add_item(customer_id, product_id, 6)

    selection = [{"product_id": product_id, "quantity": 2}]

    def worker():
        return free_item_service.claim_free_items(customer_id, discount_id, selection)["created"]

    results, errors = run_workers(file_app, worker, [()] * 4)

    assert errors == []
    assert results.count(True) == 1
    with file_app.app_context():
        free_units = sum(
            item.quantity
            for item in db.session.query(CartItem).filter_by(customer_id=customer_id, is_free_item=True).all()
        )
        assert free_units == 2


def test_overlapping_reward_batches_pay_once(file_app):
    customer_id, _ = seed(
        file_app,
        Customer(business_name="Cashback Co", credit_limit_cents=0),
        RewardTier(name="All", quarter=3, year=2026, min_cartons=0, cashback_per_carton_cents=5),
    )
    seed(
        file_app,
        CustomerReward(
            customer_id=customer_id,
            quarter=3,
            year=2026,
            total_cartons_purchased=40,
            calculated_reward_cents=200,
            manual_adjustment_cents=0,
            status="pending",
        ),
    )

    def worker():
        return reward_service.process_quarter(3, 2026, processed_by="batch")

    results, errors = run_workers(file_app, worker, [()] * 4)

    assert errors == []
    assert sum(r["processed"] for r in results) == 1
    assert sum(r["failed"] for r in results) == 0
    with file_app.app_context():
        assert db.session.get(Customer, customer_id).wallet_balance_cents == 200
        assert db.session.query(Payment).filter_by(customer_id=customer_id).count() == 1
        reward = db.session.query(CustomerReward).filter_by(customer_id=customer_id).one()
        assert reward.status == "processed"
        assert reward.processed_by == "batch"


def test_recorded_payments_never_overpay_an_order(file_app):
    (customer_id,) = seed(file_app, Customer(business_name="Ledger Co", credit_limit_cents=5000))
    (order_id,) = seed(file_app, Order(
        order_number="ORD-000001",
        customer_id=customer_id,
        payment_method="credit",
        subtotal_cents=1000,
        total_cents=1000,
    ))

    def worker():
        try:
            payment_service.record_payment({
                "customer_id": customer_id,
                "order_id": order_id,
                "amount_cents": 400,
                "method": "bank_transfer",
            })
        except ConflictError:
            return False
        return True

    results, errors = run_workers(file_app, worker, [()] * 4)

    assert errors == []
    assert results.count(True) == 2
    with file_app.app_context():
        assert db.session.get(Order, order_id).paid_cents == 800
        assert db.session.query(Payment).filter_by(order_id=order_id).count() == 2
