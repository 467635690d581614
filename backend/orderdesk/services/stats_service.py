# Overview: Read-only figures for the administration dashboard.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Order, OrderStatus
from ..time_utils import to_utc_z


def dashboard(*, recent_limit: int = 10) -> dict:
    """
    Counts for the admin landing page.

    outstanding_credit_cents is the credit in use across all customers;
    unpaid_balance_cents is what open (non-cancelled) orders still owe.
    """
    customer_count = db.session.query(func.count(Customer.id)).scalar() or 0
    pending_orders = (
        db.session.query(func.count(Order.id))
        .filter(Order.status == OrderStatus.PENDING.value)
        .scalar()
        or 0
    )
    outstanding_credit = db.session.query(func.coalesce(func.sum(Customer.credit_used_cents), 0)).scalar()
    unpaid_balance = (
        db.session.query(func.coalesce(func.sum(Order.total_cents - Order.paid_cents), 0))
        .filter(Order.status != OrderStatus.CANCELLED.value)
        .scalar()
    )

    recent = (
        db.session.query(Order)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(recent_limit)
        .all()
    )

    return {
        "stats": {
            "customer_count": int(customer_count),
            "pending_orders": int(pending_orders),
            "outstanding_credit_cents": int(outstanding_credit or 0),
            "unpaid_balance_cents": int(unpaid_balance or 0),
        },
        "recent_orders": [
            {
                "id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "total_cents": order.total_cents,
                "created_at": to_utc_z(order.created_at),
                "customer": {
                    "id": order.customer_id,
                    "business_name": order.customer.business_name if order.customer else None,
                },
            }
            for order in recent
        ],
    }
