# Overview: Flask CLI command groups for bootstrap, demo data, reward batches and order handling.

# backend/orderdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Load a small catalog, a price list, two customers, discounts and reward tiers.
#
# Quarterly rewards:
# - python -m flask rewards calculate --quarter 1 --year 2026
#   Recalculate pending rewards from delivered orders.
# - python -m flask rewards process --quarter 1 --year 2026 [--by admin]
#   Pay pending rewards into customer wallets (safe to re-run).
#
# Orders:
# - python -m flask orders advance ORD-000001 shipped
#   Move an order along its status path (cancelled compensates payment).

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .money import cents_to_str
from .models import Customer, Product
from .services import catalog_service, customer_service, discount_service, order_service, reward_service
from .time_utils import current_quarter, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_PRODUCTS = [
    {"sku": "WTR-500-24", "name": "Spring Water 500ml x24", "base_price_cents": 1200, "units_per_case": 24},
    {"sku": "COL-330-24", "name": "Cola 330ml x24", "base_price_cents": 2400, "units_per_case": 24},
    {"sku": "JCE-1L-12", "name": "Orange Juice 1L x12", "base_price_cents": 3000, "units_per_case": 12},
    {"sku": "ENR-250-24", "name": "Energy Drink 250ml x24", "base_price_cents": 4200, "units_per_case": 24},
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Load demo catalog, customers, discounts and reward tiers (skips if products exist)."""
    if db.session.query(Product.id).first() is not None:
        click.echo("SKIP Catalog already has products; nothing seeded.")
        return

    products = [catalog_service.create_product(p) for p in DEMO_PRODUCTS]
    water, cola, juice, energy = products

    wholesale = customer_service.create_price_list({"name": "Wholesale", "description": "Volume accounts"})
    customer_service.set_price_override(wholesale.id, cola.id, 2100)
    customer_service.set_price_override(wholesale.id, energy.id, 3800)

    customer_service.create_customer({
        "business_name": "Corner Market",
        "contact_name": "Dana Reyes",
        "email": "orders@cornermarket.test",
        "credit_limit_cents": 500_000,
    })
    customer_service.create_customer({
        "business_name": "Harbor Foods",
        "contact_name": "Sam Okafor",
        "email": "buying@harborfoods.test",
        "credit_limit_cents": 2_000_000,
        "price_list_id": wholesale.id,
        "reward_category": "wholesale",
    })

    now = utcnow()
    window = {
        "start_date": (now - timedelta(days=1)).isoformat(),
        "end_date": (now + timedelta(days=90)).isoformat(),
    }
    discount_service.create_discount({
        "name": "10% off juice", "discount_type": "percentage", "value": 1000,
        "eligible_product_ids": [juice.id], **window,
    })
    discount_service.create_discount({
        "name": "Buy 10 water get 1 free", "discount_type": "buy_get", "value": 0,
        "min_quantity": 10, "bonus_quantity": 1, "eligible_product_ids": [water.id], **window,
    })
    discount_service.create_discount({
        "name": "5% over $1,000", "discount_type": "spend_bonus", "value": 500,
        "min_order_amount_cents": 100_000, **window,
    })

    q = current_quarter(now)
    tiers = [
        ("Bronze", None, 50, 199, 25),
        ("Silver", None, 200, 499, 50),
        ("Gold", None, 500, None, 75),
        ("Wholesale", "wholesale", 100, None, 60),
    ]
    for name, category, low, high, cashback in tiers:
        reward_service.create_tier({
            "name": name, "category": category, "quarter": q.quarter, "year": q.year,
            "min_cartons": low, "max_cartons": high, "cashback_per_carton_cents": cashback,
        })

    click.echo(f"PASS Seeded {len(products)} products, "
               f"{db.session.query(Customer).count()} customers, 3 discounts, {len(tiers)} tiers ({q.label}).")


@click.group('rewards')
def rewards_group():
    """Quarterly reward commands."""


@rewards_group.command('calculate')
@click.option('--quarter', type=int, required=True, help='Quarter (1-4)')
@click.option('--year', type=int, required=True, help='Year')
@with_appcontext
def calculate_rewards(quarter, year):
    try:
        rewards = reward_service.calculate_quarter(quarter, year)
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"\n{'Customer':<32} {'Cartons':>8} {'Reward':>12} {'Status':<12}")
    click.echo("-" * 68)
    for r in rewards:
        name = r.customer.business_name if r.customer else f"#{r.customer_id}"
        click.echo(f"{name:<32} {r.total_cartons_purchased:>8} {cents_to_str(r.final_reward_cents):>12} {r.status:<12}")
    click.echo(f"\n{len(rewards)} reward row(s) for Q{quarter} {year}.")


@rewards_group.command('process')
@click.option('--quarter', type=int, required=True, help='Quarter (1-4)')
@click.option('--year', type=int, required=True, help='Year')
@click.option('--by', 'processed_by', default='cli', help='Recorded as processed_by')
@with_appcontext
def process_rewards(quarter, year, processed_by):
    try:
        summary = reward_service.process_quarter(quarter, year, processed_by=processed_by)
    except ValueError as e:
        raise click.ClickException(str(e))

    for r in summary["results"]:
        line = f"  reward {r['reward_id']:<6} customer {r['customer_id']:<6} {r['status']}"
        if r["status"] == "processed":
            line += f" {r['payment_number']} {cents_to_str(r['amount_cents'])}"
        elif r.get("reason") or r.get("error"):
            line += f" ({r.get('reason') or r.get('error')})"
        click.echo(line)
    click.echo(
        f"\n{summary['quarter_label']}: processed={summary['processed']} skipped={summary['skipped']} "
        f"failed={summary['failed']} total_paid={cents_to_str(summary['total_paid_cents'])}"
    )
    if summary["failed"]:
        raise SystemExit(1)


@click.group('orders')
def orders_group():
    """Order fulfilment commands."""


@orders_group.command('advance')
@click.argument('order_number')
@click.argument('status')
@with_appcontext
def advance_order(order_number, status):
    try:
        order = order_service.advance_by_number(order_number, status)
    except (ValueError, LookupError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {order.order_number} is now {order.status}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(rewards_group)
    app.cli.add_command(orders_group)
