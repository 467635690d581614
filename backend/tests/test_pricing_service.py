# Overview: Pytest coverage for catalog price resolution and price-list administration.

import pytest

from orderdesk.services import customer_service, pricing_service
from orderdesk.services.pricing_service import ProductNotFoundError
from orderdesk.validation import NotFoundError, ValidationError


class TestResolveUnitPrice:

    def test_base_price_without_price_list(self, db_session, make_product, make_customer):
        product = make_product(base_price_cents=2400)
        customer = make_customer()

        resolved = pricing_service.resolve_unit_price(customer.id, product.id)

        assert resolved.unit_price_cents == 2400
        assert resolved.source == "base"
        assert resolved.unit == "case"

    def test_price_list_override_wins(self, db_session, make_product, make_customer, make_price_list):
        product = make_product(base_price_cents=2400)
        price_list = make_price_list({product.id: 2100})
        customer = make_customer(price_list_id=price_list.id)

        resolved = pricing_service.resolve_unit_price(customer.id, product.id)

        assert resolved.unit_price_cents == 2100
        assert resolved.source == "price_list"
        assert resolved.price_list_id == price_list.id

    def test_price_list_without_entry_falls_back(self, db_session, make_product, make_customer, make_price_list):
        listed = make_product(base_price_cents=1000)
        unlisted = make_product(base_price_cents=3000)
        price_list = make_price_list({listed.id: 900})
        customer = make_customer(price_list_id=price_list.id)

        assert pricing_service.resolve_unit_price(customer.id, unlisted.id).unit_price_cents == 3000

    def test_inactive_price_list_is_ignored(self, db_session, make_product, make_customer, make_price_list):
        product = make_product(base_price_cents=1000)
        price_list = make_price_list({product.id: 500}, is_active=False)
        customer = make_customer(price_list_id=price_list.id)

        assert pricing_service.resolve_unit_price(customer.id, product.id).unit_price_cents == 1000

    def test_anonymous_price_is_base(self, db_session, make_product):
        product = make_product(base_price_cents=777)
        assert pricing_service.resolve_unit_price(None, product.id).unit_price_cents == 777

    def test_inactive_product_is_not_found(self, db_session, make_product, make_customer):
        product = make_product(is_active=False)
        customer = make_customer()
        with pytest.raises(ProductNotFoundError):
            pricing_service.resolve_unit_price(customer.id, product.id)

    def test_missing_product_is_not_found(self, db_session, make_customer):
        customer = make_customer()
        with pytest.raises(ProductNotFoundError):
            pricing_service.resolve_unit_price(customer.id, 999)

    def test_unknown_customer(self, db_session, make_product):
        product = make_product()
        with pytest.raises(NotFoundError):
            pricing_service.resolve_unit_price(999, product.id)


class TestPriceListAdministration:

    def test_set_override_replaces_existing(self, db_session, make_product, make_price_list):
        product = make_product()
        price_list = make_price_list({product.id: 800})

        item = customer_service.set_price_override(price_list.id, product.id, 750)

        assert item.price_cents == 750
        assert len(price_list.items) == 1

    def test_set_override_rejects_negative(self, db_session, make_product, make_price_list):
        product = make_product()
        price_list = make_price_list()
        with pytest.raises(ValidationError):
            customer_service.set_price_override(price_list.id, product.id, -1)

    def test_assign_and_clear_price_list(self, db_session, make_product, make_customer, make_price_list):
        product = make_product(base_price_cents=1000)
        price_list = make_price_list({product.id: 600})
        customer = make_customer()

        customer_service.assign_price_list(customer.id, price_list.id)
        assert pricing_service.resolve_unit_price(customer.id, product.id).unit_price_cents == 600

        customer_service.assign_price_list(customer.id, None)
        assert pricing_service.resolve_unit_price(customer.id, product.id).unit_price_cents == 1000

    def test_assign_unknown_price_list(self, db_session, make_customer):
        customer = make_customer()
        with pytest.raises(NotFoundError):
            customer_service.assign_price_list(customer.id, 404)
