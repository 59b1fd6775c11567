"""Shared BDD fixtures and step definitions for the reservation lifecycle."""

from datetime import UTC, datetime, timedelta

import pytest
from inventory.product.catalog import CatalogStore
from inventory.product.product import Product
from inventory.product.registration import RegisterProduct
from inventory.stock.availability import AvailabilityService
from inventory.stock.reservation import ReservationService
from protean import current_domain
from pytest_bdd import given, parsers, then, when


# ---------------------------------------------------------------------------
# Scalar fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def outcome():
    """Mutable scratchpad shared by the steps of one scenario."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.parse('a product "{product_id}" with {stock:d} units in stock'))
def _(product_id, stock):
    current_domain.process(
        RegisterProduct(product_id=product_id, title="Linen Shirt", stock=stock),
        asynchronous=False,
    )


@given(parsers.parse('shopper "{holder}" reserves {quantity:d} units of "{product_id}"'))
@when(parsers.parse('shopper "{holder}" reserves {quantity:d} units of "{product_id}"'))
def _(holder, quantity, product_id):
    ReservationService().reserve(product_id, holder, quantity)


@given(parsers.parse('shopper "{holder}" held {quantity:d} units of "{product_id}" that expired a minute ago'))
def _(holder, quantity, product_id):
    catalog = CatalogStore()
    product = catalog.fetch(product_id)
    expired = (datetime.now(UTC) - timedelta(minutes=1)).isoformat()
    product.write_ledger([{"holderId": holder, "quantity": quantity, "expiresAt": expired}])
    catalog.save(product)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.parse('the available stock of "{product_id}" is {expected:d}'))
def _(product_id, expected):
    assert AvailabilityService().check(product_id).available_stock == expected


@then(parsers.parse('shopper "{holder}" has {expected:d} units of "{product_id}" reserved'))
def _(holder, expected, product_id):
    assert AvailabilityService().check(product_id, holder).reserved_by_caller == expected


@then(parsers.parse('shopper "{holder}" sees "{product_id}" as available'))
def _(holder, product_id):
    snapshot = AvailabilityService().check(product_id, holder)
    assert snapshot.available is True
    assert snapshot.available_stock == snapshot.stock


@then(parsers.parse('"{product_id}" has {expected:d} units in stock'))
def _(product_id, expected):
    assert current_domain.repository_for(Product).get(product_id).stock == expected


@then(parsers.parse('"{product_id}" holds no reservations'))
def _(product_id):
    assert current_domain.repository_for(Product).get(product_id).ledger() == []
