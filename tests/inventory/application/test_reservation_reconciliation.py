"""Application tests for the scheduled reservation sweep."""

import json
from datetime import UTC, datetime, timedelta

from inventory.order.order import Order
from inventory.order.pending import PendingOrderIndex
from inventory.order.placement import PlaceOrder
from inventory.product.catalog import CatalogStore
from inventory.product.product import Product
from inventory.product.registration import RegisterProduct
from inventory.stock.reconciliation import ReconcileReservations, reconcile_product
from protean import current_domain
from protean.exceptions import DatabaseError


def _register_product(**overrides):
    defaults = {"product_id": "p1", "title": "Linen Shirt", "stock": 5}
    defaults.update(overrides)
    return current_domain.process(RegisterProduct(**defaults), asynchronous=False)


def _entry(holder_id, quantity=1, expires_in=timedelta(minutes=30)):
    return {
        "holderId": holder_id,
        "quantity": quantity,
        "expiresAt": (datetime.now(UTC) + expires_in).isoformat(),
    }


def _seed_ledger(entries, product_id="p1"):
    catalog = CatalogStore()
    product = catalog.fetch(product_id)
    product.write_ledger(entries)
    catalog.save(product)


def _settle_order(session_id, status, product_id="p1"):
    """Persist an order that already reached ``status`` without running its side effects."""
    order_id = current_domain.process(
        PlaceOrder(session_id=session_id, items=json.dumps([{"productId": product_id, "quantity": 1}])),
        asynchronous=False,
    )
    repo = current_domain.repository_for(Order)
    order = repo.get(order_id)
    order.transition_to(status)
    repo.add(order)


def _reconcile(product_ids=None):
    return current_domain.process(ReconcileReservations(product_ids=product_ids or []), asynchronous=False)


def _ledger(product_id="p1"):
    return current_domain.repository_for(Product).get(product_id).ledger()


class TestReconcileProduct:
    def test_drops_expired_and_settled(self):
        _register_product()
        product = CatalogStore().fetch("p1")
        product.write_ledger([_entry("A"), _entry("B", expires_in=timedelta(minutes=-1)), _entry("C")])

        cleared = reconcile_product(product, {"C"}, datetime.now(UTC))
        assert cleared == 2
        assert [entry["holderId"] for entry in product.ledger()] == ["A"]


class TestReconciliationSweep:
    def test_sweeps_expired_entries(self):
        _register_product()
        _seed_ledger([_entry("A"), _entry("B", expires_in=timedelta(minutes=-1))])

        summary = _reconcile()
        assert summary["products_scanned"] == 1
        assert summary["products_changed"] == 1
        assert summary["entries_cleared"] == 1
        assert [entry["holderId"] for entry in _ledger()] == ["A"]

    def test_drops_reservations_of_confirmed_sessions(self):
        _register_product()
        _seed_ledger([_entry("A"), _entry("B")])
        _settle_order("A", "payment_confirmed")

        _reconcile()
        assert [entry["holderId"] for entry in _ledger()] == ["B"]

    def test_drops_reservations_of_canceled_sessions(self):
        _register_product()
        _seed_ledger([_entry("A")])
        _settle_order("A", "canceled")

        _reconcile()
        assert _ledger() == []

    def test_keeps_reservations_of_pending_sessions(self):
        _register_product()
        _seed_ledger([_entry("A")])
        current_domain.process(
            PlaceOrder(session_id="A", items=json.dumps([{"productId": "p1", "quantity": 1}])),
            asynchronous=False,
        )

        summary = _reconcile()
        assert summary["entries_cleared"] == 0
        assert len(_ledger()) == 1

    def test_products_without_reservations_are_skipped(self):
        _register_product(product_id="p1")
        _register_product(product_id="p2")
        _seed_ledger([_entry("A", expires_in=timedelta(minutes=-1))], product_id="p2")

        summary = _reconcile()
        assert summary["products_scanned"] == 1
        assert summary["products_changed"] == 1

    def test_limited_to_listed_products(self):
        _register_product(product_id="p1")
        _register_product(product_id="p2")
        expired = [_entry("A", expires_in=timedelta(minutes=-1))]
        _seed_ledger(expired, product_id="p1")
        _seed_ledger(expired, product_id="p2")

        summary = _reconcile(["p2"])
        assert summary["products_changed"] == 1
        assert len(_ledger("p1")) == 1
        assert _ledger("p2") == []

    def test_malformed_entries_survive(self):
        _register_product()
        malformed = {"holderId": "X", "quantity": 1, "expiresAt": "??"}
        _seed_ledger([malformed])

        summary = _reconcile()
        assert summary["entries_cleared"] == 0
        assert _ledger() == [malformed]

    def test_unreadable_ledger_is_reported_and_kept(self):
        _register_product(product_id="p1")
        _register_product(product_id="p2")
        _seed_ledger([_entry("A", expires_in=timedelta(minutes=-1))], product_id="p2")
        catalog = CatalogStore()
        product = catalog.fetch("p1")
        product.reservations = "{not json"
        catalog.save(product)

        summary = _reconcile()
        assert summary["products_scanned"] == 2
        assert summary["products_changed"] == 1
        assert [error["product_id"] for error in summary["errors"]] == ["p1"]
        assert current_domain.repository_for(Product).get("p1").reservations == "{not json"
        assert _ledger("p2") == []

    def test_order_lookup_failure_is_recorded_per_product(self, monkeypatch):
        _register_product(product_id="p1")
        _register_product(product_id="p2")
        expired = [_entry("A", expires_in=timedelta(minutes=-1))]
        _seed_ledger(expired, product_id="p1")
        _seed_ledger(expired, product_id="p2")

        original = PendingOrderIndex.settled_holders

        def flaky_settled_holders(self, product_id):
            if product_id == "p1":
                raise DatabaseError("order store unreachable")
            return original(self, product_id)

        monkeypatch.setattr(PendingOrderIndex, "settled_holders", flaky_settled_holders)

        summary = _reconcile()
        assert summary["errors"] == [{"product_id": "p1", "error": "order store unreachable"}]
        assert summary["products_changed"] == 1
        assert len(_ledger("p1")) == 1
        assert _ledger("p2") == []
