"""Tests for Order placement, line-item queries and the status state machine."""

import pytest
from inventory.order.order import Order, OrderStatus, base_product_id
from protean.exceptions import ValidationError


def _make_order(**overrides):
    defaults = {
        "items_data": [
            {"productId": "prod-001", "quantity": 2, "price": 19.99, "size": "M"},
            {"productId": "prod-002:::L", "quantity": 1, "price": 5.0, "size": "L"},
        ],
        "session_id": "sess-a",
        "order_id": "HIM-1",
    }
    defaults.update(overrides)
    return Order.place(**defaults)


class TestOrderPlacement:
    def test_new_order_is_payment_pending(self):
        order = _make_order()
        assert order.status == OrderStatus.PAYMENT_PENDING.value

    def test_generated_order_id(self):
        order = _make_order(order_id=None)
        assert str(order.order_id).startswith("HIM-")

    def test_items_are_normalized(self):
        order = _make_order()
        assert order.item_list()[0] == {"productId": "prod-001", "quantity": 2, "price": 19.99, "size": "M"}

    def test_empty_items_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _make_order(items_data=[])
        assert "items" in exc.value.messages

    def test_non_positive_quantity_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _make_order(items_data=[{"productId": "prod-001", "quantity": 0}])
        assert "items" in exc.value.messages

    def test_missing_product_rejected(self):
        with pytest.raises(ValidationError):
            _make_order(items_data=[{"quantity": 1}])


class TestLineItemQueries:
    def test_quantity_for_strips_size_suffix(self):
        order = _make_order()
        assert order.quantity_for("prod-002") == 1

    def test_quantities_by_product_merges_variants(self):
        order = _make_order(
            items_data=[
                {"productId": "tee-M-1", "quantity": 1},
                {"productId": "tee-XL-2", "quantity": 2},
                {"productId": "tee", "quantity": 1},
            ]
        )
        assert order.quantities_by_product() == {"tee": 4}


class TestBaseProductId:
    @pytest.mark.parametrize(
        "product_id, expected",
        [
            ("prod-001", "prod-001"),
            ("prod-001:::XL", "prod-001"),
            ("hoodie-XXL-3", "hoodie"),
            ("hoodie-S-abc", "hoodie"),
            ("not-a-size-suffix", "not-a-size-suffix"),
        ],
    )
    def test_base_product_id(self, product_id, expected):
        assert base_product_id(product_id) == expected


class TestStatusTransitions:
    def test_confirm_payment(self):
        order = _make_order()
        previous = order.transition_to("payment_confirmed")
        assert previous == OrderStatus.PAYMENT_PENDING
        assert order.status == OrderStatus.PAYMENT_CONFIRMED.value

    def test_full_lifecycle(self):
        order = _make_order()
        for status in ("payment_confirmed", "shipped", "complete"):
            order.transition_to(status)
        assert order.status == OrderStatus.COMPLETE.value

    def test_cancel_from_pending(self):
        order = _make_order()
        order.transition_to(OrderStatus.CANCELED)
        assert order.status == OrderStatus.CANCELED.value

    def test_cancel_after_shipping(self):
        order = _make_order()
        order.transition_to("payment_confirmed")
        order.transition_to("shipped")
        order.transition_to("canceled")
        assert order.status == OrderStatus.CANCELED.value

    def test_cannot_confirm_twice(self):
        order = _make_order()
        order.transition_to("payment_confirmed")
        with pytest.raises(ValidationError) as exc:
            order.transition_to("payment_confirmed")
        assert "Cannot transition from payment_confirmed to payment_confirmed" in exc.value.messages["status"]

    def test_cannot_skip_payment(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.transition_to("shipped")

    def test_complete_is_terminal(self):
        order = _make_order()
        for status in ("payment_confirmed", "shipped", "complete"):
            order.transition_to(status)
        with pytest.raises(ValidationError):
            order.transition_to("canceled")

    def test_unknown_status_rejected(self):
        order = _make_order()
        with pytest.raises(ValidationError) as exc:
            order.transition_to("lost_in_mail")
        assert "status" in exc.value.messages
