"""Application tests for committing sales and manual stock changes."""

import pytest
from inventory.product.product import Product
from inventory.product.registration import RegisterProduct, SetStock
from inventory.stock.availability import AvailabilityService
from inventory.stock.decrement import StockDecrementService
from inventory.utils.cache import InMemoryCache, get_cache, notification_key
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError


def _register_product(**overrides):
    defaults = {"product_id": "p1", "title": "Linen Shirt", "stock": 5}
    defaults.update(overrides)
    return current_domain.process(RegisterProduct(**defaults), asynchronous=False)


def _stock(product_id="p1"):
    return current_domain.repository_for(Product).get(product_id).stock


class _BrokenCache(InMemoryCache):
    def set(self, key, value, ttl):
        raise ConnectionError("cache is down")

    def clear(self, prefix=None):
        raise ConnectionError("cache is down")


class TestConfirmSale:
    def test_decrements_stock(self):
        _register_product(stock=5)
        result = StockDecrementService().confirm_sale("p1", 2, order_id="HIM-1")

        assert result.previous_stock == 5
        assert result.new_stock == 3
        assert _stock() == 3

    def test_clamps_at_zero(self):
        _register_product(stock=1)
        result = StockDecrementService().confirm_sale("p1", 4)
        assert result.new_stock == 0
        assert _stock() == 0

    def test_is_not_idempotent_by_itself(self):
        _register_product(stock=5)
        service = StockDecrementService()
        service.confirm_sale("p1", 2, order_id="HIM-1")
        service.confirm_sale("p1", 2, order_id="HIM-1")
        assert _stock() == 1

    def test_writes_stock_update_notification(self):
        _register_product(stock=5)
        cache = InMemoryCache()
        StockDecrementService(cache=cache).confirm_sale("p1", 1, order_id="HIM-9")

        notification = cache.get(notification_key("p1"))
        assert notification["stock"] == 4
        assert notification["order_id"] == "HIM-9"
        assert notification["timestamp"]

    def test_invalidates_cached_availability(self):
        _register_product(stock=5)
        cache = InMemoryCache()
        availability = AvailabilityService(cache=cache)
        assert availability.check("p1", "A").available_stock == 5

        StockDecrementService(cache=cache).confirm_sale("p1", 2)
        assert availability.check("p1", "A").available_stock == 3

    def test_side_effect_failures_do_not_undo_the_write(self):
        _register_product(stock=5)
        result = StockDecrementService(cache=_BrokenCache()).confirm_sale("p1", 2)
        assert result.new_stock == 3
        assert _stock() == 3

    def test_unknown_product(self):
        with pytest.raises(ObjectNotFoundError):
            StockDecrementService().confirm_sale("missing", 1)

    def test_invalid_quantity(self):
        _register_product()
        with pytest.raises(ValidationError):
            StockDecrementService().confirm_sale("p1", 0)


class TestSetStock:
    def test_set_stock(self):
        _register_product(stock=5)
        result = StockDecrementService().set_stock("p1", 12)
        assert result.previous_stock == 5
        assert result.new_stock == 12
        assert _stock() == 12

    def test_negative_stock_rejected(self):
        _register_product()
        with pytest.raises(ValidationError) as exc:
            StockDecrementService().set_stock("p1", -1)
        assert "newStock" in exc.value.messages

    def test_mark_out_of_stock(self):
        _register_product(stock=5)
        StockDecrementService().mark_out_of_stock("p1")
        assert _stock() == 0


class TestSetStockCommand:
    def test_command_overwrites_stock(self):
        _register_product(stock=5)
        result = current_domain.process(SetStock(product_id="p1", stock=8), asynchronous=False)
        assert result == {"previous_stock": 5, "new_stock": 8}
        assert _stock() == 8

    def test_command_writes_stock_update_notification(self):
        _register_product(stock=5)
        current_domain.process(SetStock(product_id="p1", stock=8), asynchronous=False)
        assert get_cache().get(notification_key("p1"))["stock"] == 8

    def test_negative_stock_rejected(self):
        _register_product()
        with pytest.raises(ValidationError):
            SetStock(product_id="p1", stock=-1)

    def test_unknown_product(self):
        with pytest.raises(ObjectNotFoundError):
            current_domain.process(SetStock(product_id="missing", stock=3), asynchronous=False)


class TestTriggerStockUpdate:
    def test_writes_notification_without_changing_stock(self):
        _register_product(stock=5)
        cache = InMemoryCache()
        timestamp = StockDecrementService(cache=cache).trigger_stock_update("p1")

        assert cache.get(notification_key("p1"))["timestamp"] == timestamp
        assert _stock() == 5
