"""Tests for the server-sent stock update stream."""

import asyncio
import json

from inventory.product.registration import RegisterProduct
from inventory.stock.decrement import StockDecrementService
from inventory.stock.reservation import ReservationService
from inventory.stock.updates import _poll, format_event, stock_event_stream
from protean import current_domain


def _register_product(**overrides):
    defaults = {"product_id": "p1", "title": "Linen Shirt", "stock": 5}
    defaults.update(overrides)
    return current_domain.process(RegisterProduct(**defaults), asynchronous=False)


def _collect(stream):
    async def run():
        return [frame async for frame in stream]

    return asyncio.run(run())


def _payload(frame):
    lines = frame.strip().splitlines()
    assert lines[0] == "event: stock"
    return json.loads(lines[1][len("data: ") :])


class TestFormatEvent:
    def test_frame_layout(self):
        assert format_event("stock", {"stock": 1}) == 'event: stock\ndata: {"stock": 1}\n\n'


class TestPoll:
    def test_first_poll_always_returns_a_view(self):
        _register_product(stock=5)
        _, view = _poll("p1", None, None)
        assert view["stock"] == 5
        assert view["stockMessage"] == "5 in stock"

    def test_unchanged_notification_returns_nothing(self):
        _register_product()
        last_seen, _ = _poll("p1", None, None)
        _, view = _poll("p1", None, last_seen)
        assert view is None

    def test_stock_change_is_picked_up(self):
        _register_product(stock=5)
        last_seen, _ = _poll("p1", "sess-a", None)

        StockDecrementService().confirm_sale("p1", 2)
        _, view = _poll("p1", "sess-a", last_seen)
        assert view["stock"] == 3
        assert view["updatedAt"]


class TestStockEventStream:
    def test_emits_current_view_first(self):
        _register_product(stock=5)
        ReservationService().reserve("p1", "sess-a", 2)

        frames = _collect(stock_event_stream("p1", holder_id="sess-a", interval=0, max_events=1))
        assert len(frames) == 1
        payload = _payload(frames[0])
        assert payload["reservedQuantity"] == 2
        assert payload["reservedByCurrentUser"] == 2
        assert payload["availableStock"] == 3

    def test_stops_when_client_disconnects(self):
        _register_product()

        async def disconnected():
            return True

        frames = _collect(stock_event_stream("p1", interval=0, is_disconnected=disconnected))
        assert frames == []
