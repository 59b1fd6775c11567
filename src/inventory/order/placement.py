"""Order placement — command and handler.

Checkout submits the cart as an order in ``payment_pending``. The shopper's
ledger reservations stay in place; the availability calculator correlates
them with the order through the session id.
"""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from inventory.domain import inventory
from inventory.order.order import Order
from inventory.utils.cache import get_cache, invalidate_product


@inventory.command(part_of="Order")
class PlaceOrder:
    order_id = Identifier()  # Generated as HIM-<timestamp> when omitted
    session_id = String(max_length=255)
    items = Text(required=True)  # JSON list of {productId, quantity, price, size}


@inventory.command_handler(part_of=Order)
class OrderPlacementHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        order = Order.place(
            items_data=json.loads(command.items),
            session_id=command.session_id,
            order_id=command.order_id,
        )
        current_domain.repository_for(Order).add(order)

        # A new pending order changes availability for everyone else
        cache = get_cache()
        for product_id in order.quantities_by_product():
            invalidate_product(cache, product_id)

        return str(order.order_id)
