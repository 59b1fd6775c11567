"""Order status changes — command and handler.

Admin-driven transitions through the order state machine, plus the two that
touch stock:

- entering ``payment_confirmed`` commits the sale: stock is decremented once
  per line and the session's reservation for that product is released, since
  the order now represents the claim;
- entering ``canceled`` releases the session's reservations.

The state machine rejects a repeated transition, so a second confirmation
fails before anything is decremented.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from inventory.domain import inventory
from inventory.order.order import Order, OrderStatus
from inventory.stock.decrement import StockDecrementService
from inventory.stock.reservation import ReservationService
from inventory.utils.cache import get_cache, invalidate_product

logger = structlog.get_logger(__name__)


@inventory.command(part_of="Order")
class ChangeOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=50)


@inventory.command_handler(part_of=Order)
class OrderStatusHandler:
    @handle(ChangeOrderStatus)
    def change_order_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        previous = order.transition_to(command.status)
        repo.add(order)

        target = OrderStatus(order.status)
        logger.info(
            "Order status changed",
            order_id=str(order.order_id),
            previous=previous.value,
            status=target.value,
        )

        if target == OrderStatus.PAYMENT_CONFIRMED:
            self._commit_sale(order)
        elif target == OrderStatus.CANCELED:
            self._release_reservations(order)

        if target in (OrderStatus.PAYMENT_CONFIRMED, OrderStatus.CANCELED):
            # The order no longer counts as pending, whether or not a ledger entry changed
            cache = get_cache()
            for product_id in order.quantities_by_product():
                invalidate_product(cache, product_id)

        return target.value

    def _commit_sale(self, order):
        decrement = StockDecrementService()
        for product_id, quantity in order.quantities_by_product().items():
            decrement.confirm_sale(product_id, quantity, order_id=str(order.order_id))
        self._release_reservations(order)

    def _release_reservations(self, order):
        if not order.session_id:
            return

        reservations = ReservationService()
        for product_id in order.quantities_by_product():
            result = reservations.release(product_id, order.session_id)
            logger.info(
                "Released reservation for order",
                order_id=str(order.order_id),
                product_id=product_id,
                released=result.released,
            )
