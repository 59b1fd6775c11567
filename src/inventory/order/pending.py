"""Pending-order index — what the order store still has tied up in a product.

The order store is not part of the same atomic unit as the reservation
ledger, so availability has to look at both. This index answers "which
sessions have orders touching this product, in which state, for how many
units".
"""

from dataclasses import dataclass

from protean.utils.globals import current_domain

from inventory.order.order import Order, OrderStatus

CLAIM_STATUSES = (
    OrderStatus.PAYMENT_PENDING,
    OrderStatus.PAYMENT_CONFIRMED,
    OrderStatus.CANCELED,
)


@dataclass(frozen=True)
class OrderClaim:
    """One order's stake in a product."""

    session_id: str | None
    status: OrderStatus
    quantity: int
    order_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PAYMENT_PENDING

    @property
    def is_settled(self) -> bool:
        return self.status in (OrderStatus.PAYMENT_CONFIRMED, OrderStatus.CANCELED)


class PendingOrderIndex:
    def __init__(self, statuses=CLAIM_STATUSES):
        self.statuses = tuple(statuses)

    def orders_in(self, status: OrderStatus) -> list[Order]:
        repo = current_domain.repository_for(Order)
        return repo._dao.query.filter(status=status.value).limit(None).all().items

    def for_product(self, product_id) -> list[OrderClaim]:
        claims = []
        for status in self.statuses:
            for order in self.orders_in(status):
                quantity = order.quantity_for(product_id)
                if quantity:
                    claims.append(
                        OrderClaim(
                            session_id=order.session_id or None,
                            status=status,
                            quantity=quantity,
                            order_id=str(order.order_id),
                        )
                    )
        return claims

    def settled_holders(self, product_id) -> set[str]:
        """Sessions whose order for ``product_id`` was already confirmed or canceled."""
        return {claim.session_id for claim in self.for_product(product_id) if claim.is_settled and claim.session_id}
