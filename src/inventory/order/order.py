"""Order aggregate (CQRS) — the order store's view of a checkout.

Orders are created in ``payment_pending`` and move forward through an
admin-driven state machine. The only coupling to stock is the transition
into ``payment_confirmed``, which commits the sale; the state machine is
what guarantees that happens once per order.

State Machine:
    PAYMENT_PENDING → PAYMENT_CONFIRMED → SHIPPED → COMPLETE
    CANCELED (from any non-terminal state)
"""

import json
import re
import time
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, String, Text

from inventory.domain import inventory


class OrderStatus(Enum):
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    SHIPPED = "shipped"
    COMPLETE = "complete"
    CANCELED = "canceled"


_VALID_TRANSITIONS = {
    OrderStatus.PAYMENT_PENDING: {OrderStatus.PAYMENT_CONFIRMED, OrderStatus.CANCELED},
    OrderStatus.PAYMENT_CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELED},
    OrderStatus.SHIPPED: {OrderStatus.COMPLETE, OrderStatus.CANCELED},
    OrderStatus.COMPLETE: set(),  # Terminal
    OrderStatus.CANCELED: set(),  # Terminal
}

# Variant ids look like ``<product>:::<size>`` or ``<product>-<SIZE>-<n>``
_SIZE_SUFFIX = re.compile(r"^(?P<base>.+?)-(?:XXL|XL|XS|S|M|L)-[^-]+$")


def base_product_id(product_id: str) -> str:
    """Strip a size suffix from a line item's product id."""
    product_id = str(product_id)
    if ":::" in product_id:
        return product_id.split(":::", 1)[0]

    match = _SIZE_SUFFIX.match(product_id)
    if match:
        return match.group("base")
    return product_id


def generate_order_id() -> str:
    return f"HIM-{int(time.time() * 1000)}"


def _validate_items(items_data):
    if not items_data:
        raise ValidationError({"items": ["An order needs at least one item"]})

    items = []
    for item in items_data:
        product_id = item.get("productId")
        quantity = item.get("quantity")
        if not product_id:
            raise ValidationError({"items": ["Every item needs a productId"]})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError({"items": [f"Quantity for {product_id} must be a positive integer"]})

        items.append(
            {
                "productId": str(product_id),
                "quantity": quantity,
                "price": item.get("price", 0),
                "size": item.get("size"),
            }
        )
    return items


@inventory.aggregate
class Order:
    order_id = Identifier(identifier=True)
    session_id = String(max_length=255)  # Holder that reserved the items, if known
    items = Text(required=True)  # JSON list of {productId, quantity, price, size}
    status = String(choices=OrderStatus, default=OrderStatus.PAYMENT_PENDING.value)
    placed_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(cls, items_data, session_id=None, order_id=None):
        now = datetime.now(UTC)
        return cls(
            order_id=order_id or generate_order_id(),
            session_id=session_id,
            items=json.dumps(_validate_items(items_data)),
            status=OrderStatus.PAYMENT_PENDING.value,
            placed_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def item_list(self) -> list[dict]:
        return json.loads(self.items) if self.items else []

    def quantity_for(self, product_id) -> int:
        """Total quantity of ``product_id`` across all lines, ignoring size suffixes."""
        return sum(
            item["quantity"] for item in self.item_list() if base_product_id(item["productId"]) == str(product_id)
        )

    def quantities_by_product(self) -> dict[str, int]:
        totals = {}
        for item in self.item_list():
            product_id = base_product_id(item["productId"])
            totals[product_id] = totals.get(product_id, 0) + item["quantity"]
        return totals

    # -------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def transition_to(self, target_status) -> OrderStatus:
        """Move the order to ``target_status`` and return the previous status."""
        try:
            target_status = OrderStatus(target_status)
        except ValueError:
            raise ValidationError({"status": [f"Unknown order status {target_status}"]}) from None

        previous = OrderStatus(self.status)
        self._assert_can_transition(target_status)

        self.status = target_status.value
        self.updated_at = datetime.now(UTC)
        return previous
