"""Stock decrement — permanently committing a confirmed sale.

``confirm_sale`` has no idempotency of its own: the order state machine only
lets an order enter ``payment_confirmed`` once, and that transition is the
single caller. The stock write is the operation; notifying other sessions and
invalidating caches are best-effort follow-ups that never undo it.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean.exceptions import ValidationError

from inventory.product.catalog import CatalogStore
from inventory.utils.cache import get_cache, invalidate_product, notification_key

logger = structlog.get_logger(__name__)

NOTIFICATION_TTL_SECONDS = 300


@dataclass(frozen=True)
class DecrementResult:
    product_id: str
    previous_stock: int
    new_stock: int


class StockDecrementService:
    def __init__(self, catalog=None, cache=None):
        self.catalog = catalog or CatalogStore()
        self._cache = cache

    @property
    def cache(self):
        return self._cache if self._cache is not None else get_cache()

    def confirm_sale(self, product_id, quantity, order_id=None) -> DecrementResult:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be a positive integer"]})

        product = self.catalog.fetch(product_id)
        previous_stock = product.stock
        new_stock = product.decrement_stock(quantity)
        self.catalog.save(product)

        logger.info(
            "Stock decremented for confirmed sale",
            product_id=str(product_id),
            order_id=order_id,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
        )
        if new_stock == 0:
            logger.warning("Product is now out of stock", product_id=str(product_id), title=product.title)

        self._after_stock_change(product_id, new_stock, order_id=order_id)
        self._verify(product_id, new_stock)
        return DecrementResult(product_id=str(product_id), previous_stock=previous_stock, new_stock=new_stock)

    def set_stock(self, product_id, new_stock) -> DecrementResult:
        """Overwrite on-hand stock (manual correction or restock)."""
        if isinstance(new_stock, bool) or not isinstance(new_stock, int) or new_stock < 0:
            raise ValidationError({"newStock": ["newStock must be a non-negative integer"]})

        product = self.catalog.fetch(product_id)
        previous_stock = product.stock
        product.set_stock(new_stock)
        self.catalog.save(product)

        logger.info(
            "Stock set manually",
            product_id=str(product_id),
            previous_stock=previous_stock,
            new_stock=new_stock,
        )
        self._after_stock_change(product_id, new_stock)
        self._verify(product_id, new_stock)
        return DecrementResult(product_id=str(product_id), previous_stock=previous_stock, new_stock=new_stock)

    def mark_out_of_stock(self, product_id) -> DecrementResult:
        return self.set_stock(product_id, 0)

    def trigger_stock_update(self, product_id) -> str:
        """Tell polling sessions to refresh without changing stock. Returns the notification timestamp."""
        product = self.catalog.fetch(product_id)
        return self._after_stock_change(product_id, product.stock)

    # -------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------
    def _after_stock_change(self, product_id, stock, order_id=None) -> str:
        timestamp = datetime.now(UTC).isoformat()
        try:
            self.cache.set(
                notification_key(product_id),
                {"timestamp": timestamp, "stock": stock, "order_id": order_id},
                NOTIFICATION_TTL_SECONDS,
            )
        except Exception as exc:
            logger.warning("Stock update notification failed", product_id=str(product_id), error=str(exc))

        try:
            invalidate_product(self.cache, product_id)
        except Exception as exc:
            logger.warning("Cache invalidation failed", product_id=str(product_id), error=str(exc))
        return timestamp

    def _verify(self, product_id, expected_stock):
        try:
            actual = self.catalog.fetch(product_id).stock
        except Exception as exc:
            logger.warning("Could not verify stock write", product_id=str(product_id), error=str(exc))
            return

        if actual != expected_stock:
            logger.error(
                "Stock verification mismatch",
                product_id=str(product_id),
                expected=expected_stock,
                actual=actual,
            )
