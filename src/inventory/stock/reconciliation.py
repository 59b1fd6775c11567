"""Reservation reconciliation — command and handler for the scheduled sweep.

The ledger and the order store are never updated in one transaction, so they
drift: a shopper pays but the ledger release after confirmation is lost, or a
reservation simply outlives its expiry because nothing wrote to the product
since. Request-time correlation papers over this; the sweep repairs it.

Designed to be triggered periodically by an external scheduler (cron, K8s
CronJob) via the maintenance API endpoint.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import DatabaseError, ExpectedVersionError, InvalidStateError, ObjectNotFoundError
from protean.fields import List

from inventory.domain import inventory
from inventory.order.pending import PendingOrderIndex
from inventory.product.catalog import CatalogStore
from inventory.product.ledger import drop_entries, is_expired
from inventory.product.product import Product
from inventory.stock.errors import UpstreamUnavailable
from inventory.utils.cache import get_cache, invalidate_product

logger = structlog.get_logger(__name__)


@inventory.command(part_of="Product")
class ReconcileReservations:
    """Drop expired and already-settled reservations, for all products or the listed ones."""

    product_ids = List()


def reconcile_product(product, settled_holders, now) -> int:
    """Prune one product's ledger in place. Returns how many entries were dropped."""
    kept, dropped = drop_entries(
        product.ledger(strict=True),
        lambda entry: is_expired(entry, now) or entry["holderId"] in settled_holders,
    )
    if dropped:
        product.write_ledger(kept)
    return len(dropped)


@inventory.command_handler(part_of=Product)
class ReconciliationHandler:
    @handle(ReconcileReservations)
    def reconcile_reservations(self, command):
        catalog = CatalogStore()
        orders = PendingOrderIndex()
        now = datetime.now(UTC)

        products = catalog.with_reservations(command.product_ids or None)
        logger.info("Reconciling reservations", products=len(products))

        summary = {
            "products_scanned": len(products),
            "products_changed": 0,
            "entries_cleared": 0,
            "errors": [],
        }
        for product in products:
            product_id = str(product.product_id)
            try:
                cleared = reconcile_product(product, orders.settled_holders(product_id), now)
                if not cleared:
                    continue

                catalog.save(product)
                invalidate_product(get_cache(), product_id)
                summary["products_changed"] += 1
                summary["entries_cleared"] += cleared
                logger.info("Reconciled product ledger", product_id=product_id, cleared=cleared)
            except (
                DatabaseError,
                ExpectedVersionError,
                InvalidStateError,
                ObjectNotFoundError,
                UpstreamUnavailable,
            ) as exc:
                logger.warning("Failed to reconcile product", product_id=product_id, error=str(exc))
                summary["errors"].append({"product_id": product_id, "error": str(exc)})

        logger.info(
            "Reservation reconciliation complete",
            products_changed=summary["products_changed"],
            entries_cleared=summary["entries_cleared"],
        )
        return summary
