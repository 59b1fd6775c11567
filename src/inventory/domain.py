"""Inventory bounded context — soft reservations and availability reconciliation.

Keeps a product's sellable stock consistent across the reservation ledger
stored on the product record, the orders that are still waiting on payment,
and concurrent shoppers racing for the last units.
"""

import structlog
from protean.domain import Domain

inventory = Domain(name="inventory")

logger = structlog.get_logger(__name__)
