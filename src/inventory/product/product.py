"""Product aggregate (CQRS) — the catalog record that carries on-hand stock.

Besides ``stock`` the product holds the reservation ledger, a JSON list of
soft claims made by shopper sessions. The ledger is always rewritten as a
whole; Protean's aggregate ``_version`` is the revision token that guards
those rewrites against concurrent writers.
"""

import json
from datetime import UTC, datetime

import structlog
from protean.exceptions import InvalidStateError, ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text

from inventory.domain import inventory

logger = structlog.get_logger(__name__)


@inventory.aggregate
class Product:
    product_id = Identifier(identifier=True)
    title = String(max_length=255, default="")
    stock = Integer(default=0, min_value=0)
    reservations = Text(default="[]")  # JSON list of {holderId, quantity, expiresAt}
    updated_at = DateTime()

    @classmethod
    def register(cls, product_id, title="", stock=0):
        if stock is None or stock < 0:
            raise ValidationError({"stock": ["Stock cannot be negative"]})

        return cls(
            product_id=product_id,
            title=title or "",
            stock=stock,
            reservations=json.dumps([]),
            updated_at=datetime.now(UTC),
        )

    # -------------------------------------------------------------------
    # Ledger access
    # -------------------------------------------------------------------
    @property
    def revision(self) -> int:
        return self._version

    def ledger(self, strict=False) -> list:
        """Return the reservation ledger as a list of raw entries.

        An unreadable ledger reads as empty, which is safe for availability.
        Callers that are about to rewrite the ledger pass ``strict=True``: they
        get ``InvalidStateError`` instead, so the stored entries stay intact.
        """
        if not self.reservations:
            return []

        try:
            entries = json.loads(self.reservations)
        except ValueError:
            entries = None

        if isinstance(entries, list):
            return entries

        logger.warning("Unreadable reservation ledger", product_id=str(self.product_id))
        if strict:
            raise InvalidStateError(f"Reservation ledger of product {self.product_id} is unreadable")
        return []

    def has_reservations(self) -> bool:
        """True when the stored ledger holds anything, readable or not."""
        return bool(self.ledger()) or self.reservations not in (None, "", "[]")

    def write_ledger(self, entries: list) -> None:
        self.reservations = json.dumps(entries)
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Stock
    # -------------------------------------------------------------------
    def set_stock(self, new_stock):
        if new_stock is None or new_stock < 0:
            raise ValidationError({"stock": ["Stock cannot be negative"]})

        self.stock = new_stock
        self.updated_at = datetime.now(UTC)

    def decrement_stock(self, quantity) -> int:
        """Permanently remove sold units, clamping at zero. Returns the new stock."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        self.set_stock(max(0, self.stock - quantity))
        return self.stock
