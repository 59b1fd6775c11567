"""Reservation service — soft-claiming stock for a shopper session.

A reservation is the total number of units a holder currently wants, not an
increment. Every call re-reads the product, re-derives what the caller may
claim, and rewrites the whole ledger guarded by the product's revision. When
another writer got there first the read-modify-write is retried on the new
snapshot, a bounded number of times.
"""

import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ExpectedVersionError, ValidationError

from inventory.order.pending import PendingOrderIndex
from inventory.product.catalog import MAX_WRITE_ATTEMPTS, CatalogStore
from inventory.product.ledger import (
    drop_entries,
    holder_entry,
    live_entries,
    parse_expiry,
    prune_expired,
    total_live_quantity,
    upsert_entry,
)
from inventory.stock.availability import AvailabilityService, calculate_availability
from inventory.stock.errors import InsufficientStock
from inventory.utils.cache import get_cache, invalidate_product

logger = structlog.get_logger(__name__)

CART_HOLD = timedelta(minutes=30)
CHECKOUT_HOLD = timedelta(hours=24)
ROLLBACK_HOLD = timedelta(minutes=30)


@dataclass(frozen=True)
class ReservationResult:
    reservation_id: str
    reserved_until: str
    available_stock: int
    quantity: int


@dataclass(frozen=True)
class ReleaseResult:
    product_id: str
    released: int
    remaining: int
    message: str


def _validate_request(product_id, holder_id, quantity):
    errors = {}
    if not product_id:
        errors["product_id"] = ["Product ID is required"]
    if not holder_id:
        errors["session_id"] = ["Session ID is required"]
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        errors["quantity"] = ["Quantity must be a positive integer"]
    if errors:
        raise ValidationError(errors)


def _insufficient_stock(is_update, extra, available, pending):
    available = max(0, available)
    if is_update:
        message = f"Cannot reserve {extra} more items. Only {available} available."
    else:
        message = f"Only {available} items available for reservation"

    if pending > 0:
        message += f" ({pending} items are in pending orders)"
    return InsufficientStock(message, available=available, pending=pending)


class ReservationService:
    def __init__(self, catalog=None, orders=None, cache=None):
        self.catalog = catalog or CatalogStore()
        self.orders = orders or PendingOrderIndex()
        self._cache = cache
        self.availability = AvailabilityService(catalog=self.catalog, orders=self.orders, cache=cache)

    @property
    def cache(self):
        return self._cache if self._cache is not None else get_cache()

    # -------------------------------------------------------------------
    # Reserve
    # -------------------------------------------------------------------
    def reserve(self, product_id, holder_id, quantity, is_update=False, horizon=CART_HOLD) -> ReservationResult:
        """Set the holder's reservation on ``product_id`` to ``quantity`` units.

        Raises ``ValidationError`` for bad input, ``ObjectNotFoundError`` for an
        unknown product and ``InsufficientStock`` when the claim does not fit.
        """
        _validate_request(product_id, holder_id, quantity)

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                result = self._reserve_once(product_id, holder_id, quantity, is_update, horizon)
                break
            except ExpectedVersionError:
                if attempt == MAX_WRITE_ATTEMPTS:
                    logger.error(
                        "Reservation write kept conflicting",
                        product_id=product_id,
                        holder_id=holder_id,
                        attempts=attempt,
                    )
                    raise
                logger.info("Ledger changed underneath reservation, retrying", product_id=product_id, attempt=attempt)

        invalidate_product(self.cache, product_id)
        logger.info(
            "Reservation saved",
            product_id=product_id,
            holder_id=holder_id,
            quantity=quantity,
            reserved_until=result.reserved_until,
        )
        return result

    def _reserve_once(self, product_id, holder_id, quantity, is_update, horizon) -> ReservationResult:
        now = datetime.now(UTC)
        product = self.catalog.fetch(product_id)
        reservations = product.ledger(strict=True)

        snapshot = calculate_availability(
            product.stock,
            reservations,
            self.availability.claims_for(product_id),
            holder_id=holder_id,
            now=now,
        )
        available_for_caller = product.stock - snapshot.reserved_by_others

        existing = holder_entry(reservations, holder_id, now)
        if is_update and existing is not None:
            extra = quantity - existing["quantity"]
            if extra > available_for_caller:
                raise _insufficient_stock(True, extra, available_for_caller, snapshot.pending_by_others)
        elif quantity > available_for_caller:
            raise _insufficient_stock(False, quantity, available_for_caller, snapshot.pending_by_others)

        expires_at = now + horizon
        updated = upsert_entry(reservations, holder_id, quantity, expires_at, now)
        product.write_ledger(updated)
        self.catalog.save(product)

        return ReservationResult(
            reservation_id=f"{holder_id}-{product_id}-{int(time.time() * 1000)}",
            reserved_until=expires_at.isoformat(),
            available_stock=max(0, product.stock - total_live_quantity(updated, now)),
            quantity=quantity,
        )

    def rollback_release(self, product_id, holder_id, quantity) -> ReservationResult:
        """Re-establish a reservation that was released by mistake."""
        return self.reserve(product_id, holder_id, quantity, is_update=False, horizon=ROLLBACK_HOLD)

    # -------------------------------------------------------------------
    # Release
    # -------------------------------------------------------------------
    def release(self, product_id, holder_id, quantity=None) -> ReleaseResult:
        """Give back ``quantity`` units of the holder's claim, or all of it."""
        if not holder_id:
            raise ValidationError({"session_id": ["Session ID is required"]})
        if quantity is not None and (isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1):
            raise ValidationError({"quantity": ["Quantity must be a positive integer"]})

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                result = self._release_once(product_id, holder_id, quantity)
                break
            except ExpectedVersionError:
                if attempt == MAX_WRITE_ATTEMPTS:
                    raise

        if result.released:
            invalidate_product(self.cache, product_id)
            logger.info("Reservation released", product_id=product_id, holder_id=holder_id, released=result.released)
        return result

    def _release_once(self, product_id, holder_id, quantity) -> ReleaseResult:
        now = datetime.now(UTC)
        product = self.catalog.fetch(product_id)
        reservations = product.ledger(strict=True)

        existing = holder_entry(reservations, holder_id, now)
        if existing is None:
            return ReleaseResult(
                product_id=str(product_id),
                released=0,
                remaining=0,
                message="No reservation found for this session",
            )

        held = existing["quantity"]
        if quantity is None or quantity >= held:
            kept, _ = drop_entries(prune_expired(reservations, now), lambda e: e["holderId"] == holder_id)
            released, remaining = held, 0
        else:
            kept = upsert_entry(
                reservations,
                holder_id,
                held - quantity,
                parse_expiry(existing),
                now,
            )
            released, remaining = quantity, held - quantity

        product.write_ledger(kept)
        self.catalog.save(product)

        return ReleaseResult(
            product_id=str(product_id),
            released=released,
            remaining=remaining,
            message=f"Released {released} item(s)",
        )

    def release_many(self, holder_id, items) -> list[ReleaseResult]:
        """Release several products at once; nothing is written unless every item can be released."""
        if not holder_id:
            raise ValidationError({"session_id": ["Session ID is required"]})
        if not items:
            raise ValidationError({"items": ["At least one item is required"]})

        now = datetime.now(UTC)
        problems = []
        for item in items:
            product_id, quantity = item["productId"], item["quantity"]
            product = self.catalog.find(product_id)
            if product is None:
                problems.append(f"Product {product_id} not found")
                continue

            existing = holder_entry(product.ledger(strict=True), holder_id, now)
            if existing is None:
                problems.append(f"No reservation found for product {product_id}")
            elif existing["quantity"] < quantity:
                problems.append(f"Insufficient reserved quantity for product {product_id}")

        if problems:
            raise ValidationError({"items": problems})

        return [self.release(item["productId"], holder_id, item["quantity"]) for item in items]

    def live_reservations(self, product_id) -> list[dict]:
        product = self.catalog.fetch(product_id)
        return live_entries(product.ledger(), datetime.now(UTC))
