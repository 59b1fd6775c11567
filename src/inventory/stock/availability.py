"""Availability calculator — how many units a shopper can still claim.

Combines three views of one product that are never updated atomically
together: the on-hand ``stock``, the soft reservations in the product's
ledger, and the orders still tied to the product in the order store.

A reservation and a pending order from the same session are presumed to be
the same purchase intent recorded twice, so the pair counts once, for the
larger of the two quantities. Reservations whose session already has a
confirmed or canceled order for the product are settled and do not count.

``calculate_availability`` is pure; ``AvailabilityService`` wires it to the
stores and the read-through cache.
"""

import math
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

import structlog

from inventory.order.pending import PendingOrderIndex
from inventory.product.catalog import CatalogStore
from inventory.product.ledger import live_entries, parse_expiry, totals_by_holder
from inventory.utils.cache import availability_key, get_cache, stock_key

logger = structlog.get_logger(__name__)

CACHE_TTL_SECONDS = 30


@dataclass(frozen=True)
class AvailabilitySnapshot:
    stock: int
    available_stock: int
    reserved_by_caller: int
    reserved_by_others: int
    is_out_of_stock: bool
    available: bool
    message: str
    pending_by_others: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AvailabilitySnapshot":
        return cls(**data)


@dataclass(frozen=True)
class ReservationTally:
    """Per-holder contribution to the reserved total."""

    by_holder: dict
    uncorrelated_pending: int
    pending_by_holder: dict

    @property
    def total(self) -> int:
        return sum(self.by_holder.values()) + self.uncorrelated_pending

    def contribution_of(self, holder_id) -> int:
        if not holder_id:
            return 0
        return self.by_holder.get(holder_id, 0)


def tally_reservations(reservations, claims, now: datetime) -> ReservationTally:
    """Combine live ledger entries with order claims, counting each intent once."""
    held = totals_by_holder(reservations, now)

    pending = defaultdict(int)
    anonymous_pending = 0
    settled = set()
    for claim in claims:
        if claim.is_pending:
            if claim.session_id:
                pending[claim.session_id] += claim.quantity
            else:
                anonymous_pending += claim.quantity
        elif claim.session_id:
            settled.add(claim.session_id)

    by_holder = {}
    for holder_id, quantity in held.items():
        if holder_id in pending:
            by_holder[holder_id] = max(quantity, pending[holder_id])
        elif holder_id in settled:
            by_holder[holder_id] = 0
        else:
            by_holder[holder_id] = quantity

    for session_id, quantity in pending.items():
        if session_id not in held:
            by_holder[session_id] = quantity

    return ReservationTally(
        by_holder=by_holder,
        uncorrelated_pending=anonymous_pending,
        pending_by_holder=dict(pending),
    )


def availability_message(stock, available_stock, reserved_by_caller, reserved_by_others) -> str:
    if stock <= 0:
        return "Product is out of stock"
    if reserved_by_caller > 0:
        return f"You reserved {reserved_by_caller} item(s)"
    if reserved_by_others >= stock:
        return "Item currently reserved by another customer"
    if reserved_by_others > 0:
        return f"{available_stock} in stock, {reserved_by_others} currently reserved by others"
    return f"{available_stock} in stock"


def calculate_availability(stock, reservations, claims, holder_id=None, now=None) -> AvailabilitySnapshot:
    now = now or datetime.now(UTC)
    stock = max(0, stock or 0)

    tally = tally_reservations(reservations, claims, now)
    total_reserved = tally.total
    reserved_by_caller = tally.contribution_of(holder_id)
    reserved_by_others = total_reserved - reserved_by_caller
    available_stock = max(0, stock - total_reserved)

    is_out_of_stock = stock <= 0
    available = not is_out_of_stock and (reserved_by_caller > 0 or available_stock > 0)

    pending_by_others = tally.uncorrelated_pending + sum(
        quantity for session_id, quantity in tally.pending_by_holder.items() if session_id != holder_id
    )

    return AvailabilitySnapshot(
        stock=stock,
        available_stock=available_stock,
        reserved_by_caller=reserved_by_caller,
        reserved_by_others=reserved_by_others,
        is_out_of_stock=is_out_of_stock,
        available=available,
        message=availability_message(stock, available_stock, reserved_by_caller, reserved_by_others),
        pending_by_others=pending_by_others,
    )


def stock_message(snapshot: AvailabilitySnapshot) -> str:
    """Short badge text shown next to the add-to-cart button."""
    if snapshot.is_out_of_stock:
        return "Out of Stock"
    if snapshot.reserved_by_caller > 0:
        return f"You reserved {snapshot.reserved_by_caller} item(s)"
    if snapshot.available_stock <= 0:
        return "Item currently reserved by another customer"

    available = snapshot.available_stock
    if available == 1:
        message = "Only 1 left!"
    elif available <= 3:
        message = f"Only {available} left!"
    else:
        message = f"{available} in stock"

    if snapshot.reserved_by_others > 0:
        message += f", {snapshot.reserved_by_others} currently reserved by others"
    return message


def cache_ttl(reservations, now: datetime) -> int:
    """Cache no longer than the earliest live reservation has left to run.

    A cached snapshot then never outlives the reservation that shaped it.
    """
    expiries = [parse_expiry(entry) for entry in live_entries(reservations, now)]
    if not expiries:
        return CACHE_TTL_SECONDS

    remaining = (min(expiries) - now).total_seconds()
    return max(1, min(CACHE_TTL_SECONDS, math.ceil(remaining)))


class AvailabilityService:
    def __init__(self, catalog=None, orders=None, cache=None):
        self.catalog = catalog or CatalogStore()
        self.orders = orders or PendingOrderIndex()
        self._cache = cache

    @property
    def cache(self):
        return self._cache if self._cache is not None else get_cache()

    def claims_for(self, product_id) -> list:
        """Order claims for the product; an unreachable order store counts as none."""
        try:
            return self.orders.for_product(product_id)
        except Exception as exc:
            logger.error(
                "Order store lookup failed, assuming no pending orders",
                product_id=str(product_id),
                error=str(exc),
            )
            return []

    def compute(self, product_id, holder_id=None, now=None) -> tuple[AvailabilitySnapshot, int]:
        """Build a fresh snapshot from the stores. Returns ``(snapshot, ttl)``."""
        now = now or datetime.now(UTC)
        product = self.catalog.fetch(product_id)
        reservations = product.ledger()
        snapshot = calculate_availability(
            product.stock,
            reservations,
            self.claims_for(product_id),
            holder_id=holder_id,
            now=now,
        )
        return snapshot, cache_ttl(reservations, now)

    def check(self, product_id, holder_id=None) -> AvailabilitySnapshot:
        key = availability_key(product_id, holder_id)
        cached = self.cache.get(key)
        if cached is not None:
            return AvailabilitySnapshot.from_dict(cached)

        snapshot, ttl = self.compute(product_id, holder_id)
        self.cache.set(key, snapshot.to_dict(), ttl)
        return snapshot

    def stock_view(self, product_id, holder_id=None) -> dict:
        key = stock_key(product_id, holder_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        snapshot, ttl = self.compute(product_id, holder_id)
        view = {
            "stock": snapshot.stock,
            "availableStock": snapshot.available_stock,
            "reservedQuantity": snapshot.reserved_by_caller + snapshot.reserved_by_others,
            "reservedByCurrentUser": snapshot.reserved_by_caller,
            "reservedByOthers": snapshot.reserved_by_others,
            "stockMessage": stock_message(snapshot),
            "isOutOfStock": snapshot.is_out_of_stock,
        }
        self.cache.set(key, view, ttl)
        return view
