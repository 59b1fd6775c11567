"""Reservation cleanup — garbage collection and forced release.

Three policies share one mechanism, filter-then-overwrite of the ledger
under the product's revision guard:

    EXPIRED  drop entries past their expiry (safe to run any time)
    HOLDER   drop one session's entries (cart removal)
    ALL      drop every entry (manual "unstick" during an incident)

Entries that cannot be parsed are kept by every policy.
"""

from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum

import structlog
from protean.exceptions import ExpectedVersionError, InvalidStateError, ObjectNotFoundError, ValidationError

from inventory.product.catalog import MAX_WRITE_ATTEMPTS, CatalogStore
from inventory.product.ledger import drop_entries, is_expired
from inventory.utils.cache import get_cache, invalidate_product

logger = structlog.get_logger(__name__)


class CleanupPolicy(Enum):
    EXPIRED = "expired"
    HOLDER = "holder"
    ALL = "all"


@dataclass(frozen=True)
class CleanupResult:
    product_id: str
    product_title: str
    original_count: int
    cleared_count: int
    remaining_count: int
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _selector(policy: CleanupPolicy, holder_id, now):
    if policy == CleanupPolicy.EXPIRED:
        return lambda entry: is_expired(entry, now)
    if policy == CleanupPolicy.HOLDER:
        return lambda entry: entry["holderId"] == holder_id
    return lambda entry: True


def _batch_error(exc) -> str:
    if isinstance(exc, ObjectNotFoundError):
        return "Product not found"
    if isinstance(exc, InvalidStateError):
        return "Reservation ledger is unreadable"
    return "Concurrent update"


class ReservationCleaner:
    def __init__(self, catalog=None, cache=None):
        self.catalog = catalog or CatalogStore()
        self._cache = cache

    @property
    def cache(self):
        return self._cache if self._cache is not None else get_cache()

    def cleanup(self, product_id, policy=CleanupPolicy.EXPIRED, holder_id=None) -> CleanupResult:
        policy = CleanupPolicy(policy)
        if policy == CleanupPolicy.HOLDER and not holder_id:
            raise ValidationError({"session_id": ["Session ID is required to clear one holder's reservations"]})

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                result = self._cleanup_once(product_id, policy, holder_id)
                break
            except ExpectedVersionError:
                if attempt == MAX_WRITE_ATTEMPTS:
                    logger.error("Cleanup kept conflicting with concurrent writes", product_id=str(product_id))
                    raise
                logger.info("Ledger changed during cleanup, retrying", product_id=str(product_id), attempt=attempt)

        if result.cleared_count:
            invalidate_product(self.cache, product_id)

        logger.info(
            "Reservations cleaned up",
            product_id=str(product_id),
            policy=policy.value,
            holder_id=holder_id,
            cleared=result.cleared_count,
            remaining=result.remaining_count,
        )
        return result

    def _cleanup_once(self, product_id, policy, holder_id) -> CleanupResult:
        product = self.catalog.fetch(product_id)
        entries = product.ledger(strict=True)

        kept, dropped = drop_entries(entries, _selector(policy, holder_id, datetime.now(UTC)))
        if dropped:
            product.write_ledger(kept)
            self.catalog.save(product)

        return CleanupResult(
            product_id=str(product_id),
            product_title=product.title or "",
            original_count=len(entries),
            cleared_count=len(dropped),
            remaining_count=len(kept),
        )

    def cleanup_many(self, product_ids, policy=CleanupPolicy.EXPIRED, holder_id=None) -> list[CleanupResult]:
        """Clean several products; one failing product does not stop the rest."""
        results = []
        for product_id in product_ids:
            try:
                results.append(self.cleanup(product_id, policy, holder_id))
            except (ObjectNotFoundError, ExpectedVersionError, InvalidStateError) as exc:
                logger.warning("Cleanup skipped product", product_id=str(product_id), error=str(exc))
                results.append(
                    CleanupResult(
                        product_id=str(product_id),
                        product_title="",
                        original_count=0,
                        cleared_count=0,
                        remaining_count=0,
                        error=_batch_error(exc),
                    )
                )
        return results
