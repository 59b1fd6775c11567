"""Catalog store access for products and their reservation ledgers.

Every read goes to the repository, never to a cache, so mutations always
start from the freshest snapshot. Writes are guarded by the aggregate's
revision: saving a product whose revision moved on since it was fetched
raises ``ExpectedVersionError``.
"""

import structlog
from protean.exceptions import DatabaseError
from protean.utils.globals import current_domain

from inventory.product.product import Product
from inventory.stock.errors import UpstreamUnavailable

logger = structlog.get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3


class CatalogStore:
    def _repo(self):
        return current_domain.repository_for(Product)

    def fetch(self, product_id) -> Product:
        """Load a product. Raises ``ObjectNotFoundError`` when it does not exist."""
        try:
            return self._repo().get(product_id)
        except DatabaseError as exc:
            logger.error("Catalog store read failed", product_id=str(product_id), error=str(exc))
            raise UpstreamUnavailable() from exc

    def find(self, product_id) -> Product | None:
        try:
            return self._repo().get_or_none(product_id)
        except DatabaseError as exc:
            logger.error("Catalog store read failed", product_id=str(product_id), error=str(exc))
            raise UpstreamUnavailable() from exc

    def save(self, product: Product) -> Product:
        try:
            return self._repo().add(product)
        except DatabaseError as exc:
            logger.error("Catalog store write failed", product_id=str(product.product_id), error=str(exc))
            raise UpstreamUnavailable() from exc

    def with_reservations(self, product_ids=None) -> list[Product]:
        """Return products whose stored ledger is not empty, optionally limited to ``product_ids``.

        Unreadable ledgers are included so the sweep reports them.
        """
        if product_ids:
            products = []
            for product_id in product_ids:
                product = self.find(product_id)
                if product is not None:
                    products.append(product)
        else:
            try:
                products = self._repo()._dao.query.limit(None).all().items
            except DatabaseError as exc:
                logger.error("Catalog store scan failed", error=str(exc))
                raise UpstreamUnavailable() from exc

        return [product for product in products if product.has_reservations()]
