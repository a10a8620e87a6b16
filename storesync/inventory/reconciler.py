"""
Inventory Reconciler.
Pushes local stock levels to the store for every mirrored product.
Last write wins: stock edited on the store side between runs is overwritten.
"""

import logging
from typing import Optional

from ..sync.results import PhaseResult, Deadline, check_deadline

logger = logging.getLogger(__name__)


class InventoryReconciler:
    """Sets remote stock_quantity to the local stock value."""

    def __init__(self, db, client):
        self.db = db
        self.client = client

    def run(self, deadline: Optional[Deadline] = None) -> PhaseResult:
        result = PhaseResult("inventory")
        products = self.db.get_mapped_products()
        logger.info(f"Pushing stock for {len(products)} mapped products...")

        for product in products:
            check_deadline(deadline, result)
            result.processed += 1
            try:
                self.client.update_product_stock(product['external_id'], product['stock'] or 0)
                result.updated += 1
                logger.debug(
                    f"Stock pushed for {product['name']} "
                    f"(id {product['id']}, external id {product['external_id']}): {product['stock']}"
                )
            except Exception as e:
                logger.error(f"Failed to push stock for product {product['id']} ({product['sku']}): {e}")
                result.record_failure(f"product {product['id']}", e)

        logger.info(result.summary())
        return result.complete()
