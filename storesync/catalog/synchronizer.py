"""
Catalog Synchronizer.
Mirrors store categories and products into the local catalog, keyed by
external id. Local-only products (no external id) are never touched.
"""

import re
import logging
from typing import Dict, List, Optional, Any, Tuple

from ..sync.results import PhaseResult, Deadline, check_deadline

logger = logging.getLogger(__name__)

DEFAULT_BRAND = "sleepwear"
BRAND_KEYWORDS = {
    "bride": ("bride", "novia"),
}
SIMPLE_PRODUCT_TYPE = "simple"


def infer_brand(name: Optional[str], default: str = DEFAULT_BRAND) -> str:
    """Brand tag from keywords in a category or product name."""
    lowered = (name or '').lower()
    for brand, keywords in BRAND_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return brand
    return default


def parse_price(value: Any, default: float = 0.0) -> float:
    """Parse a store price string. Malformed input falls back to default."""
    if value is None or value == '':
        return default
    try:
        if isinstance(value, str):
            value = re.sub(r'[^\d.\-]', '', value)
        return float(value)
    except (ValueError, TypeError):
        return default


def parse_stock(value: Any) -> int:
    try:
        return int(value) if value is not None else 0
    except (ValueError, TypeError):
        return 0


def product_images(remote: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {'id': image.get('id'), 'src': image.get('src'), 'alt': image.get('alt') or ''}
        for image in remote.get('images') or []
    ]


def product_attributes(remote: Dict[str, Any]) -> Dict[str, str]:
    attributes = {}
    for attribute in remote.get('attributes') or []:
        options = attribute.get('options') or []
        if attribute.get('name') and options:
            attributes[attribute['name']] = ', '.join(str(option) for option in options)
    return attributes


class CatalogSynchronizer:
    """Pulls categories, then products, from the store."""

    def __init__(
        self,
        db,
        client,
        default_brand: str = DEFAULT_BRAND,
        sku_prefix: str = "EXT"
    ):
        self.db = db
        self.client = client
        self.default_brand = default_brand
        self.sku_prefix = sku_prefix

    def run(self, deadline: Optional[Deadline] = None) -> List[PhaseResult]:
        return [self.sync_categories(deadline), self.sync_products(deadline)]

    # ==================== Categories ====================

    def sync_categories(self, deadline: Optional[Deadline] = None) -> PhaseResult:
        result = PhaseResult("categories")
        remote_categories = self.client.list_categories()
        pending_parents: List[Tuple[int, int]] = []

        for remote in remote_categories:
            check_deadline(deadline, result)
            result.processed += 1
            try:
                created = self._upsert_category(remote)
                if created:
                    result.created += 1
                else:
                    result.updated += 1
                if remote.get('parent'):
                    pending_parents.append((remote['id'], remote['parent']))
            except Exception as e:
                logger.error(f"Failed to sync category {remote.get('id')} ({remote.get('name')}): {e}")
                result.record_failure(f"category {remote.get('id')}", e)

        # Parents listed after their children
        for external_id, parent_external_id in pending_parents:
            try:
                self.db.link_category_parent(external_id, parent_external_id)
            except Exception as e:
                logger.error(f"Failed to link category {external_id} to parent {parent_external_id}: {e}")

        logger.info(result.summary())
        return result.complete()

    def _upsert_category(self, remote: Dict[str, Any]) -> bool:
        name = remote.get('name') or f"Category {remote['id']}"
        description = remote.get('description') or None
        slug = remote.get('slug') or None

        insert_values = {
            'name': name,
            'description': description,
            'slug': slug,
            'brand': infer_brand(name, self.default_brand),
        }
        update_values = {'name': name, 'description': description, 'slug': slug}

        category_id, created = self.db.upsert_category(remote['id'], insert_values, update_values)
        if created:
            logger.info(f"Category created: {name} (external id {remote['id']}, brand {insert_values['brand']})")
        else:
            logger.debug(f"Category updated: {name} (external id {remote['id']})")
        return created

    # ==================== Products ====================

    def sync_products(self, deadline: Optional[Deadline] = None) -> PhaseResult:
        result = PhaseResult("products")
        remote_products = self.client.list_products()
        category_cache: Dict[int, Optional[Dict[str, Any]]] = {}

        for remote in remote_products:
            check_deadline(deadline, result)
            result.processed += 1

            product_type = remote.get('type', SIMPLE_PRODUCT_TYPE)
            if product_type != SIMPLE_PRODUCT_TYPE:
                logger.info(f"Skipping product {remote.get('id')} ({remote.get('name')}): type {product_type}")
                result.skipped += 1
                continue

            try:
                created = self._upsert_product(remote, category_cache)
                if created:
                    result.created += 1
                else:
                    result.updated += 1
            except Exception as e:
                logger.error(f"Failed to sync product {remote.get('id')} ({remote.get('name')}): {e}")
                result.record_failure(f"product {remote.get('id')}", e)

        logger.info(result.summary())
        return result.complete()

    def _resolve_category(
        self,
        remote: Dict[str, Any],
        cache: Dict[int, Optional[Dict[str, Any]]]
    ) -> Optional[Dict[str, Any]]:
        categories = remote.get('categories') or []
        if not categories:
            return None
        external_id = categories[0].get('id')
        if external_id not in cache:
            cache[external_id] = self.db.get_category_by_external_id(external_id)
        return cache[external_id]

    def _upsert_product(self, remote: Dict[str, Any], category_cache) -> bool:
        external_id = remote['id']
        category = self._resolve_category(remote, category_cache)

        values = {
            'name': remote.get('name') or f"Product {external_id}",
            'sku': remote.get('sku') or f"{self.sku_prefix}-{external_id}",
            'description': remote.get('description') or None,
            'category_id': category['id'] if category else None,
            'price': parse_price(remote.get('price')),
            'stock': parse_stock(remote.get('stock_quantity')),
            'brand': (category or {}).get('brand') or self.default_brand,
            'external_url': remote.get('permalink') or None,
            'active': remote.get('status') == 'publish',
            'images': product_images(remote),
            'attributes': product_attributes(remote),
        }

        product_id, created = self.db.upsert_product(external_id, values, values)
        if created:
            logger.info(f"Product created: {values['name']} (external id {external_id})")
        else:
            logger.debug(f"Product updated: {values['name']} (external id {external_id})")
        return created
