"""
Order Importer.
Materializes store orders locally exactly once, keyed by external id.
Already-imported orders only get their status fields refreshed.
"""

import logging
from typing import List, Dict, Any, Optional, Tuple

from ..catalog.synchronizer import BRAND_KEYWORDS, DEFAULT_BRAND, parse_price, parse_stock
from ..customers.matcher import IdentityMatcher
from ..platform.client import DEFAULT_ORDER_STATUSES
from ..sync.results import PhaseResult, Deadline, check_deadline

logger = logging.getLogger(__name__)

ORDERS_CURSOR = "orders"
ORDER_SOURCE = "woocommerce"

# Store status -> local status
STATUS_MAP = {
    'pending': 'new',
    'processing': 'preparing',
    'on-hold': 'pending',
    'completed': 'completed',
    'cancelled': 'cancelled',
    'refunded': 'cancelled',
    'failed': 'cancelled',
}
DEFAULT_LOCAL_STATUS = 'new'

# Billing fields / order meta keys that may carry the national ID
ID_NUMBER_KEYS = ('id_number', 'cedula', 'billing_cedula', '_billing_cedula', 'billing_id_number', '_billing_id_number')


def map_status(remote_status: Optional[str]) -> str:
    return STATUS_MAP.get(remote_status or '', DEFAULT_LOCAL_STATUS)


def payment_status(remote: Dict[str, Any]) -> str:
    return 'paid' if remote.get('payment_method_title') else 'pending'


def order_brand(remote: Dict[str, Any], default: str = DEFAULT_BRAND) -> str:
    """Brand tag from keywords in line-item names."""
    names = [(item.get('name') or '').lower() for item in remote.get('line_items') or []]
    for brand, keywords in BRAND_KEYWORDS.items():
        if any(keyword in name for name in names for keyword in keywords):
            return brand
    return default


def billing_id_number(remote: Dict[str, Any]) -> Optional[str]:
    billing = remote.get('billing') or {}
    for key in ID_NUMBER_KEYS:
        if billing.get(key):
            return str(billing[key]).strip()
    for meta in remote.get('meta_data') or []:
        if meta.get('key') in ID_NUMBER_KEYS and meta.get('value'):
            return str(meta['value']).strip()
    return None


def item_attributes(item: Dict[str, Any]) -> Dict[str, Any]:
    """Line-item meta as a flat map (display key preferred)."""
    attributes = {}
    for meta in item.get('meta_data') or []:
        key = meta.get('display_key') or meta.get('key')
        if key:
            attributes[key] = meta.get('display_value', meta.get('value'))
    return attributes


class OrderImporter:
    """Pulls store orders and creates local orders, customers and items."""

    def __init__(
        self,
        db,
        client,
        matcher: IdentityMatcher,
        statuses=DEFAULT_ORDER_STATUSES,
        order_prefix: str = "EXT",
        default_brand: str = DEFAULT_BRAND
    ):
        self.db = db
        self.client = client
        self.matcher = matcher
        self.statuses = tuple(statuses)
        self.order_prefix = order_prefix
        self.default_brand = default_brand

    def run(self, deadline: Optional[Deadline] = None) -> PhaseResult:
        """
        1. Read the cursor and fetch orders created after its watermark
        2. Import or refresh each order in isolation
        3. Advance the cursor up to the first failed order
        """
        result = PhaseResult("orders")

        cursor = self.db.get_cursor(ORDERS_CURSOR) or {}
        watermark = cursor.get('last_created_at')
        remote_orders = self.client.list_orders(statuses=self.statuses, after=watermark)

        last_ok: Optional[Tuple[int, str]] = None
        blocked = False

        for remote in remote_orders:
            check_deadline(deadline, result)
            result.processed += 1
            try:
                created = self.import_order(remote)
                if created:
                    result.created += 1
                else:
                    result.updated += 1
                if not blocked and remote.get('date_created'):
                    if last_ok is None or remote['date_created'] >= last_ok[1]:
                        last_ok = (remote['id'], remote['date_created'])
            except Exception as e:
                logger.error(f"Failed to import order {remote.get('id')}: {e}")
                result.record_failure(f"order {remote.get('id')}", e)
                blocked = True

        if last_ok:
            self.db.save_cursor(ORDERS_CURSOR, last_ok[0], last_ok[1])
            logger.info(f"Order cursor advanced to {last_ok[1]} (order {last_ok[0]})")

        logger.info(result.summary())
        return result.complete()

    def import_order(self, remote: Dict[str, Any]) -> bool:
        """
        Import one order. Returns True if it was created, False if it
        already existed and only its status was refreshed.
        """
        external_id = remote['id']
        status = map_status(remote.get('status'))
        paid = payment_status(remote)

        if self.db.get_order_by_external_id(external_id):
            self.db.update_order_status(external_id, status, paid)
            logger.info(f"Order {external_id} already imported, status -> {status}/{paid}")
            return False

        brand = order_brand(remote, self.default_brand)
        customer_id, new_customer = self._resolve_customer(remote, brand)

        order = {
            'customer_id': customer_id,
            'order_number': f"{self.order_prefix}-{external_id}",
            'total_amount': parse_price(remote.get('total')),
            'status': status,
            'payment_status': paid,
            'payment_method': remote.get('payment_method_title') or None,
            'brand': brand,
            'source': ORDER_SOURCE,
            'external_id': external_id,
            'shipping_address': remote.get('shipping') or None,
            'billing_address': remote.get('billing') or None,
            'notes': remote.get('customer_note') or None,
        }
        if remote.get('date_created'):
            order['created_at'] = remote['date_created']
        if remote.get('date_modified'):
            order['updated_at'] = remote['date_modified']

        items = [self._build_item(item) for item in remote.get('line_items') or []]

        order_id, customer_id = self.db.create_order(order, items, new_customer=new_customer)
        logger.info(
            f"Order created: #{external_id} -> {order_id} "
            f"(customer {customer_id}, {len(items)} items, total {order['total_amount']})"
        )
        return True

    def _resolve_customer(self, remote: Dict[str, Any], brand: str) -> Tuple[Optional[int], Optional[Dict[str, Any]]]:
        """
        Returns (existing customer id, None) on a match, or (None, new customer
        values) to be inserted together with the order.
        """
        billing = remote.get('billing') or {}
        match = self.matcher.match(
            id_number=billing_id_number(remote),
            phone=billing.get('phone'),
            email=billing.get('email'),
            context=f"order {remote['id']}"
        )

        if match.customer:
            self.db.refresh_customer_address(
                match.customer_id,
                street=billing.get('address_1'),
                city=billing.get('city'),
                province=billing.get('state'),
            )
            return match.customer_id, None

        first_name = billing.get('first_name') or ''
        last_name = billing.get('last_name') or ''
        return None, {
            'name': f"{first_name} {last_name}".strip(),
            'first_name': first_name or None,
            'last_name': last_name or None,
            'id_number': billing_id_number(remote),
            'email': billing.get('email') or None,
            'phone': billing.get('phone') or None,
            'street': billing.get('address_1') or None,
            'city': billing.get('city') or None,
            'province': billing.get('state') or None,
            'brand': brand,
            'source': ORDER_SOURCE,
        }

    def _build_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        product = None
        if item.get('product_id'):
            product = self.db.get_product_by_external_id(item['product_id'])

        quantity = parse_stock(item.get('quantity'))
        unit_price = parse_price(item.get('price'))
        return {
            'product_id': product['id'] if product else None,
            'product_name': item.get('name') or (product or {}).get('name') or '',
            'quantity': quantity,
            'unit_price': unit_price,
            'subtotal': parse_price(item.get('subtotal'), default=unit_price * quantity),
            'attributes': item_attributes(item),
        }
