"""
WooCommerce API Client.
Signed requests against the store's REST API (catalog, orders, stock).
"""

import requests
import logging
from typing import List, Dict, Optional, Any, Iterator
from urllib.parse import urlencode

from .signing import OAuth1Signer, RequestSigner
from ..core.config import PlatformSettings
from ..core.exceptions import RemoteRequestError

logger = logging.getLogger(__name__)

DEFAULT_ORDER_STATUSES = ("processing", "completed", "on-hold")


class PlatformClient:
    """Client for the WooCommerce REST API. Every request is signed individually."""

    def __init__(
        self,
        base_url: str,
        signer: RequestSigner,
        api_path: str = "/wp-json/wc/v3",
        timeout: float = 30.0,
        page_size: int = 100,
        max_pages: int = 50,
        session: Optional[requests.Session] = None
    ):
        self.endpoint = base_url.rstrip('/') + '/' + api_path.strip('/')
        self.signer = signer
        self.timeout = timeout
        self.page_size = page_size
        self.max_pages = max_pages
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: PlatformSettings, session: Optional[requests.Session] = None) -> 'PlatformClient':
        return cls(
            base_url=settings.url,
            signer=OAuth1Signer(settings.consumer_key, settings.consumer_secret),
            api_path=settings.api_path,
            timeout=settings.timeout,
            page_size=settings.page_size,
            max_pages=settings.max_pages,
            session=session,
        )

    def build_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = self.endpoint + '/' + path.lstrip('/') if path else self.endpoint + '/'
        if params:
            url += '?' + urlencode(params)
        return url

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Send one signed request and return the decoded JSON body.

        Raises:
            RemoteRequestError: non-2xx status or transport failure
        """
        method = method.upper()
        url = self.build_url(path, params)
        headers = self.signer.sign(method, url)

        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=body,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Store API error: {method} {path}: {e}")
            raise RemoteRequestError(method, path, reason=str(e)) from e

        if not 200 <= response.status_code < 300:
            try:
                error_body = response.json()
            except ValueError:
                error_body = response.text
            logger.error(f"Store API error: {method} {path} -> {response.status_code}")
            raise RemoteRequestError(method, path, status_code=response.status_code, body=error_body)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteRequestError(
                method, path, status_code=response.status_code, body=response.text,
                reason="invalid JSON in response"
            ) from e

    def iter_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """
        Yield records across pages until a short page or max_pages.
        """
        for page in range(1, self.max_pages + 1):
            query = dict(params or {})
            query.update({'per_page': self.page_size, 'page': page})

            batch = self.request('GET', path, params=query) or []
            logger.debug(f"GET {path} page {page}: {len(batch)} records")
            yield from batch

            if len(batch) < self.page_size:
                return

        logger.warning(f"GET {path}: stopped after max_pages={self.max_pages}")

    def list_categories(self) -> List[Dict[str, Any]]:
        categories = list(self.iter_pages('products/categories'))
        logger.info(f"Retrieved {len(categories)} categories")
        return categories

    def list_products(self) -> List[Dict[str, Any]]:
        products = list(self.iter_pages('products'))
        logger.info(f"Retrieved {len(products)} products")
        return products

    def list_orders(
        self,
        statuses=DEFAULT_ORDER_STATUSES,
        after: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch orders in the given statuses, oldest id first.

        Args:
            statuses: Order status filter
            after: Only orders created after this ISO8601 timestamp
        """
        params = {
            'status': ','.join(statuses),
            'orderby': 'id',
            'order': 'asc',
        }
        if after:
            params['after'] = after

        logger.info(f"Fetching {params['status']} orders from store (after={after})...")
        orders = list(self.iter_pages('orders', params))
        logger.info(f"Retrieved {len(orders)} orders")
        return orders

    def get_product(self, external_id: int) -> Dict[str, Any]:
        """Fetch single product."""
        return self.request('GET', f"products/{external_id}")

    def update_product_stock(self, external_id: int, quantity: int) -> Dict[str, Any]:
        return self.request('PUT', f"products/{external_id}", body={'stock_quantity': quantity})

    def check_connection(self) -> Dict[str, Any]:
        """
        Probe the API: read the store index and one product.
        Raises RemoteRequestError if either call fails.
        """
        index = self.request('GET', '') or {}
        self.request('GET', 'products', params={'per_page': 1})
        return {
            'connected': True,
            'url': self.endpoint,
            'store_name': index.get('store_name') or index.get('name'),
            'version': index.get('version'),
        }
