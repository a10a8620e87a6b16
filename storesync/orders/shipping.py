"""
Shipping Form Service.
Turns a web-submitted shipping form into a matched-or-new customer plus a
pending local order. Uses the same identity matching as the order import.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from ..catalog.synchronizer import DEFAULT_BRAND
from ..customers.matcher import IdentityMatcher

logger = logging.getLogger(__name__)

FORM_SOURCE = "website"
FORM_ORDER_STATUS = "pending"


@dataclass
class ShippingForm:
    """Contact and address data from the shipping form."""
    name: str
    phone: str
    street: str
    city: str
    province: str
    email: Optional[str] = None
    id_number: Optional[str] = None
    company_name: Optional[str] = None
    delivery_instructions: Optional[str] = None
    brand: Optional[str] = None


@dataclass
class ShippingSubmission:
    customer_id: int
    order_id: int
    order_number: str
    matched: bool


class ShippingFormService:
    """Creates pending orders from shipping forms."""

    def __init__(self, db, matcher: IdentityMatcher, default_brand: str = DEFAULT_BRAND):
        self.db = db
        self.matcher = matcher
        self.default_brand = default_brand

    def check_customer(
        self,
        id_number: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Look up a customer by any of the identifiers.

        Raises:
            ValueError: no identifier given
        """
        if not any(value and value.strip() for value in (id_number, email, phone)):
            raise ValueError("At least one of id_number, email or phone is required")

        customer = self.matcher.find_customer(id_number=id_number, phone=phone, email=email)
        if not customer:
            return None
        return {'id': customer['id'], 'name': customer['name'], 'id_number': customer['id_number']}

    def submit(self, form: ShippingForm) -> ShippingSubmission:
        """Match or create the customer and create a pending order, atomically."""
        match = self.matcher.match(
            id_number=form.id_number,
            phone=form.phone,
            email=form.email,
            context="shipping form"
        )

        shipping = {
            'name': form.name,
            'phone': form.phone,
            'street': form.street,
            'city': form.city,
            'province': form.province,
            'instructions': form.delivery_instructions or '',
            'id_number': form.id_number or '',
            'company_name': form.company_name or '',
        }
        brand = form.brand or self.default_brand

        new_customer = None
        if not match.customer:
            new_customer = {
                'name': form.name,
                'email': form.email or None,
                'phone': form.phone,
                'id_number': form.id_number or None,
                'street': form.street,
                'city': form.city,
                'province': form.province,
                'delivery_instructions': form.delivery_instructions or None,
                'brand': brand,
                'source': FORM_SOURCE,
            }

        order = {
            'customer_id': match.customer_id,
            'total_amount': 0,
            'status': FORM_ORDER_STATUS,
            'payment_status': 'pending',
            'brand': brand,
            'source': FORM_SOURCE,
            'shipping_address': shipping,
            'notes': form.delivery_instructions or None,
        }

        order_id, customer_id = self.db.create_order(order, [], new_customer=new_customer)
        order_number = self.db.get_order(order_id)['order_number']

        if match.customer:
            logger.info(f"Shipping form: customer {customer_id} matched on {match.matched_on}, order {order_number}")
        else:
            logger.info(f"Shipping form: new customer {customer_id}, order {order_number}")

        return ShippingSubmission(
            customer_id=customer_id,
            order_id=order_id,
            order_number=order_number,
            matched=match.customer is not None,
        )

    @staticmethod
    def to_dict(submission: ShippingSubmission) -> Dict[str, Any]:
        return asdict(submission)
