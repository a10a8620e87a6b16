"""
Shipping form endpoints.
"""

from fastapi import APIRouter, HTTPException

from ..schemas import (
    CustomerCheckRequest, CustomerCheckResponse,
    ShippingFormRequest, ShippingSubmissionResponse,
)
from ...core.config import get_config
from ...core.database import get_database
from ...customers.matcher import IdentityMatcher, DEFAULT_COUNTRY_CODE
from ...orders.shipping import ShippingForm, ShippingFormService

router = APIRouter(prefix="/shipping", tags=["shipping"])


def _service() -> ShippingFormService:
    config = get_config()
    db = get_database()
    matcher = IdentityMatcher(db, country_code=str(config.get('sync', 'country_code', default=DEFAULT_COUNTRY_CODE)))
    return ShippingFormService(db, matcher, default_brand=config.get('sync', 'default_brand', default='sleepwear'))


@router.post("/check-customer", response_model=CustomerCheckResponse)
def check_customer(request: CustomerCheckRequest):
    """Does a customer with this ID number, email or phone exist?"""
    try:
        customer = _service().check_customer(
            id_number=request.id_number,
            email=request.email,
            phone=request.phone
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return CustomerCheckResponse(exists=customer is not None, customer=customer)


@router.post("/submit", response_model=ShippingSubmissionResponse)
def submit_shipping_form(request: ShippingFormRequest):
    """Save the shipping data and create a pending order."""
    submission = _service().submit(ShippingForm(**request.model_dump()))
    return {'success': True, **ShippingFormService.to_dict(submission)}
