"""
Pydantic schemas for API request/response validation.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict


# ==================== Sync Schemas ====================

class PhaseResultSchema(BaseModel):
    """Counters for one sync phase."""
    name: str
    status: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = []
    error: Optional[str] = None


class SyncReportResponse(BaseModel):
    """Outcome of a sync run."""
    started_at: str
    finished_at: Optional[str] = None
    success: bool
    phases: List[PhaseResultSchema]


class SyncStatusResponse(BaseModel):
    """Cursor and lock state."""
    running: bool
    lock_owner: Optional[str] = None
    lock_acquired_at: Optional[str] = None
    last_order_external_id: Optional[int] = None
    last_order_created_at: Optional[str] = None
    last_synced_at: Optional[str] = None


class ConnectionResponse(BaseModel):
    connected: bool
    url: Optional[str] = None
    store_name: Optional[str] = None
    version: Optional[str] = None
    message: Optional[str] = None


# ==================== Shipping Schemas ====================

class CustomerCheckRequest(BaseModel):
    id_number: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class CustomerSummary(BaseModel):
    id: int
    name: str
    id_number: Optional[str] = None


class CustomerCheckResponse(BaseModel):
    exists: bool
    customer: Optional[CustomerSummary] = None


class ShippingFormRequest(BaseModel):
    """Shipping form as submitted from the website."""
    name: str = Field(min_length=2, max_length=100)
    phone: str = Field(min_length=7)
    street: str = Field(min_length=3)
    city: str = Field(min_length=2)
    province: str = Field(min_length=2)
    email: Optional[str] = None
    id_number: Optional[str] = None
    company_name: Optional[str] = None
    delivery_instructions: Optional[str] = None
    brand: Optional[str] = None


class ShippingSubmissionResponse(BaseModel):
    success: bool
    customer_id: int
    order_id: int
    order_number: str
    matched: bool


# ==================== Generic Schemas ====================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    counts: Dict[str, int]
