"""
Sync API endpoints.
"""

import logging

from fastapi import APIRouter, HTTPException

from ..schemas import SyncReportResponse, SyncStatusResponse, ConnectionResponse
from ...core.config import get_config
from ...core.database import get_database
from ...core.exceptions import ConfigurationError, RemoteRequestError, SyncInProgressError
from ...orders.importer import ORDERS_CURSOR
from ...platform.client import PlatformClient
from ...sync.orchestrator import RUN_LOCK, build_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/run", response_model=SyncReportResponse)
def run_sync():
    """
    Run one full sync batch and return the per-phase report.
    Responds 409 while another run holds the lock.
    """
    try:
        orchestrator = build_orchestrator()
        report = orchestrator.run()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return report.to_dict()


@router.get("/status", response_model=SyncStatusResponse)
def sync_status():
    """Current lock holder and order cursor."""
    db = get_database()
    lock = db.get_lock(RUN_LOCK) or {}
    cursor = db.get_cursor(ORDERS_CURSOR) or {}

    return SyncStatusResponse(
        running=bool(lock),
        lock_owner=lock.get('owner'),
        lock_acquired_at=lock.get('acquired_at'),
        last_order_external_id=cursor.get('last_external_id'),
        last_order_created_at=cursor.get('last_created_at'),
        last_synced_at=cursor.get('last_synced_at'),
    )


@router.get("/check-connection", response_model=ConnectionResponse)
def check_connection():
    """Verify credentials against the store API."""
    try:
        client = PlatformClient.from_settings(get_config().platform_settings())
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return client.check_connection()
    except RemoteRequestError as e:
        logger.error(f"Store connection check failed: {e}")
        return ConnectionResponse(connected=False, url=client.endpoint, message=str(e))
