# possync/modules/sync/router.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from possync.config.database import get_db
from possync.core.exceptions import BatchValidationError
from .service import SyncService
from .schemas import (
    UsersSyncRequest, InventorySyncRequest, SalesSyncRequest,
    SyncResponse, CleanupResponse, SyncBatchResponse
)

router = APIRouter(prefix="/sync", tags=["Sync - Terminals"])

def _rejected(error: BatchValidationError) -> HTTPException:
    """Whole batch rejected; detail names the failing record"""
    return HTTPException(status_code=422, detail=error.to_dict())

# ==================== INBOUND BATCHES ====================

@router.post("/users", response_model=SyncResponse)
async def sync_users(
    request: UsersSyncRequest,
    db: Session = Depends(get_db)
):
    """
    Upsert users pushed by a terminal (by id, then username)
    """
    service = SyncService(db)
    try:
        return service.ingest_users(request.users, terminal_id=request.terminal_id)
    except BatchValidationError as e:
        raise _rejected(e)

@router.post("/inventory", response_model=SyncResponse)
async def sync_inventory(
    request: InventorySyncRequest,
    db: Session = Depends(get_db)
):
    """
    Upsert products with their category and variants.

    Variants are matched by id and moved onto the product that carries
    them, which detaches them from any placeholder.
    """
    service = SyncService(db)
    try:
        return service.ingest_inventory(request.products, terminal_id=request.terminal_id)
    except BatchValidationError as e:
        raise _rejected(e)

@router.post("/sales", response_model=SyncResponse)
async def sync_sales(
    request: SalesSyncRequest,
    db: Session = Depends(get_db)
):
    """
    Upsert sales with items and payments.

    Unknown users and variants are satisfied with placeholders; resending
    the same batch does not duplicate anything.
    """
    service = SyncService(db)
    try:
        return service.ingest_sales(request.sales, terminal_id=request.terminal_id)
    except BatchValidationError as e:
        raise _rejected(e)

# ==================== PLACEHOLDERS ====================

@router.post("/cleanup-placeholders", response_model=CleanupResponse)
async def cleanup_placeholders(db: Session = Depends(get_db)):
    """
    Delete placeholder products without variants; flag the others for merge
    """
    service = SyncService(db)
    return service.cleanup_placeholders()

# ==================== LEDGER ====================

@router.get("/batches", response_model=List[SyncBatchResponse])
async def list_batches(
    model: Optional[str] = Query(None, description="user, product or sale"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    service = SyncService(db)
    return service.list_batches(limit=limit, model=model)
