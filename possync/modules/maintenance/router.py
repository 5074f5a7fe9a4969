# possync/modules/maintenance/router.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from possync.config.database import get_db
from possync.core.exceptions import MaintenanceAuthorizationError, ResetPartialFailure
from .service import MaintenanceService
from .schemas import (
    ResetRequest, ResetResponse, CorrectionRequest, CorrectionResponse
)

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])

# ==================== RESET ====================

@router.post("/reset", response_model=ResetResponse)
async def reset_data(
    request: ResetRequest,
    db: Session = Depends(get_db)
):
    """
    Wipe all data except users.

    - 403 on a wrong secret, 400 unless confirm is exactly true
    - Not atomic: on failure the response lists completed steps and the
      remaining row counts. Inspect before retrying.
    """
    service = MaintenanceService(db)
    try:
        service.authorize(request.secret)
        service.require_confirmation(request.confirm)
    except MaintenanceAuthorizationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    try:
        return service.reset_all_data()
    except ResetPartialFailure as e:
        raise HTTPException(status_code=500, detail=e.to_dict())

# ==================== CORRECTIONS ====================

@router.post("/products/hide", response_model=CorrectionResponse)
async def hide_products(
    request: CorrectionRequest,
    db: Session = Depends(get_db)
):
    """
    Soft delete products matching the filter, with their variants
    """
    service = MaintenanceService(db)
    try:
        service.authorize(request.secret)
    except MaintenanceAuthorizationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return service.hide_products(request.filter, dry_run=request.dry_run)

@router.post("/products/restore", response_model=CorrectionResponse)
async def restore_products(
    request: CorrectionRequest,
    db: Session = Depends(get_db)
):
    """
    Reactivate products hidden with the same filter
    """
    service = MaintenanceService(db)
    try:
        service.authorize(request.secret)
    except MaintenanceAuthorizationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return service.restore_products(request.filter, dry_run=request.dry_run)
