# possync/modules/maintenance/__init__.py
"""
Maintenance module - administrative tools for the central store

- POST /api/maintenance/reset: destructive wipe preserving users (secret + confirm)
- POST /api/maintenance/products/hide: soft delete products matching a filter
- POST /api/maintenance/products/restore: undo a hide with the same filter

Architecture:
- router.py: FastAPI endpoints
- service.py: authorization, reset sequence, corrections
- repository.py: counts, bulk deletes, filter queries
- schemas.py: Pydantic request/response models
"""

from .router import router as maintenance_router
from .service import MaintenanceService
from .repository import MaintenanceRepository

__all__ = [
    "maintenance_router",
    "MaintenanceService",
    "MaintenanceRepository"
]
