# possync/api/router.py
from fastapi import APIRouter

from possync.config.settings import settings
from possync.modules.sync import sync_router
from possync.modules.maintenance import maintenance_router

# Main API router
api_router = APIRouter(prefix="/api")

# ==================== MODULES ====================

api_router.include_router(sync_router)          # /api/sync/...
api_router.include_router(maintenance_router)   # /api/maintenance/...

# ==================== ROOT ENDPOINTS ====================

@api_router.get("/")
async def api_root():
    """Root endpoint of the API"""
    return {
        "message": settings.app_name,
        "version": settings.version,
        "status": "active",
        "available_endpoints": {
            "sync": [
                "POST /api/sync/users",
                "POST /api/sync/inventory",
                "POST /api/sync/sales",
                "POST /api/sync/cleanup-placeholders",
                "GET /api/sync/batches"
            ],
            "maintenance": [
                "POST /api/maintenance/reset",
                "POST /api/maintenance/products/hide",
                "POST /api/maintenance/products/restore"
            ]
        }
    }
