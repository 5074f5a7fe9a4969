# possync/modules/sync/__init__.py
"""
Sync module - central reconciliation of terminal batches

- POST /api/sync/users: upsert users by id / username
- POST /api/sync/inventory: upsert products, categories and variants
- POST /api/sync/sales: upsert sales, synthesizing placeholders for unknown references
- POST /api/sync/cleanup-placeholders: remove placeholders that were never populated
- GET  /api/sync/batches: ledger of accepted batches

Architecture:
- router.py: FastAPI endpoints
- service.py: reconciliation logic (one transaction per batch)
- repository.py: data access
- schemas.py: Pydantic wire models (camelCase aliases)
"""

from .router import router as sync_router
from .service import SyncService
from .repository import SyncRepository

__all__ = [
    "sync_router",
    "SyncService",
    "SyncRepository"
]
