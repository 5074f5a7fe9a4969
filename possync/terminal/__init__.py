# possync/terminal/__init__.py
"""
Terminal side of the sync engine

- LocalStore: the terminal database; point-of-sale writes enqueue their own sync entry
- Batcher: bulk sweep of unsynced records in fixed-size chunks
- SyncQueueDispatcher: ordered delivery of queued mutations with retry and dead-letter
- CentralClient: HTTP transport to the central service
- worker.py: command line entry point
"""

from .config import SyncConfig, load_sync_config, CLOUD_API_URL_KEY
from .local_store import LocalStore
from .transport import CentralClient
from .batcher import Batcher, chunked
from .dispatcher import SyncQueueDispatcher

__all__ = [
    "SyncConfig",
    "load_sync_config",
    "CLOUD_API_URL_KEY",
    "LocalStore",
    "CentralClient",
    "Batcher",
    "chunked",
    "SyncQueueDispatcher"
]
