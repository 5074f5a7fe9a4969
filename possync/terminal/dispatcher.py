# possync/terminal/dispatcher.py
import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set, Tuple

from possync.core.exceptions import BatchRejectedError, DispatcherBusyError, TransportError
from .config import SyncConfig
from .local_store import LocalStore
from .schemas import DispatchReport, QueueStatusReport
from .transport import CentralClient

logger = logging.getLogger(__name__)

class SyncQueueDispatcher:
    """
    Delivers queued mutations to the central service, oldest first.

    Run exactly one dispatcher per terminal database. Within a process the
    cycle is guarded by a lock; a second concurrent `dispatch()` raises
    DispatcherBusyError instead of sending entries twice.

    Entries for the same record are delivered in order: while an earlier
    entry is waiting on a retry, later entries for that record are held.
    """

    def __init__(self, store: LocalStore, client: CentralClient, config: SyncConfig):
        self.store = store
        self.client = client
        self.config = config
        self._lock = threading.Lock()

    def reconfigure(self, client: CentralClient, config: SyncConfig):
        """Swap in a refreshed endpoint between cycles"""
        with self._lock:
            self.client = client
            self.config = config

    def enqueue(self, action, target_model: str, payload: Dict[str, Any], record_id: Optional[str] = None) -> int:
        return self.store.enqueue(action, target_model, payload, record_id=record_id)

    def dispatch(self, now: Optional[datetime] = None) -> DispatchReport:
        if not self._lock.acquire(blocking=False):
            raise DispatcherBusyError()
        try:
            return self._run_cycle(now or datetime.utcnow())
        finally:
            self._lock.release()

    def _run_cycle(self, now: datetime) -> DispatchReport:
        report = DispatchReport()
        blocked: Set[Tuple[str, str]] = set()

        for entry in self.store.pending_queue_entries():
            key = (entry.target_model, entry.record_id)
            if entry.record_id and key in blocked:
                report.held += 1
                continue
            if not entry.is_due(now):
                if entry.record_id:
                    blocked.add(key)
                continue

            report.attempted += 1
            try:
                self.client.post_batch(entry.target_model, [json.loads(entry.payload)])
            except BatchRejectedError as e:
                # The receiver will refuse this payload every time
                self.store.record_entry_failure(entry.id, str(e), dead_letter=True, count_attempt=False)
                report.dead_lettered += 1
                report.errors.append(f"entry {entry.id}: {e}")
                logger.error(f"❌ Queue entry {entry.id} ({entry.action}) rejected: {e}")
                continue
            except TransportError as e:
                retry_count = entry.retry_count + 1
                exhausted = retry_count >= self.config.max_retries
                next_attempt_at = None if exhausted else now + self.config.backoff_for(retry_count)
                self.store.record_entry_failure(
                    entry.id, str(e), next_attempt_at=next_attempt_at, dead_letter=exhausted
                )
                report.errors.append(f"entry {entry.id}: {e}")
                if exhausted:
                    report.dead_lettered += 1
                    logger.error(f"❌ Queue entry {entry.id} ({entry.action}) failed after {retry_count} attempts: {e}")
                else:
                    report.retried += 1
                    logger.warning(f"⚠️ Queue entry {entry.id} ({entry.action}) attempt {retry_count} failed, next at {next_attempt_at}: {e}")
                if entry.record_id:
                    blocked.add(key)
                continue

            self.store.mark_entry_synced(entry.id, now)
            report.synced += 1

        if report.attempted:
            logger.info(
                f"Dispatch cycle: {report.synced} synced, {report.retried} retrying, "
                f"{report.dead_lettered} failed, {report.held} held"
            )
        return report

    def queue_status(self) -> QueueStatusReport:
        return self.store.queue_status()

    def requeue_failed(self) -> int:
        count = self.store.requeue_failed()
        logger.info(f"Requeued {count} failed entries")
        return count

    def purge_synced(self, older_than: Optional[datetime] = None, keep_days: int = 7) -> int:
        cutoff = older_than or datetime.utcnow() - timedelta(days=keep_days)
        return self.store.purge_synced(cutoff)
