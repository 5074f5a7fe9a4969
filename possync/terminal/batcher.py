# possync/terminal/batcher.py
import logging
import time
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Sequence

from possync.core.exceptions import BatchRejectedError, TransportError
from .config import SyncConfig
from .local_store import LocalStore
from .schemas import SweepReport
from .transport import CentralClient

logger = logging.getLogger(__name__)

# Parents before children: sales reference users and variants
SWEEP_ORDER = ("user", "product", "sale")

def chunked(records: Sequence, size: int) -> Iterator[List]:
    """Consecutive slices of at most `size` records"""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(records), size):
        yield list(records[start:start + size])

class Batcher:
    """
    Bulk sweep of unsynced records to the central service.

    Chunks go out one at a time with a fixed pause between them. A failed
    chunk is counted and skipped; its records stay unsynced for the next sweep.
    """

    def __init__(
        self,
        store: LocalStore,
        client: CentralClient,
        config: SyncConfig,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.client = client
        self.config = config
        self._sleep = sleep

    def sync_model(self, model_name: str, chunk_size: Optional[int] = None) -> SweepReport:
        size = chunk_size or self.config.chunk_size
        started_at = datetime.utcnow()
        records = self.store.unsynced_records(model_name)
        report = SweepReport(model=model_name, total_records=len(records))

        if not records:
            logger.info(f"No unsynced {model_name} records")
            return report

        chunks = list(chunked(records, size))
        logger.info(f"🔄 Syncing {len(records)} {model_name} records in {len(chunks)} batches of up to {size}")

        for number, chunk in enumerate(chunks, start=1):
            if number > 1 and self.config.batch_delay_seconds:
                self._sleep(self.config.batch_delay_seconds)

            try:
                self.client.post_batch(model_name, chunk)
            except (TransportError, BatchRejectedError) as e:
                report.chunks_failed += 1
                report.errors.append(f"batch {number}/{len(chunks)}: {e}")
                logger.error(f"❌ {model_name} batch {number}/{len(chunks)} failed: {e}")
                continue

            report.chunks_sent += 1
            report.records_synced += self.store.mark_synced(
                model_name, [record["id"] for record in chunk], as_of=started_at
            )
            logger.info(f"✅ {model_name} batch {number}/{len(chunks)} synced ({len(chunk)} records)")

        return report

    def sync_all(self, chunk_size: Optional[int] = None) -> List[SweepReport]:
        return [self.sync_model(model_name, chunk_size) for model_name in SWEEP_ORDER]
