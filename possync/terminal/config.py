# possync/terminal/config.py
from datetime import timedelta
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from possync.config.settings import settings
from possync.core.exceptions import ConfigurationError

CLOUD_API_URL_KEY = "CLOUD_API_URL"

class SyncConfig(BaseModel):
    """
    Immutable sync configuration handed to the Batcher and Dispatcher.

    Built once at worker start (or on an explicit refresh between cycles),
    never re-read from the store in the middle of a sweep.
    """
    model_config = ConfigDict(frozen=True)

    endpoint_url: str = Field(..., min_length=1)
    terminal_id: Optional[str] = None
    chunk_size: int = Field(50, gt=0)
    batch_delay_seconds: float = Field(0.5, ge=0)
    request_timeout: float = Field(30.0, gt=0)
    max_retries: int = Field(5, gt=0)
    backoff_base_seconds: float = Field(30.0, ge=0)
    backoff_max_seconds: float = Field(3600.0, ge=0)

    def backoff_for(self, retry_count: int) -> timedelta:
        """Delay before the next attempt after `retry_count` failures"""
        if retry_count <= 0:
            return timedelta(0)
        seconds = self.backoff_base_seconds * (2 ** min(retry_count - 1, 20))
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

def load_sync_config(store, app_settings=settings) -> SyncConfig:
    """Read the endpoint from the local Setting table and combine it with env settings"""
    endpoint_url = store.get_setting(CLOUD_API_URL_KEY)
    if not endpoint_url:
        raise ConfigurationError(f"Central endpoint URL is not configured (setting {CLOUD_API_URL_KEY})")

    return SyncConfig(
        endpoint_url=endpoint_url.strip().rstrip("/"),
        terminal_id=app_settings.terminal_id,
        chunk_size=app_settings.sync_chunk_size,
        batch_delay_seconds=app_settings.sync_batch_delay_seconds,
        request_timeout=app_settings.sync_request_timeout,
        max_retries=app_settings.sync_max_retries,
        backoff_base_seconds=app_settings.sync_backoff_base_seconds,
        backoff_max_seconds=app_settings.sync_backoff_max_seconds
    )
