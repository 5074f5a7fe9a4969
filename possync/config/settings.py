from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # App Info
    app_name: str = "POS Sync Central API"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    
    # Database
    database_url: str = "sqlite:///./central.db"
    local_database_url: str = "sqlite:///./terminal.db"
    
    # Security
    maintenance_secret: str = Field(
        ...,
        min_length=8,
        description="Shared secret required by destructive maintenance endpoints"
    )
    allowed_origins: List[str] = ["*"]
    
    # Terminal sync
    terminal_id: Optional[str] = None
    sync_chunk_size: int = Field(default=50, gt=0, description="Records per batch request")
    sync_batch_delay_seconds: float = Field(default=0.5, ge=0, description="Pause between batch requests")
    sync_request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    sync_max_retries: int = Field(default=5, gt=0, description="Attempts before a queue entry is dead-lettered")
    sync_backoff_base_seconds: float = Field(default=30.0, ge=0)
    sync_backoff_max_seconds: float = Field(default=3600.0, ge=0)
    sync_dispatch_interval_seconds: float = Field(default=30.0, gt=0)
    
    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

settings = Settings()
