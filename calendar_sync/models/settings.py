"""Service settings model.

Every recognized option with its default. Built once at startup by
``calendar_sync.config.load_settings`` and passed down explicitly.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class MappingSource(str, Enum):
    SHEET = "sheet"
    FILE = "file"


class StopMode(str, Enum):
    """What happens to the durable record when a channel is stopped."""

    DELETE = "delete"
    MARK_STOPPED = "mark_stopped"


class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


class Settings(BaseModel):
    """Validated service configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    log_format: LogFormat = Field(default=LogFormat.JSON, description="json or console")
    webhook_url: str = Field(
        default="http://localhost:8080/webhook",
        description="Public URL Google Calendar delivers push notifications to",
    )

    # Identity mapping
    mapping_source: MappingSource = Field(default=MappingSource.SHEET, description="sheet or file")
    spreadsheet_id: Optional[str] = Field(None, description="Mapping spreadsheet id (required for sheet)")
    sheet_name: str = Field(default="User Mappings", description="Sheet tab holding the mappings")
    mappings_path: str = Field(default="config/mappings.yaml", description="Mapping YAML file (file source)")

    # Google credentials
    service_account_key_path: str = Field(
        default="config/service-account-key.json", description="Service account key file"
    )
    service_account_key: Optional[str] = Field(
        None, description="Inline service account key JSON, takes precedence over the key file"
    )

    # Durable store
    firestore_enabled: bool = Field(default=True, description="Persist watch channels in Firestore")
    firestore_project: Optional[str] = Field(None, description="Firestore project, auto-detected when unset")
    firestore_collection: str = Field(default="watchChannels", description="Collection holding watch channels")
    stop_mode: StopMode = Field(default=StopMode.DELETE, description="delete or mark_stopped")

    # Deduplication
    dedup_ttl_ms: int = Field(default=300_000, gt=0, description="Deduplication window")
    dedup_sweep_interval_ms: int = Field(default=60_000, ge=0, description="Sweep interval (0 disables)")

    # Scheduling
    renewal_threshold_ms: int = Field(default=86_400_000, ge=0, description="Renew channels expiring within")
    renewal_interval_ms: int = Field(default=3_600_000, ge=0, description="In-process renewal interval (0 disables)")
    mapping_refresh_interval_ms: int = Field(default=300_000, ge=0, description="Mapping refresh interval (0 disables)")

    # Notification processing
    change_lookback_ms: int = Field(default=3_600_000, ge=0, description="events.list updatedMin lookback")
    list_max_results: int = Field(default=200, ge=1, le=2500, description="events.list page size")
    worker_queue_size: int = Field(default=1000, ge=1, description="Pending notification capacity")

    # Retry
    retry_max_attempts: int = Field(default=5, ge=1, description="Attempts per outbound call")
    retry_delay_ms: int = Field(default=30_000, ge=0, description="Fixed delay between attempts")

    @model_validator(mode="after")
    def check_mapping_source(self) -> "Settings":
        if self.mapping_source == MappingSource.SHEET and not self.spreadsheet_id:
            raise ValueError("spreadsheet_id is required when mapping_source is 'sheet'")
        return self

    @property
    def json_logs(self) -> bool:
        return self.log_format == LogFormat.JSON

    class Config:
        json_schema_extra = {
            "example": {
                "port": 8080,
                "webhook_url": "https://calendar-sync.example.com/webhook",
                "mapping_source": "sheet",
                "spreadsheet_id": "1AbCdEf",
                "firestore_enabled": True,
                "stop_mode": "delete",
            }
        }
