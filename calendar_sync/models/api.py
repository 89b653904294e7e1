"""API request and response models for the webhook and admin endpoints.

JSON field names are camelCase; Python attributes are snake_case.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ApiModel(BaseModel):
    class Config:
        populate_by_name = True


# Webhook

class WebhookAck(ApiModel):
    """Acknowledgement returned to the push-notification sender."""

    status: str = Field(..., description="ok or ignored")


# Renewal

class RenewalRequest(ApiModel):
    """Request body for POST /admin/renew-channels."""

    dry_run: bool = Field(default=False, alias="dryRun", description="Report only, no mutation")
    expiration_threshold: Optional[int] = Field(
        None, alias="expirationThreshold", ge=0, description="Renew channels expiring within this many ms"
    )

    class Config:
        json_schema_extra = {"example": {"dryRun": False, "expirationThreshold": 86400000}}


class RenewedChannel(ApiModel):
    channel_id: str = Field(..., alias="channelId", description="Replaced channel id")
    new_channel_id: str = Field(..., alias="newChannelId", description="Replacement channel id")
    scope: str = Field(..., description="Monitored calendar")
    old_expiration: int = Field(..., alias="oldExpiration", description="Previous expiry (Unix millis)")
    new_expiration: int = Field(..., alias="newExpiration", description="New expiry (Unix millis)")
    duration: int = Field(..., description="Time taken to renew (ms)")


class SkippedChannel(ApiModel):
    channel_id: str = Field(..., alias="channelId")
    scope: str = Field(...)
    expiration: Optional[int] = Field(None, description="Expiry at the time of the decision (Unix millis)")
    reason: str = Field(...)


class FailedChannel(ApiModel):
    channel_id: str = Field(..., alias="channelId")
    scope: str = Field(...)
    error: str = Field(...)
    retry_after: Optional[int] = Field(None, alias="retryAfter", description="Seconds to wait before retrying")


class RenewalSummary(ApiModel):
    total: int = 0
    renewed: int = 0
    skipped: int = 0
    failed: int = 0
    duration: int = Field(0, description="Job duration (ms)")


class RenewalResponse(ApiModel):
    """Outcome of one renewal run."""

    renewed: list[RenewedChannel] = Field(default_factory=list)
    skipped: list[SkippedChannel] = Field(default_factory=list)
    failed: list[FailedChannel] = Field(default_factory=list)
    summary: RenewalSummary = Field(default_factory=RenewalSummary)
    error: Optional[str] = Field(None, description="Set when the run could not query the store")


# Force resync

class ResyncRequest(ApiModel):
    reason: Optional[str] = Field(None, description="Operator note, logged with the resync")


class StoppedChannel(ApiModel):
    channel_id: str = Field(..., alias="channelId")
    scope: str = Field(...)


class RegisteredChannel(ApiModel):
    channel_id: str = Field(..., alias="channelId")
    scope: str = Field(...)
    expiration: int = Field(..., description="Expiry (Unix millis)")


class ResyncFailure(ApiModel):
    scope: str = Field(...)
    channel_id: Optional[str] = Field(None, alias="channelId")
    operation: str = Field(..., description="stop or register")
    error: str = Field(...)


class ResyncSummary(ApiModel):
    stopped: int = 0
    registered: int = 0
    failed: int = 0
    duration: int = Field(0, description="Resync duration (ms)")


class ResyncResponse(ApiModel):
    stopped: list[StoppedChannel] = Field(default_factory=list)
    registered: list[RegisteredChannel] = Field(default_factory=list)
    failed: list[ResyncFailure] = Field(default_factory=list)
    summary: ResyncSummary = Field(default_factory=ResyncSummary)
    reason: Optional[str] = None


# Status

class ChannelStatus(ApiModel):
    channel_id: str = Field(..., alias="channelId")
    scope: str = Field(...)
    resource_handle: str = Field(..., alias="resourceHandle")
    expiration: int = Field(..., description="Expiry (Unix millis)")
    expires_in: int = Field(..., alias="expiresIn", description="Milliseconds until expiry")
    expires_in_human: str = Field(..., alias="expiresInHuman")
    status: str = Field(..., description="active, expiringSoon or expired")
    registered_at: int = Field(..., alias="registeredAt")
    last_updated_at: int = Field(..., alias="lastUpdatedAt")


class StatusSummary(ApiModel):
    total: int = 0
    active: int = 0
    expiring_soon: int = Field(0, alias="expiringSoon")
    expired: int = 0


class HealthBlock(ApiModel):
    store_connected: bool = Field(..., alias="storeConnected")
    provider_connected: bool = Field(..., alias="providerConnected")
    last_renewal: Optional[int] = Field(None, alias="lastRenewal", description="Last renewal run (Unix millis)")
    next_renewal: Optional[int] = Field(None, alias="nextRenewal", description="Next scheduled run (Unix millis)")


class StatusResponse(ApiModel):
    channels: list[ChannelStatus] = Field(default_factory=list)
    summary: StatusSummary = Field(default_factory=StatusSummary)
    health: HealthBlock
    source: str = Field(..., description="store or registry")


# Mappings / health

class ReloadMappingsResponse(ApiModel):
    status: str
    mapping_count: int = Field(..., alias="mappingCount")


class MappingHealth(ApiModel):
    mapping_count: int = Field(..., alias="mappingCount")
    last_loaded_at: Optional[int] = Field(None, alias="lastLoadedAt")
    load_errors: int = Field(0, alias="loadErrors")


class HealthResponse(ApiModel):
    status: str
    mapping: MappingHealth
    channels: int
    dedup_entries: int = Field(..., alias="dedupEntries")


class ErrorResponse(ApiModel):
    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable message")
