"""Pydantic models for settings, domain objects, and API payloads."""

# Settings
from .settings import LogFormat, MappingSource, Settings, StopMode

# Domain models
from .subscription import Subscription, SubscriptionStatus, WatchRegistration
from .mapping import IdentityMapping, MappingsFile

# API models
from .api import (
    ChannelStatus,
    ErrorResponse,
    FailedChannel,
    HealthBlock,
    HealthResponse,
    MappingHealth,
    RegisteredChannel,
    ReloadMappingsResponse,
    RenewalRequest,
    RenewalResponse,
    RenewalSummary,
    RenewedChannel,
    ResyncFailure,
    ResyncRequest,
    ResyncResponse,
    ResyncSummary,
    SkippedChannel,
    StatusResponse,
    StatusSummary,
    StoppedChannel,
    WebhookAck,
)

__all__ = [
    # Settings
    "Settings",
    "MappingSource",
    "StopMode",
    "LogFormat",
    # Domain
    "Subscription",
    "SubscriptionStatus",
    "WatchRegistration",
    "IdentityMapping",
    "MappingsFile",
    # API
    "WebhookAck",
    "RenewalRequest",
    "RenewalResponse",
    "RenewalSummary",
    "RenewedChannel",
    "SkippedChannel",
    "FailedChannel",
    "ResyncRequest",
    "ResyncResponse",
    "ResyncSummary",
    "StoppedChannel",
    "RegisteredChannel",
    "ResyncFailure",
    "StatusResponse",
    "StatusSummary",
    "ChannelStatus",
    "HealthBlock",
    "ReloadMappingsResponse",
    "HealthResponse",
    "MappingHealth",
    "ErrorResponse",
]
