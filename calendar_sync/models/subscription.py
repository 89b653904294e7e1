"""Watch channel subscription models.

Includes subscription status, the provider's registration response and the
durable record shape (camelCase document fields).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a watch channel."""

    ACTIVE = "active"  # Registered and expected to deliver notifications
    EXPIRED = "expired"  # Expiry passed before renewal
    STOPPED = "stopped"  # Stopped by an operator or a resync


class WatchRegistration(BaseModel):
    """Result of registering a watch channel with the provider."""

    id: str = Field(..., min_length=1, description="Channel id we asked the provider to use")
    resource_handle: str = Field(..., min_length=1, description="Provider resource id, needed to stop the channel")
    expires_at: int = Field(..., description="Provider-imposed expiry (Unix millis)")


class Subscription(BaseModel):
    """A watch channel registered against one calendar."""

    id: str = Field(..., description="Watch channel id")
    resource_handle: str = Field(..., alias="resourceHandle", description="Provider resource id")
    scope: str = Field(..., description="Monitored calendar id")
    expires_at: int = Field(..., alias="expiresAt", description="Expiry (Unix millis)")
    registered_at: int = Field(..., alias="registeredAt", description="Registration time (Unix millis)")
    last_updated_at: int = Field(..., alias="lastUpdatedAt", description="Last write time (Unix millis)")
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE, description="Lifecycle status")

    @classmethod
    def from_registration(
        cls, registration: WatchRegistration, scope: str, now_millis: int
    ) -> "Subscription":
        """Build an active subscription from a fresh provider registration.

        Raises:
            ValueError: If the registration already expired
        """
        if registration.expires_at <= now_millis:
            raise ValueError(
                f"watch channel {registration.id} expires at {registration.expires_at}, "
                f"which is not after now ({now_millis})"
            )
        return cls(
            id=registration.id,
            resource_handle=registration.resource_handle,
            scope=scope,
            expires_at=registration.expires_at,
            registered_at=now_millis,
            last_updated_at=now_millis,
            status=SubscriptionStatus.ACTIVE,
        )

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Subscription":
        """Parse a stored document (camelCase fields)."""
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored document shape (camelCase fields)."""
        return self.model_dump(by_alias=True, mode="json")

    def is_expired(self, now_millis: int) -> bool:
        return self.expires_at < now_millis

    def expires_in(self, now_millis: int) -> int:
        """Milliseconds until expiry, negative once expired."""
        return self.expires_at - now_millis

    def is_stale_active(self, now_millis: int) -> bool:
        """Active in the record but already past its expiry."""
        return self.status == SubscriptionStatus.ACTIVE and self.is_expired(now_millis)

    def set_status(self, new_status: SubscriptionStatus, now_millis: int, reason: Optional[str] = None) -> None:
        """Change status and log the transition.

        Args:
            new_status: Status to transition to
            now_millis: Time of the change
            reason: Reason for the change
        """
        from calendar_sync.state_logger import log_subscription_status_change

        old_status = self.status
        if old_status != new_status:
            self.status = new_status
            self.last_updated_at = now_millis
            log_subscription_status_change(
                subscription_id=self.id,
                scope=self.scope,
                old_status=old_status.value,
                new_status=new_status.value,
                reason=reason,
                expires_at=self.expires_at,
            )

    def extend_expiry(self, new_expires_at: int, now_millis: int, reason: str) -> None:
        """Move expiry forward and log the change.

        Raises:
            ValueError: If the new expiry is not in the future
        """
        from calendar_sync.state_logger import log_expiry_change

        if new_expires_at <= now_millis:
            raise ValueError(f"new expiry {new_expires_at} is not after now ({now_millis})")

        old_expires_at = self.expires_at
        self.expires_at = new_expires_at
        self.last_updated_at = now_millis
        self.status = SubscriptionStatus.ACTIVE
        log_expiry_change(
            subscription_id=self.id,
            scope=self.scope,
            old_expires_at=old_expires_at,
            new_expires_at=new_expires_at,
            reason=reason,
        )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "id": "calendar-sync-alice-example-com-1700000000000",
                "resourceHandle": "ret08u3rv24htgh289g",
                "scope": "alice@example.com",
                "expiresAt": 1700604800000,
                "registeredAt": 1700000000000,
                "lastUpdatedAt": 1700000000000,
                "status": "active",
            }
        }
