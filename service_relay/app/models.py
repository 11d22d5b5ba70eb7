"""
Data models for the event relay.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Credential(BaseModel):
    """Opaque session token issued by the upstream auth flow."""

    token: str = Field(min_length=1)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now


class Configuration(BaseModel):
    """Locally stored relay settings."""

    enabled: bool = False
    filter_id: str = Field(default="", alias="filterId")
    credential: Optional[Credential] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ConfigurationUpdate(BaseModel):
    """Partial settings write; only fields that are set are applied."""

    enabled: Optional[bool] = None
    filter_id: Optional[str] = Field(default=None, alias="filterId")
    credential: Optional[Credential] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ConnectionState(str, Enum):
    """Upstream connection states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class InboundEvent:
    """One named event pushed by the upstream."""
    kind: str
    payload: Any = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: Optional[str] = None


@dataclass
class MatchedEvent:
    """An inbound pause event whose identifier equals the configured filter."""
    event: InboundEvent
    filter_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.event.kind,
            "filterId": self.filter_id,
            "eventId": self.event.event_id,
            "receivedAt": self.event.received_at.isoformat(),
            "data": self.event.payload,
        }


@dataclass
class DeliveryResult:
    """Result of one delivery attempt to one target."""
    target_id: str
    success: bool
    error: Optional[str] = None
    duration_ms: float = 0.0
    response_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetId": self.target_id,
            "success": self.success,
            "error": self.error,
            "durationMs": self.duration_ms,
        }


class StatusReport(BaseModel):
    """Response to a status query."""

    connected: bool
    retry_attempts: int = Field(alias="retryAttempts")
    state: ConnectionState
    max_attempts: int = Field(alias="maxAttempts")
    last_error: Optional[str] = Field(default=None, alias="lastError")

    model_config = ConfigDict(populate_by_name=True)


class TargetRegistration(BaseModel):
    """Request body for registering an HTTP consumer endpoint."""

    url: str = Field(min_length=1)
    origin: str = Field(min_length=1)
    target_id: Optional[str] = Field(default=None, alias="targetId")

    model_config = ConfigDict(populate_by_name=True)
