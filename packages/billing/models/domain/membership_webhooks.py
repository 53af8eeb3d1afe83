"""
Domain models for payment-provider membership webhook payloads.

Strongly-typed Pydantic models for membership lifecycle webhooks. Signature
verification happens upstream; these models only validate shape.
"""

from datetime import datetime, timedelta
from typing import Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field

from common.core.clock import from_unix_seconds
from packages.billing.models.domain.enums import LifecycleAction


class MembershipWebhookType(str, Enum):
    """Membership webhook actions we care about."""

    WENT_VALID = "membership.went_valid"
    RENEWED = "membership.renewed"
    WENT_INVALID = "membership.went_invalid"
    CANCELLED = "membership.cancelled"

    def to_lifecycle_action(self) -> LifecycleAction:
        return _ACTION_MAP[self]


_ACTION_MAP = {
    MembershipWebhookType.WENT_VALID: LifecycleAction.ACTIVATED,
    MembershipWebhookType.RENEWED: LifecycleAction.RENEWED,
    MembershipWebhookType.WENT_INVALID: LifecycleAction.INVALIDATED,
    MembershipWebhookType.CANCELLED: LifecycleAction.CANCELLED,
}


class MembershipUser(BaseModel):
    """Member identity. The email is the account id."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    email: Optional[str] = None


class MembershipProduct(BaseModel):
    """Purchased product."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None


class MembershipData(BaseModel):
    """Membership object. Timestamps are unix seconds."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    user: MembershipUser = Field(default_factory=MembershipUser)
    product: MembershipProduct = Field(default_factory=MembershipProduct)
    created_at: Optional[float] = None
    renewal_period_start: Optional[float] = None
    valid_until: Optional[float] = None
    expires_at: Optional[float] = None

    def period_start(self) -> Optional[datetime]:
        """Start of the current period, or None when the provider did not say."""
        return from_unix_seconds(self.renewal_period_start) or from_unix_seconds(
            self.created_at
        )

    def period_end(
        self, start: Optional[datetime], default_days: int
    ) -> Optional[datetime]:
        end = from_unix_seconds(self.valid_until) or from_unix_seconds(self.expires_at)
        if start is None:
            return end
        if end is None or end <= start:
            return start + timedelta(days=default_days)
        return end


class MembershipWebhookPayload(BaseModel):
    """Complete membership webhook payload."""

    model_config = ConfigDict(extra="ignore")

    action: str
    data: MembershipData

    @property
    def webhook_type(self) -> Optional[MembershipWebhookType]:
        try:
            return MembershipWebhookType(self.action)
        except ValueError:
            return None
