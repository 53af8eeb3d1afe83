"""
Domain models for subscriptions.
"""

import math
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator

from common.core.clock import ensure_utc, utc_now
from packages.billing.models.domain.enums import (
    ActivationDecision,
    LifecycleAction,
    PlanType,
    SubscriptionStatus,
)
from packages.billing.models.domain.lifecycle import BillingPeriod


class Subscription(BaseModel):
    """
    Account subscription domain model.

    One row per account. Represents:
    - Plan (Starter/Pro)
    - Status (Active/Cancelled/Expired)
    - Validity window [started_at, ends_at)
    - External membership/product ids from the payment provider
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: str

    plan_type: PlanType
    status: SubscriptionStatus

    # Validity window
    started_at: datetime
    ends_at: datetime

    # Payment provider ids
    external_membership_id: Optional[str] = None
    external_product_id: Optional[str] = None

    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    @field_validator(
        "started_at",
        "ends_at",
        "cancelled_at",
        "expired_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(start=self.started_at, end=self.ends_at)

    def is_within_period(self, now: Optional[datetime] = None) -> bool:
        return self.ends_at > ensure_utc(now or utc_now())

    def has_access(self, now: Optional[datetime] = None) -> bool:
        """
        Active status AND a future end date.

        Status alone is not trusted: the expiry sweep may not have run yet.
        """
        return self.status == SubscriptionStatus.ACTIVE and self.is_within_period(now)

    def days_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole days left in the period, rounded up; 0 once ended."""
        seconds = (self.ends_at - ensure_utc(now or utc_now())).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def is_ending_soon(self, threshold_days: int = 3, now: Optional[datetime] = None) -> bool:
        if not self.has_access(now):
            return False
        days = self.days_remaining(now)
        return 0 < days <= threshold_days


class SubscriptionUpsertModel(BaseModel):
    """Full row written by the lifecycle coordinator; replaces the row keyed by account_id."""

    account_id: str
    plan_type: PlanType
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    started_at: datetime
    ends_at: datetime
    external_membership_id: Optional[str] = None
    external_product_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None


class ActivationOutcome(BaseModel):
    """Resulting subscription plus the decision taken, for audit and API responses."""

    subscription: Subscription
    decision: ActivationDecision
    usage_reset: bool


class LifecycleEventResult(BaseModel):
    """What applying one lifecycle event did."""

    action: LifecycleAction
    decision: Optional[ActivationDecision] = None  # activations only
    usage_reset: bool = False
    subscription: Optional[Subscription] = None
