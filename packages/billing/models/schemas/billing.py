"""
API schemas for billing operations.

Request and response models for billing endpoints.
"""

from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field

from common.core.config import settings
from packages.billing.models.domain.enums import (
    ActivationDecision,
    LifecycleAction,
    PlanType,
    SubscriptionStatus,
)
from packages.billing.models.domain.lifecycle import BillingPeriod, LifecycleEvent
from packages.billing.models.domain.subscription import (
    ActivationOutcome,
    LifecycleEventResult,
    Subscription,
)
from packages.billing.models.domain.usage import UsageStatus


def _period(start: datetime, end: Optional[datetime]) -> BillingPeriod:
    if end is None:
        return BillingPeriod.starting_at(start, settings.default_period_days)
    return BillingPeriod(start=start, end=end)


# ============================================================================
# Subscription Schemas
# ============================================================================


class SubscriptionResponse(BaseModel):
    """Current subscription state."""

    account_id: str
    plan_type: PlanType
    status: SubscriptionStatus
    has_access: bool
    started_at: datetime
    ends_at: datetime
    days_remaining: int
    external_membership_id: Optional[str] = None
    external_product_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    updated_at: datetime

    @classmethod
    def from_domain(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            account_id=subscription.account_id,
            plan_type=subscription.plan_type,
            status=subscription.status,
            has_access=subscription.has_access(),
            started_at=subscription.started_at,
            ends_at=subscription.ends_at,
            days_remaining=subscription.days_remaining(),
            external_membership_id=subscription.external_membership_id,
            external_product_id=subscription.external_product_id,
            cancelled_at=subscription.cancelled_at,
            expired_at=subscription.expired_at,
            updated_at=subscription.updated_at,
        )


class ActivateSubscriptionRequest(BaseModel):
    """Request to activate or renew a subscription for a period."""

    plan_type: PlanType
    period_start: datetime
    period_end: Optional[datetime] = Field(
        default=None,
        description="Defaults to period_start plus the default period length.",
    )
    external_membership_id: Optional[str] = Field(
        default=None,
        description="Omit for re-authentication flows; treated as unchanged.",
    )
    external_product_id: Optional[str] = None
    event_kind: Optional[LifecycleAction] = None

    @property
    def period(self) -> BillingPeriod:
        return _period(self.period_start, self.period_end)


class ActivationResponse(BaseModel):
    """Resulting subscription and the activation decision taken."""

    decision: ActivationDecision
    usage_reset: bool
    subscription: SubscriptionResponse

    @classmethod
    def from_outcome(cls, outcome: ActivationOutcome) -> "ActivationResponse":
        return cls(
            decision=outcome.decision,
            usage_reset=outcome.usage_reset,
            subscription=SubscriptionResponse.from_domain(outcome.subscription),
        )


class CancelSubscriptionResponse(BaseModel):
    """Response after cancelling a subscription."""

    message: str
    subscription: SubscriptionResponse


# ============================================================================
# Lifecycle Event Schemas
# ============================================================================


class LifecycleEventRequest(BaseModel):
    """Authenticated lifecycle event from the payment integration."""

    action: LifecycleAction
    account_id: str
    external_membership_id: Optional[str] = None
    external_product_id: Optional[str] = None
    plan_type: Optional[PlanType] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    def to_event(self) -> LifecycleEvent:
        if self.action.is_activation() and self.period_start is None:
            raise ValueError(f"{self.action.value} events require period_start")
        period_end = self.period_end
        if self.action.is_activation() and self.period_start and period_end is None:
            period_end = self.period_start + timedelta(
                days=settings.default_period_days
            )
        return LifecycleEvent(
            action=self.action,
            account_id=self.account_id,
            external_membership_id=self.external_membership_id,
            external_product_id=self.external_product_id,
            plan_type=self.plan_type,
            period_start=self.period_start,
            period_end=period_end,
        )


class LifecycleEventResponse(BaseModel):
    """What applying the event did."""

    action: LifecycleAction
    decision: Optional[ActivationDecision] = None
    usage_reset: bool = False
    subscription: Optional[SubscriptionResponse] = None

    @classmethod
    def from_result(cls, result: LifecycleEventResult) -> "LifecycleEventResponse":
        return cls(
            action=result.action,
            decision=result.decision,
            usage_reset=result.usage_reset,
            subscription=SubscriptionResponse.from_domain(result.subscription)
            if result.subscription
            else None,
        )


# ============================================================================
# Sweep Schemas
# ============================================================================


class SweepRequest(BaseModel):
    """Optional sweep time; defaults to now."""

    now: Optional[datetime] = None


class SweepResponse(BaseModel):
    expired_count: int


# ============================================================================
# Usage Schemas
# ============================================================================


class UsageStatusResponse(UsageStatus):
    """Usage status plus a user-facing message."""

    message: Optional[str] = None

    @classmethod
    def from_status(cls, status: UsageStatus) -> "UsageStatusResponse":
        return cls(**status.model_dump(), message=status.get_user_message())
