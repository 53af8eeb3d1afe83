"""
Domain models for usage tracking and quotas.
"""

from datetime import date, datetime
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, model_validator

from common.core.clock import ensure_utc, utc_now, utc_today
from packages.billing.models.domain.enums import (
    AccessDenialReason,
    FeatureType,
    PlanType,
    QuotaPeriod,
)
from packages.billing.models.domain.subscription import Subscription

_FEATURE_LABELS = {
    FeatureType.DRAFT_REPLY: "AI draft replies",
    FeatureType.SCHEDULE_CALL: "call schedules",
    FeatureType.AI_NOTES: "AI notes",
    FeatureType.SIFT_ANALYSIS: "Sift analyses",
    FeatureType.ARCUS_AI: "Arcus AI requests",
    FeatureType.EMAIL_SUMMARY: "email summaries",
}


def feature_label(feature_type: Union[FeatureType, str]) -> str:
    if isinstance(feature_type, FeatureType):
        return _FEATURE_LABELS[feature_type]
    return str(feature_type).replace("_", " ")


class PeriodKey(BaseModel):
    """
    Ledger key for one quota window.

    Daily quotas use the current UTC date for both bounds; monthly quotas use
    the subscription's validity window. Rows are matched on start only.
    """

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> "PeriodKey":
        if self.end < self.start:
            raise ValueError("period key end must not precede start")
        return self

    @classmethod
    def for_quota(
        cls,
        period: QuotaPeriod,
        subscription: Subscription,
        now: Optional[datetime] = None,
    ) -> "PeriodKey":
        if period == QuotaPeriod.DAILY:
            today = utc_today(now)
            return cls(start=today, end=today)
        return cls(
            start=subscription.started_at.date(),
            end=subscription.ends_at.date(),
        )


class UsageRecord(BaseModel):
    """Counter for one (account, feature, period) key."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: str
    feature_type: FeatureType
    usage_count: int
    period_start: date
    period_end: date
    last_reset_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UsageStatus(BaseModel):
    """
    Result of a quota evaluation.

    Used to decide whether an invocation is allowed and to give the user
    feedback about their limits.
    """

    feature_type: Union[FeatureType, str]  # str only for unknown features
    plan_type: PlanType = PlanType.NONE
    usage: int = 0
    limit: int = 0
    remaining: int = 0  # -1 when unlimited
    has_access: bool
    reason: Optional[AccessDenialReason] = None
    is_unlimited: bool = False

    # For frontend display
    period: Optional[QuotaPeriod] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    percentage_used: float = 0.0
    warning_threshold_reached: bool = False

    @classmethod
    def denied(
        cls,
        feature_type: Union[FeatureType, str],
        reason: AccessDenialReason,
        plan_type: PlanType = PlanType.NONE,
    ) -> "UsageStatus":
        return cls(
            feature_type=feature_type,
            plan_type=plan_type,
            has_access=False,
            reason=reason,
        )

    def get_user_message(self) -> Optional[str]:
        """Get user-friendly message about quota status."""
        label = feature_label(self.feature_type)

        if self.reason == AccessDenialReason.NO_SUBSCRIPTION:
            return f"A subscription is required to use {label}."
        if self.reason == AccessDenialReason.SUBSCRIPTION_EXPIRED:
            return "Your subscription has expired. Renew to continue."
        if self.reason in (
            AccessDenialReason.INVALID_PLAN,
            AccessDenialReason.UNKNOWN_FEATURE,
        ):
            return f"{label.capitalize()} are not available on your plan."

        if self.is_unlimited:
            return None

        window = self.period.display_name() if self.period else "this period"
        if not self.has_access:
            return (
                f"You've used all {self.limit:,} {label} for {window}. "
                f"Upgrade to continue."
            )

        if self.warning_threshold_reached:
            return (
                f"You've used {self.percentage_used:.0f}% of your {label} "
                f"for {window} ({self.usage:,}/{self.limit:,})."
            )

        return None


class CommitResult(BaseModel):
    """Outcome of committing one unit of usage."""

    success: bool
    feature_type: Union[FeatureType, str]
    new_usage: int = 0
    limit: int = 0
    remaining: int = 0
    is_unlimited: bool = False
    error: Optional[AccessDenialReason] = None


class SubscriptionSummary(BaseModel):
    """Subscription plus per-feature usage for the account dashboard."""

    account_id: str
    has_active_subscription: bool
    plan_type: PlanType = PlanType.NONE
    status: Optional[str] = None
    started_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    days_remaining: int = 0
    is_ending_soon: bool = False
    features: dict[FeatureType, UsageStatus] = {}

    @classmethod
    def empty(cls, account_id: str) -> "SubscriptionSummary":
        return cls(account_id=account_id, has_active_subscription=False)

    @classmethod
    def for_subscription(
        cls,
        subscription: Subscription,
        features: dict[FeatureType, UsageStatus],
        ending_soon_days: int = 3,
        now: Optional[datetime] = None,
    ) -> "SubscriptionSummary":
        now = ensure_utc(now or utc_now())
        return cls(
            account_id=subscription.account_id,
            has_active_subscription=subscription.has_access(now),
            plan_type=subscription.plan_type,
            status=subscription.status.value,
            started_at=subscription.started_at,
            ends_at=subscription.ends_at,
            days_remaining=subscription.days_remaining(now),
            is_ending_soon=subscription.is_ending_soon(ending_soon_days, now),
            features=features,
        )
