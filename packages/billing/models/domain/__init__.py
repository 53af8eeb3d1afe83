"""Domain models for billing."""

from packages.billing.models.domain.enums import (
    AccessDenialReason,
    ActivationDecision,
    FeatureType,
    LifecycleAction,
    PlanType,
    QuotaPeriod,
    SubscriptionStatus,
)
from packages.billing.models.domain.lifecycle import BillingPeriod, LifecycleEvent
from packages.billing.models.domain.plans import Plan, QuotaDef, UNLIMITED
from packages.billing.models.domain.subscription import (
    ActivationOutcome,
    LifecycleEventResult,
    Subscription,
    SubscriptionUpsertModel,
)
from packages.billing.models.domain.usage import (
    CommitResult,
    PeriodKey,
    SubscriptionSummary,
    UsageRecord,
    UsageStatus,
)

__all__ = [
    # Enums
    "AccessDenialReason",
    "ActivationDecision",
    "FeatureType",
    "LifecycleAction",
    "PlanType",
    "QuotaPeriod",
    "SubscriptionStatus",
    # Plans
    "Plan",
    "QuotaDef",
    "UNLIMITED",
    # Lifecycle
    "BillingPeriod",
    "LifecycleEvent",
    # Subscription
    "ActivationOutcome",
    "LifecycleEventResult",
    "Subscription",
    "SubscriptionUpsertModel",
    # Usage
    "CommitResult",
    "PeriodKey",
    "SubscriptionSummary",
    "UsageRecord",
    "UsageStatus",
]
