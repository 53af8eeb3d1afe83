"""
Billing enums - strongly typed enumerations for subscription, feature and usage states.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle.

    Flow: active -> cancelled | expired; cancelled/expired -> active only
    through a fresh activation.
    """

    ACTIVE = "active"  # Paid and inside its validity window
    CANCELLED = "cancelled"  # Cancelled by the user or the payment provider
    EXPIRED = "expired"  # Validity window passed (expiry sweep)

    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


class PlanType(str, Enum):
    """Subscription plans. NONE is the placeholder for "no paid plan"."""

    NONE = "none"
    STARTER = "starter"  # $7.99/mo
    PRO = "pro"  # $29.99/mo - everything unlimited


class FeatureType(str, Enum):
    """Billable features metered by the quota engine."""

    DRAFT_REPLY = "draft_reply"
    SCHEDULE_CALL = "schedule_call"
    AI_NOTES = "ai_notes"
    SIFT_ANALYSIS = "sift_analysis"
    ARCUS_AI = "arcus_ai"
    EMAIL_SUMMARY = "email_summary"


class QuotaPeriod(str, Enum):
    """Window a feature quota applies to."""

    DAILY = "daily"  # Calendar day (UTC)
    MONTHLY = "monthly"  # Current subscription period

    def display_name(self) -> str:
        return "today" if self == QuotaPeriod.DAILY else "this billing period"


class AccessDenialReason(str, Enum):
    """Why an evaluation or commit was refused."""

    NO_SUBSCRIPTION = "no_subscription"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    INVALID_PLAN = "invalid_plan"
    UNKNOWN_FEATURE = "unknown_feature"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


class LifecycleAction(str, Enum):
    """Inbound lifecycle event kinds."""

    ACTIVATED = "activated"
    RENEWED = "renewed"
    INVALIDATED = "invalidated"
    CANCELLED = "cancelled"

    def is_activation(self) -> bool:
        return self in (LifecycleAction.ACTIVATED, LifecycleAction.RENEWED)


class ActivationDecision(str, Enum):
    """
    Outcome of comparing an activation request against the stored subscription.

    Only NEW_PERIOD resets the usage ledger.
    """

    NEW_PERIOD = "new_period"  # First purchase, plan/membership change, or later period
    SAME_PERIOD = "same_period"  # Redelivery / re-auth for the period already stored
    STALE_PERIOD = "stale_period"  # Older period than the stored one; ignored
