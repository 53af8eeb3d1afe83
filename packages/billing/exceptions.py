"""
Billing error taxonomy.

Quota evaluation returns denials as values; these exceptions are for callers
that want to gate an operation and stop (require_feature, ensure_can_use).
Each carries the denial reason and, when known, the usage and limit so the
API layer can render a structured body.
"""

from typing import Optional, Union
from fastapi import status

from common.core.exceptions import AppException
from packages.billing.models.domain.enums import AccessDenialReason, FeatureType


class BillingError(AppException):
    """Base class for entitlement denials."""

    reason: AccessDenialReason
    status_code: int = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        message: str,
        feature_type: Optional[Union[FeatureType, str]] = None,
        usage: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.feature_type = feature_type
        self.usage = usage
        self.limit = limit

    def to_dict(self) -> dict:
        body = {"error": self.reason.value, "message": self.message}
        if self.feature_type is not None:
            body["feature_type"] = str(
                getattr(self.feature_type, "value", self.feature_type)
            )
        if self.usage is not None:
            body["usage"] = self.usage
        if self.limit is not None:
            body["limit"] = self.limit
            body["remaining"] = max(0, self.limit - (self.usage or 0))
        return body


class NoSubscriptionError(BillingError):
    reason = AccessDenialReason.NO_SUBSCRIPTION
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class SubscriptionExpiredError(BillingError):
    reason = AccessDenialReason.SUBSCRIPTION_EXPIRED
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class InvalidPlanError(BillingError):
    reason = AccessDenialReason.INVALID_PLAN


class UnknownFeatureError(BillingError):
    reason = AccessDenialReason.UNKNOWN_FEATURE


class UsageLimitReachedError(BillingError):
    reason = AccessDenialReason.USAGE_LIMIT_REACHED
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


_ERRORS_BY_REASON = {
    cls.reason: cls
    for cls in (
        NoSubscriptionError,
        SubscriptionExpiredError,
        InvalidPlanError,
        UnknownFeatureError,
        UsageLimitReachedError,
    )
}


def error_for_reason(reason: AccessDenialReason) -> type[BillingError]:
    return _ERRORS_BY_REASON[reason]
