"""
Domain models for subscription lifecycle: billing periods and inbound events.
"""

from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from common.core.clock import ensure_utc
from packages.billing.models.domain.enums import LifecycleAction, PlanType


def normalize_account_id(value: str) -> str:
    """Account ids are emails from the identity provider; compare case-insensitively."""
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("account_id must not be empty")
    return normalized


class BillingPeriod(BaseModel):
    """
    Subscription validity window [start, end).

    Values are normalized to UTC and whole seconds so that the same period
    delivered by a webhook, a re-auth flow, or read back from storage compares
    equal.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, v: datetime) -> datetime:
        return ensure_utc(v).replace(microsecond=0)

    @model_validator(mode="after")
    def _check_order(self) -> "BillingPeriod":
        if self.end <= self.start:
            raise ValueError("period end must be after period start")
        return self

    @classmethod
    def starting_at(cls, start: datetime, days: int) -> "BillingPeriod":
        return cls(start=start, end=ensure_utc(start) + timedelta(days=days))

    def starts_after(self, other: "BillingPeriod") -> bool:
        return self.start > other.start

    def starts_before(self, other: "BillingPeriod") -> bool:
        return self.start < other.start


class LifecycleEvent(BaseModel):
    """
    Payment-provider lifecycle event, already authenticated by the caller.

    Not persisted. Applying the same event more than once has the effect of
    applying it once. An activation without period_start has an unknown
    start and may still carry the period end.
    """

    action: LifecycleAction
    account_id: str
    external_membership_id: Optional[str] = None
    external_product_id: Optional[str] = None
    plan_type: Optional[PlanType] = None  # resolved from external_product_id when absent
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @field_validator("account_id")
    @classmethod
    def _normalize_account(cls, v: str) -> str:
        return normalize_account_id(v)

    @model_validator(mode="after")
    def _check_activation_period(self) -> "LifecycleEvent":
        if self.action.is_activation():
            if self.period_start is not None and self.period_end is None:
                raise ValueError(
                    f"{self.action.value} events with period_start require period_end"
                )
        return self

    @property
    def period(self) -> Optional[BillingPeriod]:
        if self.period_start is None or self.period_end is None:
            return None
        return BillingPeriod(start=self.period_start, end=self.period_end)
