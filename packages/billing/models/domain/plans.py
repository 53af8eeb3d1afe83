"""Domain models for billing plans."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from packages.billing.models.domain.enums import FeatureType, PlanType, QuotaPeriod

UNLIMITED = -1


class QuotaDef(BaseModel):
    """Quota for one feature on one plan. limit=-1 means unlimited, 0 means not included."""

    model_config = ConfigDict(frozen=True)

    limit: int = Field(..., ge=UNLIMITED)
    period: QuotaPeriod

    @property
    def is_unlimited(self) -> bool:
        return self.limit == UNLIMITED


class Plan(BaseModel):
    """Immutable plan definition: price plus per-feature quotas."""

    model_config = ConfigDict(frozen=True)

    id: PlanType
    name: str
    price_cents: int
    external_product_ids: tuple[str, ...] = ()
    features: dict[FeatureType, QuotaDef]

    def quota_for(self, feature_type: FeatureType) -> Optional[QuotaDef]:
        return self.features.get(feature_type)


class PlanInfo(BaseModel):
    """Public plan information for pricing pages."""

    plan_type: PlanType
    name: str
    price_cents: int
    price_formatted: str
    billing_period: str
    limits: dict[FeatureType, QuotaDef]
    features: list[str]


class PlansResponse(BaseModel):
    """Response model for plans endpoint."""

    plans: list[PlanInfo]
