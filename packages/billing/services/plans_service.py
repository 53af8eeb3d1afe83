"""Plan catalog: immutable plan definitions and plan information for pricing pages."""

from types import MappingProxyType
from typing import Mapping, Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.models.domain.enums import FeatureType, PlanType, QuotaPeriod
from packages.billing.models.domain.plans import (
    Plan,
    PlanInfo,
    PlansResponse,
    QuotaDef,
    UNLIMITED,
)
from packages.billing.models.domain.usage import feature_label

logger = get_logger(__name__)


def _build_catalog() -> Mapping[PlanType, Plan]:
    starter = Plan(
        id=PlanType.STARTER,
        name="Starter",
        price_cents=799,
        external_product_ids=tuple(settings.starter_product_ids),
        features={
            FeatureType.DRAFT_REPLY: QuotaDef(limit=30, period=QuotaPeriod.MONTHLY),
            FeatureType.SCHEDULE_CALL: QuotaDef(limit=30, period=QuotaPeriod.MONTHLY),
            FeatureType.AI_NOTES: QuotaDef(limit=50, period=QuotaPeriod.MONTHLY),
            FeatureType.SIFT_ANALYSIS: QuotaDef(limit=10, period=QuotaPeriod.DAILY),
            FeatureType.ARCUS_AI: QuotaDef(limit=20, period=QuotaPeriod.DAILY),
            FeatureType.EMAIL_SUMMARY: QuotaDef(limit=30, period=QuotaPeriod.DAILY),
        },
    )
    pro = Plan(
        id=PlanType.PRO,
        name="Pro",
        price_cents=2999,
        external_product_ids=tuple(settings.pro_product_ids),
        features={
            feature: QuotaDef(limit=UNLIMITED, period=quota.period)
            for feature, quota in starter.features.items()
        },
    )
    return MappingProxyType({starter.id: starter, pro.id: pro})


PLAN_CATALOG: Mapping[PlanType, Plan] = _build_catalog()


class PlansService:
    """Read-only access to the plan catalog."""

    def __init__(self, catalog: Optional[Mapping[PlanType, Plan]] = None):
        self._catalog = PLAN_CATALOG if catalog is None else catalog

    def resolve(self, plan_type: Optional[PlanType]) -> Optional[Plan]:
        """Plan definition, or None when the plan id has no entry (incl. NONE)."""
        if plan_type is None:
            return None
        return self._catalog.get(plan_type)

    def resolve_by_external_product_id(
        self, external_product_id: Optional[str]
    ) -> Optional[Plan]:
        if not external_product_id:
            return None
        for plan in self._catalog.values():
            if external_product_id in plan.external_product_ids:
                return plan
        logger.warning(
            f"No plan for external product {external_product_id}",
            extra={"external_product_id": external_product_id},
        )
        return None

    @trace_span
    async def get_all_plans(self) -> PlansResponse:
        """Get all available plans with pricing and limits."""
        return PlansResponse(
            plans=[self._build_plan_info(plan) for plan in self._catalog.values()]
        )

    def _build_plan_info(self, plan: Plan) -> PlanInfo:
        """Build PlanInfo for a plan."""
        price_dollars = plan.price_cents / 100
        if plan.price_cents == 0:
            price_formatted = "$0"
        elif price_dollars == int(price_dollars):
            price_formatted = f"${int(price_dollars)}"
        else:
            price_formatted = f"${price_dollars:.2f}"

        return PlanInfo(
            plan_type=plan.id,
            name=plan.name,
            price_cents=plan.price_cents,
            price_formatted=price_formatted,
            billing_period="month",
            limits=dict(plan.features),
            features=self._build_features_list(plan),
        )

    def _build_features_list(self, plan: Plan) -> list[str]:
        """Build human-readable features list from limits."""
        features = []
        for feature_type, quota in plan.features.items():
            label = feature_label(feature_type)
            window = "day" if quota.period == QuotaPeriod.DAILY else "month"
            if quota.is_unlimited:
                features.append(f"Unlimited {label}")
            elif quota.limit > 0:
                features.append(f"{quota.limit:,} {label} per {window}")
        return features
