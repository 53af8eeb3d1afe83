"""
Service for quota evaluation and usage commits.

This is the critical service that prevents usage beyond subscription limits.
Evaluation is read-only and returns denials as values; only storage outages
propagate (as StorageUnavailableError), and callers must treat those as
deny-and-retry.
"""

from datetime import datetime
from typing import NamedTuple, Optional, Union

from common.core.clock import ensure_utc, utc_now
from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.context import readonly
from common.db.errors import storage_guard, with_storage_timeout
from packages.billing.exceptions import error_for_reason
from packages.billing.models.domain.enums import (
    AccessDenialReason,
    FeatureType,
    PlanType,
)
from packages.billing.models.domain.lifecycle import normalize_account_id
from packages.billing.models.domain.plans import QuotaDef
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import (
    CommitResult,
    PeriodKey,
    SubscriptionSummary,
    UsageStatus,
)
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.usage_repository import UsageRecordRepository
from packages.billing.services.plans_service import PlansService

logger = get_logger(__name__)


class _Entitlement(NamedTuple):
    feature_type: FeatureType
    plan_type: PlanType
    quota: QuotaDef
    period_key: PeriodKey


def _coerce_feature(feature_type: Union[FeatureType, str]) -> Optional[FeatureType]:
    if isinstance(feature_type, FeatureType):
        return feature_type
    try:
        return FeatureType(feature_type)
    except ValueError:
        return None


class QuotaService:
    """Service for quota evaluation and enforcement."""

    def __init__(self, plans_service: Optional[PlansService] = None):
        self.subscription_repo = SubscriptionRepository()
        self.usage_repo = UsageRecordRepository()
        self.plans_service = plans_service or PlansService()

    async def _load_subscription(self, account_id: str) -> Optional[Subscription]:
        async with storage_guard("load_subscription"):
            return await with_storage_timeout(
                self.subscription_repo.get_by_account_id(account_id)
            )

    def _resolve_entitlement(
        self,
        subscription: Optional[Subscription],
        feature_type: Union[FeatureType, str],
        now: datetime,
    ) -> Union[_Entitlement, UsageStatus]:
        """Walk the denial ladder; return the entitlement or the first denial."""
        if subscription is None:
            return UsageStatus.denied(feature_type, AccessDenialReason.NO_SUBSCRIPTION)

        # Status alone is not trusted; the sweep may not have run yet
        if not subscription.has_access(now):
            return UsageStatus.denied(
                feature_type,
                AccessDenialReason.SUBSCRIPTION_EXPIRED,
                plan_type=subscription.plan_type,
            )

        plan = self.plans_service.resolve(subscription.plan_type)
        if plan is None:
            return UsageStatus.denied(
                feature_type,
                AccessDenialReason.INVALID_PLAN,
                plan_type=subscription.plan_type,
            )

        feature = _coerce_feature(feature_type)
        quota = plan.quota_for(feature) if feature is not None else None
        if quota is None:
            return UsageStatus.denied(
                feature_type,
                AccessDenialReason.UNKNOWN_FEATURE,
                plan_type=subscription.plan_type,
            )

        return _Entitlement(
            feature_type=feature,
            plan_type=plan.id,
            quota=quota,
            period_key=PeriodKey.for_quota(quota.period, subscription, now),
        )

    def _build_status(self, entitlement: _Entitlement, usage: int) -> UsageStatus:
        quota = entitlement.quota
        if quota.is_unlimited:
            return UsageStatus(
                feature_type=entitlement.feature_type,
                plan_type=entitlement.plan_type,
                usage=usage,
                limit=quota.limit,
                remaining=-1,
                has_access=True,
                is_unlimited=True,
                period=quota.period,
                period_start=entitlement.period_key.start,
                period_end=entitlement.period_key.end,
            )

        remaining = max(0, quota.limit - usage)
        has_access = remaining > 0
        percentage_used = min(100.0, usage / quota.limit * 100) if quota.limit else 100.0

        return UsageStatus(
            feature_type=entitlement.feature_type,
            plan_type=entitlement.plan_type,
            usage=usage,
            limit=quota.limit,
            remaining=remaining,
            has_access=has_access,
            reason=None if has_access else AccessDenialReason.USAGE_LIMIT_REACHED,
            period=quota.period,
            period_start=entitlement.period_key.start,
            period_end=entitlement.period_key.end,
            percentage_used=percentage_used,
            warning_threshold_reached=percentage_used
            >= settings.usage_warning_threshold,
        )

    async def _evaluate_for(
        self,
        account_id: str,
        subscription: Optional[Subscription],
        feature_type: Union[FeatureType, str],
        now: datetime,
    ) -> UsageStatus:
        entitlement = self._resolve_entitlement(subscription, feature_type, now)
        if isinstance(entitlement, UsageStatus):
            return entitlement

        # Unlimited features never touch the ledger
        if entitlement.quota.is_unlimited:
            return self._build_status(entitlement, usage=0)

        async with storage_guard("evaluate"):
            record = await with_storage_timeout(
                self.usage_repo.get_by_key(
                    account_id, entitlement.feature_type, entitlement.period_key
                )
            )
        return self._build_status(entitlement, record.usage_count if record else 0)

    @trace_span
    @readonly
    async def evaluate(
        self,
        account_id: str,
        feature_type: Union[FeatureType, str],
        now: Optional[datetime] = None,
    ) -> UsageStatus:
        """
        Current access and remaining quota for one feature.

        Side-effect free. Never raises for missing entitlement; the denial is
        carried in reason.

        Raises:
            StorageUnavailableError: the store could not be reached in time
        """
        account_id = normalize_account_id(account_id)
        now = ensure_utc(now or utc_now())
        subscription = await self._load_subscription(account_id)
        return await self._evaluate_for(account_id, subscription, feature_type, now)

    @trace_span
    async def can_use(
        self,
        account_id: str,
        feature_type: Union[FeatureType, str],
        now: Optional[datetime] = None,
    ) -> bool:
        status = await self.evaluate(account_id, feature_type, now)
        return status.has_access

    @trace_span
    async def ensure_can_use(
        self,
        account_id: str,
        feature_type: Union[FeatureType, str],
        now: Optional[datetime] = None,
    ) -> UsageStatus:
        """
        Evaluate and raise the matching BillingError on denial.

        Raises:
            BillingError: subclass matching the denial reason
            StorageUnavailableError: the store could not be reached in time
        """
        account_id = normalize_account_id(account_id)
        status = await self.evaluate(account_id, feature_type, now)
        if not status.has_access:
            logger.warning(
                f"Account {account_id} denied {status.feature_type}: {status.reason.value}",
                extra={
                    "account_id": account_id,
                    "feature_type": str(status.feature_type),
                    "reason": status.reason.value,
                    "usage": status.usage,
                    "limit": status.limit,
                },
            )
            raise error_for_reason(status.reason)(
                status.get_user_message() or status.reason.value,
                feature_type=status.feature_type,
                usage=status.usage,
                limit=status.limit,
            )
        return status

    @trace_span
    async def commit(
        self,
        account_id: str,
        feature_type: Union[FeatureType, str],
        now: Optional[datetime] = None,
    ) -> CommitResult:
        """
        Record one unit of usage.

        Re-evaluates first; a denied evaluation returns a failed result with
        the current usage and limit. Limited features are incremented with a
        single atomic statement, conditional on staying under the limit when
        strict enforcement is on.

        Raises:
            StorageUnavailableError: the store could not be reached in time;
                the increment may be assumed not applied
        """
        account_id = normalize_account_id(account_id)
        now = ensure_utc(now or utc_now())
        subscription = await self._load_subscription(account_id)
        entitlement = self._resolve_entitlement(subscription, feature_type, now)

        if isinstance(entitlement, UsageStatus):
            return self._failed_commit(account_id, entitlement)

        if entitlement.quota.is_unlimited:
            return CommitResult(
                success=True,
                feature_type=entitlement.feature_type,
                limit=entitlement.quota.limit,
                remaining=-1,
                is_unlimited=True,
            )

        status = await self._evaluate_for(account_id, subscription, feature_type, now)
        if not status.has_access:
            return self._failed_commit(account_id, status)

        limit = entitlement.quota.limit if settings.quota_strict_enforcement else None
        async with storage_guard("commit"):
            new_usage = await with_storage_timeout(
                self.usage_repo.atomic_increment(
                    account_id,
                    entitlement.feature_type,
                    entitlement.period_key,
                    limit=limit,
                    now=now,
                )
            )

        if new_usage is None:
            # Lost the race for the last unit between evaluate and increment
            status = status.model_copy(
                update={
                    "usage": entitlement.quota.limit,
                    "remaining": 0,
                    "has_access": False,
                    "reason": AccessDenialReason.USAGE_LIMIT_REACHED,
                }
            )
            return self._failed_commit(account_id, status)

        logger.info(
            f"Committed {entitlement.feature_type.value} for {account_id}",
            extra={
                "account_id": account_id,
                "feature_type": entitlement.feature_type.value,
                "usage": new_usage,
                "limit": entitlement.quota.limit,
            },
        )
        return CommitResult(
            success=True,
            feature_type=entitlement.feature_type,
            new_usage=new_usage,
            limit=entitlement.quota.limit,
            remaining=max(0, entitlement.quota.limit - new_usage),
        )

    def _failed_commit(self, account_id: str, status: UsageStatus) -> CommitResult:
        logger.warning(
            f"Commit denied for {account_id}: {status.reason.value}",
            extra={
                "account_id": account_id,
                "feature_type": str(status.feature_type),
                "reason": status.reason.value,
                "usage": status.usage,
                "limit": status.limit,
            },
        )
        return CommitResult(
            success=False,
            feature_type=status.feature_type,
            new_usage=status.usage,
            limit=status.limit,
            remaining=status.remaining,
            error=status.reason,
        )

    @trace_span
    @readonly
    async def get_subscription_summary(
        self, account_id: str, now: Optional[datetime] = None
    ) -> SubscriptionSummary:
        """Subscription state plus the usage status of every feature."""
        account_id = normalize_account_id(account_id)
        now = ensure_utc(now or utc_now())
        subscription = await self._load_subscription(account_id)
        if subscription is None:
            return SubscriptionSummary.empty(account_id)

        features = {}
        for feature_type in FeatureType:
            features[feature_type] = await self._evaluate_for(
                account_id, subscription, feature_type, now
            )

        return SubscriptionSummary.for_subscription(subscription, features, now=now)

    @trace_span
    async def is_ending_soon(
        self,
        account_id: str,
        threshold_days: int = 3,
        now: Optional[datetime] = None,
    ) -> bool:
        account_id = normalize_account_id(account_id)
        subscription = await self._load_subscription(account_id)
        if subscription is None:
            return False
        return subscription.is_ending_soon(threshold_days, now)
