"""
Service for managing subscriptions.

The only writer of subscription rows and the only caller allowed to reset the
usage ledger. Every transition for one account runs inside one transaction
holding the account's lifecycle lock, so decision and write cannot interleave
with another transition for the same account.
"""

from typing import Optional
from datetime import datetime

from common.core.clock import ensure_utc, utc_now
from common.core.config import settings
from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger, log_span_event
from common.db.errors import storage_guard, with_storage_timeout
from common.db.scoped import transaction
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.usage_repository import UsageRecordRepository
from packages.billing.services.plans_service import PlansService
from packages.billing.models.domain.lifecycle import (
    BillingPeriod,
    LifecycleEvent,
    normalize_account_id,
)
from packages.billing.models.domain.plans import Plan
from packages.billing.models.domain.subscription import (
    ActivationOutcome,
    LifecycleEventResult,
    Subscription,
    SubscriptionUpsertModel,
)
from packages.billing.models.domain.enums import (
    ActivationDecision,
    LifecycleAction,
    PlanType,
    SubscriptionStatus,
)

logger = get_logger(__name__)


def decide_activation(
    existing: Optional[Subscription],
    plan_type: PlanType,
    external_membership_id: Optional[str],
    period: Optional[BillingPeriod],
) -> ActivationDecision:
    """
    Classify an activation against the stored subscription.

    A missing membership id means "unchanged": re-auth flows do not carry one
    and must never reset usage on their own. A missing period means the
    provider did not report when the period started; only a plan or
    membership change then opens a new period.
    """
    if existing is None:
        return ActivationDecision.NEW_PERIOD

    current = existing.period
    if period is not None and period.starts_before(current):
        return ActivationDecision.STALE_PERIOD

    if existing.plan_type != plan_type:
        return ActivationDecision.NEW_PERIOD

    if (
        external_membership_id is not None
        and external_membership_id != existing.external_membership_id
    ):
        return ActivationDecision.NEW_PERIOD

    if period is not None and period.starts_after(current):
        return ActivationDecision.NEW_PERIOD

    return ActivationDecision.SAME_PERIOD


def _period_from(now: datetime, period_end: Optional[datetime]) -> BillingPeriod:
    if period_end is not None and ensure_utc(period_end) > now:
        return BillingPeriod(start=now, end=period_end)
    return BillingPeriod.starting_at(now, settings.default_period_days)


class SubscriptionService:
    """Service for subscription lifecycle management."""

    def __init__(self, plans_service: Optional[PlansService] = None):
        self.subscription_repo = SubscriptionRepository()
        self.usage_repo = UsageRecordRepository()
        self.plans_service = plans_service or PlansService()

    @trace_span
    async def get_by_account_id(self, account_id: str) -> Optional[Subscription]:
        """Get subscription for an account."""
        async with storage_guard("get_subscription"):
            return await with_storage_timeout(
                self.subscription_repo.get_by_account_id(
                    normalize_account_id(account_id)
                )
            )

    @trace_span
    async def activate(
        self,
        account_id: str,
        plan_type: PlanType,
        external_membership_id: Optional[str],
        period: Optional[BillingPeriod],
        external_product_id: Optional[str] = None,
        event_kind: Optional[LifecycleAction] = None,
        now: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> Subscription:
        """Activate or renew; see activate_with_outcome."""
        outcome = await self.activate_with_outcome(
            account_id,
            plan_type,
            external_membership_id,
            period,
            external_product_id=external_product_id,
            event_kind=event_kind,
            now=now,
            period_end=period_end,
        )
        return outcome.subscription

    @trace_span
    async def activate_with_outcome(
        self,
        account_id: str,
        plan_type: PlanType,
        external_membership_id: Optional[str],
        period: Optional[BillingPeriod],
        external_product_id: Optional[str] = None,
        event_kind: Optional[LifecycleAction] = None,
        now: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> ActivationOutcome:
        """
        Activate a subscription for a period.

        NEW_PERIOD replaces the row and clears the usage ledger in the same
        transaction. SAME_PERIOD refreshes an active row and leaves usage
        alone. STALE_PERIOD writes nothing. Safe to retry until it succeeds.

        period may be None when the start is unknown. The stored window is
        then kept unless plan or membership changed; a new window starts at
        now and runs to period_end or the default period length.

        Raises:
            ValidationError: plan_type has no catalog entry
            StorageUnavailableError: the store could not be reached in time;
                nothing was applied
        """
        account_id = normalize_account_id(account_id)
        if self.plans_service.resolve(plan_type) is None:
            raise ValidationError(f"Cannot activate unknown plan {plan_type.value}")

        now = ensure_utc(now or utc_now())
        async with storage_guard("activate"):
            outcome = await with_storage_timeout(
                self._activate_locked(
                    account_id,
                    plan_type,
                    external_membership_id,
                    period,
                    external_product_id,
                    now,
                    period_end,
                )
            )

        attributes = {
            "account_id": account_id,
            "plan_type": plan_type.value,
            "decision": outcome.decision.value,
            "usage_reset": outcome.usage_reset,
            "event_kind": event_kind.value if event_kind else None,
            "external_membership_id": external_membership_id,
            "period_start": outcome.subscription.started_at.isoformat(),
            "period_end": outcome.subscription.ends_at.isoformat(),
        }
        log_span_event(
            f"Activation for {account_id}: {outcome.decision.value}",
            {key: value for key, value in attributes.items() if value is not None},
        )
        return outcome

    async def _activate_locked(
        self,
        account_id: str,
        plan_type: PlanType,
        external_membership_id: Optional[str],
        period: Optional[BillingPeriod],
        external_product_id: Optional[str],
        now: datetime,
        period_end: Optional[datetime],
    ) -> ActivationOutcome:
        async with transaction():
            await self.subscription_repo.acquire_account_lock(account_id)
            existing = await self.subscription_repo.get_by_account_id(
                account_id, for_update=True
            )
            decision = decide_activation(
                existing, plan_type, external_membership_id, period
            )

            if decision == ActivationDecision.STALE_PERIOD:
                return ActivationOutcome(
                    subscription=existing, decision=decision, usage_reset=False
                )

            if decision == ActivationDecision.SAME_PERIOD:
                # Terminal rows return to Active only through a new period
                if existing.status.is_terminal():
                    return ActivationOutcome(
                        subscription=existing, decision=decision, usage_reset=False
                    )
                new_end = period.end if period is not None else period_end
                ends_at = existing.ends_at
                if new_end is not None:
                    ends_at = max(ends_at, ensure_utc(new_end).replace(microsecond=0))
                subscription = await self.subscription_repo.upsert(
                    SubscriptionUpsertModel(
                        account_id=account_id,
                        plan_type=existing.plan_type,
                        status=SubscriptionStatus.ACTIVE,
                        started_at=existing.started_at,
                        ends_at=ends_at,
                        external_membership_id=existing.external_membership_id
                        or external_membership_id,
                        external_product_id=external_product_id
                        or existing.external_product_id,
                    ),
                    now,
                )
                return ActivationOutcome(
                    subscription=subscription, decision=decision, usage_reset=False
                )

            if period is None:
                period = _period_from(now, period_end)
            if external_membership_id is None and existing is not None:
                external_membership_id = existing.external_membership_id
            if external_product_id is None and existing is not None:
                external_product_id = existing.external_product_id

            subscription = await self.subscription_repo.upsert(
                SubscriptionUpsertModel(
                    account_id=account_id,
                    plan_type=plan_type,
                    status=SubscriptionStatus.ACTIVE,
                    started_at=period.start,
                    ends_at=period.end,
                    external_membership_id=external_membership_id,
                    external_product_id=external_product_id,
                ),
                now,
            )
            deleted = await self.usage_repo.delete_all_for_account(account_id)
            logger.info(
                f"Reset usage for {account_id}: {deleted} records cleared",
                extra={"account_id": account_id, "deleted_records": deleted},
            )
            return ActivationOutcome(
                subscription=subscription, decision=decision, usage_reset=True
            )

    @trace_span
    async def cancel(
        self, account_id: str, now: Optional[datetime] = None
    ) -> Optional[Subscription]:
        """
        Active -> Cancelled. The usage ledger is untouched.

        Returns the resulting subscription (unchanged if it was already
        terminal), or None when the account has no subscription.
        """
        account_id = normalize_account_id(account_id)
        now = ensure_utc(now or utc_now())
        async with storage_guard("cancel"):
            subscription = await with_storage_timeout(
                self._cancel_locked(account_id, now)
            )

        logger.info(
            f"Cancel for {account_id}",
            extra={
                "account_id": account_id,
                "found": subscription is not None,
                "status": subscription.status.value if subscription else None,
            },
        )
        return subscription

    async def _cancel_locked(
        self, account_id: str, now: datetime
    ) -> Optional[Subscription]:
        async with transaction():
            await self.subscription_repo.acquire_account_lock(account_id)
            cancelled = await self.subscription_repo.mark_cancelled(account_id, now)
            if cancelled is not None:
                return cancelled
            return await self.subscription_repo.get_by_account_id(account_id)

    @trace_span
    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Expire every active subscription whose window has passed."""
        now = ensure_utc(now or utc_now())
        async with storage_guard("sweep"):
            count = await with_storage_timeout(
                self.subscription_repo.sweep_expired(now)
            )
        logger.info(
            f"Expiry sweep expired {count} subscriptions",
            extra={"expired_count": count, "sweep_time": now.isoformat()},
        )
        return count

    def _resolve_event_plan(self, event: LifecycleEvent) -> Plan:
        plan = self.plans_service.resolve(event.plan_type)
        if plan is None:
            plan = self.plans_service.resolve_by_external_product_id(
                event.external_product_id
            )
        if plan is None:
            raise ValidationError(
                f"Cannot resolve plan for product {event.external_product_id!r}"
            )
        return plan

    @trace_span
    async def apply_external_event(
        self, event: LifecycleEvent, now: Optional[datetime] = None
    ) -> LifecycleEventResult:
        """
        Apply a payment-provider lifecycle event.

        Activated/Renewed -> activate; Invalidated/Cancelled -> cancel.
        Redelivery converges to the same state.
        """
        logger.info(
            f"Applying {event.action.value} event for {event.account_id}",
            extra={
                "account_id": event.account_id,
                "event_kind": event.action.value,
                "external_membership_id": event.external_membership_id,
                "external_product_id": event.external_product_id,
            },
        )

        if event.action.is_activation():
            plan = self._resolve_event_plan(event)
            outcome = await self.activate_with_outcome(
                event.account_id,
                plan.id,
                event.external_membership_id,
                event.period,
                external_product_id=event.external_product_id,
                event_kind=event.action,
                now=now,
                period_end=event.period_end,
            )
            return LifecycleEventResult(
                action=event.action,
                decision=outcome.decision,
                usage_reset=outcome.usage_reset,
                subscription=outcome.subscription,
            )

        subscription = await self.cancel(event.account_id, now=now)
        return LifecycleEventResult(action=event.action, subscription=subscription)
