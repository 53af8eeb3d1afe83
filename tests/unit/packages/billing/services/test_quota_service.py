import asyncio
import pytest
from datetime import timedelta
from types import MappingProxyType
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import OperationalError

from common.core.config import settings
from common.core.exceptions import StorageUnavailableError
from packages.billing.exceptions import (
    NoSubscriptionError,
    SubscriptionExpiredError,
    UsageLimitReachedError,
)
from packages.billing.models.domain.enums import (
    AccessDenialReason,
    FeatureType,
    PlanType,
    QuotaPeriod,
    SubscriptionStatus,
)
from packages.billing.models.domain.plans import Plan, QuotaDef
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.usage_repository import UsageRecordRepository
from packages.billing.services.plans_service import PlansService
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.subscription_service import SubscriptionService
from tests.conftest import utc_now_seconds


def _starter_with(feature_type: FeatureType, limit: int, period=QuotaPeriod.MONTHLY):
    plan = Plan(
        id=PlanType.STARTER,
        name="Starter",
        price_cents=799,
        features={feature_type: QuotaDef(limit=limit, period=period)},
    )
    return PlansService(catalog=MappingProxyType({PlanType.STARTER: plan}))


@pytest.fixture
def quota_service():
    return QuotaService()


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_no_subscription(self, quota_service, account_id):
        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.has_access is False
        assert status.reason == AccessDenialReason.NO_SUBSCRIPTION
        assert status.plan_type == PlanType.NONE

    @pytest.mark.asyncio
    async def test_fresh_subscription_has_full_quota(
        self, quota_service, account_id, sample_subscription
    ):
        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.has_access is True
        assert status.reason is None
        assert status.plan_type == PlanType.STARTER
        assert status.usage == 0
        assert status.limit == 30
        assert status.remaining == 30
        assert status.period == QuotaPeriod.MONTHLY
        assert status.period_start == sample_subscription.started_at.date()

    @pytest.mark.asyncio
    async def test_lapsed_active_row_is_denied_before_sweep(
        self, quota_service, account_id, lapsed_subscription
    ):
        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.has_access is False
        assert status.reason == AccessDenialReason.SUBSCRIPTION_EXPIRED

    @pytest.mark.asyncio
    async def test_cancelled_subscription_is_denied(
        self, quota_service, account_id, subscription_factory
    ):
        await subscription_factory(status=SubscriptionStatus.CANCELLED)

        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.reason == AccessDenialReason.SUBSCRIPTION_EXPIRED

    @pytest.mark.asyncio
    async def test_plan_without_catalog_entry(
        self, quota_service, account_id, subscription_factory
    ):
        await subscription_factory(plan_type=PlanType.NONE)

        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.has_access is False
        assert status.reason == AccessDenialReason.INVALID_PLAN

    @pytest.mark.asyncio
    async def test_unknown_feature(self, quota_service, account_id, sample_subscription):
        status = await quota_service.evaluate(account_id, "video_render")

        assert status.has_access is False
        assert status.reason == AccessDenialReason.UNKNOWN_FEATURE
        assert status.feature_type == "video_render"

    @pytest.mark.asyncio
    async def test_feature_missing_from_plan(self, account_id, sample_subscription):
        quota_service = QuotaService(
            plans_service=_starter_with(FeatureType.DRAFT_REPLY, 5)
        )

        status = await quota_service.evaluate(account_id, FeatureType.AI_NOTES)

        assert status.reason == AccessDenialReason.UNKNOWN_FEATURE

    @pytest.mark.asyncio
    async def test_zero_limit_is_denied(self, account_id, sample_subscription):
        quota_service = QuotaService(
            plans_service=_starter_with(FeatureType.DRAFT_REPLY, 0)
        )

        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.has_access is False
        assert status.reason == AccessDenialReason.USAGE_LIMIT_REACHED
        assert status.percentage_used == 100.0

    @pytest.mark.asyncio
    async def test_unlimited_on_pro(self, quota_service, account_id, pro_subscription):
        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.has_access is True
        assert status.is_unlimited is True
        assert status.limit == -1
        assert status.remaining == -1

    @pytest.mark.asyncio
    async def test_warning_threshold(self, quota_service, account_id, sample_subscription):
        for _ in range(24):
            await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

        assert status.usage == 24
        assert status.remaining == 6
        assert status.percentage_used == pytest.approx(80.0)
        assert status.warning_threshold_reached is True

    @pytest.mark.asyncio
    async def test_evaluate_writes_nothing(
        self, quota_service, account_id, sample_subscription
    ):
        for feature_type in FeatureType:
            await quota_service.evaluate(account_id, feature_type)

        assert await UsageRecordRepository().get_for_account(account_id) == []

    @pytest.mark.asyncio
    async def test_can_use(self, quota_service, account_id, sample_subscription):
        assert await quota_service.can_use(account_id, FeatureType.DRAFT_REPLY)
        assert not await quota_service.can_use("nobody@example.com", FeatureType.DRAFT_REPLY)


class TestCommit:
    @pytest.mark.asyncio
    async def test_commit_counts_up(self, quota_service, account_id, sample_subscription):
        results = [
            await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)
            for _ in range(3)
        ]

        assert [r.success for r in results] == [True, True, True]
        assert [r.new_usage for r in results] == [1, 2, 3]
        assert results[-1].remaining == 27

        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)
        assert status.usage == 3

    @pytest.mark.asyncio
    async def test_sixth_commit_on_limit_five_fails(self, account_id, sample_subscription):
        quota_service = QuotaService(
            plans_service=_starter_with(FeatureType.DRAFT_REPLY, 5)
        )
        for expected in range(1, 6):
            result = await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)
            assert result.success is True
            assert result.new_usage == expected

        result = await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

        assert result.success is False
        assert result.error == AccessDenialReason.USAGE_LIMIT_REACHED
        assert result.new_usage == 5
        assert result.limit == 5
        assert result.remaining == 0

        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)
        assert status.usage == 5

    @pytest.mark.asyncio
    async def test_commit_without_subscription_fails(self, quota_service, account_id):
        result = await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

        assert result.success is False
        assert result.error == AccessDenialReason.NO_SUBSCRIPTION
        assert await UsageRecordRepository().get_for_account(account_id) == []

    @pytest.mark.asyncio
    async def test_commit_on_lapsed_subscription_fails(
        self, quota_service, account_id, lapsed_subscription
    ):
        result = await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

        assert result.success is False
        assert result.error == AccessDenialReason.SUBSCRIPTION_EXPIRED
        assert await UsageRecordRepository().get_for_account(account_id) == []

    @pytest.mark.asyncio
    async def test_unlimited_commit_never_writes_ledger(
        self, quota_service, account_id, pro_subscription
    ):
        for _ in range(3):
            result = await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)
            assert result.success is True
            assert result.is_unlimited is True
            assert result.remaining == -1

        assert await UsageRecordRepository().get_for_account(account_id) == []

    @pytest.mark.asyncio
    async def test_daily_quota_rolls_over_at_utc_midnight(
        self, quota_service, account_id, sample_subscription
    ):
        today = utc_now_seconds()
        tomorrow = today + timedelta(days=1)
        for _ in range(2):
            await quota_service.commit(account_id, FeatureType.SIFT_ANALYSIS, now=today)

        today_status = await quota_service.evaluate(
            account_id, FeatureType.SIFT_ANALYSIS, now=today
        )
        tomorrow_status = await quota_service.evaluate(
            account_id, FeatureType.SIFT_ANALYSIS, now=tomorrow
        )
        assert today_status.usage == 2
        assert today_status.period == QuotaPeriod.DAILY
        assert tomorrow_status.usage == 0
        assert tomorrow_status.remaining == 10

        result = await quota_service.commit(
            account_id, FeatureType.SIFT_ANALYSIS, now=tomorrow
        )
        assert result.new_usage == 1

    @pytest.mark.asyncio
    async def test_lenient_mode_still_stops_at_limit(
        self, account_id, sample_subscription, monkeypatch
    ):
        monkeypatch.setattr(settings, "quota_strict_enforcement", False)
        quota_service = QuotaService(
            plans_service=_starter_with(FeatureType.DRAFT_REPLY, 2)
        )

        results = [
            await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)
            for _ in range(3)
        ]

        assert [r.success for r in results] == [True, True, False]


class TestEnsureCanUse:
    @pytest.mark.asyncio
    async def test_returns_status_when_allowed(
        self, quota_service, account_id, sample_subscription
    ):
        status = await quota_service.ensure_can_use(account_id, FeatureType.AI_NOTES)
        assert status.remaining == 50

    @pytest.mark.asyncio
    async def test_raises_no_subscription(self, quota_service, account_id):
        with pytest.raises(NoSubscriptionError) as exc_info:
            await quota_service.ensure_can_use(account_id, FeatureType.AI_NOTES)
        assert exc_info.value.status_code == 402

    @pytest.mark.asyncio
    async def test_raises_expired(self, quota_service, account_id, lapsed_subscription):
        with pytest.raises(SubscriptionExpiredError):
            await quota_service.ensure_can_use(account_id, FeatureType.AI_NOTES)

    @pytest.mark.asyncio
    async def test_raises_limit_reached_with_counts(self, account_id, sample_subscription):
        quota_service = QuotaService(
            plans_service=_starter_with(FeatureType.DRAFT_REPLY, 1)
        )
        await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

        with pytest.raises(UsageLimitReachedError) as exc_info:
            await quota_service.ensure_can_use(account_id, FeatureType.DRAFT_REPLY)

        body = exc_info.value.to_dict()
        assert body["error"] == "usage_limit_reached"
        assert body["usage"] == 1
        assert body["limit"] == 1
        assert body["remaining"] == 0


class TestSubscriptionSummary:
    @pytest.mark.asyncio
    async def test_summary_without_subscription(self, quota_service, account_id):
        summary = await quota_service.get_subscription_summary(account_id)

        assert summary.has_active_subscription is False
        assert summary.plan_type == PlanType.NONE
        assert summary.features == {}

    @pytest.mark.asyncio
    async def test_summary_lists_every_feature(
        self, quota_service, account_id, sample_subscription
    ):
        await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

        summary = await quota_service.get_subscription_summary(account_id)

        assert summary.has_active_subscription is True
        assert summary.plan_type == PlanType.STARTER
        assert summary.status == "active"
        assert summary.days_remaining == 25
        assert summary.is_ending_soon is False
        assert set(summary.features) == set(FeatureType)
        assert summary.features[FeatureType.DRAFT_REPLY].usage == 1
        assert summary.features[FeatureType.SIFT_ANALYSIS].period == QuotaPeriod.DAILY

    @pytest.mark.asyncio
    async def test_is_ending_soon(self, quota_service, account_id, subscription_factory):
        now = utc_now_seconds()
        await subscription_factory(
            started_at=now - timedelta(days=28), ends_at=now + timedelta(days=2)
        )

        assert await quota_service.is_ending_soon(account_id) is True
        assert await quota_service.is_ending_soon("nobody@example.com") is False


class TestAccountIdCase:
    @pytest.mark.asyncio
    async def test_mixed_case_id_reaches_the_same_subscription(
        self, quota_service, current_period
    ):
        mixed = "Alice@Example.com"
        await SubscriptionService().activate(
            mixed, PlanType.STARTER, "mem_1", current_period
        )

        result = await quota_service.commit(mixed, FeatureType.DRAFT_REPLY)
        assert result.success is True
        assert result.new_usage == 1

        status = await quota_service.evaluate(mixed, FeatureType.DRAFT_REPLY)
        assert status.has_access is True
        assert status.usage == 1
        assert await quota_service.can_use(
            " ALICE@example.com ", FeatureType.DRAFT_REPLY
        )

        summary = await quota_service.get_subscription_summary(mixed)
        assert summary.account_id == "alice@example.com"
        assert summary.has_active_subscription is True
        assert summary.features[FeatureType.DRAFT_REPLY].usage == 1

    @pytest.mark.asyncio
    async def test_ending_soon_ignores_case(self, quota_service, subscription_factory):
        now = utc_now_seconds()
        await subscription_factory(
            account_id="bob@example.com",
            started_at=now - timedelta(days=28),
            ends_at=now + timedelta(days=2),
        )

        assert await quota_service.is_ending_soon("Bob@Example.COM") is True


class TestStorageUnavailable:
    @pytest.mark.asyncio
    async def test_operational_error_becomes_storage_unavailable(
        self, quota_service, account_id
    ):
        with patch.object(
            SubscriptionRepository,
            "get_by_account_id",
            AsyncMock(
                side_effect=OperationalError("SELECT 1", {}, Exception("refused"))
            ),
        ):
            with pytest.raises(StorageUnavailableError):
                await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, quota_service, account_id, monkeypatch):
        monkeypatch.setattr(settings, "storage_timeout_seconds", 0.01)

        async def slow_lookup(*args, **kwargs):
            await asyncio.sleep(1)

        with patch.object(SubscriptionRepository, "get_by_account_id", slow_lookup):
            with pytest.raises(StorageUnavailableError):
                await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

    @pytest.mark.asyncio
    async def test_failed_increment_is_not_reported_as_success(
        self, quota_service, account_id, sample_subscription
    ):
        with patch.object(
            UsageRecordRepository,
            "atomic_increment",
            AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("lost"))),
        ):
            with pytest.raises(StorageUnavailableError):
                await quota_service.commit(account_id, FeatureType.DRAFT_REPLY)

        status = await quota_service.evaluate(account_id, FeatureType.DRAFT_REPLY)
        assert status.usage == 0
