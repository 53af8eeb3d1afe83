"""
Repository for per-period usage counters.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy import delete, select

from common.core.clock import utc_now
from common.repositories.base import BaseRepository
from packages.billing.models.database.usage import UsageRecordEntity
from packages.billing.models.domain.usage import PeriodKey, UsageRecord
from packages.billing.models.domain.enums import FeatureType
from common.core.otel_axiom_exporter import trace_span

_TABLE = UsageRecordEntity.__table__


class UsageRecordRepository(BaseRepository[UsageRecordEntity, UsageRecord]):
    """Repository for managing usage records."""

    def __init__(self):
        super().__init__(UsageRecordEntity, UsageRecord)

    @trace_span
    async def get_by_key(
        self, account_id: str, feature_type: FeatureType, period_key: PeriodKey
    ) -> Optional[UsageRecord]:
        """Get the counter for one period. Rows are matched on period start."""
        query = (
            select(UsageRecordEntity)
            .where(
                UsageRecordEntity.account_id == account_id,
                UsageRecordEntity.feature_type == feature_type.value,
                UsageRecordEntity.period_start == period_key.start,
            )
            .execution_options(populate_existing=True)
        )
        async with self._get_session(readonly=True) as session:
            result = await session.execute(query)
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def get_for_account(self, account_id: str) -> list[UsageRecord]:
        """Get every counter held for an account, newest period first."""
        query = (
            select(UsageRecordEntity)
            .where(UsageRecordEntity.account_id == account_id)
            .order_by(
                UsageRecordEntity.feature_type,
                UsageRecordEntity.period_start.desc(),
            )
            .execution_options(populate_existing=True)
        )
        async with self._get_session(readonly=True) as session:
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def atomic_increment(
        self,
        account_id: str,
        feature_type: FeatureType,
        period_key: PeriodKey,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        """
        Add one to the counter in a single statement.

        INSERT ... ON CONFLICT (account_id, feature_type, period_start)
        DO UPDATE SET usage_count = usage_count + 1. With a limit, the update
        only applies while usage_count < limit, making check and increment
        one atomic step.

        Returns the new count, or None when the limit was already reached.
        """
        now = now or utc_now()

        async with self._get_session() as session:
            stmt = self._dialect_insert(session, _TABLE).values(
                account_id=account_id,
                feature_type=feature_type.value,
                usage_count=1,
                period_start=period_key.start,
                period_end=period_key.end,
                last_reset_date=period_key.start,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[
                    _TABLE.c.account_id,
                    _TABLE.c.feature_type,
                    _TABLE.c.period_start,
                ],
                set_={
                    "usage_count": _TABLE.c.usage_count + 1,
                    "period_end": stmt.excluded.period_end,
                    "updated_at": stmt.excluded.updated_at,
                },
                where=(_TABLE.c.usage_count < limit) if limit is not None else None,
            ).returning(_TABLE.c.usage_count)

            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    @trace_span
    async def delete_all_for_account(self, account_id: str) -> int:
        """
        Drop every counter for an account.

        Only the lifecycle coordinator calls this, at a genuine new
        subscription period.
        """
        async with self._get_session() as session:
            result = await session.execute(
                delete(UsageRecordEntity)
                .where(UsageRecordEntity.account_id == account_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0
