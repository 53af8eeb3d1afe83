"""
Repository for subscription management.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy import select, text, update

from common.repositories.base import BaseRepository
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionUpsertModel,
)
from packages.billing.models.domain.enums import SubscriptionStatus
from common.core.otel_axiom_exporter import trace_span

_TABLE = SubscriptionEntity.__table__


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """Repository for managing account subscriptions."""

    def __init__(self):
        super().__init__(SubscriptionEntity, Subscription)

    def _row_to_domain(self, row) -> Subscription:
        return Subscription.model_validate(dict(row._mapping))

    @trace_span
    async def get_by_account_id(
        self, account_id: str, for_update: bool = False
    ) -> Optional[Subscription]:
        """
        Get the subscription for an account.

        for_update locks the row until the enclosing transaction ends
        (no-op on SQLite, where the write transaction already serializes).
        """
        query = (
            select(SubscriptionEntity)
            .where(SubscriptionEntity.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        async with self._get_session(readonly=not for_update) as session:
            result = await session.execute(query)
            db_subscription = result.scalar_one_or_none()
            return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def acquire_account_lock(self, account_id: str) -> None:
        """
        Serialize lifecycle transitions for one account.

        Uses pg_advisory_xact_lock, released when the transaction commits or
        rolls back. The lock also covers accounts with no row yet, which
        SELECT ... FOR UPDATE cannot.
        """
        async with self._get_session() as session:
            if session.get_bind().dialect.name != "postgresql":
                return
            await session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:account_id))"),
                {"account_id": account_id},
            )

    @trace_span
    async def upsert(
        self, subscription: SubscriptionUpsertModel, now: datetime
    ) -> Subscription:
        """Atomically insert or replace the row keyed by account_id."""
        values = subscription.model_dump()
        values["plan_type"] = subscription.plan_type.value
        values["status"] = subscription.status.value
        values["updated_at"] = now

        async with self._get_session() as session:
            stmt = self._dialect_insert(session, _TABLE).values(
                created_at=now, **values
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[_TABLE.c.account_id],
                set_={
                    key: getattr(stmt.excluded, key)
                    for key in values
                    if key != "account_id"
                },
            ).returning(*_TABLE.c)
            result = await session.execute(stmt)
            return self._row_to_domain(result.one())

    @trace_span
    async def mark_cancelled(
        self, account_id: str, now: datetime
    ) -> Optional[Subscription]:
        """
        Active -> Cancelled.

        Returns the updated row, or None when there was no active row to
        cancel (already terminal, or no subscription at all).
        """
        stmt = (
            update(SubscriptionEntity)
            .where(
                SubscriptionEntity.account_id == account_id,
                SubscriptionEntity.status == SubscriptionStatus.ACTIVE.value,
            )
            .values(
                status=SubscriptionStatus.CANCELLED.value,
                cancelled_at=now,
                updated_at=now,
            )
            .returning(*_TABLE.c)
            .execution_options(synchronize_session=False)
        )
        async with self._get_session() as session:
            result = await session.execute(stmt)
            row = result.one_or_none()
            return self._row_to_domain(row) if row is not None else None

    @trace_span
    async def sweep_expired(self, now: datetime) -> int:
        """
        Active rows whose window has passed become Expired.

        One conditional UPDATE; rows already terminal are untouched, so
        repeated or concurrent sweeps converge.
        """
        stmt = (
            update(SubscriptionEntity)
            .where(
                SubscriptionEntity.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionEntity.ends_at <= now,
            )
            .values(
                status=SubscriptionStatus.EXPIRED.value,
                expired_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._get_session() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0
