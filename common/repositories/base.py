from contextlib import asynccontextmanager
from typing import Generic, TypeVar, List, Type, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite

from common.db.scoped import get_session

EntityType = TypeVar("EntityType")
DomainModelType = TypeVar("DomainModelType")


class BaseRepository(Generic[EntityType, DomainModelType]):
    """
    Base repository with lazy, operation-scoped sessions.

    Sessions are acquired per operation and released immediately, or joined
    when the caller is inside a transaction() block.

    Example:
        repo = SubscriptionRepository()
        sub = await repo.get_by_account_id("user@example.com")
    """

    def __init__(
        self,
        entity_class: Type[EntityType],
        domain_class: Type[DomainModelType],
    ):
        self.entity_class = entity_class
        self.domain_class = domain_class

    @asynccontextmanager
    async def _get_session(
        self, readonly: bool = False
    ) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a session for an operation.

        Goes through get_session(), which respects an enclosing transaction()
        or @readonly.
        """
        async with get_session(readonly=readonly) as session:
            yield session

    @staticmethod
    def _dialect_insert(session: AsyncSession, table: Table):
        """
        INSERT construct for the session's dialect.

        Both PostgreSQL and SQLite constructs support on_conflict_do_update
        with RETURNING, which is what atomic upserts are built on.
        """
        dialect_name = session.get_bind().dialect.name
        if dialect_name == "postgresql":
            return postgresql.insert(table)
        if dialect_name == "sqlite":
            return sqlite.insert(table)
        raise NotImplementedError(f"Atomic upsert not supported on {dialect_name}")

    def _entity_to_domain(self, entity: EntityType) -> DomainModelType:
        """Convert database entity to domain model."""
        return self.domain_class.model_validate(entity)

    def _entities_to_domain(self, entities: List[EntityType]) -> List[DomainModelType]:
        """Convert list of database entities to domain models."""
        return [self._entity_to_domain(entity) for entity in entities]
