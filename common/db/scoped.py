"""
Operation-scoped database sessions.

Each repository call acquires a session, runs its statement(s), commits and
releases the connection immediately. Lifecycle operations that must see and
write one account's rows atomically open an explicit transaction() instead,
and every repository call inside it joins that session.

Usage:
    # One statement, own connection, commits on exit
    async with get_session() as session:
        await session.execute(stmt)

    # Several statements, one connection, commit or rollback together
    async with transaction():
        await subscription_repo.upsert(model)
        await usage_repo.delete_all_for_account(account_id)

See also:
    - common/db/context.py: session ContextVars and @readonly
    - common/db/session.py: engine and session factories
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from common.core.otel_axiom_exporter import get_logger
from common.db.session import AsyncSessionLocal, AsyncSessionLocalReadonly
from common.db.context import (
    get_current_session,
    set_current_session,
    reset_current_session,
    is_readonly_forced,
)

logger = get_logger(__name__)


@asynccontextmanager
async def transaction(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Explicit transaction boundary.

    All DB operations inside share one session/connection.
    Commits on success (unless readonly), rolls back on exception.

    Raises:
        Exception: Re-raises any exception after rollback
    """
    effective_readonly = readonly or is_readonly_forced()
    session_factory = (
        AsyncSessionLocalReadonly if effective_readonly else AsyncSessionLocal
    )

    start = time.perf_counter()
    async with session_factory() as session:
        acquire_time = time.perf_counter() - start
        logger.debug(
            f"Transaction session acquire: {acquire_time * 1000:.2f}ms, readonly={effective_readonly}"
        )

        token = set_current_session(session, readonly=effective_readonly)
        try:
            yield session
            if not effective_readonly:
                await session.commit()
        except BaseException as e:
            # BaseException so a cancelled (timed out) caller still rolls back
            logger.error(f"Transaction rollback due to: {e!r}")
            await session.rollback()
            raise
        finally:
            reset_current_session(token, readonly=effective_readonly)


@asynccontextmanager
async def get_session(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Get a session for a single DB operation.

    Reuses the session of an enclosing transaction() when there is one;
    otherwise acquires a new session, commits (unless readonly) and releases.
    """
    effective_readonly = readonly or is_readonly_forced()
    existing = get_current_session(readonly=effective_readonly)

    if existing is None and effective_readonly:
        # A read issued inside a write transaction must see that transaction's rows
        existing = get_current_session(readonly=False)

    if existing is not None:
        yield existing
        return

    session_factory = (
        AsyncSessionLocalReadonly if effective_readonly else AsyncSessionLocal
    )

    start = time.perf_counter()
    async with session_factory() as session:
        acquire_time = time.perf_counter() - start
        logger.debug(
            f"Operation session acquire: {acquire_time * 1000:.2f}ms, readonly={effective_readonly}"
        )

        try:
            yield session
            if not effective_readonly:
                await session.commit()
        except BaseException as e:
            logger.error(f"Operation rollback due to: {e!r}")
            await session.rollback()
            raise
