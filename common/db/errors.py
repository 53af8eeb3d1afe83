"""
Translation of storage-layer failures into StorageUnavailableError.

Only infrastructure failures are translated (lost connections, pool
exhaustion, timeouts). Constraint violations and programming errors are bugs
and propagate unchanged.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Optional, TypeVar

from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)

from common.core.config import settings
from common.core.exceptions import StorageUnavailableError
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_UNAVAILABLE_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    ConnectionError,
    asyncio.TimeoutError,
)


@asynccontextmanager
async def storage_guard(operation: str) -> AsyncGenerator[None, None]:
    """Re-raise infrastructure failures inside the block as StorageUnavailableError."""
    try:
        yield
    except _UNAVAILABLE_ERRORS as e:
        logger.error(
            f"Storage unavailable during {operation}: {e!r}",
            extra={"operation": operation},
        )
        raise StorageUnavailableError(
            f"Storage unavailable during {operation}. Please try again."
        ) from e


async def with_storage_timeout(
    awaitable: Awaitable[T], timeout: Optional[float] = None
) -> T:
    """
    Bound a storage round-trip.

    On timeout the awaited operation is cancelled, its session rolls back, and
    asyncio.TimeoutError is raised for storage_guard to translate.
    """
    return await asyncio.wait_for(
        awaitable,
        timeout=settings.storage_timeout_seconds if timeout is None else timeout,
    )
