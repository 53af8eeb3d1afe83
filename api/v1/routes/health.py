from fastapi import APIRouter, Request
from sqlalchemy import text

from common.core.otel_axiom_exporter import get_logger
from common.db.errors import storage_guard, with_storage_timeout
from common.db.scoped import get_session
from common.core.exceptions import StorageUnavailableError
from common.providers.rate_limiter.limiter import limiter

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
async def health_check(request: Request):
    # No rate limiting or logging - k8s probes hit this every 5-10s
    return {"status": "healthy", "service": "quota-engine"}


async def _ping() -> None:
    async with get_session(readonly=True) as session:
        result = await session.execute(text("SELECT 1"))
        result.scalar()


@router.get("/db")
@limiter.limit("100/minute")
async def db_check(request: Request):
    try:
        async with storage_guard("health_check"):
            await with_storage_timeout(_ping())
        return {"status": "healthy", "database": "connected"}
    except StorageUnavailableError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "database": "disconnected"}
