import secrets
from typing import Annotated, Callable, Optional
from fastapi import Depends, HTTPException, status, Header

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from packages.auth.dependencies import get_current_account_id
from packages.billing.models.domain.enums import FeatureType
from packages.billing.models.domain.usage import UsageStatus
from packages.billing.services.quota_service import QuotaService

logger = get_logger(__name__)


def get_quota_service() -> QuotaService:
    """Get QuotaService instance."""
    return QuotaService()


async def require_internal_caller(
    x_internal_token: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Guard for lifecycle endpoints called by the payment integration.

    Open when no internal token is configured (local development).
    """
    expected = settings.internal_api_token
    if not expected:
        return
    if not x_internal_token or not secrets.compare_digest(x_internal_token, expected):
        logger.warning("Rejected lifecycle call with invalid internal token")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid internal token",
        )


def require_feature(feature_type: FeatureType) -> Callable:
    """
    Dependency factory gating an endpoint on a feature entitlement.

    Evaluates without committing usage; denial raises the matching
    BillingError (402 no/expired subscription, 403 not on plan, 429 limit).

    Example:
        @router.post("/drafts", dependencies=[Depends(require_feature(FeatureType.DRAFT_REPLY))])
    """

    async def _require_feature(
        account_id: str = Depends(get_current_account_id),
        quota_service: QuotaService = Depends(get_quota_service),
    ) -> UsageStatus:
        return await quota_service.ensure_can_use(account_id, feature_type)

    return _require_feature
