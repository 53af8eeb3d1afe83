"""
Billing API routes.

Account-scoped endpoints for usage evaluation and commits, plus internal
lifecycle endpoints used by the payment integration.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from packages.auth.dependencies import get_current_account_id
from packages.billing.dependencies import get_quota_service, require_internal_caller
from packages.billing.exceptions import error_for_reason
from packages.billing.models.domain.usage import CommitResult, SubscriptionSummary
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.subscription_service import SubscriptionService
from packages.billing.models.schemas.billing import (
    ActivateSubscriptionRequest,
    ActivationResponse,
    CancelSubscriptionResponse,
    LifecycleEventRequest,
    LifecycleEventResponse,
    SubscriptionResponse,
    SweepRequest,
    SweepResponse,
    UsageStatusResponse,
)

router = APIRouter()


def get_subscription_service() -> SubscriptionService:
    """Get SubscriptionService instance."""
    return SubscriptionService()


# ============================================================================
# Usage
# ============================================================================


@router.get("/usage/{feature_type}", response_model=UsageStatusResponse)
async def get_feature_usage(
    feature_type: str,
    account_id: str = Depends(get_current_account_id),
    quota_service: QuotaService = Depends(get_quota_service),
):
    """
    Evaluate access and remaining quota for one feature.

    Denials are returned as a normal response carrying has_access=false and
    a reason; only storage outages fail the request (503).
    """
    usage_status = await quota_service.evaluate(account_id, feature_type)
    return UsageStatusResponse.from_status(usage_status)


@router.post(
    "/usage/{feature_type}/commit",
    response_model=CommitResult,
    responses={
        402: {"description": "No active subscription"},
        403: {"description": "Feature not available on the plan"},
        429: {"description": "Usage limit reached"},
    },
)
async def commit_feature_usage(
    feature_type: str,
    account_id: str = Depends(get_current_account_id),
    quota_service: QuotaService = Depends(get_quota_service),
):
    """
    Record one unit of usage for a feature.

    On denial responds with the status matching the reason and a structured
    body carrying usage, limit and remaining.
    """
    result = await quota_service.commit(account_id, feature_type)
    if result.success:
        return result

    error_cls = error_for_reason(result.error)
    return JSONResponse(
        status_code=error_cls.status_code,
        content=result.model_dump(mode="json"),
    )


@router.get("/summary", response_model=SubscriptionSummary)
async def get_subscription_summary(
    account_id: str = Depends(get_current_account_id),
    quota_service: QuotaService = Depends(get_quota_service),
):
    """Subscription state with the usage status of every feature."""
    return await quota_service.get_subscription_summary(account_id)


# ============================================================================
# Lifecycle (internal)
# ============================================================================


@router.post(
    "/subscriptions/{account_id}/activate",
    response_model=ActivationResponse,
    dependencies=[Depends(require_internal_caller)],
)
async def activate_subscription(
    account_id: str,
    request: ActivateSubscriptionRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Activate or renew a subscription.

    Idempotent: repeating a call for the period already stored never resets
    usage. Retry until it succeeds.
    """
    try:
        period = request.period
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        )

    outcome = await subscription_service.activate_with_outcome(
        account_id,
        request.plan_type,
        request.external_membership_id,
        period,
        external_product_id=request.external_product_id,
        event_kind=request.event_kind,
    )
    return ActivationResponse.from_outcome(outcome)


@router.post(
    "/subscriptions/{account_id}/cancel",
    response_model=CancelSubscriptionResponse,
    dependencies=[Depends(require_internal_caller)],
)
async def cancel_subscription(
    account_id: str,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """Cancel a subscription. Usage counters are kept."""
    subscription = await subscription_service.cancel(account_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription found for this account",
        )

    return CancelSubscriptionResponse(
        message=f"Subscription is {subscription.status.value}",
        subscription=SubscriptionResponse.from_domain(subscription),
    )


@router.post(
    "/events",
    response_model=LifecycleEventResponse,
    dependencies=[Depends(require_internal_caller)],
)
async def apply_lifecycle_event(
    request: LifecycleEventRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """Apply an authenticated payment-provider lifecycle event."""
    try:
        event = request.to_event()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        )

    result = await subscription_service.apply_external_event(event)
    return LifecycleEventResponse.from_result(result)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    dependencies=[Depends(require_internal_caller)],
)
async def sweep_expired_subscriptions(
    request: Optional[SweepRequest] = None,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """Expire every active subscription whose window has passed."""
    expired_count = await subscription_service.sweep(request.now if request else None)
    return SweepResponse(expired_count=expired_count)
