"""
Membership webhook handler for payment-provider lifecycle events.

Handles membership events:
- membership.went_valid (first purchase)
- membership.renewed
- membership.went_invalid
- membership.cancelled

Signature verification is done upstream before requests reach this service.
"""

import json
from typing import Optional

from fastapi import Request, HTTPException, status
from pydantic import ValidationError

from common.core.config import settings
from common.core.exceptions import AppException
from common.core.otel_axiom_exporter import get_logger
from packages.billing.services.plans_service import PlansService
from packages.billing.services.subscription_service import SubscriptionService
from packages.billing.models.domain.lifecycle import LifecycleEvent
from packages.billing.models.domain.membership_webhooks import MembershipWebhookPayload

logger = get_logger(__name__)


def to_lifecycle_event(
    payload: MembershipWebhookPayload, plans_service: Optional[PlansService] = None
) -> Optional[LifecycleEvent]:
    """
    Map a membership payload to a LifecycleEvent.

    Returns None for actions we do not handle. An activation whose payload
    carries no period start keeps period_start None; the coordinator then
    classifies it by plan and membership alone.

    Raises:
        ValueError: the payload has no user email
    """
    webhook_type = payload.webhook_type
    if webhook_type is None:
        return None

    data = payload.data
    if not data.user.email:
        raise ValueError("Membership payload has no user email")

    action = webhook_type.to_lifecycle_action()
    plans_service = plans_service or PlansService()
    plan = plans_service.resolve_by_external_product_id(data.product.id)

    period_start = period_end = None
    if action.is_activation():
        period_start = data.period_start()
        period_end = data.period_end(period_start, settings.default_period_days)

    return LifecycleEvent(
        action=action,
        account_id=data.user.email,
        external_membership_id=data.id,
        external_product_id=data.product.id,
        plan_type=plan.id if plan else None,
        period_start=period_start,
        period_end=period_end,
    )


async def handle_membership_webhook(request: Request) -> dict[str, str]:
    """
    Handle incoming membership webhook.

    Parses the payload and routes it to the lifecycle coordinator.
    Storage outages propagate so the provider retries delivery.
    """
    try:
        raw_body = await request.body()
        try:
            body = json.loads(raw_body) if raw_body else {}
        except json.JSONDecodeError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid webhook payload",
            )

        payload = MembershipWebhookPayload.model_validate(body)

        logger.info(
            f"Received membership webhook: {payload.action}",
            extra={
                "event_type": payload.action,
                "membership_id": payload.data.id,
                "product_id": payload.data.product.id,
            },
        )

        event = to_lifecycle_event(payload)
        if event is None:
            logger.info(f"Unhandled membership webhook type: {payload.action}")
            return {"status": "ignored"}

        result = await SubscriptionService().apply_external_event(event)

        logger.info(
            f"Processed membership webhook: {payload.action}",
            extra={
                "event_type": payload.action,
                "account_id": event.account_id,
                "decision": result.decision.value if result.decision else None,
                "usage_reset": result.usage_reset,
            },
        )
        return {"status": "success"}

    except (ValidationError, ValueError) as e:
        logger.error(
            "Invalid membership webhook payload", extra={"validation_errors": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )
    except (HTTPException, AppException):
        raise
    except Exception as e:
        logger.exception(
            f"Failed to process membership webhook: {str(e)}", extra={"error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

