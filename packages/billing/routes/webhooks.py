"""
Webhook endpoints for billing events.

Public endpoints for payment-provider membership webhooks. Signatures are
verified by the gateway in front of this service.
"""

from fastapi import APIRouter, Request

from packages.billing.webhooks.membership_webhook import handle_membership_webhook

router = APIRouter()


@router.post("/webhooks/membership")
async def membership_webhook(request: Request) -> dict[str, str]:
    """Receive membership lifecycle events from the payment provider."""
    return await handle_membership_webhook(request)
