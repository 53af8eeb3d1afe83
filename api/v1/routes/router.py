from fastapi import APIRouter

from api.v1.routes import (
    health,
)
from packages.billing.routes import billing, webhooks, plans

api_router = APIRouter()

# Health check (no auth required)
api_router.include_router(health.router, prefix="/health", tags=["health"])

# Webhooks (no auth - signature verified by the gateway)
api_router.include_router(webhooks.router, prefix="/billing", tags=["webhooks"])

# Plans (no auth - public pricing info)
api_router.include_router(plans.router, prefix="/billing/plans", tags=["billing"])

# Billing routes (account identity per endpoint; lifecycle endpoints are internal)
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
