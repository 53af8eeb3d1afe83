"""Billing services."""

from packages.billing.services.plans_service import PlansService
from packages.billing.services.subscription_service import SubscriptionService
from packages.billing.services.quota_service import QuotaService

__all__ = [
    "PlansService",
    "SubscriptionService",
    "QuotaService",
]
