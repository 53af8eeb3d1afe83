# Test data and fixtures

from datetime import datetime, timezone

from common.core.config import settings

MEMBERSHIP_CREATED_AT = datetime(2026, 3, 1, tzinfo=timezone.utc)
MEMBERSHIP_VALID_UNTIL = datetime(2026, 3, 31, tzinfo=timezone.utc)

# Membership webhook as delivered by the payment provider (signature already checked)
SAMPLE_MEMBERSHIP_WEBHOOK = {
    "action": "membership.went_valid",
    "data": {
        "id": "mem_abc123",
        "status": "completed",
        "user": {"id": "user_42", "email": "Member@Example.com", "username": "member"},
        "product": {"id": settings.starter_product_ids[0], "title": "Starter"},
        "created_at": MEMBERSHIP_CREATED_AT.timestamp(),
        "valid_until": MEMBERSHIP_VALID_UNTIL.timestamp(),
        "renewal_period_start": MEMBERSHIP_CREATED_AT.timestamp(),
    },
}
