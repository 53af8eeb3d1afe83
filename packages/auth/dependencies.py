from typing import Annotated, Optional
from fastapi import HTTPException, status, Header

from common.core.otel_axiom_exporter import trace_span
from packages.billing.models.domain.lifecycle import normalize_account_id


@trace_span
async def get_current_account_id(
    x_account_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Account id of the caller.

    Authentication happens at the upstream gateway, which forwards the
    verified identity (the user's email) in X-Account-Id.
    """
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Account-Id header missing",
        )
    return normalize_account_id(x_account_id)
