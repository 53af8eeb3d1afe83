"""
Database entity for subscriptions.
"""

from sqlalchemy import Column, String, DateTime, Index
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class SubscriptionEntity(Base):
    """
    Account subscription database entity.

    Stores plan, status, validity window and external payment-provider ids.
    One row per account; written only by the lifecycle coordinator and never
    hard-deleted.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(320), nullable=False, unique=True, index=True)

    # Subscription details
    plan_type = Column(String(50), nullable=False)  # none, starter, pro
    status = Column(String(50), nullable=False)  # active, cancelled, expired

    # Validity window
    started_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)

    # External platform IDs
    external_membership_id = Column(String(255), nullable=True, index=True)
    external_product_id = Column(String(255), nullable=True)

    # Lifecycle timestamps
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)

    # Standard timestamps
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Expiry sweep scans active rows by end date
    __table_args__ = (Index("idx_subscription_status_ends_at", "status", "ends_at"),)
