"""
Database entity for usage records.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class UsageRecordEntity(Base):
    """
    Usage counter database entity.

    One row per (account, feature, period start). A new period is a new row;
    usage_count only ever moves up, through the atomic increment statement.
    """

    __tablename__ = "usage_records"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(320), nullable=False, index=True)
    feature_type = Column(String(50), nullable=False)

    usage_count = Column(Integer, nullable=False, server_default="0")

    # Period key; daily rows have period_start == period_end
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    last_reset_date = Column(Date, nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # ON CONFLICT target for the atomic increment
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "feature_type",
            "period_start",
            name="uq_usage_records_account_feature_period",
        ),
        CheckConstraint("usage_count >= 0", name="usage_count_non_negative"),
    )
