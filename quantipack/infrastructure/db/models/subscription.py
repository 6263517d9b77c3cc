"""
Subscription Database Model

SQLModel table for subscription data persistence.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field

from quantipack.infrastructure.db.models.base import UUIDMixin, TimestampMixin


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription table; one row per user.

    The unique user_id is what keeps a superseding subscription from
    inserting a duplicate.
    """

    __tablename__ = "subscriptions"

    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True, nullable=False)

    # Stripe IDs
    stripe_customer_id: Optional[str] = Field(default=None, index=True, max_length=255)
    stripe_subscription_id: Optional[str] = Field(default=None, index=True, max_length=255)

    # Subscription details
    status: str = Field(default="trialing", max_length=20)
    plan_type: str = Field(default="free", max_length=20)
    tokens_per_month: int = Field(default=5, ge=0)

    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
