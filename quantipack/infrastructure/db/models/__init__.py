"""
SQLModel ORM Models for QuantiPackAI

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from quantipack.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
    utcnow,
)
from quantipack.infrastructure.db.models.user import UserModel
from quantipack.infrastructure.db.models.subscription import SubscriptionModel
from quantipack.infrastructure.db.models.token_balance import TokenBalanceModel
from quantipack.infrastructure.db.models.usage_record import UsageRecordModel
from quantipack.infrastructure.db.models.webhook_event import ProcessedWebhookEvent


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    "utcnow",
    # Ledger
    "UserModel",
    "SubscriptionModel",
    "TokenBalanceModel",
    "UsageRecordModel",
    "ProcessedWebhookEvent",
]
