"""
Repository Layer for QuantiPackAI

Exports all repository classes for dependency injection.
"""

from quantipack.infrastructure.db.repositories.base_repository import BaseRepository
from quantipack.infrastructure.db.repositories.user_repository import UserRepository
from quantipack.infrastructure.db.repositories.entitlement_repository import (
    EntitlementLedger,
)
from quantipack.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "UserRepository",
    "EntitlementLedger",
    "WebhookEventRepository",
]
