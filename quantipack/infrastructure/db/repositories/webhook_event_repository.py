"""
Processed Webhook Event Repository

Tracks Stripe event ids already applied, so provider redeliveries are
acknowledged without touching the ledger twice.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from quantipack.infrastructure.db.models.base import utcnow
from quantipack.infrastructure.db.models.webhook_event import ProcessedWebhookEvent
from quantipack.infrastructure.db.repositories.base_repository import BaseRepository


class WebhookEventRepository(BaseRepository[ProcessedWebhookEvent]):

    def __init__(self, session: AsyncSession):
        super().__init__(ProcessedWebhookEvent, session)

    async def is_processed(self, event_id: str) -> bool:
        """Check if a webhook event has already been processed."""
        return await self.exists(event_id)

    async def mark_processed(
        self,
        event_id: str,
        event_type: str,
        outcome: str,
        now: Optional[datetime] = None,
    ) -> ProcessedWebhookEvent:
        """Record a processed webhook event."""
        return await self.add(
            ProcessedWebhookEvent(
                event_id=event_id,
                event_type=event_type,
                outcome=outcome,
                processed_at=now or utcnow(),
            )
        )
