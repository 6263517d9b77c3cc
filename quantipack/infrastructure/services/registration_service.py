"""
User Registration Service

Resolves the identity provider's (subject, email, name) to an internal
user and seeds first-time users with the trial entitlement.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from quantipack.config.settings import Settings
from quantipack.infrastructure.db.models.base import utcnow
from quantipack.infrastructure.db.models.user import UserModel
from quantipack.infrastructure.db.repositories import EntitlementLedger, UserRepository


logger = logging.getLogger(__name__)


async def register_or_refresh_user(
    session: AsyncSession,
    settings: Settings,
    auth_subject: str,
    email: str,
    name: str,
    now: Optional[datetime] = None,
) -> Tuple[UserModel, bool]:
    """
    Create or update a user from identity-provider attributes.

    New users get a trialing free subscription and a matching token
    balance in the same transaction as the user row.

    Returns:
        Tuple of (user, created)
    """
    now = now or utcnow()
    user, created = await UserRepository(session).create_or_update(
        auth_subject, email, name, now=now
    )

    if created:
        await EntitlementLedger(session).seed_trial(
            user.id,
            trial_tokens=settings.free_tier_tokens,
            trial_ends_at=now + timedelta(days=settings.trial_days),
            reset_at=now + timedelta(days=settings.token_reset_days),
        )
        logger.info(f"Registered user {user.id} with {settings.free_tier_tokens} trial tokens")

    return user, created
