"""
User Repository for QuantiPackAI

Resolves identity-provider subjects to internal user records.
"""

from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quantipack.infrastructure.db.models.base import utcnow
from quantipack.infrastructure.db.models.user import UserModel
from quantipack.infrastructure.db.repositories.base_repository import BaseRepository


class UserRepository(BaseRepository[UserModel]):
    """
    Repository for user records.

    The ledger is keyed by UserModel.id, never by the external subject;
    this repository is the only place the two meet.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(UserModel, session)

    async def get_by_subject(self, auth_subject: str) -> Optional[UserModel]:
        """
        Get a user by identity-provider subject.

        Args:
            auth_subject: The external subject (JWT ``sub`` claim)

        Returns:
            UserModel or None if not found
        """
        stmt = select(UserModel).where(UserModel.auth_subject == auth_subject)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_or_update(
        self,
        auth_subject: str,
        email: str,
        name: str,
        now: Optional[datetime] = None,
    ) -> Tuple[UserModel, bool]:
        """
        Create the user on first login, otherwise refresh profile fields.

        Args:
            auth_subject: External subject
            email: Email reported by the identity provider
            name: Display name reported by the identity provider
            now: Timestamp to record as the login time

        Returns:
            Tuple of (user, created)
        """
        now = now or utcnow()
        user = await self.get_by_subject(auth_subject)

        if user:
            user.email = email
            user.name = name
            user.last_login_at = now
            self.session.add(user)
            await self.session.flush()
            return user, False

        user = UserModel(
            auth_subject=auth_subject,
            email=email,
            name=name,
            created_at=now,
            last_login_at=now,
        )
        return await self.add(user), True

    async def update_profile(
        self,
        auth_subject: str,
        name: Optional[str] = None,
        organization_id: Optional[UUID] = None,
    ) -> Optional[UserModel]:
        """
        Apply user-initiated profile edits.

        Only the fields passed are changed. Email stays owned by the
        identity provider and is refreshed on sync.

        Returns:
            Updated UserModel or None if the subject is unknown
        """
        user = await self.get_by_subject(auth_subject)
        if user is None:
            return None

        if name is not None:
            user.name = name
        if organization_id is not None:
            user.organization_id = organization_id

        self.session.add(user)
        await self.session.flush()
        return user
