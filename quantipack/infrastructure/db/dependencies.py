"""
Dependency Injection Providers for QuantiPackAI

Provides FastAPI dependencies for database sessions and repositories.
"""

from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quantipack.infrastructure.db.database import get_session
from quantipack.infrastructure.db.repositories import (
    EntitlementLedger,
    UserRepository,
)


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_user_repository(
    session: SessionDep,
) -> AsyncGenerator[UserRepository, None]:
    """
    Dependency provider for UserRepository.

    Usage:
        @router.get("/me")
        async def me(repo: UserRepository = Depends(get_user_repository)):
            ...
    """
    yield UserRepository(session)


async def get_entitlement_ledger(
    session: SessionDep,
) -> AsyncGenerator[EntitlementLedger, None]:
    """
    Dependency provider for EntitlementLedger.
    """
    yield EntitlementLedger(session)


# Type aliases for repository dependencies
UserRepoDep = Annotated[UserRepository, Depends(get_user_repository)]
LedgerDep = Annotated[EntitlementLedger, Depends(get_entitlement_ledger)]
