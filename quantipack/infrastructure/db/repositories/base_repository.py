"""
Base Repository for QuantiPackAI

Generic async repository bound to a caller-owned session.
Repositories never commit: the session owner decides the transaction
boundary (request dependency or webhook event scope).
"""

from typing import Any, TypeVar, Generic, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel


# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository with primary-key access.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        return self._session

    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """
        Get a single record by its primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None if not found
        """
        return await self._session.get(self._model, id)

    async def exists(self, id: Any) -> bool:
        """Check if a record exists."""
        result = await self.get_by_id(id)
        return result is not None

    async def add(self, db_obj: ModelType) -> ModelType:
        """
        Stage a new record and flush it so defaults are populated.

        Args:
            db_obj: Model instance to persist

        Returns:
            The flushed, refreshed instance
        """
        self._session.add(db_obj)
        await self._session.flush()
        await self._session.refresh(db_obj)
        return db_obj
