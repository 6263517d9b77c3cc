"""
Usage Record Database Model

One row per debited token, for per-month usage history.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field

from quantipack.infrastructure.db.models.base import UUIDMixin, utcnow


class UsageRecordModel(UUIDMixin, table=True):
    __tablename__ = "usage_records"

    user_id: UUID = Field(foreign_key="users.id", index=True, nullable=False)
    feature: str = Field(max_length=64)
    tokens_used: int = Field(default=1)
    month: str = Field(index=True, max_length=7)  # YYYY-MM
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
