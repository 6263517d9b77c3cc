"""
User Database Model

Internal user record keyed by the identity provider's subject.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field

from quantipack.infrastructure.db.models.base import UUIDMixin, utcnow


class UserModel(UUIDMixin, table=True):
    """
    Users table.

    Created on first successful authentication; never deleted here.
    """

    __tablename__ = "users"

    auth_subject: str = Field(unique=True, index=True, max_length=255)
    email: str = Field(max_length=320)
    name: str = Field(default="", max_length=200)
    organization_id: Optional[UUID] = Field(default=None, index=True)
    role: str = Field(default="user", max_length=20)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    last_login_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
