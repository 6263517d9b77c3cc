"""
Token Balance Database Model
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field

from quantipack.infrastructure.db.models.base import UUIDMixin, utcnow


class TokenBalanceModel(UUIDMixin, table=True):
    """
    Token balance table; one row per user.

    used_tokens stays within [0, monthly_tokens + additional_tokens].
    """

    __tablename__ = "token_balances"
    __table_args__ = (
        CheckConstraint("used_tokens >= 0", name="ck_token_balances_used_non_negative"),
        CheckConstraint(
            "used_tokens <= monthly_tokens + additional_tokens",
            name="ck_token_balances_used_within_allotment",
        ),
    )

    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True, nullable=False)
    monthly_tokens: int = Field(default=0)
    additional_tokens: int = Field(default=0)
    used_tokens: int = Field(default=0)
    reset_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
