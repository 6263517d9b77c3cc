"""
Token API Routes

Balance lookup, the per-invocation token debit used by metered features
and monthly usage history.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from quantipack.api.dependencies import CurrentUserDep, LedgerDep
from quantipack.domain.entitlement import (
    ConsumeResult,
    ConsumeTokenRequest,
    TokenBalanceResponse,
    UsageSummary,
)
from quantipack.infrastructure.db.models.base import utcnow
from quantipack.infrastructure.exceptions import NotFoundError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tokens/balance", response_model=TokenBalanceResponse)
async def get_token_balance(user: CurrentUserDep, ledger: LedgerDep):
    """Get the current user's token balance."""
    balance = await ledger.get_token_balance(user.id)
    if balance is None:
        raise NotFoundError("No token balance found for user", table="token_balances")

    return TokenBalanceResponse(
        monthly_tokens=balance.monthly_tokens,
        additional_tokens=balance.additional_tokens,
        used_tokens=balance.used_tokens,
        remaining_tokens=balance.remaining_tokens,
        reset_at=balance.reset_at,
    )


@router.post("/tokens/consume", response_model=ConsumeResult)
async def consume_token(
    user: CurrentUserDep,
    ledger: LedgerDep,
    request: Optional[ConsumeTokenRequest] = None,
):
    """
    Debit one token for a feature invocation.

    An exhausted balance is not an error: the response carries
    ``success: false`` and the caller decides what to show.
    """
    request = request or ConsumeTokenRequest()
    return await ledger.consume_token(user.id, feature=request.feature)


@router.get("/tokens/usage", response_model=UsageSummary)
async def get_token_usage(
    user: CurrentUserDep,
    ledger: LedgerDep,
    month: Optional[str] = Query(
        default=None,
        pattern=r"^\d{4}-(0[1-9]|1[0-2])$",
        description="Calendar month as YYYY-MM; defaults to the current month",
    ),
):
    """Get the current user's token usage for a month, per feature."""
    return await ledger.get_usage(user.id, month or utcnow().strftime("%Y-%m"))
