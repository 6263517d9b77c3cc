"""
Entitlement Ledger

Data access layer for subscription plan and token balance per user.
Every method works inside the caller's session so that the reconciler
can apply a subscription upsert and a balance reset as one transaction.
"""

import logging
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quantipack.infrastructure.db.models.base import utcnow
from quantipack.infrastructure.db.models.subscription import SubscriptionModel
from quantipack.infrastructure.db.models.token_balance import TokenBalanceModel
from quantipack.infrastructure.db.models.usage_record import UsageRecordModel
from quantipack.domain.entitlement import (
    ConsumeFailure,
    ConsumeResult,
    PlanTier,
    Subscription,
    SubscriptionStatus,
    TokenBalance,
    UsageSummary,
    get_tokens_per_month,
)


logger = logging.getLogger(__name__)

UserKey = Union[UUID, str]


def _as_uuid(user_id: UserKey) -> UUID:
    return UUID(user_id) if isinstance(user_id, str) else user_id


class EntitlementLedger:
    """
    Ledger of subscriptions and token balances.

    Implements the read/write surface used by the webhook reconciler,
    the feature-usage path and the dashboard views.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # =========================================================================
    # Subscription
    # =========================================================================

    async def _get_subscription_model(
        self,
        user_id: UserKey,
        for_update: bool = False,
    ) -> Optional[SubscriptionModel]:
        statement = select(SubscriptionModel).where(
            SubscriptionModel.user_id == _as_uuid(user_id)
        )
        if for_update:
            statement = statement.with_for_update()
        result = await self._session.execute(statement)
        return result.scalar_one_or_none()

    async def get_subscription(self, user_id: UserKey) -> Optional[Subscription]:
        """
        Get the current subscription for a user.

        Args:
            user_id: Internal user ID

        Returns:
            Subscription domain model or None
        """
        model = await self._get_subscription_model(user_id)
        return self._subscription_to_domain(model) if model else None

    async def upsert_subscription(
        self,
        user_id: UserKey,
        status: SubscriptionStatus,
        plan: PlanTier,
        monthly_tokens: int,
        period_end: Optional[datetime],
        *,
        stripe_customer_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Create or replace the subscription for a user.

        An existing row is updated in place; Stripe ids passed as None keep
        their stored value.

        Args:
            user_id: Internal user ID
            status: New lifecycle status
            plan: New plan tier
            monthly_tokens: Monthly token entitlement of the plan
            period_end: End of the current billing period

        Returns:
            The subscription as stored
        """
        now = now or utcnow()
        model = await self._get_subscription_model(user_id, for_update=True)

        if model is None:
            model = SubscriptionModel(user_id=_as_uuid(user_id), created_at=now)
            logger.info(f"Creating subscription for user {user_id}")

        model.status = status.value
        model.plan_type = plan.value
        model.tokens_per_month = monthly_tokens
        model.current_period_end = period_end
        if stripe_customer_id is not None:
            model.stripe_customer_id = stripe_customer_id
        if stripe_subscription_id is not None:
            model.stripe_subscription_id = stripe_subscription_id
        model.updated_at = now

        self._session.add(model)
        await self._session.flush()
        return self._subscription_to_domain(model)

    async def cancel_subscription(
        self,
        user_id: UserKey,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """
        Mark the subscription canceled.

        Only the status changes; plan, provider ids and period are kept
        for history.
        """
        model = await self._get_subscription_model(user_id, for_update=True)
        if model is None:
            return None

        model.status = SubscriptionStatus.CANCELED.value
        model.updated_at = now or utcnow()
        self._session.add(model)
        await self._session.flush()
        return self._subscription_to_domain(model)

    async def set_customer_id(
        self,
        user_id: UserKey,
        stripe_customer_id: str,
    ) -> Subscription:
        """
        Remember the Stripe customer created at first checkout.

        A user without a subscription row gets an incomplete free-tier row
        so the customer is reused by the next checkout.
        """
        model = await self._get_subscription_model(user_id, for_update=True)
        if model is None:
            logger.warning(
                f"No subscription for user {user_id}, creating one to hold customer {stripe_customer_id}"
            )
            model = SubscriptionModel(
                user_id=_as_uuid(user_id),
                status=SubscriptionStatus.INCOMPLETE.value,
                plan_type=PlanTier.FREE.value,
                tokens_per_month=get_tokens_per_month(PlanTier.FREE),
            )

        model.stripe_customer_id = stripe_customer_id
        model.updated_at = utcnow()
        self._session.add(model)
        await self._session.flush()
        return self._subscription_to_domain(model)

    # =========================================================================
    # Token Balance
    # =========================================================================

    async def _get_balance_model(
        self,
        user_id: UserKey,
        for_update: bool = False,
        refresh: bool = False,
    ) -> Optional[TokenBalanceModel]:
        statement = select(TokenBalanceModel).where(
            TokenBalanceModel.user_id == _as_uuid(user_id)
        )
        if for_update:
            statement = statement.with_for_update()
        if refresh:
            statement = statement.execution_options(populate_existing=True)
        result = await self._session.execute(statement)
        return result.scalar_one_or_none()

    async def get_token_balance(self, user_id: UserKey) -> Optional[TokenBalance]:
        """Get the token balance for a user."""
        model = await self._get_balance_model(user_id, refresh=True)
        return self._balance_to_domain(model) if model else None

    async def reset_token_balance(
        self,
        user_id: UserKey,
        monthly_tokens: int,
        reset_at: datetime,
        now: Optional[datetime] = None,
    ) -> TokenBalance:
        """
        Start a new billing period for a user's balance.

        Sets used tokens to zero and the monthly allotment and reset
        timestamp to the given values. Additional tokens are untouched.
        Creates the balance row if the user has none yet.
        """
        model = await self._get_balance_model(user_id, for_update=True, refresh=True)

        if model is None:
            model = TokenBalanceModel(user_id=_as_uuid(user_id), additional_tokens=0)

        model.monthly_tokens = monthly_tokens
        model.used_tokens = 0
        model.reset_at = reset_at
        model.updated_at = now or utcnow()

        self._session.add(model)
        await self._session.flush()
        logger.info(f"Reset token balance for user {user_id} to {monthly_tokens} tokens")
        return self._balance_to_domain(model)

    async def consume_token(
        self,
        user_id: UserKey,
        feature: str = "analysis",
        now: Optional[datetime] = None,
    ) -> ConsumeResult:
        """
        Debit one token if the balance allows it.

        The availability check and the increment are a single conditional
        UPDATE, so concurrent consumers can never push the balance past
        its allotment. A refused debit mutates nothing.

        Args:
            user_id: Internal user ID
            feature: Metered feature being invoked (recorded in usage history)

        Returns:
            ConsumeResult with success flag and remaining tokens
        """
        now = now or utcnow()
        user_uuid = _as_uuid(user_id)

        statement = (
            update(TokenBalanceModel)
            .where(TokenBalanceModel.user_id == user_uuid)
            .where(
                TokenBalanceModel.used_tokens
                < TokenBalanceModel.monthly_tokens + TokenBalanceModel.additional_tokens
            )
            .values(used_tokens=TokenBalanceModel.used_tokens + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        balance = await self._get_balance_model(user_uuid, refresh=True)

        if result.rowcount != 1:
            if balance is None:
                logger.warning(f"No token balance for user {user_id}")
                return ConsumeResult(success=False, reason=ConsumeFailure.NO_BALANCE)
            logger.info(f"Insufficient tokens for user {user_id} ({feature})")
            return ConsumeResult(
                success=False,
                remaining_tokens=self._balance_to_domain(balance).remaining_tokens,
                reason=ConsumeFailure.INSUFFICIENT_BALANCE,
            )

        self._session.add(
            UsageRecordModel(
                user_id=user_uuid,
                feature=feature,
                tokens_used=1,
                month=now.strftime("%Y-%m"),
                created_at=now,
            )
        )
        await self._session.flush()

        return ConsumeResult(
            success=True,
            remaining_tokens=self._balance_to_domain(balance).remaining_tokens,
        )

    async def get_usage(self, user_id: UserKey, month: str) -> UsageSummary:
        """
        Summarize the tokens a user debited in one month.

        Args:
            user_id: Internal user ID
            month: Calendar month as YYYY-MM

        Returns:
            UsageSummary with per-feature token counts
        """
        statement = (
            select(UsageRecordModel.feature, func.sum(UsageRecordModel.tokens_used))
            .where(UsageRecordModel.user_id == _as_uuid(user_id))
            .where(UsageRecordModel.month == month)
            .group_by(UsageRecordModel.feature)
        )
        result = await self._session.execute(statement)
        by_feature = {feature: int(tokens) for feature, tokens in result.all()}

        return UsageSummary(
            month=month,
            total_tokens=sum(by_feature.values()),
            by_feature=by_feature,
        )

    # =========================================================================
    # Registration
    # =========================================================================

    async def seed_trial(
        self,
        user_id: UserKey,
        trial_tokens: int,
        trial_ends_at: datetime,
        reset_at: datetime,
    ) -> tuple[Subscription, TokenBalance]:
        """Seed a newly registered user with the trial entitlement."""
        subscription = await self.upsert_subscription(
            user_id,
            status=SubscriptionStatus.TRIALING,
            plan=PlanTier.FREE,
            monthly_tokens=trial_tokens,
            period_end=trial_ends_at,
        )
        balance = await self.reset_token_balance(user_id, trial_tokens, reset_at)
        return subscription, balance

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _subscription_to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain entity."""
        return Subscription(
            id=str(model.id),
            user_id=str(model.user_id),
            stripe_customer_id=model.stripe_customer_id,
            stripe_subscription_id=model.stripe_subscription_id,
            status=SubscriptionStatus(model.status),
            plan_type=PlanTier(model.plan_type),
            tokens_per_month=model.tokens_per_month,
            current_period_end=model.current_period_end,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _balance_to_domain(self, model: TokenBalanceModel) -> TokenBalance:
        """Convert database model to domain entity."""
        return TokenBalance(
            id=str(model.id),
            user_id=str(model.user_id),
            monthly_tokens=model.monthly_tokens,
            additional_tokens=model.additional_tokens or 0,
            used_tokens=model.used_tokens,
            reset_at=model.reset_at,
            updated_at=model.updated_at,
        )
