"""
Webhook Reconciler

Applies verified Stripe billing events to the entitlement ledger.

Event handling:
- customer.subscription.created / updated: apply plan from the price catalog,
  start a new token period
- customer.subscription.deleted: mark canceled, revert to free-tier tokens
- invoice.payment_succeeded: acknowledged only (renewal resets come from
  the subscription.updated event)
- invoice.payment_failed: logged only
- anything else: ignored

All writes for one event (subscription, balance, processed-event record)
share one transaction.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncContextManager, Callable, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from quantipack.domain.billing_events import (
    DEFAULT_SUBJECT_KEYS,
    BillingEvent,
    IgnoredEvent,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionChanged,
    SubscriptionDeleted,
    parse_billing_event,
)
from quantipack.domain.entitlement import PriceCatalog, status_from_provider
from quantipack.infrastructure.db.database import get_session_context
from quantipack.infrastructure.db.models.base import utcnow
from quantipack.infrastructure.db.models.user import UserModel
from quantipack.infrastructure.db.repositories import (
    EntitlementLedger,
    UserRepository,
    WebhookEventRepository,
)
from quantipack.infrastructure.exceptions import (
    BillingNotConfiguredError,
    WebhookSignatureError,
)
from quantipack.infrastructure.payments.stripe_service import BaseStripeService


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class WebhookOutcome(str, Enum):
    """What the reconciler did with one delivery."""
    APPLIED = "applied"
    IGNORED = "ignored"
    DROPPED = "dropped"
    DUPLICATE = "already_processed"
    REJECTED = "rejected"
    UNCONFIGURED = "unconfigured"


class WebhookResult(BaseModel):
    outcome: WebhookOutcome
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    message: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome not in (WebhookOutcome.REJECTED, WebhookOutcome.UNCONFIGURED)


class WebhookReconciler:
    """
    Translates billing-provider events into ledger mutations.

    Args:
        billing: Stripe service used for signature verification
        catalog: Static price -> plan table
        session_factory: Opens one transactional session per event
        free_tier_tokens: Allotment applied on cancellation
        token_reset_days: Distance of the next reset from the event time
        subject_keys: Subscription metadata keys holding the identity subject
        clock: Source of "now"
    """

    def __init__(
        self,
        billing: BaseStripeService,
        catalog: PriceCatalog,
        session_factory: SessionFactory = get_session_context,
        *,
        free_tier_tokens: int = 5,
        token_reset_days: int = 30,
        subject_keys: Sequence[str] = DEFAULT_SUBJECT_KEYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._billing = billing
        self._catalog = catalog
        self._session_factory = session_factory
        self._free_tier_tokens = free_tier_tokens
        self._token_reset_days = token_reset_days
        self._subject_keys = tuple(subject_keys)
        self._clock = clock

    # =========================================================================
    # Entry Points
    # =========================================================================

    async def process(self, payload: bytes, signature: str) -> WebhookResult:
        """
        Verify, parse and apply one webhook delivery.

        A bad signature rejects the delivery without touching the ledger;
        redelivery is left to Stripe.
        """
        try:
            raw_event = self._billing.verify_webhook_signature(payload, signature)
        except BillingNotConfiguredError as e:
            logger.error(f"Webhook received but billing is not configured: {e.message}")
            return WebhookResult(outcome=WebhookOutcome.UNCONFIGURED, message=e.message)
        except WebhookSignatureError as e:
            logger.error(f"Webhook signature verification failed: {e.message}")
            return WebhookResult(outcome=WebhookOutcome.REJECTED, message=e.message)

        event = parse_billing_event(raw_event, self._subject_keys)
        return await self.apply(event)

    async def apply(self, event: BillingEvent) -> WebhookResult:
        """Apply an already-verified event inside a single transaction."""
        logger.info(f"Processing webhook event: {event.event_type} ({event.event_id})")

        async with self._session_factory() as session:
            events = WebhookEventRepository(session)

            if event.event_id and await events.is_processed(event.event_id):
                logger.info(f"Event {event.event_id} already processed, skipping")
                return self._result(event, WebhookOutcome.DUPLICATE)

            result = await self._dispatch(
                event,
                EntitlementLedger(session),
                UserRepository(session),
            )

            if event.event_id:
                await events.mark_processed(
                    event.event_id, event.event_type, result.outcome.value
                )

        return result

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _dispatch(
        self,
        event: BillingEvent,
        ledger: EntitlementLedger,
        users: UserRepository,
    ) -> WebhookResult:
        if isinstance(event, SubscriptionChanged):
            return await self._apply_subscription_changed(event, ledger, users)

        if isinstance(event, SubscriptionDeleted):
            return await self._apply_subscription_deleted(event, ledger, users)

        if isinstance(event, InvoicePaymentSucceeded):
            logger.info(
                f"Payment succeeded for customer {event.customer_id} "
                f"(invoice {event.invoice_id}); token reset follows the subscription update"
            )
            return self._result(event, WebhookOutcome.IGNORED)

        if isinstance(event, InvoicePaymentFailed):
            logger.warning(
                f"Payment failed for customer {event.customer_id} "
                f"(invoice {event.invoice_id}, attempt {event.attempt_count})"
            )
            return self._result(event, WebhookOutcome.IGNORED)

        if isinstance(event, IgnoredEvent):
            logger.debug(f"Unhandled event type: {event.event_type}")

        return self._result(event, WebhookOutcome.IGNORED)

    async def _resolve_user(
        self,
        event: BillingEvent,
        subject: Optional[str],
        users: UserRepository,
    ) -> Optional[UserModel]:
        if not subject:
            logger.warning(
                f"{event.event_type} ({event.event_id}) has no identity subject in metadata, dropping"
            )
            return None

        user = await users.get_by_subject(subject)
        if user is None:
            logger.warning(
                f"{event.event_type} ({event.event_id}) references unknown subject {subject}, dropping"
            )
        return user

    async def _apply_subscription_changed(
        self,
        event: SubscriptionChanged,
        ledger: EntitlementLedger,
        users: UserRepository,
    ) -> WebhookResult:
        """
        Handle customer.subscription.created and .updated identically.

        Updates are not guaranteed to carry a smaller diff than creations,
        so both re-apply the full plan and start a new token period.
        """
        user = await self._resolve_user(event, event.subject, users)
        if user is None:
            return self._result(event, WebhookOutcome.DROPPED, "unresolved user")

        plan = self._catalog.resolve(event.price_id)
        if plan is None:
            logger.warning(
                f"Price {event.price_id} on {event.subscription_id} is not in the price catalog, dropping"
            )
            return self._result(event, WebhookOutcome.DROPPED, "unknown price")

        now = self._clock()
        await ledger.upsert_subscription(
            user.id,
            status=status_from_provider(event.status),
            plan=plan.tier,
            monthly_tokens=plan.monthly_tokens,
            period_end=event.current_period_end,
            stripe_customer_id=event.customer_id,
            stripe_subscription_id=event.subscription_id,
            now=now,
        )
        await ledger.reset_token_balance(
            user.id,
            monthly_tokens=plan.monthly_tokens,
            reset_at=now + timedelta(days=self._token_reset_days),
            now=now,
        )

        logger.info(
            f"Applied {plan.tier.value} plan ({plan.monthly_tokens} tokens) to user {user.id}"
        )
        return self._result(event, WebhookOutcome.APPLIED)

    async def _apply_subscription_deleted(
        self,
        event: SubscriptionDeleted,
        ledger: EntitlementLedger,
        users: UserRepository,
    ) -> WebhookResult:
        """Mark canceled and revert the balance to the free-tier allotment."""
        user = await self._resolve_user(event, event.subject, users)
        if user is None:
            return self._result(event, WebhookOutcome.DROPPED, "unresolved user")

        now = self._clock()
        subscription = await ledger.cancel_subscription(user.id, now=now)
        if subscription is None:
            logger.warning(f"User {user.id} has no subscription record to cancel")

        await ledger.reset_token_balance(
            user.id,
            monthly_tokens=self._free_tier_tokens,
            reset_at=now + timedelta(days=self._token_reset_days),
            now=now,
        )

        logger.info(f"Canceled subscription for user {user.id}, reverted to free tier")
        return self._result(event, WebhookOutcome.APPLIED)

    @staticmethod
    def _result(
        event: BillingEvent,
        outcome: WebhookOutcome,
        message: Optional[str] = None,
    ) -> WebhookResult:
        return WebhookResult(
            outcome=outcome,
            event_id=event.event_id,
            event_type=event.event_type,
            message=message,
        )
