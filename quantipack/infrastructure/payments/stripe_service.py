"""
Stripe Payment Service

Infrastructure service for Stripe payment processing.
Handles checkout sessions, customer management, billing portal and
webhook signature verification.

The service is built once from settings: without an API key the factory
returns UnconfiguredStripeService, whose session operations fail fast
with a descriptive error instead of probing a global client per call.
"""

import json
import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Optional

import stripe

from quantipack.config.settings import Settings, get_settings
from quantipack.infrastructure.exceptions import (
    BillingNotConfiguredError,
    BillingProviderError,
    WebhookSignatureError,
)


logger = logging.getLogger(__name__)


class BaseStripeService(ABC):
    """Webhook verification shared by both service variants."""

    is_configured: bool = False

    def __init__(
        self,
        webhook_secret: Optional[str] = None,
        webhook_tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self._webhook_secret = webhook_secret
        self._webhook_tolerance = webhook_tolerance

    @property
    def webhook_configured(self) -> bool:
        return bool(self._webhook_secret)

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify webhook signature and decode the event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header

        Returns:
            Decoded event payload

        Raises:
            BillingNotConfiguredError if no webhook secret is configured
            WebhookSignatureError if signature or payload is invalid
        """
        if not self._webhook_secret:
            raise BillingNotConfiguredError(
                "Stripe webhook secret is not configured",
                missing_keys=["STRIPE_WEBHOOK_SECRET"],
            )

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self._webhook_secret,
                self._webhook_tolerance,
            )
            return json.loads(body)

        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}", original_error=e)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}", original_error=e)

    @abstractmethod
    async def get_or_create_customer(
        self,
        auth_subject: str,
        email: str,
        existing_customer_id: Optional[str] = None,
    ) -> Any:
        ...

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        auth_subject: str,
    ) -> Any:
        ...

    @abstractmethod
    async def create_portal_session(self, customer_id: str, return_url: str) -> Any:
        ...


class UnconfiguredStripeService(BaseStripeService):
    """
    Stand-in used when STRIPE_SECRET_KEY is absent.

    Checkout and portal operations raise BillingNotConfiguredError;
    webhook verification still works if a webhook secret is present.
    """

    is_configured = False

    def __init__(
        self,
        reason: str = "Stripe is not configured",
        webhook_secret: Optional[str] = None,
        webhook_tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        super().__init__(webhook_secret, webhook_tolerance)
        self._reason = reason

    def _fail(self) -> BillingNotConfiguredError:
        return BillingNotConfiguredError(self._reason, missing_keys=["STRIPE_SECRET_KEY"])

    async def get_or_create_customer(self, auth_subject, email, existing_customer_id=None):
        raise self._fail()

    async def create_checkout_session(
        self, customer_id, price_id, success_url, cancel_url, auth_subject
    ):
        raise self._fail()

    async def create_portal_session(self, customer_id, return_url):
        raise self._fail()


class StripeService(BaseStripeService):
    """
    Stripe payment processing service backed by an explicit StripeClient.

    API calls use the client's async methods over httpx so they never
    block the event loop.
    """

    is_configured = True

    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str] = None,
        webhook_tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
        client: Optional[stripe.StripeClient] = None,
    ):
        super().__init__(webhook_secret, webhook_tolerance)
        self._client = client or stripe.StripeClient(api_key, http_client=stripe.HTTPXClient())

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def create_customer(
        self,
        auth_subject: str,
        email: str,
        name: Optional[str] = None,
    ) -> stripe.Customer:
        """
        Create a new Stripe customer.

        Args:
            auth_subject: Identity subject (stored in metadata)
            email: Customer email for receipts
            name: Optional customer name

        Returns:
            stripe.Customer object
        """
        params: dict[str, Any] = {
            "email": email,
            "metadata": {"clerk_user_id": auth_subject, "source": "quantipackai"},
        }
        if name:
            params["name"] = name

        try:
            customer = await self._client.customers.create_async(params=params)
            logger.info(f"Created Stripe customer {customer.id} for {auth_subject}")
            return customer

        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise BillingProviderError(
                f"Failed to create customer: {e.user_message or e}",
                operation="create_customer",
                original_error=e,
            )

    async def get_or_create_customer(
        self,
        auth_subject: str,
        email: str,
        existing_customer_id: Optional[str] = None,
    ) -> stripe.Customer:
        """
        Get existing customer or create new one.

        Args:
            auth_subject: Identity subject
            email: Customer email
            existing_customer_id: Customer id stored on the subscription, if any

        Returns:
            stripe.Customer object
        """
        if existing_customer_id:
            try:
                customer = await self._client.customers.retrieve_async(existing_customer_id)
                if not getattr(customer, "deleted", False):
                    return customer
            except stripe.StripeError:
                logger.warning(f"Customer {existing_customer_id} not found, creating new")

        return await self.create_customer(auth_subject, email)

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        auth_subject: str,
    ) -> stripe.checkout.Session:
        """
        Create a Stripe Checkout Session for a subscription.

        The identity subject is written to the subscription metadata; the
        reconciler uses it to resolve the user on subscription events.

        Returns:
            stripe.checkout.Session with checkout URL
        """
        try:
            session = await self._client.checkout.sessions.create_async(
                params={
                    "customer": customer_id,
                    "payment_method_types": ["card"],
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "mode": "subscription",
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "allow_promotion_codes": True,
                    "metadata": {"userId": auth_subject},
                    "subscription_data": {"metadata": {"userId": auth_subject}},
                }
            )

            logger.info(f"Created checkout session {session.id} for {auth_subject}, price={price_id}")
            return session

        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise BillingProviderError(
                f"Failed to create checkout: {e.user_message or e}",
                operation="create_checkout_session",
                original_error=e,
            )

    # =========================================================================
    # Customer Portal
    # =========================================================================

    async def create_portal_session(
        self,
        customer_id: str,
        return_url: str,
    ) -> stripe.billing_portal.Session:
        """
        Create a Billing Portal session for self-service management.

        Returns:
            stripe.billing_portal.Session with portal URL
        """
        try:
            session = await self._client.billing_portal.sessions.create_async(
                params={"customer": customer_id, "return_url": return_url}
            )

            logger.info(f"Created portal session for customer {customer_id}")
            return session

        except stripe.StripeError as e:
            logger.error(f"Failed to create portal session: {e}")
            raise BillingProviderError(
                f"Failed to create portal: {e.user_message or e}",
                operation="create_portal_session",
                original_error=e,
            )


# =============================================================================
# Construction
# =============================================================================

def build_stripe_service(settings: Settings) -> BaseStripeService:
    """Pick the service variant once, from configuration."""
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY not set; billing sessions are disabled")
        return UnconfiguredStripeService(
            reason="Stripe is not configured: set STRIPE_SECRET_KEY to enable billing",
            webhook_secret=settings.stripe_webhook_secret,
            webhook_tolerance=settings.stripe_webhook_tolerance_seconds,
        )

    return StripeService(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        webhook_tolerance=settings.stripe_webhook_tolerance_seconds,
    )


@lru_cache
def get_stripe_service() -> BaseStripeService:
    """Get the process-wide Stripe service."""
    return build_stripe_service(get_settings())
