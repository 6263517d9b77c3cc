"""
Unit tests for the Stripe payment service.

The StripeClient is mocked; webhook verification uses real HMAC signatures.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe

from quantipack.config.settings import Settings
from quantipack.infrastructure.exceptions import (
    BillingNotConfiguredError,
    BillingProviderError,
    WebhookSignatureError,
)
from quantipack.infrastructure.payments.stripe_service import (
    BaseStripeService,
    StripeService,
    UnconfiguredStripeService,
    build_stripe_service,
)


@pytest.fixture
def stripe_client():
    client = MagicMock(spec_set=["customers", "checkout", "billing_portal"])
    client.customers.create_async = AsyncMock()
    client.customers.retrieve_async = AsyncMock()
    client.checkout.sessions.create_async = AsyncMock()
    client.billing_portal.sessions.create_async = AsyncMock()
    return client


@pytest.fixture
def service(stripe_client):
    return StripeService(api_key="sk_test_123", webhook_secret="whsec_test_secret", client=stripe_client)


class TestConstruction:

    def test_without_api_key_builds_unconfigured_variant(self):
        service = build_stripe_service(Settings(stripe_secret_key=None, stripe_webhook_secret="whsec_x"))

        assert isinstance(service, UnconfiguredStripeService)
        assert service.is_configured is False
        assert service.webhook_configured is True

    def test_with_api_key_builds_client(self):
        service = build_stripe_service(Settings(stripe_secret_key="sk_test_123"))

        assert isinstance(service, StripeService)
        assert service.is_configured is True

    def test_base_service_is_abstract(self):
        with pytest.raises(TypeError):
            BaseStripeService(webhook_secret="whsec_x")

    @pytest.mark.asyncio
    async def test_unconfigured_fails_fast(self):
        service = UnconfiguredStripeService(reason="Stripe is not configured")

        with pytest.raises(BillingNotConfiguredError) as exc_info:
            await service.create_checkout_session("cus_1", "price_1", "https://s", "https://c", "user_1")

        assert "not configured" in exc_info.value.message
        assert exc_info.value.details["missing_keys"] == ["STRIPE_SECRET_KEY"]

        with pytest.raises(BillingNotConfiguredError):
            await service.create_portal_session("cus_1", "https://r")
        with pytest.raises(BillingNotConfiguredError):
            await service.get_or_create_customer("user_1", "a@example.com")


class TestWebhookVerification:

    def test_valid_signature_decodes_event(self, service, sign_payload):
        body = json.dumps({"id": "evt_1", "type": "invoice.payment_succeeded"})

        event = service.verify_webhook_signature(body.encode("utf-8"), sign_payload(body))

        assert event["id"] == "evt_1"

    def test_tampered_body_is_rejected(self, service, sign_payload):
        body = json.dumps({"id": "evt_1"})
        header = sign_payload(body)

        with pytest.raises(WebhookSignatureError):
            service.verify_webhook_signature(json.dumps({"id": "evt_2"}).encode("utf-8"), header)

    def test_malformed_header_is_rejected(self, service):
        with pytest.raises(WebhookSignatureError):
            service.verify_webhook_signature(b"{}", "not-a-signature")

    def test_missing_secret_is_a_configuration_error(self, sign_payload):
        service = UnconfiguredStripeService()

        with pytest.raises(BillingNotConfiguredError):
            service.verify_webhook_signature(b"{}", sign_payload("{}"))


class TestSessions:

    @pytest.mark.asyncio
    async def test_checkout_carries_subject_in_subscription_metadata(self, service, stripe_client):
        stripe_client.checkout.sessions.create_async.return_value = MagicMock(id="cs_1", url="https://checkout")

        session = await service.create_checkout_session(
            customer_id="cus_1",
            price_id="price_starter_monthly",
            success_url="https://app/success",
            cancel_url="https://app/cancel",
            auth_subject="user_abc",
        )

        assert session.url == "https://checkout"
        stripe_client.checkout.sessions.create_async.assert_awaited_once()
        params = stripe_client.checkout.sessions.create_async.call_args.kwargs["params"]
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": "price_starter_monthly", "quantity": 1}]
        assert params["subscription_data"]["metadata"] == {"userId": "user_abc"}

    @pytest.mark.asyncio
    async def test_existing_customer_is_reused(self, service, stripe_client):
        stripe_client.customers.retrieve_async.return_value = MagicMock(id="cus_1", deleted=False)

        customer = await service.get_or_create_customer("user_abc", "a@example.com", "cus_1")

        assert customer.id == "cus_1"
        stripe_client.customers.create_async.assert_not_called()

    @pytest.mark.asyncio
    async def test_deleted_customer_is_replaced(self, service, stripe_client):
        stripe_client.customers.retrieve_async.return_value = MagicMock(id="cus_1", deleted=True)
        stripe_client.customers.create_async.return_value = MagicMock(id="cus_2")

        customer = await service.get_or_create_customer("user_abc", "a@example.com", "cus_1")

        assert customer.id == "cus_2"

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self, service, stripe_client):
        stripe_client.billing_portal.sessions.create_async.side_effect = stripe.InvalidRequestError(
            "No such customer", param="customer"
        )

        with pytest.raises(BillingProviderError) as exc_info:
            await service.create_portal_session("cus_missing", "https://app")

        assert exc_info.value.details["operation"] == "create_portal_session"
