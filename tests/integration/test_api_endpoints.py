"""
Integration tests for the QuantiPackAI API endpoints.

Tests the full request/response cycle against an in-memory ledger.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from quantipack.api.dependencies import get_billing_service
from quantipack.infrastructure.db.repositories import EntitlementLedger
from quantipack.infrastructure.exceptions import BillingProviderError


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_root_endpoint(self, async_client):
        """Root endpoint should return welcome message."""
        response = await async_client.get("/")
        assert response.status_code == 200
        assert "message" in response.json()

    @pytest.mark.asyncio
    async def test_health_endpoint(self, async_client):
        """Health endpoint reports billing configuration."""
        response = await async_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["billing_configured"] is False


class TestUserSync:

    @pytest.mark.asyncio
    async def test_requires_authentication(self, async_client):
        response = await async_client.post("/api/users/sync", json={"email": "a@example.com"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_first_sync_seeds_trial(self, async_client, auth_headers, session):
        response = await async_client.post(
            "/api/users/sync",
            json={"email": "grace@example.com", "name": "Grace"},
            headers=auth_headers("user_grace"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["created"] is True
        assert data["email"] == "grace@example.com"

        ledger = EntitlementLedger(session)
        subscription = await ledger.get_subscription(data["id"])
        balance = await ledger.get_token_balance(data["id"])
        assert subscription.status.value == "trialing"
        assert subscription.plan_type.value == "free"
        assert balance.monthly_tokens == 5

    @pytest.mark.asyncio
    async def test_repeat_sync_updates_profile_only(self, async_client, auth_headers):
        headers = auth_headers("user_grace")
        first = await async_client.post(
            "/api/users/sync", json={"email": "grace@example.com", "name": "Grace"}, headers=headers
        )
        second = await async_client.post(
            "/api/users/sync", json={"email": "grace@navy.mil", "name": "Grace H."}, headers=headers
        )

        assert second.status_code == 200
        assert second.json()["created"] is False
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["email"] == "grace@navy.mil"

    @pytest.mark.asyncio
    async def test_rejects_invalid_body(self, async_client, auth_headers):
        response = await async_client.post("/api/users/sync", json={}, headers=auth_headers())
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_profile_edit(self, async_client, auth_headers, registered_user):
        organization_id = "8f14e45f-ceea-467e-9b5a-2b7c3f1c0a11"

        response = await async_client.patch(
            "/api/users/me",
            json={"name": "Ada L.", "organization_id": organization_id},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Ada L."
        assert data["organization_id"] == organization_id
        assert data["email"] == "ada@example.com"
        assert data["created"] is False

    @pytest.mark.asyncio
    async def test_profile_edit_keeps_omitted_fields(self, async_client, auth_headers, registered_user):
        response = await async_client.patch("/api/users/me", json={}, headers=auth_headers())

        assert response.status_code == 200
        assert response.json()["name"] == "Ada"
        assert response.json()["organization_id"] is None

    @pytest.mark.asyncio
    async def test_profile_edit_requires_registration(self, async_client, auth_headers):
        response = await async_client.patch(
            "/api/users/me", json={"name": "Ghost"}, headers=auth_headers("user_unsynced")
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_profile_edit_rejects_bad_organization(self, async_client, auth_headers, registered_user):
        response = await async_client.patch(
            "/api/users/me", json={"organization_id": "not-a-uuid"}, headers=auth_headers()
        )
        assert response.status_code == 422


class TestTokenEndpoints:

    @pytest.mark.asyncio
    async def test_unregistered_user_gets_404(self, async_client, auth_headers):
        response = await async_client.get("/api/tokens/balance", headers=auth_headers("user_new"))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_balance(self, async_client, auth_headers, registered_user):
        response = await async_client.get("/api/tokens/balance", headers=auth_headers())

        assert response.status_code == 200
        data = response.json()
        assert data["monthly_tokens"] == 5
        assert data["used_tokens"] == 0
        assert data["remaining_tokens"] == 5

    @pytest.mark.asyncio
    async def test_consume_until_exhausted(self, async_client, auth_headers, registered_user):
        headers = auth_headers()

        results = [
            (await async_client.post("/api/tokens/consume", json={"feature": "suite_analysis"}, headers=headers)).json()
            for _ in range(6)
        ]

        assert [r["success"] for r in results] == [True] * 5 + [False]
        assert results[4]["remaining_tokens"] == 0
        assert results[5]["reason"] == "insufficient_balance"

        balance = await async_client.get("/api/tokens/balance", headers=headers)
        assert balance.json()["used_tokens"] == 5

    @pytest.mark.asyncio
    async def test_consume_without_body_uses_default_feature(self, async_client, auth_headers, registered_user):
        response = await async_client.post("/api/tokens/consume", headers=auth_headers())

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["remaining_tokens"] == 4

    @pytest.mark.asyncio
    async def test_usage_for_current_month(self, async_client, auth_headers, registered_user):
        headers = auth_headers()
        await async_client.post("/api/tokens/consume", json={"feature": "suite_analysis"}, headers=headers)
        await async_client.post("/api/tokens/consume", json={"feature": "suite_analysis"}, headers=headers)
        await async_client.post("/api/tokens/consume", json={"feature": "pack_optimizer"}, headers=headers)

        response = await async_client.get("/api/tokens/usage", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_tokens"] == 3
        assert data["by_feature"] == {"suite_analysis": 2, "pack_optimizer": 1}

    @pytest.mark.asyncio
    async def test_usage_for_past_month_is_empty(self, async_client, auth_headers, registered_user):
        response = await async_client.get("/api/tokens/usage?month=2020-01", headers=auth_headers())

        assert response.status_code == 200
        assert response.json() == {"month": "2020-01", "total_tokens": 0, "by_feature": {}}

    @pytest.mark.asyncio
    async def test_usage_rejects_malformed_month(self, async_client, auth_headers, registered_user):
        response = await async_client.get("/api/tokens/usage?month=2020-13", headers=auth_headers())
        assert response.status_code == 422


class TestSubscriptionEndpoints:

    @pytest.mark.asyncio
    async def test_status_for_trial_user(self, async_client, auth_headers, registered_user):
        response = await async_client.get("/api/subscriptions/status", headers=auth_headers())

        assert response.status_code == 200
        data = response.json()
        assert data["plan_type"] == "free"
        assert data["status"] == "trialing"
        assert data["is_active"] is True
        assert data["tokens_per_month"] == 5
        assert data["has_billing_account"] is False

    @pytest.mark.asyncio
    async def test_plans_are_public(self, async_client):
        response = await async_client.get("/api/subscriptions/plans")

        assert response.status_code == 200
        plans = {p["tier"]: p for p in response.json()}
        assert plans["starter"]["tokens_per_month"] == 50
        assert plans["professional"]["tokens_per_month"] == 150
        assert plans["enterprise"]["tokens_per_month"] == 999999
        assert plans["professional"]["price_ids"] == ["price_professional_monthly"]
        assert plans["free"]["price_ids"] == []

    @pytest.mark.asyncio
    async def test_checkout_unconfigured_answers_503(self, async_client, auth_headers, registered_user):
        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={
                "price_id": "price_starter_monthly",
                "success_url": "https://app/success",
                "cancel_url": "https://app/cancel",
            },
            headers=auth_headers(),
        )

        assert response.status_code == 503
        assert response.json()["error"] == "BillingNotConfiguredError"

    @pytest.mark.asyncio
    async def test_checkout_rejects_unknown_price(self, async_client, auth_headers, registered_user):
        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={"price_id": "price_unknown", "success_url": "https://s", "cancel_url": "https://c"},
            headers=auth_headers(),
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_checkout_creates_session_and_stores_customer(
        self, app, async_client, auth_headers, registered_user, session
    ):
        billing = MagicMock()
        billing.get_or_create_customer = AsyncMock(return_value=MagicMock(id="cus_new"))
        billing.create_checkout_session = AsyncMock(
            return_value=MagicMock(id="cs_1", url="https://checkout.stripe.com/c/cs_1")
        )
        app.dependency_overrides[get_billing_service] = lambda: billing

        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={
                "price_id": "price_professional_monthly",
                "success_url": "https://app/success",
                "cancel_url": "https://app/cancel",
            },
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json() == {"checkout_url": "https://checkout.stripe.com/c/cs_1", "session_id": "cs_1"}
        kwargs = billing.create_checkout_session.call_args.kwargs
        assert kwargs["customer_id"] == "cus_new"
        assert kwargs["auth_subject"] == "user_test_1"

        subscription = await EntitlementLedger(session).get_subscription(registered_user.id)
        assert subscription.stripe_customer_id == "cus_new"
        # Plan changes only arrive through the webhook
        assert subscription.plan_type.value == "free"

    @pytest.mark.asyncio
    async def test_checkout_provider_error_answers_502(self, app, async_client, auth_headers, registered_user):
        billing = MagicMock()
        billing.get_or_create_customer = AsyncMock(
            side_effect=BillingProviderError("card_declined", operation="create_customer")
        )
        app.dependency_overrides[get_billing_service] = lambda: billing

        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={"price_id": "price_starter_monthly", "success_url": "https://s", "cancel_url": "https://c"},
            headers=auth_headers(),
        )

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_portal_requires_billing_account(self, async_client, auth_headers, registered_user):
        response = await async_client.post(
            "/api/subscriptions/portal",
            json={"return_url": "https://app/settings"},
            headers=auth_headers(),
        )

        assert response.status_code == 404
