"""
Subscription API Routes

REST API endpoints for plan status, the plan catalog, Stripe Checkout
and the Stripe billing portal.

Checkout and portal fail fast with 503 when Stripe is not configured;
status and plans keep working.
"""

import logging

from fastapi import APIRouter, Depends

from quantipack.domain.entitlement import (
    PLAN_LIMITS,
    CheckoutResponse,
    CreateCheckoutRequest,
    PlanInfo,
    PortalResponse,
    PortalSessionRequest,
    PriceCatalog,
    SubscriptionStatusResponse,
)
from quantipack.api.dependencies import (
    CurrentUserDep,
    LedgerDep,
    get_billing_service,
    get_price_catalog,
)
from quantipack.infrastructure.exceptions import NotFoundError, ValidationError
from quantipack.infrastructure.payments.stripe_service import BaseStripeService


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Subscription Status Endpoints
# =============================================================================

@router.get("/subscriptions/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(user: CurrentUserDep, ledger: LedgerDep):
    """
    Get the current user's subscription status.
    """
    subscription = await ledger.get_subscription(user.id)
    if subscription is None:
        raise NotFoundError("No subscription found for user", table="subscriptions")

    return SubscriptionStatusResponse(
        plan_type=subscription.plan_type,
        status=subscription.status,
        is_active=subscription.is_active,
        tokens_per_month=subscription.tokens_per_month,
        current_period_end=subscription.current_period_end,
        has_billing_account=bool(subscription.stripe_customer_id),
    )


@router.get("/subscriptions/plans", response_model=list[PlanInfo])
async def list_plans(catalog: PriceCatalog = Depends(get_price_catalog)):
    """
    List the available plans with their monthly token allotment.

    Prices are in cents. ``price_ids`` lists the Stripe prices that grant
    each plan; it is empty for plans that cannot be bought via Checkout.
    """
    return [
        PlanInfo(
            tier=tier,
            name=limits["name"],
            tokens_per_month=limits["tokens_per_month"],
            price=limits["price"],
            features=limits["features"],
            price_ids=catalog.price_ids_for(tier),
        )
        for tier, limits in PLAN_LIMITS.items()
    ]


# =============================================================================
# Checkout Endpoints
# =============================================================================

@router.post("/subscriptions/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    request: CreateCheckoutRequest,
    user: CurrentUserDep,
    ledger: LedgerDep,
    stripe_service: BaseStripeService = Depends(get_billing_service),
    catalog: PriceCatalog = Depends(get_price_catalog),
):
    """
    Create a Stripe Checkout session for subscription purchase.

    The plan is granted later by the subscription webhook, never here.

    Returns:
        CheckoutResponse with checkout URL and session ID
    """
    if request.price_id not in catalog:
        raise ValidationError(
            f"Unknown price: {request.price_id}",
            details={"price_id": request.price_id},
        )

    subscription = await ledger.get_subscription(user.id)
    existing_customer_id = subscription.stripe_customer_id if subscription else None

    customer = await stripe_service.get_or_create_customer(
        auth_subject=user.auth_subject,
        email=user.email,
        existing_customer_id=existing_customer_id,
    )

    if customer.id != existing_customer_id:
        await ledger.set_customer_id(user.id, customer.id)

    session = await stripe_service.create_checkout_session(
        customer_id=customer.id,
        price_id=request.price_id,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
        auth_subject=user.auth_subject,
    )

    logger.info(f"Created checkout session {session.id} for user {user.id}")

    return CheckoutResponse(checkout_url=session.url, session_id=session.id)


# =============================================================================
# Portal Endpoints
# =============================================================================

@router.post("/subscriptions/portal", response_model=PortalResponse)
async def create_portal_session(
    request: PortalSessionRequest,
    user: CurrentUserDep,
    ledger: LedgerDep,
    stripe_service: BaseStripeService = Depends(get_billing_service),
):
    """
    Create a Stripe Customer Portal session.

    Allows customers to manage their subscription:
    - Update payment method
    - Cancel subscription
    - View invoices
    """
    subscription = await ledger.get_subscription(user.id)

    if not subscription or not subscription.stripe_customer_id:
        raise NotFoundError(
            "No billing account found. Please subscribe first.",
            table="subscriptions",
        )

    session = await stripe_service.create_portal_session(
        customer_id=subscription.stripe_customer_id,
        return_url=request.return_url,
    )

    return PortalResponse(portal_url=session.url)
