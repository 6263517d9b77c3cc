"""
Stripe Webhook Handler

Receives Stripe webhook deliveries and hands them to the reconciler.
Processing is idempotent, backed by the processed_webhook_events table.

Responses:
- 400: missing or invalid signature (nothing is applied)
- 503: webhook secret not configured
- 200: {"status": <outcome>} for applied, ignored, dropped or duplicate events

Unexpected errors propagate as 500 so Stripe redelivers the event.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from quantipack.api.dependencies import get_webhook_reconciler
from quantipack.infrastructure.services.webhook_reconciler import (
    WebhookOutcome,
    WebhookReconciler,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Handle Stripe webhook events.

    Verifies the signature against the raw body, then applies the event
    to the entitlement ledger in one transaction.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        logger.error("Webhook received without Stripe-Signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    result = await reconciler.process(payload, signature)

    if result.outcome == WebhookOutcome.UNCONFIGURED:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=result.message or "Webhook processing is not configured"
        )

    if result.outcome == WebhookOutcome.REJECTED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature"
        )

    response = {"status": result.outcome.value}
    if result.message:
        response["message"] = result.message
    return response
