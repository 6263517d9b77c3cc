"""
Payments Infrastructure Module

Stripe payment processing and webhook verification.
"""

from quantipack.infrastructure.payments.stripe_service import (
    BaseStripeService,
    StripeService,
    UnconfiguredStripeService,
    build_stripe_service,
    get_stripe_service,
)

__all__ = [
    "BaseStripeService",
    "StripeService",
    "UnconfiguredStripeService",
    "build_stripe_service",
    "get_stripe_service",
]
