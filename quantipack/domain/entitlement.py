"""
Entitlement Domain Models

Domain models for the entitlement ledger: plan tiers, subscription
lifecycle, token balances and the static price catalog.
Enums, DTOs, and domain entities for the billing bounded context.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from quantipack.config.settings import Settings


class PlanTier(str, Enum):
    """Subscription plan tiers."""
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status (Stripe-defined subset)."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


class ConsumeFailure(str, Enum):
    """Why a token could not be consumed."""
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NO_BALANCE = "no_balance"


# Stripe statuses outside our enumeration collapse onto the nearest one
_PROVIDER_STATUS_ALIASES = {
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def status_from_provider(value: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status string to SubscriptionStatus."""
    if value is None:
        return SubscriptionStatus.INCOMPLETE
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return _PROVIDER_STATUS_ALIASES.get(value, SubscriptionStatus.INCOMPLETE)


# =============================================================================
# Domain Entities
# =============================================================================

class Subscription(BaseModel):
    """Core subscription domain entity."""
    id: Optional[str] = None
    user_id: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.TRIALING
    plan_type: PlanTier = PlanTier.FREE
    tokens_per_month: int = 5
    current_period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class TokenBalance(BaseModel):
    """Per-user token balance for the current billing period."""
    id: Optional[str] = None
    user_id: str
    monthly_tokens: int = 0
    additional_tokens: int = 0
    used_tokens: int = 0
    reset_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def total_tokens(self) -> int:
        return self.monthly_tokens + self.additional_tokens

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.total_tokens - self.used_tokens)


class ConsumeResult(BaseModel):
    """Outcome of a metered feature invocation."""
    success: bool
    remaining_tokens: int = 0
    reason: Optional[ConsumeFailure] = None


# =============================================================================
# Plan Configuration (Business Logic)
# =============================================================================

PLAN_LIMITS = {
    PlanTier.FREE: {
        "name": "Free",
        "tokens_per_month": 5,
        "price": 0,
        "features": [
            "5 tokens per month",
            "Basic suite analysis",
            "Community support",
        ],
    },
    PlanTier.STARTER: {
        "name": "Starter",
        "tokens_per_month": 50,
        "price": 3999,
        "features": [
            "50 tokens per month",
            "All analysis tools",
            "Email support",
            "Export reports",
        ],
    },
    PlanTier.PROFESSIONAL: {
        "name": "Professional",
        "tokens_per_month": 150,
        "price": 9999,
        "features": [
            "150 tokens per month",
            "All analysis tools",
            "Priority support",
            "Advanced analytics",
            "API access",
        ],
    },
    # Custom pricing, negotiated outside Checkout
    PlanTier.ENTERPRISE: {
        "name": "Enterprise",
        "tokens_per_month": 999999,
        "price": 0,
        "features": [
            "Unlimited tokens",
            "All features",
            "Dedicated support",
            "Custom integrations",
            "SLA guarantee",
        ],
    },
}


def get_tokens_per_month(tier: PlanTier) -> int:
    """Get the monthly token allotment for a tier."""
    return PLAN_LIMITS[tier]["tokens_per_month"]


class PlanEntitlement(BaseModel):
    """What a single Stripe price grants."""
    tier: PlanTier
    monthly_tokens: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)


class PriceCatalog:
    """
    Static price -> plan table.

    Must be kept in sync with the Stripe product catalog; tiers are never
    inferred from price amounts or product names.
    """

    def __init__(self, entries: Optional[dict[str, PlanEntitlement]] = None):
        self._entries = dict(entries or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceCatalog":
        configured = {
            settings.stripe_starter_monthly_price_id: PlanTier.STARTER,
            settings.stripe_starter_yearly_price_id: PlanTier.STARTER,
            settings.stripe_professional_monthly_price_id: PlanTier.PROFESSIONAL,
            settings.stripe_professional_yearly_price_id: PlanTier.PROFESSIONAL,
            settings.stripe_enterprise_price_id: PlanTier.ENTERPRISE,
        }
        return cls({
            price_id: PlanEntitlement(tier=tier, monthly_tokens=get_tokens_per_month(tier))
            for price_id, tier in configured.items()
            if price_id
        })

    def resolve(self, price_id: Optional[str]) -> Optional[PlanEntitlement]:
        if not price_id:
            return None
        return self._entries.get(price_id)

    def __contains__(self, price_id: object) -> bool:
        return price_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def price_ids_for(self, tier: PlanTier) -> list[str]:
        return [pid for pid, ent in self._entries.items() if ent.tier == tier]


# =============================================================================
# Request/Response DTOs
# =============================================================================

class UserSyncRequest(BaseModel):
    """Profile attributes supplied by the identity provider."""
    email: str = Field(..., min_length=3, max_length=320)
    name: str = Field(default="", max_length=200)


class UpdateProfileRequest(BaseModel):
    """Profile fields the user may edit; omitted fields are left as they are."""
    name: Optional[str] = Field(default=None, max_length=200)
    organization_id: Optional[UUID] = None


class UserResponse(BaseModel):
    """Response DTO for the resolved user."""
    id: str
    email: str
    name: str
    role: str
    organization_id: Optional[str] = None
    created: bool = Field(default=False, description="Whether the record was created by this call")


class CreateCheckoutRequest(BaseModel):
    """Request DTO for creating a checkout session."""
    price_id: str = Field(..., description="Stripe price to subscribe to")
    success_url: str = Field(..., description="Redirect URL after successful payment")
    cancel_url: str = Field(..., description="Redirect URL after cancelled payment")


class PortalSessionRequest(BaseModel):
    """Request DTO for creating a billing portal session."""
    return_url: str = Field(..., description="URL to return to after portal session")


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    checkout_url: str
    session_id: str


class PortalResponse(BaseModel):
    """Response DTO for portal session creation."""
    portal_url: str


class SubscriptionStatusResponse(BaseModel):
    """Response DTO for subscription status."""
    plan_type: PlanTier
    status: SubscriptionStatus
    is_active: bool = Field(description="Whether the subscription is active or trialing")
    tokens_per_month: int
    current_period_end: Optional[datetime] = None
    has_billing_account: bool = False


class TokenBalanceResponse(BaseModel):
    """Response DTO for the token balance."""
    monthly_tokens: int
    additional_tokens: int
    used_tokens: int
    remaining_tokens: int
    reset_at: Optional[datetime] = None


class ConsumeTokenRequest(BaseModel):
    """Request DTO for debiting one token before a feature run."""
    feature: str = Field(default="analysis", min_length=1, max_length=64)


class PlanInfo(BaseModel):
    """Public description of a plan tier."""
    tier: PlanTier
    name: str
    tokens_per_month: int
    price: int  # In cents
    features: list[str]
    price_ids: list[str] = []


class UsageSummary(BaseModel):
    """Tokens debited in one calendar month, grouped by feature."""
    month: str  # YYYY-MM
    total_tokens: int = 0
    by_feature: dict[str, int] = {}
