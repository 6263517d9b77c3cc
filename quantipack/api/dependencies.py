"""
API Dependencies

FastAPI dependency injection for authentication and common services.

Security: JWT tokens are verified cryptographically using the identity
provider's JWKS (RS256) with HS256 fallback via a shared secret. Never
decode without verification.
"""

import logging
from functools import lru_cache
from typing import Annotated, Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from quantipack.config.settings import get_settings
from quantipack.domain.entitlement import PriceCatalog
from quantipack.infrastructure.db.dependencies import (
    SessionDep,
    UserRepoDep,
    LedgerDep,
)
from quantipack.infrastructure.db.models.user import UserModel
from quantipack.infrastructure.payments.stripe_service import (
    BaseStripeService,
    get_stripe_service,
)
from quantipack.infrastructure.services.webhook_reconciler import WebhookReconciler


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Cached JWKS client; PyJWKClient caches keys internally.
_jwks_client: Optional[PyJWKClient] = None


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    """Return a singleton PyJWKClient for the identity provider's JWKS endpoint."""
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


def _decode_options(audience: Optional[str], issuer: Optional[str]) -> dict:
    kwargs: dict = {"options": {"require": ["exp", "sub"], "verify_aud": bool(audience)}}
    if audience:
        kwargs["audience"] = audience
    if issuer:
        kwargs["issuer"] = issuer
    return kwargs


def _decode_with_jwks(
    token: str,
    jwks_url: str,
    audience: Optional[str],
    issuer: Optional[str],
) -> dict:
    """Verify JWT using the JWKS endpoint (RS256 asymmetric keys)."""
    client = _get_jwks_client(jwks_url)
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["RS256"],
        **_decode_options(audience, issuer),
    )


def _decode_with_secret(
    token: str,
    secret: str,
    audience: Optional[str],
    issuer: Optional[str],
) -> dict:
    """Verify JWT using an HS256 shared secret."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        **_decode_options(audience, issuer),
    )


async def get_current_subject(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract and verify the identity subject from a bearer JWT.

    Verification strategy (in order):
      1. JWKS (RS256) when ``AUTH_JWKS_URL`` is set.
      2. HS256 with ``AUTH_JWT_SECRET``.

    Returns:
        Authenticated subject (``sub`` claim).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    settings = get_settings()
    audience, issuer = settings.auth_audience, settings.auth_issuer

    payload: Optional[dict] = None

    # --- Strategy 1: JWKS (RS256) ---
    if settings.auth_jwks_url:
        try:
            payload = _decode_with_jwks(token, settings.auth_jwks_url, audience, issuer)
        except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
            logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    # --- Strategy 2: HS256 fallback ---
    if payload is None and settings.auth_jwt_secret:
        try:
            payload = _decode_with_secret(token, settings.auth_jwt_secret, audience, issuer)
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
            )
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing subject",
        )

    return subject


async def get_current_user(
    users: UserRepoDep,
    subject: str = Depends(get_current_subject),
) -> UserModel:
    """
    Resolve the authenticated subject to the internal user record.

    Raises:
        HTTPException 404: subject has never been synced
    """
    user = await users.get_by_subject(subject)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not registered. Call POST /api/users/sync first.",
        )
    return user


CurrentUserDep = Annotated[UserModel, Depends(get_current_user)]


# =============================================================================
# Billing Providers
# =============================================================================

@lru_cache
def get_price_catalog() -> PriceCatalog:
    """Get the price -> plan table built from settings."""
    return PriceCatalog.from_settings(get_settings())


def get_billing_service() -> BaseStripeService:
    """Dependency wrapper so tests can override the Stripe service."""
    return get_stripe_service()


@lru_cache
def get_webhook_reconciler() -> WebhookReconciler:
    """Get the process-wide webhook reconciler."""
    settings = get_settings()
    return WebhookReconciler(
        billing=get_stripe_service(),
        catalog=get_price_catalog(),
        free_tier_tokens=settings.free_tier_tokens,
        token_reset_days=settings.token_reset_days,
        subject_keys=settings.webhook_subject_metadata_keys,
    )


__all__ = [
    "get_current_subject",
    "get_current_user",
    "CurrentUserDep",
    "SessionDep",
    "UserRepoDep",
    "LedgerDep",
    "get_price_catalog",
    "get_billing_service",
    "get_webhook_reconciler",
]
