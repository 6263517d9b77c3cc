"""
User API Routes

Called by the frontend after every sign-in to mirror the identity
provider's user into the local store, and for profile edits.
"""

import logging

from fastapi import APIRouter, Depends

from quantipack.api.dependencies import (
    CurrentUserDep,
    SessionDep,
    UserRepoDep,
    get_current_subject,
)
from quantipack.config.settings import get_settings
from quantipack.domain.entitlement import UpdateProfileRequest, UserResponse, UserSyncRequest
from quantipack.infrastructure.db.models.user import UserModel
from quantipack.infrastructure.services.registration_service import register_or_refresh_user


logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(user: UserModel, created: bool = False) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        email=user.email,
        name=user.name,
        role=user.role,
        organization_id=str(user.organization_id) if user.organization_id else None,
        created=created,
    )


@router.post("/users/sync", response_model=UserResponse)
async def sync_user(
    request: UserSyncRequest,
    session: SessionDep,
    subject: str = Depends(get_current_subject),
):
    """
    Create or refresh the current user.

    First-time users are seeded with a trialing free subscription and the
    trial token allotment.
    """
    user, created = await register_or_refresh_user(
        session,
        get_settings(),
        auth_subject=subject,
        email=request.email,
        name=request.name,
    )

    return _to_response(user, created)


@router.patch("/users/me", response_model=UserResponse)
async def update_profile(
    request: UpdateProfileRequest,
    user: CurrentUserDep,
    users: UserRepoDep,
):
    """Edit the current user's display name or organization."""
    updated = await users.update_profile(
        user.auth_subject,
        name=request.name,
        organization_id=request.organization_id,
    )
    logger.info(f"Updated profile for user {updated.id}")

    return _to_response(updated)
