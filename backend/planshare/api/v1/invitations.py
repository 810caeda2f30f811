"""Invitation endpoints.

Project-scoped routes issue, list and revoke invitations. The redeem route
is keyed by token alone and always answers 200 with a structured result,
so the invite link can render success or a specific failure without error
handling on the client.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.core.dependencies import get_current_user, get_db, get_optional_user
from planshare.models.project_invitation import ProjectInvitation
from planshare.models.user import User
from planshare.schemas.common import ErrorResponse
from planshare.schemas.member import (
    InvitationCreate,
    InvitationResponse,
    ProjectSummary,
    RedeemResponse,
)
from planshare.services import invitations as invitation_service

project_router = APIRouter()
token_router = APIRouter()


def invitation_response(invitation: ProjectInvitation) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        project_id=invitation.project_id,
        email=invitation.email,
        role=invitation.role,
        invited_by=invitation.invited_by,
        token=invitation.token,
        invite_url=invitation_service.build_invite_url(invitation.token),
        expires_at=invitation.expires_at,
        created_at=invitation.created_at,
        used_at=invitation.used_at,
    )


@project_router.post(
    "/",
    response_model=InvitationResponse,
    status_code=201,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def invite_member(
    project_id: uuid.UUID,
    body: InvitationCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Invite someone by email as editor or viewer. Owners and editors only."""
    invitation = await invitation_service.invite(db, user.id, project_id, body.email, body.role)
    return invitation_response(invitation)


@project_router.get("/", response_model=list[InvitationResponse])
async def list_pending_invitations(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Unused, unexpired invitations, newest first.

    Each entry carries its raw token and invite URL, so any owner or editor
    can re-share a pending link.
    """
    invitations = await invitation_service.list_pending(db, user.id, project_id)
    return [invitation_response(i) for i in invitations]


@project_router.delete("/{invitation_id}", status_code=204)
async def revoke_invitation(
    project_id: uuid.UUID,
    invitation_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Expire a pending invitation immediately."""
    await invitation_service.revoke(db, user.id, project_id, invitation_id)


@token_router.post("/{token}/redeem", response_model=RedeemResponse)
async def redeem_invitation(
    token: str,
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Join the invitation's project. Failures are returned, never raised."""
    result = await invitation_service.redeem(db, user, token)
    return RedeemResponse(
        success=result.success,
        project=ProjectSummary.model_validate(result.project) if result.project else None,
        error=result.error,
        message=result.message,
    )
