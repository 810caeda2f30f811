"""Project member management endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.core.dependencies import get_current_user, get_db
from planshare.models.project_member import ProjectMember
from planshare.models.user import User
from planshare.schemas.common import ErrorResponse
from planshare.schemas.member import MemberResponse, MemberUpdate
from planshare.services import membership as membership_service

router = APIRouter()


def member_response(member: ProjectMember, member_user: User) -> MemberResponse:
    return MemberResponse(
        id=member.id,
        user_id=member.user_id,
        email=member_user.email,
        full_name=member_user.full_name,
        role=member.role,
        status=member.status,
        invited_by=member.invited_by,
        invited_at=member.invited_at,
        joined_at=member.joined_at,
    )


@router.get("/", response_model=list[MemberResponse])
async def list_members(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List accepted members. Any member may read."""
    members = await membership_service.list_members(db, user.id, project_id)
    return [member_response(m, u) for m, u in members]


@router.delete("/me", status_code=204)
async def leave_project(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Leave a project. The owner cannot leave."""
    await membership_service.leave_project(db, user.id, project_id)


@router.patch(
    "/{user_id}",
    status_code=204,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def change_member_role(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    body: MemberUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Change a member's role. Owner only; ownership itself is not transferable."""
    await membership_service.change_role(db, user.id, project_id, user_id, body.role)


@router.delete(
    "/{user_id}",
    status_code=204,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def remove_member(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Remove a member from the project. Owner only; the owner cannot be removed."""
    await membership_service.remove_member(db, user.id, project_id, user_id)
