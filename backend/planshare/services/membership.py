"""Project membership management: owner bootstrap, role changes, removal."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.core.exceptions import (
    ConstraintViolation,
    InvalidOperation,
    InvalidRole,
    NotFound,
)
from planshare.db.base import utcnow
from planshare.models.project import Project
from planshare.models.project_member import ROLES, ProjectMember
from planshare.models.user import User
from planshare.services.access_policy import Operation, authorize, get_membership

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = ("editor", "viewer")


def create_owner_membership(project: Project, user_id: uuid.UUID) -> ProjectMember:
    """Attach the owner membership to a project that has not been flushed yet.

    Both rows go out in the same flush, so a project never exists without
    its owner. Only ``create_project`` calls this.
    """
    if any(m.user_id == user_id for m in project.members):
        raise ConstraintViolation("Membership already exists for this user and project")
    membership = ProjectMember(
        user_id=user_id,
        role="owner",
        status="accepted",
        joined_at=utcnow(),
    )
    project.members.append(membership)
    return membership


async def list_members(
    db: AsyncSession, caller_id: uuid.UUID, project_id: uuid.UUID
) -> list[tuple[ProjectMember, User]]:
    """Accepted members with their user rows, earliest joiner first."""
    await authorize(db, caller_id, project_id, Operation.READ_MEMBERS)
    result = await db.execute(
        select(ProjectMember, User)
        .join(User, User.id == ProjectMember.user_id)
        .where(
            ProjectMember.project_id == project_id,
            ProjectMember.status == "accepted",
        )
        .order_by(ProjectMember.joined_at.asc())
    )
    return [(member, user) for member, user in result.all()]


async def _get_target(
    db: AsyncSession, project_id: uuid.UUID, target_user_id: uuid.UUID
) -> ProjectMember:
    membership = await get_membership(db, target_user_id, project_id)
    if membership is None:
        raise NotFound("Member not found")
    return membership


async def change_role(
    db: AsyncSession,
    caller_id: uuid.UUID,
    project_id: uuid.UUID,
    target_user_id: uuid.UUID,
    new_role: str,
) -> ProjectMember:
    await authorize(db, caller_id, project_id, Operation.MANAGE_MEMBERS)

    if new_role == "owner":
        raise InvalidRole("Ownership cannot be assigned by changing a member's role")
    if new_role not in ROLES:
        raise InvalidRole(f"Unknown role '{new_role}'")

    target = await _get_target(db, project_id, target_user_id)
    if target.role == "owner":
        raise InvalidOperation("The project owner's role cannot be changed")

    if target.role != new_role:
        target.role = new_role
        await db.flush()
        logger.info(
            "Member %s of project %s is now %s (by %s)",
            target_user_id,
            project_id,
            new_role,
            caller_id,
        )
    return target


async def remove_member(
    db: AsyncSession,
    caller_id: uuid.UUID,
    project_id: uuid.UUID,
    target_user_id: uuid.UUID,
) -> None:
    await authorize(db, caller_id, project_id, Operation.MANAGE_MEMBERS)

    target = await _get_target(db, project_id, target_user_id)
    if target.role == "owner":
        raise InvalidOperation("The project owner cannot be removed")

    await db.delete(target)
    await db.flush()
    logger.info("Removed member %s from project %s (by %s)", target_user_id, project_id, caller_id)


async def leave_project(db: AsyncSession, caller_id: uuid.UUID, project_id: uuid.UUID) -> None:
    """Drop the caller's own membership. Owners cannot leave their project."""
    membership = await authorize(db, caller_id, project_id, Operation.READ_PROJECT)
    if membership.role == "owner":
        raise InvalidOperation("The project owner cannot leave the project")

    await db.delete(membership)
    await db.flush()
    logger.info("Member %s left project %s", caller_id, project_id)
