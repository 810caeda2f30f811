"""Role-based access decisions for project operations.

``is_allowed`` is the pure decision table. ``authorize`` evaluates it
against the caller's membership row, loaded fresh on every call, and turns
a deny into the error the caller is allowed to see: non-members get
``NotFound`` so a project's existence is never disclosed, members lacking
the role get ``Forbidden``.
"""

import uuid
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.core.exceptions import Forbidden, NotFound
from planshare.models.project_member import ProjectMember


class Operation(str, Enum):
    READ_PROJECT = "read_project"
    WRITE_PROJECT = "write_project"
    DELETE_PROJECT = "delete_project"
    READ_MEMBERS = "read_members"
    MANAGE_MEMBERS = "manage_members"
    READ_INVITATIONS = "read_invitations"
    CREATE_INVITATION = "create_invitation"


_ANY_ROLE = frozenset({"owner", "editor", "viewer"})
_WRITERS = frozenset({"owner", "editor"})
_OWNER = frozenset({"owner"})

ALLOWED_ROLES: dict[Operation, frozenset[str]] = {
    Operation.READ_PROJECT: _ANY_ROLE,
    Operation.READ_MEMBERS: _ANY_ROLE,
    Operation.WRITE_PROJECT: _WRITERS,
    Operation.READ_INVITATIONS: _WRITERS,
    Operation.CREATE_INVITATION: _WRITERS,
    Operation.DELETE_PROJECT: _OWNER,
    Operation.MANAGE_MEMBERS: _OWNER,
}


def is_allowed(role: str | None, status: str | None, operation: Operation) -> bool:
    if role is None or status != "accepted":
        return False
    return role in ALLOWED_ROLES[operation]


async def get_membership(
    db: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> ProjectMember | None:
    result = await db.execute(
        select(ProjectMember)
        .where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def authorize(
    db: AsyncSession,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
    operation: Operation,
) -> ProjectMember:
    """Return the caller's accepted membership if ``operation`` is allowed.

    Raises NotFound when the caller has no accepted membership (whether or
    not the project exists) and Forbidden when the role is insufficient.
    """
    membership = await get_membership(db, user_id, project_id)
    if membership is None or membership.status != "accepted":
        raise NotFound("Project not found")
    if not is_allowed(membership.role, membership.status, operation):
        raise Forbidden(f"Role '{membership.role}' may not perform {operation.value}")
    return membership
