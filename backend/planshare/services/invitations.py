"""Invitation lifecycle: issue, list, revoke and redeem single-use tokens.

Redemption is the one path where two requests can race for the same row.
The claim is a single conditional UPDATE (``used_at IS NULL AND expires_at
> now``) in the same transaction as the membership insert, so at most one
redemption of a token can ever commit.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.core.config import settings
from planshare.core.exceptions import (
    AlreadyInvited,
    AlreadyMember,
    ConstraintViolation,
    InvalidOrExpiredToken,
    InvalidRole,
    NotFound,
    Unauthenticated,
)
from planshare.db.base import utcnow
from planshare.models.project import Project
from planshare.models.project_invitation import ProjectInvitation
from planshare.models.project_member import ProjectMember
from planshare.models.user import User
from planshare.services.access_policy import Operation, authorize

logger = logging.getLogger(__name__)

INVITABLE_ROLES = ("editor", "viewer")
TOKEN_BYTES = 32  # 256 bits
MAX_TOKEN_ATTEMPTS = 3

# Redemption failure kinds, returned as data rather than raised.
UNAUTHENTICATED = Unauthenticated.kind
INVALID_OR_EXPIRED_TOKEN = InvalidOrExpiredToken.kind
ALREADY_MEMBER = AlreadyMember.kind

FAILURE_MESSAGES = {
    UNAUTHENTICATED: "Sign in to accept this invitation",
    INVALID_OR_EXPIRED_TOKEN: "This invitation is invalid or has expired",
    ALREADY_MEMBER: "You are already a member of this project",
}


@dataclass
class ProjectSummary:
    id: uuid.UUID
    title: str
    goal: str


@dataclass
class RedeemResult:
    success: bool
    project: ProjectSummary | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def failure(cls, error: str) -> "RedeemResult":
        return cls(success=False, error=error, message=FAILURE_MESSAGES[error])


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def build_invite_url(token: str) -> str:
    return f"{settings.APP_ORIGIN.rstrip('/')}/invite/{token}"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _is_live(now: datetime):
    return and_(ProjectInvitation.used_at.is_(None), ProjectInvitation.expires_at > now)


async def _email_is_member(db: AsyncSession, project_id: uuid.UUID, email: str) -> bool:
    result = await db.execute(
        select(ProjectMember.id)
        .join(User, User.id == ProjectMember.user_id)
        .where(
            ProjectMember.project_id == project_id,
            ProjectMember.status == "accepted",
            func.lower(User.email) == email,
        )
    )
    return result.first() is not None


async def _has_live_invitation(
    db: AsyncSession, project_id: uuid.UUID, email: str, now: datetime
) -> bool:
    result = await db.execute(
        select(ProjectInvitation.id).where(
            ProjectInvitation.project_id == project_id,
            ProjectInvitation.email == email,
            _is_live(now),
        )
    )
    return result.first() is not None


async def _lock_invitee(db: AsyncSession, project_id: uuid.UUID, email: str) -> None:
    """Serialise concurrent invites of one email to one project until commit.

    PostgreSQL only: a transaction-scoped advisory lock, released when the
    surrounding transaction commits or rolls back. SQLite already admits a
    single writer at a time.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
        {"key": f"invite:{project_id}:{email}"},
    )


async def _unused_token(db: AsyncSession) -> str:
    for _attempt in range(MAX_TOKEN_ATTEMPTS):
        token = generate_token()
        taken = await db.execute(
            select(ProjectInvitation.id).where(ProjectInvitation.token == token)
        )
        if taken.first() is None:
            return token
        logger.warning("Invitation token collision; regenerating")
    raise ConstraintViolation("Could not allocate a unique invitation token")


async def invite(
    db: AsyncSession,
    caller_id: uuid.UUID,
    project_id: uuid.UUID,
    email: str,
    role: str,
) -> ProjectInvitation:
    """Issue an invitation for ``email``. Owner or editor only."""
    await authorize(db, caller_id, project_id, Operation.CREATE_INVITATION)

    if role not in INVITABLE_ROLES:
        raise InvalidRole(f"Invitations may only grant {' or '.join(INVITABLE_ROLES)}")

    email = normalize_email(email)
    await _lock_invitee(db, project_id, email)
    now = utcnow()
    if await _email_is_member(db, project_id, email):
        raise AlreadyMember("That user is already a member of this project")
    if await _has_live_invitation(db, project_id, email, now):
        raise AlreadyInvited("An invitation for that email is still pending")

    token = await _unused_token(db)
    invitation = ProjectInvitation(
        project_id=project_id,
        email=email,
        role=role,
        invited_by=caller_id,
        token=token,
        created_at=now,
        expires_at=now + timedelta(days=settings.INVITATION_TTL_DAYS),
    )
    db.add(invitation)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConstraintViolation("Invitation could not be stored") from exc

    logger.info(
        "Invitation %s issued for project %s as %s (by %s)",
        invitation.id,
        project_id,
        role,
        caller_id,
    )
    return invitation


async def list_pending(
    db: AsyncSession, caller_id: uuid.UUID, project_id: uuid.UUID
) -> list[ProjectInvitation]:
    """Unused, unexpired invitations, newest first."""
    await authorize(db, caller_id, project_id, Operation.READ_INVITATIONS)
    result = await db.execute(
        select(ProjectInvitation)
        .where(ProjectInvitation.project_id == project_id, _is_live(utcnow()))
        .order_by(ProjectInvitation.created_at.desc())
    )
    return list(result.scalars().all())


async def revoke(
    db: AsyncSession,
    caller_id: uuid.UUID,
    project_id: uuid.UUID,
    invitation_id: uuid.UUID,
) -> None:
    """Make a live invitation inert by expiring it now. The row is kept."""
    await authorize(db, caller_id, project_id, Operation.CREATE_INVITATION)
    now = utcnow()
    result = await db.execute(
        update(ProjectInvitation)
        .where(
            ProjectInvitation.id == invitation_id,
            ProjectInvitation.project_id == project_id,
            _is_live(now),
        )
        .values(expires_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Invitation not found")
    logger.info("Invitation %s on project %s revoked by %s", invitation_id, project_id, caller_id)


async def claim_invitation(
    db: AsyncSession, invitation_id: uuid.UUID, user_id: uuid.UUID
) -> bool:
    """Atomically mark a live invitation used. False if it was no longer live."""
    now = utcnow()
    result = await db.execute(
        update(ProjectInvitation)
        .where(ProjectInvitation.id == invitation_id, _is_live(now))
        .values(used_at=now, used_by=user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _join(db: AsyncSession, caller: User | None, token: str) -> ProjectSummary:
    if caller is None:
        raise Unauthenticated(FAILURE_MESSAGES[UNAUTHENTICATED])

    result = await db.execute(
        select(ProjectInvitation).where(ProjectInvitation.token == token, _is_live(utcnow()))
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        logger.warning("Rejected redemption by %s: invalid or expired token", caller.id)
        raise InvalidOrExpiredToken(FAILURE_MESSAGES[INVALID_OR_EXPIRED_TOKEN])

    existing = await db.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == invitation.project_id,
            ProjectMember.user_id == caller.id,
        )
    )
    if existing.first() is not None:
        raise AlreadyMember(FAILURE_MESSAGES[ALREADY_MEMBER])

    if not await claim_invitation(db, invitation.id, caller.id):
        # Another redemption committed between the lookup and the claim; nothing was written.
        raise InvalidOrExpiredToken(FAILURE_MESSAGES[INVALID_OR_EXPIRED_TOKEN])

    db.add(
        ProjectMember(
            project_id=invitation.project_id,
            user_id=caller.id,
            role=invitation.role,
            status="accepted",
            invited_by=invitation.invited_by,
            invited_at=invitation.created_at,
            joined_at=utcnow(),
        )
    )
    try:
        await db.flush()
    except IntegrityError as exc:
        # Lost a race against another path adding the same membership; undo the claim too.
        await db.rollback()
        raise AlreadyMember(FAILURE_MESSAGES[ALREADY_MEMBER]) from exc

    project = (
        await db.execute(select(Project).where(Project.id == invitation.project_id))
    ).scalar_one()
    logger.info(
        "User %s joined project %s as %s via invitation %s",
        caller.id,
        project.id,
        invitation.role,
        invitation.id,
    )
    return ProjectSummary(id=project.id, title=project.title, goal=project.goal)


async def redeem(db: AsyncSession, caller: User | None, token: str) -> RedeemResult:
    """Join a project with an invitation token.

    Expected failures come back as ``RedeemResult(success=False, error=kind)``.
    An already-member caller does not consume the token.
    """
    try:
        project = await _join(db, caller, token)
    except (Unauthenticated, InvalidOrExpiredToken, AlreadyMember) as exc:
        return RedeemResult.failure(exc.kind)
    return RedeemResult(success=True, project=project)
