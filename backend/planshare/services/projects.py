"""Project lifecycle with optimistic concurrency control.

Every write goes through the ORM so the mapper's version counter applies:
the UPDATE is conditional on the version that was loaded and bumps it by
exactly one. ``update_project`` additionally rejects a caller whose
``expected_version`` is already stale. Nothing here retries; a
``VersionConflict`` means the caller re-fetches and decides again.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from planshare.core.exceptions import (
    ConstraintViolation,
    InvalidOperation,
    NotFound,
    VersionConflict,
)
from planshare.db.base import utcnow
from planshare.models.project import Project
from planshare.models.project_invitation import ProjectInvitation
from planshare.models.project_member import ProjectMember
from planshare.services.access_policy import Operation, authorize
from planshare.services.membership import create_owner_membership

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "goal", "target_date", "tasks", "chart_data")


@dataclass
class ProjectView:
    """A project as seen by one caller."""

    project: Project
    role: str


async def _load(db: AsyncSession, project_id: uuid.UUID) -> Project:
    result = await db.execute(
        select(Project)
        .where(Project.id == project_id)
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if project is None:
        # Only reachable for callers that passed authorize, e.g. a concurrent delete.
        raise NotFound("Project not found")
    return project


async def create_project(
    db: AsyncSession, caller_id: uuid.UUID, data: dict[str, Any]
) -> Project:
    """Insert a project (version 1) together with the caller's owner membership."""
    project = Project(
        title=data["title"],
        goal=data.get("goal", ""),
        target_date=data.get("target_date"),
        tasks=data.get("tasks") or [],
        chart_data=data.get("chart_data"),
        created_by=caller_id,
        last_modified_by=caller_id,
    )
    create_owner_membership(project, caller_id)
    db.add(project)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConstraintViolation("Project could not be created") from exc

    logger.info("Project %s created by %s", project.id, caller_id)
    return project


async def get_project(
    db: AsyncSession, caller_id: uuid.UUID, project_id: uuid.UUID
) -> ProjectView:
    membership = await authorize(db, caller_id, project_id, Operation.READ_PROJECT)
    return ProjectView(project=await _load(db, project_id), role=membership.role)


async def list_projects(db: AsyncSession, caller_id: uuid.UUID) -> list[ProjectView]:
    """Projects the caller has accepted membership in, most recently updated first."""
    result = await db.execute(
        select(Project, ProjectMember.role)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .where(
            ProjectMember.user_id == caller_id,
            ProjectMember.status == "accepted",
        )
        .order_by(Project.updated_at.desc())
    )
    return [ProjectView(project=project, role=role) for project, role in result.all()]


async def update_project(
    db: AsyncSession,
    caller_id: uuid.UUID,
    project_id: uuid.UUID,
    changes: dict[str, Any],
    expected_version: int | None = None,
) -> ProjectView:
    """Apply ``changes`` if the stored version still equals ``expected_version``.

    ``expected_version=None`` skips the caller-side check (internal callers);
    the write itself is still conditional on the version that was read.
    """
    membership = await authorize(db, caller_id, project_id, Operation.WRITE_PROJECT)
    project = await _load(db, project_id)

    if expected_version is not None and project.version != expected_version:
        logger.warning(
            "Version conflict on project %s: expected %s, current %s",
            project_id,
            expected_version,
            project.version,
        )
        raise VersionConflict(
            "Project was modified by another collaborator; reload and retry",
            current_version=project.version,
        )

    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise InvalidOperation(f"Fields cannot be updated: {', '.join(unknown)}")
    for key, value in changes.items():
        setattr(project, key, value)
    project.last_modified_by = caller_id
    project.updated_at = utcnow()

    try:
        await db.flush()
    except StaleDataError as exc:
        await db.rollback()
        logger.warning("Concurrent write won the race on project %s", project_id)
        current = await db.execute(select(Project.version).where(Project.id == project_id))
        raise VersionConflict(
            "Project was modified by another collaborator; reload and retry",
            current_version=current.scalar_one_or_none(),
        ) from exc

    return ProjectView(project=project, role=membership.role)


async def delete_project(db: AsyncSession, caller_id: uuid.UUID, project_id: uuid.UUID) -> None:
    """Owner-only. Memberships are deleted through the ORM so each emits a change event."""
    await authorize(db, caller_id, project_id, Operation.DELETE_PROJECT)

    result = await db.execute(
        select(Project).where(Project.id == project_id).options(selectinload(Project.members))
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFound("Project not found")

    await db.execute(delete(ProjectInvitation).where(ProjectInvitation.project_id == project_id))
    # cascades to the loaded members
    await db.delete(project)
    try:
        await db.flush()
    except StaleDataError as exc:
        await db.rollback()
        raise VersionConflict("Project changed while it was being deleted") from exc

    logger.info("Project %s deleted by %s", project_id, caller_id)
