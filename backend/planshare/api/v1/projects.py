"""Project endpoints: create, list, read, update (optimistic locking), delete."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.api.v1.members import member_response
from planshare.core.dependencies import get_current_user, get_db
from planshare.models.project import Project
from planshare.models.user import User
from planshare.schemas.common import ErrorResponse
from planshare.schemas.project import (
    ProjectCreate,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectUpdate,
)
from planshare.services import membership as membership_service
from planshare.services import projects as project_service

router = APIRouter()


def _project_fields(project: Project) -> dict:
    return {
        "id": project.id,
        "title": project.title,
        "goal": project.goal,
        "target_date": project.target_date,
        "tasks": project.tasks or [],
        "chart_data": project.chart_data,
        "created_by": project.created_by,
        "last_modified_by": project.last_modified_by,
        "version": project.version,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


def project_response(view: project_service.ProjectView) -> ProjectResponse:
    return ProjectResponse(**_project_fields(view.project), role=view.role)


@router.post("/", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a project. The authenticated user becomes its owner."""
    data = body.model_dump(mode="json")
    data["target_date"] = body.target_date
    project = await project_service.create_project(db, user.id, data)
    return ProjectResponse(**_project_fields(project), role="owner")


@router.get("/", response_model=list[ProjectResponse])
async def list_projects(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Projects the caller is an accepted member of, most recently updated first."""
    views = await project_service.list_projects(db, user.id)
    return [project_response(v) for v in views]


@router.get(
    "/{project_id}",
    response_model=ProjectDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_project(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Project with its accepted members. Non-members get 404."""
    view = await project_service.get_project(db, user.id, project_id)
    members = await membership_service.list_members(db, user.id, project_id)
    return ProjectDetailResponse(
        **_project_fields(view.project),
        role=view.role,
        members=[member_response(m, u) for m, u in members],
    )


@router.patch(
    "/{project_id}",
    response_model=ProjectResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def update_project(
    project_id: uuid.UUID,
    body: ProjectUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Partial update guarded by ``expected_version``.

    Returns the project with its new version, or 409 if the caller's version
    is stale. Echo the returned version on the next write.
    """
    view = await project_service.update_project(
        db, user.id, project_id, body.changes(), body.expected_version
    )
    return project_response(view)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a project with its memberships and invitations. Owner only."""
    await project_service.delete_project(db, user.id, project_id)
