"""Aggregate all v1 sub-routers."""

from fastapi import APIRouter

from planshare.api.v1.events import router as events_router
from planshare.api.v1.health import router as health_router
from planshare.api.v1.invitations import project_router as project_invitations_router
from planshare.api.v1.invitations import token_router as invitation_tokens_router
from planshare.api.v1.members import router as members_router
from planshare.api.v1.projects import router as projects_router

api_v1_router = APIRouter()

api_v1_router.include_router(health_router, tags=["health"])
api_v1_router.include_router(projects_router, prefix="/projects", tags=["projects"])
api_v1_router.include_router(
    members_router, prefix="/projects/{project_id}/members", tags=["members"]
)
api_v1_router.include_router(
    project_invitations_router,
    prefix="/projects/{project_id}/invitations",
    tags=["invitations"],
)
api_v1_router.include_router(events_router, prefix="/projects", tags=["events"])
api_v1_router.include_router(
    invitation_tokens_router, prefix="/invitations", tags=["invitations"]
)
