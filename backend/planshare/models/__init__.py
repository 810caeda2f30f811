from planshare.models.project import Project
from planshare.models.project_invitation import ProjectInvitation
from planshare.models.project_member import ProjectMember
from planshare.models.user import User

__all__ = [
    "Project",
    "ProjectInvitation",
    "ProjectMember",
    "User",
]
