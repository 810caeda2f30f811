import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from planshare.db.base import ProjectScopedBase, utcnow


class ProjectInvitation(ProjectScopedBase):
    """Single-use, time-boxed membership grant.

    Redeemable iff ``used_at IS NULL AND expires_at > now()``. Used, expired
    and revoked rows are kept until their project is deleted; they only drop
    out of the pending listing.
    """

    __tablename__ = "project_invitations"
    __table_args__ = (
        CheckConstraint("role IN ('editor', 'viewer')", name="ck_project_invitations_role"),
        Index("ix_project_invitations_project_email", "project_id", "email"),
        Index(
            "ix_project_invitations_live",
            "project_id",
            "expires_at",
            postgresql_where=text("used_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # project_id inherited from ProjectScopedBase
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    invited_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    used_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
