import uuid
from datetime import date, datetime

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from planshare.db.base import Base, utcnow

JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Project(Base):
    """A shared plan document.

    ``version`` is the mapper's version counter: every flushed UPDATE is
    emitted as ``... WHERE id = :id AND version = :loaded`` and sets
    ``version = loaded + 1``; a zero-row match raises ``StaleDataError``.
    """

    __tablename__ = "projects"
    __table_args__ = (CheckConstraint("version >= 1", name="ck_projects_version_positive"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    goal: Mapped[str] = mapped_column(Text, nullable=False, default="")
    target_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    tasks: Mapped[list] = mapped_column(JSONPayload, nullable=False, default=list)
    chart_data: Mapped[list | None] = mapped_column(JSONPayload, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    last_modified_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    members: Mapped[list["ProjectMember"]] = relationship(  # noqa: F821
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}
