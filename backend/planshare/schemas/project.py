"""Project request/response schemas.

Tasks and chart data are stored as opaque JSON; these models give them a
shape at the API boundary and re-validate them whenever a project is read
back out of the store.
"""

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from planshare.schemas.member import MemberResponse


class TaskPosition(BaseModel):
    x: float
    y: float


class ProjectTask(BaseModel):
    # Clients attach extra per-task detail (status, sub-steps, notes); keep it verbatim.
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=255)
    title: str = Field(..., max_length=500)
    description: str = ""
    position: TaskPosition | None = None
    status: str | None = None


class GanttItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=255)
    name: str | None = None
    start: date | None = None
    end: date | None = None


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    goal: str = Field("", max_length=5000)
    target_date: date | None = None
    tasks: list[ProjectTask] = Field(default_factory=list)
    chart_data: list[GanttItem] | None = None


class ProjectUpdate(BaseModel):
    """Partial update. Only fields present in the request body are written."""

    title: str | None = Field(None, min_length=1, max_length=255)
    goal: str | None = Field(None, max_length=5000)
    target_date: date | None = None
    tasks: list[ProjectTask] | None = None
    chart_data: list[GanttItem] | None = None
    expected_version: int | None = Field(None, ge=1)

    @field_validator("title", "goal", "tasks")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

    def changes(self) -> dict[str, Any]:
        """The fields present in the request, in storage form (JSON-ready tasks/chart data)."""
        data = self.model_dump(mode="json", exclude_unset=True, exclude={"expected_version"})
        if "target_date" in data:
            data["target_date"] = self.target_date
        return data


class ProjectResponse(BaseModel):
    id: uuid.UUID
    title: str
    goal: str
    target_date: date | None = None
    tasks: list[ProjectTask]
    chart_data: list[GanttItem] | None = None
    created_by: uuid.UUID
    last_modified_by: uuid.UUID | None = None
    version: int
    role: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProjectDetailResponse(ProjectResponse):
    members: list[MemberResponse]

