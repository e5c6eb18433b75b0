"""Shared pydantic models: the contract between stores, the engine and main.py."""

import uuid
from datetime import date, datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IssueType(StrEnum):
    EPIC = "epic"
    STORY = "story"
    TASK = "task"
    BUG = "bug"
    SUBTASK = "subtask"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class IssuePriority(StrEnum):
    LOWEST = "lowest"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"


class SprintStatus(StrEnum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


DONE_STATUS = "done"  # issues in this status count as completed


class Project(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    key: str = Field(pattern=r"^[A-Z][A-Z0-9]{1,9}$")  # PGM, ENG2
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class Sprint(BaseModel):
    """Time-boxed iteration inside one project. Names are unique per project."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    project_id: str
    name: str = Field(min_length=1, max_length=255)
    goal: str | None = None
    start_date: date
    end_date: date
    status: SprintStatus = SprintStatus.PLANNED
    created_at: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _ends_after_start(self) -> "Sprint":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)  # opaque, never shown to users
    key: str  # PGM-42
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    type: IssueType
    priority: IssuePriority = IssuePriority.MEDIUM
    status: str = "todo"
    project_id: str
    parent_id: str | None = None  # weak reference, may dangle
    sprint_id: str | None = None
    assignee: str | None = None
    story_points: int | None = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class IssueCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    completed: int = 0


class IssueView(BaseModel):
    """Read-side rendering of an issue.

    ``children`` is None when not populated and ``[]`` when populated but empty.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    title: str
    description: str | None
    type: IssueType
    priority: IssuePriority
    status: str
    project_key: str | None
    parent_id: str | None
    parent_key: str | None = None
    sprint_name: str | None = None
    assignee: str | None = None
    story_points: int | None = None
    children: list["IssueView"] | None = None
