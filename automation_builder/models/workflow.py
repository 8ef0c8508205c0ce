"""Wire models for automation workflows.

These mirror the JSON the REST API sends and accepts:
- A workflow is an aggregate of settings plus a flat list of steps
- Steps carry a position, an optional parent (the condition step) and an
  optional branch tag; the typed graph lives in ``models.graph``
- Request bodies are modelled explicitly so payloads are built in one place
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class StepType(str, Enum):
    """Types of workflow steps."""
    WAIT = "wait"
    EMAIL = "email"
    CONDITION = "condition"


class WaitUnit(str, Enum):
    """Units accepted for a wait duration."""
    MIN = "min"
    HOUR = "hour"
    DAY = "day"


class ConditionType(str, Enum):
    """What a condition step checks on the evaluated email."""
    OPENED = "opened"
    CLICKED = "clicked"
    NOT_OPENED = "not_opened"
    NOT_CLICKED = "not_clicked"


class Branch(str, Enum):
    """Side of the fork a branch step belongs to."""
    YES = "yes"
    NO = "no"


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class ExitCondition(str, Enum):
    """Radio choice behind the two exit flags."""
    COMPLETED = "completed"
    REMOVED = "removed"

    @classmethod
    def from_flags(cls, exit_on_all_emails: bool, exit_on_segment_leave: bool) -> "ExitCondition":
        if exit_on_segment_leave and not exit_on_all_emails:
            return cls.REMOVED
        return cls.COMPLETED

    def to_flags(self) -> dict:
        return {
            "exit_on_all_emails": self is ExitCondition.COMPLETED,
            "exit_on_segment_leave": self is ExitCondition.REMOVED,
        }


# ============================================================================
# Step configs
# ============================================================================

class WaitConfig(BaseModel):
    """Config payload of a wait step."""

    wait_duration: Optional[int] = Field(None, ge=0)
    wait_unit: Optional[WaitUnit] = None


class EmailConfig(BaseModel):
    """Config payload of an email step."""

    sender_id: Optional[str] = None
    sender_email: Optional[str] = None
    template_id: Optional[str] = None
    subject_override: Optional[str] = None
    content_override: Optional[str] = None


class ConditionConfig(BaseModel):
    """Config payload of a condition step."""

    condition_type: ConditionType = ConditionType.OPENED
    email_step_id: Optional[str] = Field(
        None,
        description="Email step whose engagement is evaluated",
    )


class WorkflowStep(BaseModel):
    """A single persisted step of a workflow."""

    id: str
    workflow_id: Optional[str] = None
    step_type: StepType
    position: int
    parent_step_id: Optional[str] = None
    branch: Optional[Branch] = None
    config: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_branch_tag(self):
        """A branch tag only makes sense on a step inside a fork."""
        if self.branch is not None and self.parent_step_id is None:
            raise ValueError(f"Step '{self.id}' has a branch tag but no parent step")
        return self

    @property
    def in_branch(self) -> bool:
        return self.parent_step_id is not None

    @property
    def wait(self) -> WaitConfig:
        return WaitConfig.model_validate(self.config)

    @property
    def email(self) -> EmailConfig:
        return EmailConfig.model_validate(self.config)

    @property
    def condition(self) -> ConditionConfig:
        return ConditionConfig.model_validate(self.config)


# ============================================================================
# Workflow aggregate
# ============================================================================

class WorkflowStats(BaseModel):
    """Enrollment counters reported by the API."""

    total_enrolled: int = 0
    currently_active: int = 0
    completed: int = 0
    exited: int = 0


class Workflow(BaseModel):
    """Full workflow as returned by ``GET /workflows/{id}``."""

    id: str
    name: str
    status: WorkflowStatus = WorkflowStatus.DRAFT
    trigger_segment_id: Optional[str] = None
    unsubscribe_category_id: Optional[str] = None
    track_opens: bool = True
    track_clicks: bool = True
    exit_on_all_emails: bool = True
    exit_on_segment_leave: bool = False
    active_version: Optional[int] = None
    draft_version: int = 1
    has_unsaved_changes: bool = False
    steps: list[WorkflowStep] = Field(default_factory=list)
    stats: WorkflowStats = Field(default_factory=WorkflowStats)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @property
    def exit_condition(self) -> ExitCondition:
        return ExitCondition.from_flags(self.exit_on_all_emails, self.exit_on_segment_leave)


class WorkflowListItem(BaseModel):
    """Summary row from ``GET /workflows``."""

    id: str
    name: str
    status: WorkflowStatus = WorkflowStatus.DRAFT
    active_version: Optional[int] = None
    draft_version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int = 1
    page_size: int = 20
    total: int = 0
    total_pages: int = 0


class WorkflowPage(BaseModel):
    data: list[WorkflowListItem] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


# ============================================================================
# Lookups used to populate selectors
# ============================================================================

class Segment(BaseModel):
    id: str
    name: str


class ContactCategory(BaseModel):
    id: str
    name: str


class Sender(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class Template(BaseModel):
    id: str
    name: str
    subject: Optional[str] = None


# ============================================================================
# Request bodies
# ============================================================================

class WorkflowSettingsPatch(BaseModel):
    """Partial body for ``PATCH /workflows/{id}``.

    Only fields that were explicitly set are sent, so an explicit ``None``
    clears a reference while an unset field is left alone.
    """

    name: Optional[str] = None
    trigger_segment_id: Optional[str] = None
    unsubscribe_category_id: Optional[str] = None
    track_opens: Optional[bool] = None
    track_clicks: Optional[bool] = None
    exit_on_all_emails: Optional[bool] = None
    exit_on_segment_leave: Optional[bool] = None

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


class CreateStepRequest(BaseModel):
    """Body for ``POST /workflows/{id}/steps``."""

    step_type: StepType = StepType.EMAIL
    position: int = Field(..., ge=1)
    parent_step_id: Optional[str] = None
    branch: Optional[Branch] = None
    sender_id: Optional[str] = None
    template_id: Optional[str] = None
    subject_override: Optional[str] = None
    content_override: Optional[str] = None

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class StepPosition(BaseModel):
    """One entry of a reorder request."""

    id: str
    position: int
    parent_step_id: Optional[str] = None
    branch: Optional[Branch] = None


class ReorderRequest(BaseModel):
    """Body for ``PUT /workflows/{id}/steps/reorder``."""

    steps: list[StepPosition] = Field(default_factory=list)

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
