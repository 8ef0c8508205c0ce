"""Editable views derived from the step graph."""
from typing import Optional

from pydantic import BaseModel, Field

from automation_builder.models.workflow import Branch, ConditionType, WaitUnit


class EmailStep(BaseModel):
    """A wait+email pair as the editor shows it."""

    id: str
    sender_id: Optional[str] = None
    sender_email: str = ""
    subject: str = ""
    content: str = ""
    template_id: Optional[str] = None
    wait_time: int = Field(5, ge=0)
    wait_unit: WaitUnit = WaitUnit.DAY


class BranchState(BaseModel):
    """One side of the fork: its delay and the optional email it sends."""

    wait_time: int = Field(5, ge=0)
    wait_unit: WaitUnit = WaitUnit.DAY
    email: Optional[EmailStep] = None


class ConditionBranch(BaseModel):
    """The single fork of a workflow."""

    id: str
    condition_type: ConditionType = ConditionType.OPENED
    email_id: Optional[str] = Field(None, description="Email whose engagement is evaluated")
    yes_branch: BranchState = Field(default_factory=BranchState)
    no_branch: BranchState = Field(default_factory=BranchState)

    def branch(self, branch: Branch) -> BranchState:
        return self.yes_branch if branch is Branch.YES else self.no_branch


class WorkflowProjection(BaseModel):
    """All editable views of one workflow, derived together."""

    emails: list[EmailStep] = Field(default_factory=list)
    condition: Optional[ConditionBranch] = None
    merged_emails: list[EmailStep] = Field(default_factory=list)


class EmailForm(BaseModel):
    """Values entered in the add/edit email dialog."""

    sender_id: str = ""
    subject: str = ""
    content: str = ""
    template_id: Optional[str] = None
    wait_time: int = Field(5, ge=0)
    wait_unit: WaitUnit = WaitUnit.DAY

    def missing_fields(self) -> list[str]:
        """Names of required fields left blank."""
        missing = []
        if not self.sender_id.strip():
            missing.append("sender")
        if not self.template_id:
            missing.append("template")
        if not self.subject.strip():
            missing.append("subject")
        return missing
