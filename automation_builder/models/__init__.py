"""Pydantic models for the automation workflow builder."""
from automation_builder.models.workflow import (
    Branch,
    ConditionType,
    CreateStepRequest,
    ExitCondition,
    ReorderRequest,
    StepPosition,
    StepType,
    WaitUnit,
    Workflow,
    WorkflowPage,
    WorkflowSettingsPatch,
    WorkflowStatus,
    WorkflowStep,
)
from automation_builder.models.graph import (
    EmailNode,
    ForkNode,
    StepGraph,
    StepGraphError,
)
from automation_builder.models.projection import (
    BranchState,
    ConditionBranch,
    EmailForm,
    EmailStep,
    WorkflowProjection,
)

__all__ = [
    "Branch",
    "ConditionType",
    "CreateStepRequest",
    "ExitCondition",
    "ReorderRequest",
    "StepPosition",
    "StepType",
    "WaitUnit",
    "Workflow",
    "WorkflowPage",
    "WorkflowSettingsPatch",
    "WorkflowStatus",
    "WorkflowStep",
    "EmailNode",
    "ForkNode",
    "StepGraph",
    "StepGraphError",
    "BranchState",
    "ConditionBranch",
    "EmailForm",
    "EmailStep",
    "WorkflowProjection",
]
