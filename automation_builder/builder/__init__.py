"""Automation builder: projection, reconciliation and the editing session."""
from automation_builder.builder.editor import EditorState, StagedChange, WorkflowEditor
from automation_builder.builder.guard import (
    EditingScope,
    OperationInProgressError,
    OperationKind,
    SessionClosedError,
    SingleFlightGuard,
)
from automation_builder.builder.notices import Notice, NoticeLevel, Notifier
from automation_builder.builder.projection import project_workflow, to_email_steps
from automation_builder.builder.reconciliation import (
    build_create_request,
    build_reorder_request,
    move_item,
    next_position,
)

__all__ = [
    "EditorState",
    "StagedChange",
    "WorkflowEditor",
    "EditingScope",
    "OperationInProgressError",
    "OperationKind",
    "SessionClosedError",
    "SingleFlightGuard",
    "Notice",
    "NoticeLevel",
    "Notifier",
    "project_workflow",
    "to_email_steps",
    "build_create_request",
    "build_reorder_request",
    "move_item",
    "next_position",
]
