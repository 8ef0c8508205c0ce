"""Reconciliation between the editor's lists and the persisted positions.

Reorder:
- The moved list becomes the new order right away
- Each email is matched to its email step and the wait step in front of it,
  as the last server-known step list describes them
- Pairs get dense positions (wait 2k+1, email 2k+2); parent and branch tags are
  copied unchanged
- Reordering the main list also renumbers the fork and the merged emails to
  follow it, so no two steps share a position

Create:
- A new main-path email goes at position N + 1 for a list of length N
- A new merged email goes after every known step
"""
from typing import Optional, TypeVar

import structlog

from automation_builder.models.graph import StepGraph
from automation_builder.models.projection import EmailForm, EmailStep
from automation_builder.models.workflow import (
    Branch,
    CreateStepRequest,
    ReorderRequest,
    StepPosition,
    StepType,
    WorkflowStep,
)

logger = structlog.get_logger()

T = TypeVar("T")


def move_item(items: list[T], from_index: int, to_index: int) -> list[T]:
    """Return a copy of ``items`` with one element moved.

    Raises:
        IndexError: if either index is outside the list
    """
    if not 0 <= from_index < len(items) or not 0 <= to_index < len(items):
        raise IndexError(f"Cannot move item {from_index} to {to_index} in a list of {len(items)}")
    moved = list(items)
    item = moved.pop(from_index)
    moved.insert(to_index, item)
    return moved


def build_reorder_request(
    ordered: list[EmailStep],
    previous_steps: list[WorkflowStep],
    merged: bool = False,
) -> ReorderRequest:
    """Assign positions for a reordered email list.

    Args:
        ordered: Emails of one list in their new order
        previous_steps: The last step list the server returned
        merged: True when ``ordered`` is the list after the fork; its
            positions then start after the last main or fork position

    Returns:
        Request carrying id, position, parent and branch for every step of
        the list, plus the fork and merged steps when the main list moved.
        Emails without a persisted step are skipped.
    """
    graph = StepGraph.from_steps(previous_steps)
    base = graph.last_position_before_merge() if merged else 0
    entries: list[StepPosition] = []

    for k, email_step in enumerate(ordered):
        node = graph.find_email(email_step.id)
        if node is None:
            logger.warning("reorder_unknown_email", email_id=email_step.id)
            continue

        slot = base + 2 * k + 1
        if node.wait is not None:
            entries.append(_position(node.wait, slot))
            entries.append(_position(node.email, slot + 1))
        else:
            entries.append(_position(node.email, slot))

    if not merged:
        # The fork and everything after it move behind the renumbered main path
        next_slot = 2 * len(ordered) + 1
        for step in graph.steps_after_main():
            entries.append(_position(step, next_slot))
            next_slot += 1

    return ReorderRequest(steps=entries)


def _position(step: WorkflowStep, position: int) -> StepPosition:
    return StepPosition(
        id=step.id,
        position=position,
        parent_step_id=step.parent_step_id,
        branch=step.branch,
    )


def next_position(current_length: int) -> int:
    """Position for an email appended to a list of ``current_length``."""
    return current_length + 1


def merged_position(steps: list[WorkflowStep]) -> int:
    """Position for an email appended after the fork."""
    return StepGraph.from_steps(steps).max_position() + 1


def build_create_request(
    form: EmailForm,
    position: int,
    parent_step_id: Optional[str] = None,
    branch: Optional[Branch] = None,
) -> CreateStepRequest:
    """Build the create-step body for an email entered in the form."""
    return CreateStepRequest(
        step_type=StepType.EMAIL,
        position=position,
        parent_step_id=parent_step_id,
        branch=branch,
        sender_id=form.sender_id or None,
        template_id=form.template_id,
        subject_override=form.subject,
        content_override=form.content,
    )
