"""Graph to editor projection.

``project_workflow`` walks the step graph once and derives every view the
editor needs (main emails, the fork with its branches, merged emails), so the
views cannot drift apart. ``to_email_steps`` is the main-path slice of it.
"""
from typing import Optional

from automation_builder.config import get_settings
from automation_builder.models.graph import BranchNode, StepGraph
from automation_builder.models.projection import (
    BranchState,
    ConditionBranch,
    EmailStep,
    WorkflowProjection,
)
from automation_builder.models.workflow import WaitUnit, WorkflowStep


def to_email_steps(steps: list[WorkflowStep]) -> list[EmailStep]:
    """Project the main-path emails of a step list.

    Steps inside a branch are left out; emails after the fork are part of
    the merged view, not this one.

    Args:
        steps: All steps of a workflow, in any order

    Returns:
        One EmailStep per main-path email step, in position order
    """
    return project_workflow(steps).emails


def project_workflow(steps: list[WorkflowStep]) -> WorkflowProjection:
    """Derive all editor views from a step list."""
    return project_graph(StepGraph.from_steps(steps))


def project_graph(graph: StepGraph) -> WorkflowProjection:
    condition = None
    if graph.fork is not None:
        config = graph.fork.condition.condition
        condition = ConditionBranch(
            id=graph.fork.condition.id,
            condition_type=config.condition_type,
            email_id=config.email_step_id,
            yes_branch=_branch_state(graph.fork.yes),
            no_branch=_branch_state(graph.fork.no),
        )

    return WorkflowProjection(
        emails=[_email_step(node.email, node.wait) for node in graph.main],
        condition=condition,
        merged_emails=[_email_step(node.email, node.wait) for node in graph.merged],
    )


def _email_step(email: WorkflowStep, wait: Optional[WorkflowStep]) -> EmailStep:
    wait_time, wait_unit = _wait_values(wait)
    config = email.email
    return EmailStep(
        id=email.id,
        sender_id=config.sender_id,
        sender_email=config.sender_email or "",
        subject=config.subject_override or "",
        content=config.content_override or "",
        template_id=config.template_id,
        wait_time=wait_time,
        wait_unit=wait_unit,
    )


def _branch_state(node: BranchNode) -> BranchState:
    wait_time, wait_unit = _wait_values(node.wait)
    email = _email_step(node.email, node.wait) if node.email is not None else None
    return BranchState(wait_time=wait_time, wait_unit=wait_unit, email=email)


def _wait_values(wait: Optional[WorkflowStep]) -> tuple[int, WaitUnit]:
    settings = get_settings()
    duration = settings.default_wait_time
    unit = WaitUnit(settings.default_wait_unit)
    if wait is not None:
        config = wait.wait
        if config.wait_duration is not None:
            duration = config.wait_duration
        if config.wait_unit is not None:
            unit = config.wait_unit
    return duration, unit
