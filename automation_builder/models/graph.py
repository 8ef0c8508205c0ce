"""Typed step graph built from the flat, position-ordered step list.

The API stores a workflow as steps keyed by position plus parent/branch tags.
This module reads that encoding once and exposes the structure it describes:
- A main path of emails, each with the wait that precedes it
- At most one fork: a condition step with a yes and a no branch, each branch
  holding at most one wait+email pair
- A merged path of emails that continues after the fork

Positions are only interpreted here and in the reconciliation module; the rest
of the builder works with nodes.
"""
from typing import Iterator, Optional

from pydantic import BaseModel, Field

from automation_builder.models.workflow import Branch, StepType, WorkflowStep


class StepGraphError(ValueError):
    """Raised when a step list does not describe a single-fork workflow."""


class EmailNode(BaseModel):
    """An email step and the wait step that delays it."""

    email: WorkflowStep
    wait: Optional[WorkflowStep] = None

    @property
    def id(self) -> str:
        return self.email.id

    def steps(self) -> list[WorkflowStep]:
        return [step for step in (self.wait, self.email) if step is not None]


class BranchNode(BaseModel):
    """One side of the fork."""

    branch: Branch
    wait: Optional[WorkflowStep] = None
    email: Optional[WorkflowStep] = None

    def steps(self) -> list[WorkflowStep]:
        return [step for step in (self.wait, self.email) if step is not None]


class ForkNode(BaseModel):
    """The condition step and its two branches."""

    condition: WorkflowStep
    yes: BranchNode = Field(default_factory=lambda: BranchNode(branch=Branch.YES))
    no: BranchNode = Field(default_factory=lambda: BranchNode(branch=Branch.NO))

    def branch(self, branch: Branch) -> BranchNode:
        return self.yes if branch is Branch.YES else self.no

    def steps(self) -> list[WorkflowStep]:
        return [self.condition, *self.yes.steps(), *self.no.steps()]


class StepGraph(BaseModel):
    """Explicit structure of a workflow's steps."""

    main: list[EmailNode] = Field(default_factory=list)
    fork: Optional[ForkNode] = None
    merged: list[EmailNode] = Field(default_factory=list)
    stray: list[WorkflowStep] = Field(
        default_factory=list,
        description="Steps that fit nowhere: trailing waits, orphaned branch steps",
    )

    @classmethod
    def from_steps(cls, steps: list[WorkflowStep]) -> "StepGraph":
        """Build the graph from an unsorted step list.

        A wait step belongs to an email when it sits immediately before that
        email in position order and shares its parent and branch.

        Raises:
            StepGraphError: if there is more than one condition, or a branch
                holds more than one email
        """
        ordered = sorted(steps, key=lambda step: step.position)

        conditions = [
            step for step in ordered
            if step.step_type == StepType.CONDITION and not step.in_branch
        ]
        if len(conditions) > 1:
            raise StepGraphError(
                f"Only one condition is supported, found {len(conditions)}"
            )
        condition = conditions[0] if conditions else None

        graph = cls(fork=ForkNode(condition=condition) if condition else None)
        paired_waits: set[str] = set()
        seen_condition = False

        for index, step in enumerate(ordered):
            if step.step_type == StepType.CONDITION and not step.in_branch:
                seen_condition = True
                continue
            if step.step_type != StepType.EMAIL:
                continue

            wait = _preceding_wait(ordered, index)
            if wait is not None:
                paired_waits.add(wait.id)

            if not step.in_branch:
                target = graph.merged if seen_condition else graph.main
                target.append(EmailNode(email=step, wait=wait))
                continue

            if condition is None or step.parent_step_id != condition.id or step.branch is None:
                graph.stray.append(step)
                continue

            branch = graph.fork.branch(step.branch)
            if branch.email is not None:
                raise StepGraphError(
                    f"Branch '{step.branch.value}' already holds email '{branch.email.id}'"
                )
            branch.email = step
            branch.wait = wait

        for step in ordered:
            if step.step_type != StepType.WAIT or step.id in paired_waits:
                continue
            # A branch may carry its wait before an email is added to it
            if (
                graph.fork is not None
                and step.parent_step_id == graph.fork.condition.id
                and step.branch is not None
            ):
                branch = graph.fork.branch(step.branch)
                if branch.wait is None:
                    branch.wait = step
                    continue
            graph.stray.append(step)

        return graph

    def iter_steps(self) -> Iterator[WorkflowStep]:
        """Yield every known step in execution order."""
        for node in self.main:
            yield from node.steps()
        if self.fork is not None:
            yield from self.fork.steps()
        for node in self.merged:
            yield from node.steps()

    def find_email(self, email_id: str) -> Optional[EmailNode]:
        for node in (*self.main, *self.merged):
            if node.id == email_id:
                return node
        return None

    def last_position_before_merge(self) -> int:
        """Highest position held by the main path or the fork."""
        steps = [step for node in self.main for step in node.steps()]
        if self.fork is not None:
            steps.extend(self.fork.steps())
        return max((step.position for step in steps), default=0)

    def steps_after_main(self) -> list[WorkflowStep]:
        """Fork and merged steps, in position order."""
        steps = self.fork.steps() if self.fork is not None else []
        for node in self.merged:
            steps.extend(node.steps())
        return sorted(steps, key=lambda step: step.position)

    def max_position(self) -> int:
        positions = [step.position for step in self.iter_steps()]
        positions.extend(step.position for step in self.stray)
        return max(positions, default=0)


def _preceding_wait(ordered: list[WorkflowStep], index: int) -> Optional[WorkflowStep]:
    """Return the wait step right before ``ordered[index]``, if any."""
    if index == 0:
        return None
    previous = ordered[index - 1]
    step = ordered[index]
    if previous.step_type != StepType.WAIT:
        return None
    if previous.parent_step_id != step.parent_step_id or previous.branch != step.branch:
        return None
    return previous
