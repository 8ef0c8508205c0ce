"""Workflow Editor - lifecycle controller for the automation builder.

The editor owns the state behind one editing session:
1. Load lookups and the workflow list, select the first workflow
2. Project the selected workflow's steps into editable views
3. Apply user edits; create-step and reorder go to the API right away,
   everything else is staged until Save
4. Save (settings patch + new draft version) and Activate (save, then
   promote the saved version)

Every handler reports failures through the notifier and returns a falsy
value; nothing is left marked as in flight after a failure. Server responses
replace ``selected_workflow`` wholesale rather than being merged into it.
"""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar, Union
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from automation_builder.builder.guard import (
    EditingScope,
    OperationKind,
    SessionClosedError,
    SingleFlightGuard,
)
from automation_builder.builder.notices import Notice, Notifier
from automation_builder.builder.projection import project_workflow
from automation_builder.builder.reconciliation import (
    build_create_request,
    build_reorder_request,
    merged_position,
    move_item,
    next_position,
)
from automation_builder.client.api_client import APIClientError, MonoSendClient
from automation_builder.config import get_settings
from automation_builder.models.graph import StepGraphError
from automation_builder.models.projection import (
    BranchState,
    ConditionBranch,
    EmailForm,
    EmailStep,
)
from automation_builder.models.workflow import (
    Branch,
    ConditionType,
    ContactCategory,
    ExitCondition,
    Segment,
    Sender,
    Template,
    WaitUnit,
    Workflow,
    WorkflowListItem,
    WorkflowSettingsPatch,
    WorkflowStatus,
)

logger = structlog.get_logger()

T = TypeVar("T")


class StagedChange(BaseModel):
    """A local edit that the next Save does not send to the step API."""

    kind: str = Field(..., description="edit_email, delete_email, wait, condition, branch")
    target_id: Optional[str] = None


class EditorState(BaseModel):
    """Snapshot of everything the presentation layer renders."""

    workflow_id: Optional[str] = None
    title: str
    editing_title: bool = False
    status: Optional[WorkflowStatus] = None
    draft_version: Optional[int] = None
    active_version: Optional[int] = None
    trigger_segment_id: Optional[str] = None
    unsubscribe_category_id: Optional[str] = None
    track_opens: bool = True
    track_clicks: bool = True
    exit_condition: ExitCondition = ExitCondition.COMPLETED
    emails: list[EmailStep] = Field(default_factory=list)
    condition: Optional[ConditionBranch] = None
    merged_emails: list[EmailStep] = Field(default_factory=list)
    staged_changes: list[StagedChange] = Field(default_factory=list)
    busy: list[str] = Field(default_factory=list)
    workflows: list[WorkflowListItem] = Field(default_factory=list)
    segments: list[Segment] = Field(default_factory=list)
    contact_categories: list[ContactCategory] = Field(default_factory=list)
    senders: list[Sender] = Field(default_factory=list)
    templates: list[Template] = Field(default_factory=list)


class WorkflowEditor:
    """Editing session for automation workflows."""

    def __init__(
        self,
        client: Optional[MonoSendClient] = None,
        notifier: Optional[Notifier] = None,
    ):
        settings = get_settings()
        self.client = client or MonoSendClient()
        self.notifier = notifier or Notifier()
        self.guard = SingleFlightGuard()
        self.scope = EditingScope()

        self.workflows: list[WorkflowListItem] = []
        self.selected_workflow: Optional[Workflow] = None

        self.segments: list[Segment] = []
        self.contact_categories: list[ContactCategory] = []
        self.senders: list[Sender] = []
        self.templates: list[Template] = []

        # Staged settings
        self.title = settings.default_title
        self.editing_title = False
        self.selected_segment: Optional[str] = None
        self.selected_category: Optional[str] = None
        self.track_opens = True
        self.track_clicks = True
        self.exit_condition = ExitCondition.COMPLETED

        # Projections
        self.emails: list[EmailStep] = []
        self.condition: Optional[ConditionBranch] = None
        self.merged_emails: list[EmailStep] = []
        self.staged_changes: list[StagedChange] = []

    async def __aenter__(self) -> "WorkflowEditor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def workflow_id(self) -> Optional[str]:
        return self.selected_workflow.id if self.selected_workflow else None

    @property
    def is_saving(self) -> bool:
        return self.guard.is_running(self.workflow_id, OperationKind.SAVE)

    @property
    def is_activating(self) -> bool:
        return self.guard.is_running(self.workflow_id, OperationKind.ACTIVATE)

    # ========================================================================
    # Loading and selection
    # ========================================================================

    async def load(self) -> bool:
        """Fetch lookups and the workflow list, then select the first workflow.

        Returns:
            True if a workflow was selected
        """
        logger.info("editor_load")

        results = await asyncio.gather(
            self._load_lookup(self.client.list_segments, "Failed to load segments"),
            self._load_lookup(self.client.list_contact_categories, "Failed to load unsubscribe groups"),
            self._load_lookup(self.client.list_senders, "Failed to load senders"),
            self._load_lookup(self.client.list_templates, "Failed to load templates"),
            self._load_workflows(),
        )
        self.segments, self.contact_categories, self.senders, self.templates, self.workflows = results

        logger.info(
            "editor_loaded",
            workflow_count=len(self.workflows),
            segment_count=len(self.segments),
            sender_count=len(self.senders),
        )

        if not self.workflows:
            return False
        return await self.select_workflow(self.workflows[0].id)

    async def _load_lookup(self, fetch: Callable[[], Awaitable[list[T]]], message: str) -> list[T]:
        try:
            return await self.scope.run(fetch())
        except SessionClosedError:
            raise
        except Exception as e:
            self._report_failure(e, message, "load_lookup", use_detail=False)
            return []

    async def _load_workflows(self) -> list[WorkflowListItem]:
        try:
            page = await self.scope.run(self.client.list_workflows())
        except SessionClosedError:
            raise
        except Exception as e:
            self._report_failure(e, "Failed to load automations", "list_workflows")
            return []
        return page.data

    async def select_workflow(self, workflow_id: str) -> bool:
        """Fetch a workflow and rebuild every piece of editable state from it."""
        try:
            workflow = await self.scope.run(self.client.get_workflow(workflow_id))
        except SessionClosedError:
            raise
        except Exception as e:
            self._report_failure(e, "Failed to load automation", "get_workflow")
            return False

        self._populate(workflow)
        return True

    def _populate(self, workflow: Workflow) -> None:
        """Replace all local state with ``workflow``; nothing carries over."""
        self.selected_workflow = workflow
        self.title = workflow.name
        self.editing_title = False
        self.selected_segment = workflow.trigger_segment_id
        self.selected_category = workflow.unsubscribe_category_id
        self.track_opens = workflow.track_opens
        self.track_clicks = workflow.track_clicks
        self.exit_condition = workflow.exit_condition
        self.staged_changes = []

        try:
            projection = project_workflow(workflow.steps)
        except StepGraphError as e:
            logger.error("workflow_projection_error", workflow_id=workflow.id, error=str(e))
            self.notifier.error(f"Automation steps could not be displayed: {e}", "get_workflow")
            self.emails, self.condition, self.merged_emails = [], None, []
            return

        self.emails = projection.emails
        self.condition = projection.condition
        self.merged_emails = projection.merged_emails

        logger.info(
            "workflow_selected",
            workflow_id=workflow.id,
            email_count=len(self.emails),
            has_condition=self.condition is not None,
            merged_count=len(self.merged_emails),
        )

    async def _resync(self, workflow_id: str) -> bool:
        """Discard local state and reload the workflow from the API."""
        logger.info("workflow_resync", workflow_id=workflow_id)
        return await self.select_workflow(workflow_id)

    # ========================================================================
    # Settings
    # ========================================================================

    async def set_trigger_segment(self, segment_id: Optional[str]) -> bool:
        """Select the trigger segment and persist it right away.

        This is the only setting that is saved without an explicit Save. On
        failure the selector goes back to the last value the server accepted.

        Raises:
            OperationInProgressError: if a settings patch is still in flight;
                the selector is left unchanged
        """
        workflow = self.selected_workflow
        if workflow is None:
            self.selected_segment = segment_id
            return True

        async with self.guard.claim(workflow.id, OperationKind.PATCH_SETTINGS):
            self.selected_segment = segment_id
            if segment_id == workflow.trigger_segment_id:
                return True
            try:
                updated = await self.scope.run(
                    self.client.update_workflow(
                        workflow.id,
                        WorkflowSettingsPatch(trigger_segment_id=segment_id),
                    )
                )
            except SessionClosedError:
                raise
            except Exception as e:
                self.selected_segment = workflow.trigger_segment_id
                self._report_failure(e, "Failed to update trigger segment", "patch_settings")
                return False

        self.selected_workflow = updated
        self.notifier.success("Trigger segment updated", "patch_settings")
        return True

    def set_unsubscribe_category(self, category_id: Optional[str]) -> None:
        self.selected_category = category_id

    def set_tracking(self, opens: Optional[bool] = None, clicks: Optional[bool] = None) -> None:
        if opens is not None:
            self.track_opens = opens
        if clicks is not None:
            self.track_clicks = clicks

    def set_exit_condition(self, value: Union[ExitCondition, str]) -> None:
        self.exit_condition = ExitCondition(value)

    def begin_title_edit(self) -> None:
        self.editing_title = True

    def commit_title(self, value: str) -> bool:
        """Commit the edited title (Enter or blur).

        Returns:
            True if the title changed
        """
        self.editing_title = False
        title = value.strip()
        if not title or title == self.title:
            return False
        self.title = title
        return True

    def cancel_title_edit(self) -> None:
        """Leave title editing without changing the committed title (Escape)."""
        self.editing_title = False

    # ========================================================================
    # Emails
    # ========================================================================

    async def add_email(self, form: EmailForm, merged: bool = False) -> Optional[EmailStep]:
        """Add an email to the main list, or to the list after the fork.

        Requires a trigger segment and a complete form. With a workflow
        selected the step is created through the API at once; without one
        the email only exists locally.

        Returns:
            The new EmailStep, or None if nothing was added
        """
        if not self.selected_segment:
            self.notifier.warning("Select a trigger segment before adding emails", "add_email")
            self.notifier.bounce("trigger_segment")
            return None

        if not self._validate_form(form, "add_email"):
            return None

        target = self.merged_emails if merged else self.emails
        workflow = self.selected_workflow

        if workflow is None:
            email = self._email_from_form(str(uuid4()), form)
            target.append(email)
            self.notifier.success("Email step added", "add_email")
            return email

        if merged:
            position = merged_position(workflow.steps)
        else:
            position = next_position(len(self.emails))
        request = build_create_request(form, position)

        async with self.guard.claim(workflow.id, OperationKind.CREATE_STEP):
            try:
                step = await self.scope.run(self.client.create_step(workflow.id, request))
            except SessionClosedError:
                raise
            except Exception as e:
                self._report_failure(e, "Failed to add email step", "add_email")
                return None

        # Values the server normalized win over what was typed
        config = step.email
        email = EmailStep(
            id=step.id,
            sender_id=config.sender_id if config.sender_id is not None else (form.sender_id or None),
            sender_email=config.sender_email or self._sender_email(form.sender_id),
            subject=config.subject_override if config.subject_override is not None else form.subject,
            content=config.content_override if config.content_override is not None else form.content,
            template_id=config.template_id if config.template_id is not None else form.template_id,
            wait_time=form.wait_time,
            wait_unit=form.wait_unit,
        )
        target.append(email)
        self.selected_workflow = self.selected_workflow.model_copy(
            update={"steps": [*self.selected_workflow.steps, step]}
        )

        logger.info("email_added", workflow_id=workflow.id, step_id=step.id, position=step.position)
        self.notifier.success("Email step added", "add_email")
        return email

    def edit_email(self, email_id: str, form: EmailForm) -> bool:
        """Apply the edit dialog to an existing email (staged until Save)."""
        email = self._find_email(email_id)
        if email is None:
            self.notifier.error("Email step not found", "edit_email")
            return False
        if not self._validate_form(form, "edit_email"):
            return False

        email.sender_id = form.sender_id or None
        email.sender_email = self._sender_email(form.sender_id) or email.sender_email
        email.subject = form.subject
        email.content = form.content
        email.template_id = form.template_id
        email.wait_time = form.wait_time
        email.wait_unit = form.wait_unit

        self._stage("edit_email", email_id)
        self.notifier.success("Email step updated", "edit_email")
        return True

    def delete_email(self, email_id: str) -> bool:
        """Remove an email from whichever view holds it (staged until Save)."""
        removed = False
        for emails in (self.emails, self.merged_emails):
            for index, email in enumerate(emails):
                if email.id == email_id:
                    del emails[index]
                    removed = True
                    break

        if not removed and self.condition is not None:
            for branch in (Branch.YES, Branch.NO):
                state = self.condition.branch(branch)
                if state.email is not None and state.email.id == email_id:
                    state.email = None
                    removed = True

        if not removed:
            self.notifier.error("Email step not found", "delete_email")
            return False

        if self.condition is not None and self.condition.email_id == email_id:
            self.condition.email_id = None

        self._stage("delete_email", email_id)
        self.notifier.success("Email step removed", "delete_email")
        return True

    def increment_wait(self, email_id: str) -> Optional[int]:
        email = self._find_email(email_id)
        if email is None:
            return None
        email.wait_time += 1
        self._stage("wait", email_id)
        return email.wait_time

    def decrement_wait(self, email_id: str) -> Optional[int]:
        email = self._find_email(email_id)
        if email is None:
            return None
        email.wait_time = max(0, email.wait_time - 1)
        self._stage("wait", email_id)
        return email.wait_time

    def set_wait_time(self, email_id: str, value: Union[int, str]) -> Optional[int]:
        """Set a typed wait time; anything that is not a positive integer becomes 1."""
        email = self._find_email(email_id)
        if email is None:
            return None
        email.wait_time = _parse_wait(value)
        self._stage("wait", email_id)
        return email.wait_time

    def set_wait_unit(self, email_id: str, unit: Union[WaitUnit, str]) -> bool:
        email = self._find_email(email_id)
        if email is None:
            return False
        email.wait_unit = WaitUnit(unit)
        self._stage("wait", email_id)
        return True

    async def reorder_emails(self, from_index: int, to_index: int, merged: bool = False) -> bool:
        """Move one email within the main list or the list after the fork.

        The new order is applied before the request goes out. On failure the
        workflow is reloaded from the API, and if that fails too the previous
        order is put back; on success the server's step list becomes the
        known one.

        Returns:
            True if the move was applied and accepted

        Raises:
            OperationInProgressError: if a reorder is still in flight; the
                lists are left unchanged
        """
        emails = self.merged_emails if merged else self.emails
        if from_index == to_index:
            return False
        if not (0 <= from_index < len(emails) and 0 <= to_index < len(emails)):
            return False

        reordered = move_item(emails, from_index, to_index)
        workflow = self.selected_workflow
        if workflow is None:
            self._set_email_list(reordered, merged)
            return True

        async with self.guard.claim(workflow.id, OperationKind.REORDER):
            self._set_email_list(reordered, merged)

            request = build_reorder_request(reordered, workflow.steps, merged=merged)
            logger.info(
                "reorder_request",
                workflow_id=workflow.id,
                from_index=from_index,
                to_index=to_index,
                merged=merged,
                step_count=len(request.steps),
            )

            try:
                steps = await self.scope.run(self.client.reorder_steps(workflow.id, request))
            except SessionClosedError:
                raise
            except Exception as e:
                self._report_failure(e, "Failed to reorder emails", "reorder")
                if not await self._resync(workflow.id):
                    self._set_email_list(emails, merged)
                return False

        self.selected_workflow = self.selected_workflow.model_copy(update={"steps": steps})
        return True

    def _set_email_list(self, emails: list[EmailStep], merged: bool) -> None:
        if merged:
            self.merged_emails = emails
        else:
            self.emails = emails

    # ========================================================================
    # Condition
    # ========================================================================

    def add_condition(
        self,
        condition_type: Union[ConditionType, str] = ConditionType.OPENED,
        email_id: Optional[str] = None,
    ) -> Optional[ConditionBranch]:
        """Add the workflow's fork after the main emails (staged until Save).

        Only one condition is allowed. By default it evaluates the last main
        email.
        """
        if self.condition is not None:
            self.notifier.warning("This automation already has a condition", "add_condition")
            return None

        if email_id is None and self.emails:
            email_id = self.emails[-1].id

        settings = get_settings()
        default_wait = {
            "wait_time": settings.default_wait_time,
            "wait_unit": WaitUnit(settings.default_wait_unit),
        }
        self.condition = ConditionBranch(
            id=str(uuid4()),
            condition_type=ConditionType(condition_type),
            email_id=email_id,
            yes_branch=BranchState(**default_wait),
            no_branch=BranchState(**default_wait),
        )
        self._stage("condition", self.condition.id)
        self.notifier.success("Condition added", "add_condition")
        return self.condition

    def remove_condition(self) -> bool:
        """Drop the fork; emails after it rejoin the main list."""
        if self.condition is None:
            return False

        condition_id = self.condition.id
        self.condition = None
        self.emails = [*self.emails, *self.merged_emails]
        self.merged_emails = []

        self._stage("condition", condition_id)
        self.notifier.success("Condition removed", "remove_condition")
        return True

    def update_condition(
        self,
        condition_type: Optional[Union[ConditionType, str]] = None,
        email_id: Optional[str] = None,
    ) -> bool:
        if self.condition is None:
            return False
        if condition_type is not None:
            self.condition.condition_type = ConditionType(condition_type)
        if email_id is not None:
            if self._find_email(email_id) is None:
                self.notifier.error("Email step not found", "update_condition")
                return False
            self.condition.email_id = email_id
        self._stage("condition", self.condition.id)
        return True

    def set_branch_wait(
        self,
        branch: Union[Branch, str],
        wait_time: Optional[Union[int, str]] = None,
        wait_unit: Optional[Union[WaitUnit, str]] = None,
    ) -> bool:
        if self.condition is None:
            return False
        state = self.condition.branch(Branch(branch))
        if wait_time is not None:
            state.wait_time = _parse_wait(wait_time)
        if wait_unit is not None:
            state.wait_unit = WaitUnit(wait_unit)
        if state.email is not None:
            state.email.wait_time = state.wait_time
            state.email.wait_unit = state.wait_unit
        self._stage("branch", self.condition.id)
        return True

    def set_branch_email(self, branch: Union[Branch, str], form: EmailForm) -> Optional[EmailStep]:
        """Put an email on one side of the fork, or edit the one already there."""
        if self.condition is None:
            self.notifier.warning("Add a condition before adding branch emails", "set_branch_email")
            return None
        if not self._validate_form(form, "set_branch_email"):
            return None

        state = self.condition.branch(Branch(branch))
        email_id = state.email.id if state.email is not None else str(uuid4())
        state.email = self._email_from_form(email_id, form)
        state.wait_time = form.wait_time
        state.wait_unit = form.wait_unit

        self._stage("branch", email_id)
        self.notifier.success("Email step added", "set_branch_email")
        return state.email

    def remove_branch_email(self, branch: Union[Branch, str]) -> bool:
        if self.condition is None:
            return False
        state = self.condition.branch(Branch(branch))
        if state.email is None:
            return False
        email_id = state.email.id
        state.email = None
        self._stage("branch", email_id)
        self.notifier.success("Email step removed", "remove_branch_email")
        return True

    # ========================================================================
    # Save and activate
    # ========================================================================

    async def save(self) -> Optional[Workflow]:
        """Patch settings, then save the draft as a new version.

        Returns:
            The saved workflow, or None if either call failed
        """
        workflow = self.selected_workflow
        if workflow is None:
            self.notifier.warning("No automation selected", "save")
            return None

        async with self.guard.claim(workflow.id, OperationKind.SAVE):
            saved = await self._save(workflow)

        if saved is not None:
            self.notifier.success(f"Automation saved (version {saved.draft_version})", "save")
        return saved

    async def activate(self) -> Optional[Workflow]:
        """Save, then activate the version that was just saved.

        Returns:
            The activated workflow, or None if saving or activating failed
        """
        workflow = self.selected_workflow
        if workflow is None:
            self.notifier.warning("No automation selected", "activate")
            return None

        async with self.guard.claim(workflow.id, OperationKind.ACTIVATE):
            saved = await self._save(workflow)
            if saved is None:
                return None

            try:
                activated = await self.scope.run(
                    self.client.activate_workflow(workflow.id, saved.draft_version)
                )
            except SessionClosedError:
                raise
            except Exception as e:
                self._report_failure(e, "Failed to activate automation", "activate")
                return None

        self.selected_workflow = activated
        self.notifier.success(f"Automation activated (version {activated.active_version})", "activate")
        return activated

    async def _save(self, workflow: Workflow) -> Optional[Workflow]:
        patch = WorkflowSettingsPatch(
            name=self.title,
            trigger_segment_id=self.selected_segment,
            unsubscribe_category_id=self.selected_category,
            track_opens=self.track_opens,
            track_clicks=self.track_clicks,
            **self.exit_condition.to_flags(),
        )

        try:
            await self.scope.run(self.client.update_workflow(workflow.id, patch))
        except SessionClosedError:
            raise
        except Exception as e:
            self._report_failure(e, "Failed to save automation settings", "save")
            return None

        try:
            saved = await self.scope.run(self.client.save_workflow(workflow.id))
        except SessionClosedError:
            raise
        except Exception as e:
            self._report_failure(e, "Failed to save automation", "save")
            return None

        if self.staged_changes:
            logger.info(
                "staged_changes_not_persisted",
                workflow_id=workflow.id,
                count=len(self.staged_changes),
            )
        self.selected_workflow = saved
        return saved

    async def close(self) -> None:
        """End the session; outstanding requests are cancelled and their results dropped."""
        await self.scope.close()

    # ========================================================================
    # Helpers
    # ========================================================================

    def snapshot(self) -> EditorState:
        workflow = self.selected_workflow
        return EditorState(
            workflow_id=workflow.id if workflow else None,
            title=self.title,
            editing_title=self.editing_title,
            status=workflow.status if workflow else None,
            draft_version=workflow.draft_version if workflow else None,
            active_version=workflow.active_version if workflow else None,
            trigger_segment_id=self.selected_segment,
            unsubscribe_category_id=self.selected_category,
            track_opens=self.track_opens,
            track_clicks=self.track_clicks,
            exit_condition=self.exit_condition,
            emails=self.emails,
            condition=self.condition,
            merged_emails=self.merged_emails,
            staged_changes=self.staged_changes,
            busy=[kind.value for kind in self.guard.busy_kinds(self.workflow_id)],
            workflows=self.workflows,
            segments=self.segments,
            contact_categories=self.contact_categories,
            senders=self.senders,
            templates=self.templates,
        )

    def drain_notices(self) -> list[Notice]:
        return self.notifier.drain()

    def _find_email(self, email_id: str) -> Optional[EmailStep]:
        for email in (*self.emails, *self.merged_emails):
            if email.id == email_id:
                return email
        if self.condition is not None:
            for state in (self.condition.yes_branch, self.condition.no_branch):
                if state.email is not None and state.email.id == email_id:
                    return state.email
        return None

    def _email_from_form(self, email_id: str, form: EmailForm) -> EmailStep:
        return EmailStep(
            id=email_id,
            sender_id=form.sender_id or None,
            sender_email=self._sender_email(form.sender_id),
            subject=form.subject,
            content=form.content,
            template_id=form.template_id,
            wait_time=form.wait_time,
            wait_unit=form.wait_unit,
        )

    def _sender_email(self, sender_id: Optional[str]) -> str:
        for sender in self.senders:
            if sender.id == sender_id:
                return sender.email
        return ""

    def _validate_form(self, form: EmailForm, operation: str) -> bool:
        missing = form.missing_fields()
        if not missing:
            return True
        self.notifier.warning(f"Email {', '.join(missing)} is required", operation)
        return False

    def _stage(self, kind: str, target_id: Optional[str]) -> None:
        change = StagedChange(kind=kind, target_id=target_id)
        if change not in self.staged_changes:
            self.staged_changes.append(change)

    def _report_failure(
        self,
        error: Exception,
        fallback: str,
        operation: str,
        use_detail: bool = True,
    ) -> None:
        detail = error.detail if isinstance(error, APIClientError) else None
        logger.error(
            "operation_failed",
            operation=operation,
            error=str(error),
            status_code=getattr(error, "status_code", None),
        )
        self.notifier.error(detail if use_detail and detail else fallback, operation)


def _parse_wait(value: Union[int, str]) -> int:
    try:
        wait = int(value)
    except (TypeError, ValueError):
        return 1
    return wait if wait > 0 else 1
