"""Editor API endpoints - drive an editing session over HTTP.

Each session wraps one WorkflowEditor. Every response carries the editor
snapshot plus the notices raised by the call, so a frontend can render the
result and show toasts without keeping its own copy of the step graph.
"""
import time
from typing import Optional, Union
from uuid import uuid4

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from automation_builder.builder.editor import EditorState, WorkflowEditor
from automation_builder.builder.guard import OperationInProgressError, SessionClosedError
from automation_builder.builder.notices import Notice
from automation_builder.config import get_settings
from automation_builder.models.projection import EmailForm
from automation_builder.models.workflow import Branch, ConditionType, ExitCondition, WaitUnit

logger = structlog.get_logger()

router = APIRouter()

# Open editing sessions by id, with the monotonic time each was last used
_sessions: dict[str, WorkflowEditor] = {}
_last_used: dict[str, float] = {}


class EditorResponse(BaseModel):
    """Outcome of an editor call."""

    session_id: str
    ok: bool
    state: EditorState
    notices: list[Notice] = Field(default_factory=list)
    bounces: list[str] = Field(default_factory=list)


class SelectWorkflowRequest(BaseModel):
    workflow_id: str


class SegmentRequest(BaseModel):
    segment_id: Optional[str] = None


class SettingsRequest(BaseModel):
    """Staged settings; only the fields present are changed."""

    unsubscribe_category_id: Optional[str] = None
    track_opens: Optional[bool] = None
    track_clicks: Optional[bool] = None
    exit_condition: Optional[ExitCondition] = None


class TitleRequest(BaseModel):
    title: str


class AddEmailRequest(EmailForm):
    merged: bool = Field(False, description="Add after the condition instead of before it")


class WaitRequest(BaseModel):
    wait_time: Optional[Union[int, str]] = Field(None, description="Typed value; invalid input becomes 1")
    wait_unit: Optional[WaitUnit] = None
    step: Optional[int] = Field(None, description="+1 or -1 from the stepper buttons")


class ReorderEmailsRequest(BaseModel):
    from_index: int
    to_index: int
    merged: bool = False


class ConditionRequest(BaseModel):
    condition_type: ConditionType = ConditionType.OPENED
    email_id: Optional[str] = None


class BranchWaitRequest(BaseModel):
    wait_time: Optional[Union[int, str]] = None
    wait_unit: Optional[WaitUnit] = None


def register_session(editor: WorkflowEditor) -> str:
    session_id = str(uuid4())
    _sessions[session_id] = editor
    _last_used[session_id] = time.monotonic()
    return session_id


def get_session(session_id: str) -> WorkflowEditor:
    editor = _sessions.get(session_id)
    if editor is None:
        raise HTTPException(status_code=404, detail=f"Editor session '{session_id}' not found")
    _last_used[session_id] = time.monotonic()
    return editor


def _drop_session(session_id: str) -> Optional[WorkflowEditor]:
    _last_used.pop(session_id, None)
    return _sessions.pop(session_id, None)


async def evict_idle_sessions() -> int:
    """Close and forget sessions unused for longer than the configured TTL.

    Returns:
        Number of sessions evicted
    """
    cutoff = time.monotonic() - get_settings().editor_session_ttl
    idle = [session_id for session_id, used in _last_used.items() if used < cutoff]
    for session_id in idle:
        editor = _drop_session(session_id)
        if editor is not None:
            await editor.close()
    if idle:
        logger.info("editor_sessions_evicted", count=len(idle))
    return len(idle)


def reset_sessions():
    """Drop all sessions (for testing)."""
    _sessions.clear()
    _last_used.clear()


def _respond(session_id: str, editor: WorkflowEditor, ok: bool) -> EditorResponse:
    bounces, editor.notifier.bounces = editor.notifier.bounces, []
    return EditorResponse(
        session_id=session_id,
        ok=ok,
        state=editor.snapshot(),
        notices=editor.drain_notices(),
        bounces=bounces,
    )


def _conflict(e: OperationInProgressError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


def _gone(session_id: str) -> HTTPException:
    _drop_session(session_id)
    return HTTPException(status_code=410, detail="Editor session was closed")


# ============================================================================
# Sessions
# ============================================================================

@router.post("/editor/sessions", response_model=EditorResponse)
async def open_session() -> EditorResponse:
    """Open a session: load lookups and select the first automation."""
    await evict_idle_sessions()
    editor = WorkflowEditor()
    session_id = register_session(editor)
    logger.info("editor_session_opened", session_id=session_id)

    ok = await editor.load()
    return _respond(session_id, editor, ok)


@router.get("/editor/sessions/{session_id}", response_model=EditorResponse)
async def get_session_state(session_id: str) -> EditorResponse:
    return _respond(session_id, get_session(session_id), True)


@router.delete("/editor/sessions/{session_id}")
async def close_session(session_id: str) -> dict:
    editor = get_session(session_id)
    await editor.close()
    _drop_session(session_id)
    logger.info("editor_session_closed", session_id=session_id)
    return {"session_id": session_id, "closed": True}


@router.post("/editor/sessions/{session_id}/workflow", response_model=EditorResponse)
async def select_workflow(session_id: str, request: SelectWorkflowRequest) -> EditorResponse:
    editor = get_session(session_id)
    try:
        ok = await editor.select_workflow(request.workflow_id)
    except SessionClosedError:
        raise _gone(session_id)
    return _respond(session_id, editor, ok)


# ============================================================================
# Settings
# ============================================================================

@router.put("/editor/sessions/{session_id}/segment", response_model=EditorResponse)
async def set_segment(session_id: str, request: SegmentRequest) -> EditorResponse:
    """Change the trigger segment; saved immediately."""
    editor = get_session(session_id)
    try:
        ok = await editor.set_trigger_segment(request.segment_id)
    except OperationInProgressError as e:
        raise _conflict(e)
    except SessionClosedError:
        raise _gone(session_id)
    return _respond(session_id, editor, ok)


@router.put("/editor/sessions/{session_id}/settings", response_model=EditorResponse)
async def set_settings(session_id: str, request: SettingsRequest) -> EditorResponse:
    """Stage settings until the next Save."""
    editor = get_session(session_id)
    fields = request.model_fields_set
    if "unsubscribe_category_id" in fields:
        editor.set_unsubscribe_category(request.unsubscribe_category_id)
    editor.set_tracking(opens=request.track_opens, clicks=request.track_clicks)
    if request.exit_condition is not None:
        editor.set_exit_condition(request.exit_condition)
    return _respond(session_id, editor, True)


@router.put("/editor/sessions/{session_id}/title", response_model=EditorResponse)
async def set_title(session_id: str, request: TitleRequest) -> EditorResponse:
    editor = get_session(session_id)
    ok = editor.commit_title(request.title)
    return _respond(session_id, editor, ok)


# ============================================================================
# Emails
# ============================================================================

@router.post("/editor/sessions/{session_id}/emails", response_model=EditorResponse)
async def add_email(session_id: str, request: AddEmailRequest) -> EditorResponse:
    editor = get_session(session_id)
    form = EmailForm.model_validate(request.model_dump(exclude={"merged"}))
    try:
        email = await editor.add_email(form, merged=request.merged)
    except OperationInProgressError as e:
        raise _conflict(e)
    except SessionClosedError:
        raise _gone(session_id)
    return _respond(session_id, editor, email is not None)


@router.put("/editor/sessions/{session_id}/emails/{email_id}", response_model=EditorResponse)
async def edit_email(session_id: str, email_id: str, request: EmailForm) -> EditorResponse:
    editor = get_session(session_id)
    ok = editor.edit_email(email_id, request)
    return _respond(session_id, editor, ok)


@router.delete("/editor/sessions/{session_id}/emails/{email_id}", response_model=EditorResponse)
async def delete_email(session_id: str, email_id: str) -> EditorResponse:
    editor = get_session(session_id)
    ok = editor.delete_email(email_id)
    return _respond(session_id, editor, ok)


@router.put("/editor/sessions/{session_id}/emails/{email_id}/wait", response_model=EditorResponse)
async def set_email_wait(session_id: str, email_id: str, request: WaitRequest) -> EditorResponse:
    editor = get_session(session_id)
    ok = True
    if request.step is not None:
        change = editor.increment_wait if request.step > 0 else editor.decrement_wait
        ok = change(email_id) is not None
    if ok and request.wait_time is not None:
        ok = editor.set_wait_time(email_id, request.wait_time) is not None
    if ok and request.wait_unit is not None:
        ok = editor.set_wait_unit(email_id, request.wait_unit)
    return _respond(session_id, editor, ok)


@router.post("/editor/sessions/{session_id}/emails/reorder", response_model=EditorResponse)
async def reorder_emails(session_id: str, request: ReorderEmailsRequest) -> EditorResponse:
    editor = get_session(session_id)
    try:
        ok = await editor.reorder_emails(request.from_index, request.to_index, merged=request.merged)
    except OperationInProgressError as e:
        raise _conflict(e)
    except SessionClosedError:
        raise _gone(session_id)
    return _respond(session_id, editor, ok)


# ============================================================================
# Condition
# ============================================================================

@router.post("/editor/sessions/{session_id}/condition", response_model=EditorResponse)
async def add_condition(session_id: str, request: ConditionRequest) -> EditorResponse:
    editor = get_session(session_id)
    condition = editor.add_condition(request.condition_type, request.email_id)
    return _respond(session_id, editor, condition is not None)


@router.delete("/editor/sessions/{session_id}/condition", response_model=EditorResponse)
async def remove_condition(session_id: str) -> EditorResponse:
    editor = get_session(session_id)
    ok = editor.remove_condition()
    return _respond(session_id, editor, ok)


@router.put("/editor/sessions/{session_id}/condition/branches/{branch}", response_model=EditorResponse)
async def set_branch_email(session_id: str, branch: Branch, request: EmailForm) -> EditorResponse:
    editor = get_session(session_id)
    email = editor.set_branch_email(branch, request)
    return _respond(session_id, editor, email is not None)


@router.put("/editor/sessions/{session_id}/condition/branches/{branch}/wait", response_model=EditorResponse)
async def set_branch_wait(session_id: str, branch: Branch, request: BranchWaitRequest) -> EditorResponse:
    editor = get_session(session_id)
    ok = editor.set_branch_wait(branch, request.wait_time, request.wait_unit)
    return _respond(session_id, editor, ok)


@router.delete("/editor/sessions/{session_id}/condition/branches/{branch}/email", response_model=EditorResponse)
async def remove_branch_email(session_id: str, branch: Branch) -> EditorResponse:
    editor = get_session(session_id)
    ok = editor.remove_branch_email(branch)
    return _respond(session_id, editor, ok)


# ============================================================================
# Save and activate
# ============================================================================

@router.post("/editor/sessions/{session_id}/save", response_model=EditorResponse)
async def save(session_id: str) -> EditorResponse:
    editor = get_session(session_id)
    try:
        saved = await editor.save()
    except OperationInProgressError as e:
        raise _conflict(e)
    except SessionClosedError:
        raise _gone(session_id)
    return _respond(session_id, editor, saved is not None)


@router.post("/editor/sessions/{session_id}/activate", response_model=EditorResponse)
async def activate(session_id: str) -> EditorResponse:
    editor = get_session(session_id)
    try:
        activated = await editor.activate()
    except OperationInProgressError as e:
        raise _conflict(e)
    except SessionClosedError:
        raise _gone(session_id)
    return _respond(session_id, editor, activated is not None)
