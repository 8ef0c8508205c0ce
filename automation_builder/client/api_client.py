"""REST API client for automation workflows.

Handles:
- Listing workflows and fetching full details
- Patching workflow settings
- Saving draft versions and activating a version
- Creating and reordering steps
- Lookup lists for selectors (segments, unsubscribe groups, senders, templates)
"""
from typing import Any, Optional

import httpx
import structlog

from automation_builder.config import get_settings
from automation_builder.models.workflow import (
    ContactCategory,
    CreateStepRequest,
    ReorderRequest,
    Segment,
    Sender,
    Template,
    Workflow,
    WorkflowPage,
    WorkflowSettingsPatch,
    WorkflowStep,
)

logger = structlog.get_logger()


class APIClientError(Exception):
    """Exception for REST API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    @property
    def detail(self) -> Optional[str]:
        """The server's ``detail`` message, if it sent one."""
        if isinstance(self.response_body, dict):
            detail = self.response_body.get("detail")
            if isinstance(detail, str) and detail:
                return detail
        return None


class UnauthorizedError(APIClientError):
    """The API rejected the session token."""


class MonoSendClient:
    """Client for the workflow REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.api_token = api_token if api_token is not None else settings.api_token
        self.timeout = timeout or settings.request_timeout
        self._transport = transport

    @property
    def headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make an HTTP request to the API."""

        url = f"{self.base_url}{endpoint}"

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self.headers,
                    json=json,
                    params=params,
                    timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                logger.error("api_transport_error", method=method, endpoint=endpoint, error=str(e))
                raise APIClientError(f"HTTP error: {str(e)}")

        # Log request (without sensitive data)
        logger.debug(
            "api_request",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
        )

        if response.status_code == 401:
            # Same as a forced logout: the token is no longer usable
            self.api_token = ""
            raise UnauthorizedError(
                "Unauthorized",
                status_code=401,
                response_body=_safe_json(response),
            )

        if response.status_code >= 400:
            raise APIClientError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                response_body=_safe_json(response),
            )

        return response.json() if response.content else {}

    # ========================================================================
    # Workflows
    # ========================================================================

    async def list_workflows(self, page: int = 1, page_size: Optional[int] = None) -> WorkflowPage:
        """List workflows, one page at a time.

        Args:
            page: 1-based page number
            page_size: Rows per page (defaults to the configured size)

        Returns:
            The page of summaries plus pagination info
        """
        params = {
            "page": page,
            "page_size": page_size or get_settings().workflow_page_size,
        }
        result = await self._request(method="GET", endpoint="/workflows", params=params)
        return WorkflowPage.model_validate(result)

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Get a workflow with its steps."""
        logger.debug("get_workflow", workflow_id=workflow_id)

        result = await self._request(method="GET", endpoint=f"/workflows/{workflow_id}")
        return Workflow.model_validate(result)

    async def update_workflow(self, workflow_id: str, patch: WorkflowSettingsPatch) -> Workflow:
        """Patch workflow settings.

        Args:
            workflow_id: The workflow ID
            patch: Fields to change; unset fields are not sent

        Returns:
            The updated workflow
        """
        body = patch.to_body()
        logger.info("update_workflow", workflow_id=workflow_id, fields=sorted(body))

        result = await self._request(
            method="PATCH",
            endpoint=f"/workflows/{workflow_id}",
            json=body,
        )
        return Workflow.model_validate(result)

    async def save_workflow(self, workflow_id: str) -> Workflow:
        """Persist the current draft as a new version."""
        logger.info("save_workflow", workflow_id=workflow_id)

        result = await self._request(method="POST", endpoint=f"/workflows/{workflow_id}/save")
        workflow = Workflow.model_validate(result)

        logger.info(
            "workflow_saved",
            workflow_id=workflow_id,
            draft_version=workflow.draft_version,
        )
        return workflow

    async def activate_workflow(self, workflow_id: str, version_number: int) -> Workflow:
        """Promote a saved version to live.

        Args:
            workflow_id: The workflow ID
            version_number: Draft version to activate

        Returns:
            The workflow with its new active version and status
        """
        logger.info("activate_workflow", workflow_id=workflow_id, version_number=version_number)

        result = await self._request(
            method="POST",
            endpoint=f"/workflows/{workflow_id}/activate",
            params={"version_number": version_number},
        )
        workflow = Workflow.model_validate(result)

        logger.info(
            "workflow_activated",
            workflow_id=workflow_id,
            active_version=workflow.active_version,
            status=workflow.status.value,
        )
        return workflow

    # ========================================================================
    # Steps
    # ========================================================================

    async def create_step(self, workflow_id: str, request: CreateStepRequest) -> WorkflowStep:
        """Create a step.

        Args:
            workflow_id: The workflow ID
            request: Step type, position, placement and email fields

        Returns:
            The created step, with server-normalized config
        """
        logger.info(
            "create_step",
            workflow_id=workflow_id,
            step_type=request.step_type.value,
            position=request.position,
        )

        result = await self._request(
            method="POST",
            endpoint=f"/workflows/{workflow_id}/steps",
            json=request.to_body(),
        )
        return WorkflowStep.model_validate(result)

    async def reorder_steps(self, workflow_id: str, request: ReorderRequest) -> list[WorkflowStep]:
        """Send new positions for a set of steps.

        Args:
            workflow_id: The workflow ID
            request: id, position, parent and branch of every moved step

        Returns:
            The workflow's steps as the server now stores them
        """
        logger.info("reorder_steps", workflow_id=workflow_id, step_count=len(request.steps))

        result = await self._request(
            method="PUT",
            endpoint=f"/workflows/{workflow_id}/steps/reorder",
            json=request.to_body(),
        )
        rows = result.get("steps", []) if isinstance(result, dict) else result
        return [WorkflowStep.model_validate(row) for row in rows]

    # ========================================================================
    # Lookups
    # ========================================================================

    async def list_segments(self) -> list[Segment]:
        result = await self._request(method="GET", endpoint="/segments")
        return [Segment.model_validate(row) for row in _items(result)]

    async def list_contact_categories(self) -> list[ContactCategory]:
        result = await self._request(method="GET", endpoint="/contact-categories")
        return [ContactCategory.model_validate(row) for row in _items(result)]

    async def list_senders(self) -> list[Sender]:
        result = await self._request(method="GET", endpoint="/senders")
        return [Sender.model_validate(row) for row in _items(result)]

    async def list_templates(self) -> list[Template]:
        result = await self._request(method="GET", endpoint="/templates")
        return [Template.model_validate(row) for row in _items(result)]


def _items(payload: Any) -> list:
    """Rows of a list response, whichever envelope it uses."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return payload.get("items") or payload.get("data") or []
    return []


def _safe_json(response: httpx.Response) -> dict:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {"detail": response.text}
    return body if isinstance(body, dict) else {"detail": body}
