"""Shared fixtures: an in-memory stand-in for the workflow REST API."""
import asyncio
import json
import re
from typing import Optional

import httpx
import pytest

from automation_builder.builder.editor import WorkflowEditor
from automation_builder.builder.notices import Notifier
from automation_builder.client.api_client import MonoSendClient

BASE_URL = "https://api.test/v1.0"


def wait_step(step_id, position, duration=5, unit="day", parent=None, branch=None):
    return {
        "id": step_id,
        "workflow_id": "wf-1",
        "step_type": "wait",
        "position": position,
        "parent_step_id": parent,
        "branch": branch,
        "config": {"wait_duration": duration, "wait_unit": unit},
    }


def email_step(step_id, position, subject="", parent=None, branch=None, **config):
    body = {
        "sender_id": config.get("sender_id", "snd-1"),
        "sender_email": config.get("sender_email", "hello@acme.io"),
        "template_id": config.get("template_id", "tpl-1"),
        "subject_override": subject,
        "content_override": config.get("content", ""),
    }
    return {
        "id": step_id,
        "workflow_id": "wf-1",
        "step_type": "email",
        "position": position,
        "parent_step_id": parent,
        "branch": branch,
        "config": body,
    }


def condition_step(step_id, position, condition_type="opened", email_step_id=None):
    return {
        "id": step_id,
        "workflow_id": "wf-1",
        "step_type": "condition",
        "position": position,
        "parent_step_id": None,
        "branch": None,
        "config": {"condition_type": condition_type, "email_step_id": email_step_id},
    }


def three_pair_steps():
    """A, B and C, each a wait+email pair on the main path."""
    return [
        wait_step("wait-a", 1, 1, "day"),
        email_step("email-a", 2, "A"),
        wait_step("wait-b", 3, 2, "day"),
        email_step("email-b", 4, "B"),
        wait_step("wait-c", 5, 3, "hour"),
        email_step("email-c", 6, "C"),
    ]


def forked_steps():
    """Main email, a condition with both branches filled, and one merged email."""
    return [
        wait_step("wait-1", 1, 1, "day"),
        email_step("email-1", 2, "Welcome"),
        condition_step("cond", 3, "opened", "email-1"),
        wait_step("wait-yes", 4, 1, "day", parent="cond", branch="yes"),
        email_step("email-yes", 5, "Thanks for reading", parent="cond", branch="yes"),
        wait_step("wait-no", 6, 3, "day", parent="cond", branch="no"),
        email_step("email-no", 7, "Did you miss this?", parent="cond", branch="no"),
        wait_step("wait-m1", 8, 2, "day"),
        email_step("email-m1", 9, "Merged one"),
        email_step("email-m2", 10, "Merged two"),
    ]


def make_workflow(workflow_id="wf-1", steps=None, **fields):
    workflow = {
        "id": workflow_id,
        "name": "Onboarding",
        "status": "draft",
        "trigger_segment_id": "seg-1",
        "unsubscribe_category_id": "cat-1",
        "track_opens": True,
        "track_clicks": True,
        "exit_on_all_emails": True,
        "exit_on_segment_leave": False,
        "active_version": None,
        "draft_version": 1,
        "has_unsaved_changes": False,
        "steps": steps if steps is not None else [],
        "stats": {"total_enrolled": 0},
    }
    workflow.update(fields)
    return workflow


class FakeAPI:
    """Routes requests made through ``httpx.MockTransport`` and records them."""

    def __init__(self):
        self.workflows: dict[str, dict] = {}
        self.requests: list[tuple[str, str, Optional[dict], dict]] = []
        self.failures: dict[tuple[str, str], tuple[int, dict]] = {}
        self.gates: dict[tuple[str, str], asyncio.Event] = {}
        self.segments = [{"id": "seg-1", "name": "Newsletter"}, {"id": "seg-2", "name": "Trial users"}]
        self.categories = [{"id": "cat-1", "name": "Product updates"}]
        self.senders = [{"id": "snd-1", "email": "hello@acme.io"}, {"id": "snd-2", "email": "team@acme.io"}]
        self.templates = [{"id": "tpl-1", "name": "Welcome"}]
        self._created = 0

    def add_workflow(self, workflow: dict) -> dict:
        self.workflows[workflow["id"]] = workflow
        return workflow

    def fail(self, method: str, path: str, status: int = 400, body: Optional[dict] = None):
        self.failures[(method, path)] = (status, body if body is not None else {})

    def gate(self, method: str, path: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[(method, path)] = event
        return event

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> list[tuple[str, str]]:
        return [
            (m, p) for m, p, _, _ in self.requests
            if (method is None or m == method) and (path is None or p == path)
        ]

    def bodies(self, method: str, path: str) -> list[Optional[dict]]:
        return [body for m, p, body, _ in self.requests if m == method and p == path]

    def params(self, method: str, path: str) -> list[dict]:
        return [params for m, p, _, params in self.requests if m == method and p == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/v1.0"):]
        body = json.loads(request.content) if request.content else None
        params = dict(request.url.params)
        self.requests.append((request.method, path, body, params))

        gate = self.gates.get((request.method, path))
        if gate is not None:
            await gate.wait()

        failure = self.failures.get((request.method, path))
        if failure is not None:
            status, payload = failure
            return httpx.Response(status, json=payload)

        return self._route(request.method, path, body, params)

    def _route(self, method, path, body, params) -> httpx.Response:
        if method == "GET" and path == "/workflows":
            rows = [
                {key: wf[key] for key in ("id", "name", "status", "active_version", "draft_version")}
                for wf in self.workflows.values()
            ]
            return httpx.Response(200, json={
                "data": rows,
                "pagination": {"page": 1, "page_size": 20, "total": len(rows), "total_pages": 1},
            })
        if method == "GET" and path == "/segments":
            return httpx.Response(200, json={"items": self.segments})
        if method == "GET" and path == "/contact-categories":
            return httpx.Response(200, json={"items": self.categories})
        if method == "GET" and path == "/senders":
            return httpx.Response(200, json={"items": self.senders})
        if method == "GET" and path == "/templates":
            return httpx.Response(200, json={"items": self.templates})

        match = re.fullmatch(r"/workflows/([^/]+)(/.*)?", path)
        if not match or match.group(1) not in self.workflows:
            return httpx.Response(404, json={"detail": "Workflow not found"})
        workflow = self.workflows[match.group(1)]
        rest = match.group(2) or ""

        if method == "GET" and rest == "":
            return httpx.Response(200, json=workflow)
        if method == "PATCH" and rest == "":
            workflow.update(body)
            workflow["has_unsaved_changes"] = True
            return httpx.Response(200, json=workflow)
        if method == "POST" and rest == "/save":
            workflow["draft_version"] += 1
            workflow["has_unsaved_changes"] = False
            return httpx.Response(200, json=workflow)
        if method == "POST" and rest == "/activate":
            workflow["active_version"] = int(params["version_number"])
            workflow["status"] = "active"
            return httpx.Response(200, json=workflow)
        if method == "POST" and rest == "/steps":
            self._created += 1
            sender = next((s for s in self.senders if s["id"] == body["sender_id"]), None)
            step = {
                "id": f"step-new-{self._created}",
                "workflow_id": workflow["id"],
                "step_type": body["step_type"],
                "position": body["position"],
                "parent_step_id": body["parent_step_id"],
                "branch": body["branch"],
                "config": {
                    "sender_id": body["sender_id"],
                    "sender_email": sender["email"] if sender else None,
                    "template_id": body["template_id"],
                    "subject_override": (body["subject_override"] or "").strip(),
                    "content_override": body["content_override"],
                },
            }
            workflow["steps"].append(step)
            return httpx.Response(201, json=step)
        if method == "PUT" and rest == "/steps/reorder":
            by_id = {step["id"]: step for step in workflow["steps"]}
            for entry in body["steps"]:
                by_id[entry["id"]]["position"] = entry["position"]
            steps = sorted(workflow["steps"], key=lambda step: step["position"])
            return httpx.Response(200, json=steps)

        return httpx.Response(405, json={"detail": "Method not allowed"})


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def api_client(fake_api):
    return MonoSendClient(
        base_url=BASE_URL,
        api_token="test-token",
        transport=httpx.MockTransport(fake_api.handler),
    )


@pytest.fixture
def editor(api_client):
    return WorkflowEditor(client=api_client, notifier=Notifier())
