"""Pytest configuration helpers.

This conftest ensures the `backend` directory is on `sys.path` so tests can
import the `forge` package regardless of how pytest is invoked, and provides a
fake Kling endpoint built on `httpx.MockTransport`.
"""
import json
import os
import sys

import httpx
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from forge.config import Settings  # noqa: E402
from forge.services.providers.kling_tasks import PollingPolicy  # noqa: E402

API_BASE = "https://kling.test"


def poll_envelope(status, task_id="task-1", code=0, **data):
    """A status-query response envelope."""
    return {
        "code": code,
        "message": "SUCCEED" if code == 0 else "error",
        "request_id": "req-1",
        "data": {"task_id": task_id, "task_status": status, **data},
    }


class FakeKling:
    """Scripted Kling API: one submit response, then a sequence of polls.

    The last poll response repeats once the script runs out.
    """

    def __init__(self, submit=None, polls=None, task_id="task-1"):
        self.task_id = task_id
        self.submit_response = submit or {
            "code": 0,
            "message": "SUCCEED",
            "request_id": "req-0",
            "data": {"task_id": task_id, "task_status": "submitted", "created_at": 1722769557708},
        }
        self.polls = list(polls or [])
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, json=self.submit_response)
        if len(self.polls) > 1:
            response = self.polls.pop(0)
        else:
            response = self.polls[0]
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def posts(self):
        return [r for r in self.requests if r.method == "POST"]

    @property
    def gets(self):
        return [r for r in self.requests if r.method == "GET"]

    def body(self, index=0):
        return json.loads(self.posts[index].content)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        KLING_ACCESS_KEY="test-access-key",
        KLING_SECRET_KEY="test-secret-key",
        KLING_API_BASE=API_BASE,
    )


@pytest.fixture
def fast_policy():
    return PollingPolicy(max_attempts=3, interval_seconds=0)
