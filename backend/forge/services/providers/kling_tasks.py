"""Kling task lifecycle: submit → poll → resolve.

Async task pattern shared by every job kind:
1. POST <kind endpoint>            → create task, returns task_id
2. GET  <kind endpoint>/{task_id}  → poll until succeed / failed
3. Read task_result.videos / task_result.images from the terminal envelope

Each call signs a fresh credential. Nothing here retries; errors surface as
``KlingError`` subclasses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from forge.config import Settings, get_settings
from forge.schemas.job import Job, JobKind, JobRequest, JobResult, TaskStatus
from forge.services.providers.kling_auth import auth_headers
from forge.services.providers.kling_errors import (
    KlingError,
    MissingResultError,
    NetworkError,
    PollError,
    PollTimeoutError,
    SubmissionError,
    TaskFailureError,
    describe_error_code,
)
from forge.services.providers.kling_payloads import BuiltRequest, build

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollingPolicy:
    """Bound on a poll loop: worst-case wait is max_attempts × interval_seconds."""

    max_attempts: int
    interval_seconds: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must not be negative")

    @property
    def max_wait_seconds(self) -> float:
        return self.max_attempts * self.interval_seconds


VIDEO_POLLING = PollingPolicy(max_attempts=120, interval_seconds=5.0)
IMAGE_POLLING = PollingPolicy(max_attempts=60, interval_seconds=3.0)

POLLING_POLICIES: dict[JobKind, PollingPolicy] = {
    JobKind.TEXT_TO_VIDEO: VIDEO_POLLING,
    JobKind.IMAGE_TO_VIDEO: VIDEO_POLLING,
    JobKind.AVATAR_VIDEO: VIDEO_POLLING,
    JobKind.IMAGE_GENERATION: IMAGE_POLLING,
}


def policy_for(kind: JobKind, settings: Settings | None = None) -> PollingPolicy:
    """Polling policy for ``kind``: the table entry, with any settings overrides applied."""
    policy = POLLING_POLICIES[kind]
    if settings is None:
        return policy
    if kind.is_video:
        attempts, interval = settings.KLING_VIDEO_POLL_ATTEMPTS, settings.KLING_VIDEO_POLL_INTERVAL
    else:
        attempts, interval = settings.KLING_IMAGE_POLL_ATTEMPTS, settings.KLING_IMAGE_POLL_INTERVAL
    if attempts is None and interval is None:
        return policy
    return PollingPolicy(
        max_attempts=policy.max_attempts if attempts is None else attempts,
        interval_seconds=policy.interval_seconds if interval is None else interval,
    )


async def _send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    settings: Settings,
    *,
    json: dict[str, Any] | None = None,
    job_id: str | None = None,
) -> httpx.Response:
    headers = auth_headers(settings)
    try:
        return await client.request(method, url, json=json, headers=headers)
    except httpx.TransportError as exc:
        raise NetworkError(f"Kling {method} {url} failed: {exc}", job_id=job_id) from exc


def _envelope(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def submit(
    built: BuiltRequest,
    *,
    client: httpx.AsyncClient,
    settings: Settings | None = None,
) -> Job:
    """Create the provider task. A non-zero ``code`` is a failure even on HTTP 200."""
    settings = settings or get_settings()
    url = f"{settings.KLING_API_BASE}{built.endpoint}"

    resp = await _send(client, built.method, url, settings, json=built.body)
    if resp.is_error:
        logger.error("Kling API Error: %s - %s", resp.status_code, resp.text)
        raise SubmissionError(
            f"Kling API Error: {resp.status_code} - {resp.text}",
            http_status=resp.status_code,
            code=_envelope(resp).get("code"),
        )

    envelope = _envelope(resp)
    code = envelope.get("code")
    if code != 0:
        message = envelope.get("message") or "unknown error"
        raise SubmissionError(
            f"Kling task creation failed: [{code}] {message} ({describe_error_code(code)})",
            code=code,
            http_status=resp.status_code,
        )

    data = envelope.get("data")
    if not isinstance(data, dict):
        data = {}
    task_id = data.get("task_id")
    if not task_id:
        raise SubmissionError("Kling task creation failed: no task_id returned", code=code)

    job = Job(id=task_id, kind=built.kind, poll_endpoint=built.poll_endpoint)
    job.update_from(data)
    job.advance(TaskStatus.parse(data.get("task_status") or TaskStatus.SUBMITTED.value))
    return job


async def poll(
    job: Job,
    *,
    client: httpx.AsyncClient,
    settings: Settings | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Poll ``job`` until a terminal status; returns the terminal ``data`` envelope.

    Raises PollTimeoutError once ``policy.max_attempts`` queries came back
    non-terminal. Cancelling the calling task aborts the in-flight request or
    the inter-attempt sleep.
    """
    settings = settings or get_settings()
    policy = policy or policy_for(job.kind, settings)
    url = f"{settings.KLING_API_BASE}{job.poll_endpoint}/{job.id}"
    last_status: str | None = job.status.value

    for attempt in range(1, policy.max_attempts + 1):
        resp = await _send(client, "GET", url, settings, job_id=job.id)
        if resp.is_error:
            raise PollError(
                f"Kling status query failed: {resp.status_code} - {resp.text}",
                http_status=resp.status_code,
                code=_envelope(resp).get("code"),
                job_id=job.id,
            )

        envelope = _envelope(resp)
        code = envelope.get("code")
        if code != 0:
            raise PollError(
                f"Kling status query rejected: [{code}] "
                f"{envelope.get('message') or describe_error_code(code)}",
                code=code,
                http_status=resp.status_code,
                job_id=job.id,
            )

        data = envelope.get("data")
        if not isinstance(data, dict):
            data = {}
        last_status = data.get("task_status")
        status = TaskStatus.parse(last_status)
        job.advance(status)
        job.update_from(data)

        logger.info(
            "Kling task %s status: %s (attempt %d/%d)",
            job.id, last_status, attempt, policy.max_attempts,
        )

        if status.is_terminal:
            return data

        if attempt < policy.max_attempts:
            await asyncio.sleep(policy.interval_seconds)

    raise PollTimeoutError(job.id, last_status, policy.max_attempts)


def resolve(kind: JobKind, envelope: dict[str, Any], job_id: str | None = None) -> JobResult:
    """Turn a terminal ``data`` envelope into a ``JobResult``."""
    job_id = job_id or envelope.get("task_id")
    status = TaskStatus.parse(envelope.get("task_status"))

    if status is TaskStatus.FAILED:
        message = envelope.get("task_status_msg") or "Unknown error"
        raise TaskFailureError(f"Kling task failed: {message}", job_id=job_id)

    if status is not TaskStatus.SUCCEED:
        raise KlingError(f"Kling task is not finished: {status.value}", job_id=job_id)

    task_result = envelope.get("task_result")
    if not isinstance(task_result, dict):
        task_result = {}
    raw_entries = task_result.get(kind.result_field)
    if not isinstance(raw_entries, list):
        raw_entries = []
    entries = [e for e in raw_entries if isinstance(e, dict) and e.get("url")]
    if not entries:
        raise MissingResultError(
            f"Kling task succeeded but no {kind.result_field[:-1]} URL returned",
            job_id=job_id,
        )

    try:
        return JobResult.model_validate(
            {"job_id": job_id, "kind": kind, kind.result_field: entries}
        )
    except ValidationError as exc:
        raise MissingResultError(
            f"Kling task succeeded but returned malformed {kind.result_field}: {exc}",
            job_id=job_id,
        ) from exc


async def run_job(
    request: JobRequest,
    *,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> JobResult:
    """Build, submit, poll and resolve one job."""
    settings = settings or get_settings()
    built = build(request)

    client = http_client or httpx.AsyncClient(timeout=settings.KLING_HTTP_TIMEOUT)
    own_client = http_client is None

    try:
        job = await submit(built, client=client, settings=settings)
        logger.info(
            "Kling task created: %s (kind=%s, model=%s)",
            job.id, job.kind.value, built.body.get("model_name"),
        )

        envelope = await poll(job, client=client, settings=settings, policy=policy)
        job.result = resolve(job.kind, envelope, job_id=job.id)
        logger.info("Kling task %s resolved: %s", job.id, job.result.first_url)
        return job.result
    finally:
        if own_client:
            await client.aclose()
