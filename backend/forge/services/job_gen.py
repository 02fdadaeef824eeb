from __future__ import annotations
"""Generation job service — single entry point for every Kling job kind.

    generate(JobRequest) → JobResult

Suspends until the job reaches a terminal state or its polling bound runs
out. Jobs share no mutable state, so any number may run concurrently.
"""

import logging
from typing import Any

import httpx

from forge.config import Settings, get_settings
from forge.schemas.job import JobRequest, JobResult
from forge.services.base_gen_service import BaseGenService, GenServiceConfig
from forge.services.providers.kling_auth import sign_from_settings
from forge.services.providers.kling_errors import KlingError
from forge.services.providers.kling_tasks import PollingPolicy, run_job

logger = logging.getLogger(__name__)


class JobGenService(BaseGenService[JobResult]):
    """Kling job service with opt-in caller-level retries and metrics."""

    service_name = "kling_jobs"

    def __init__(
        self,
        config: GenServiceConfig | None = None,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config)
        self.settings = settings
        self.http_client = http_client

    async def _generate(self, **kwargs: Any) -> JobResult:
        return await run_job(
            kwargs["request"],
            settings=self.settings or get_settings(),
            http_client=self.http_client,
            policy=kwargs.get("policy"),
        )

    async def generate(self, request: JobRequest, policy: PollingPolicy | None = None) -> JobResult:
        result = await self.execute(request=request, policy=policy)
        return result.data


# Module-level singleton for metrics aggregation
_job_service = JobGenService()


def get_job_service() -> JobGenService:
    """Return the singleton JobGenService for metrics access."""
    return _job_service


async def generate(request: JobRequest, policy: PollingPolicy | None = None) -> JobResult:
    """Public API — run one generation job to completion."""
    return await _job_service.generate(request, policy=policy)


def check_connection(settings: Settings | None = None) -> dict[str, Any]:
    """Check that credentials are configured and a token can be signed.

    No request is sent to the provider.
    """
    try:
        sign_from_settings(settings or get_settings())
    except KlingError as e:
        return {"success": False, "message": f"Kling API connection failed: {e}"}
    logger.info("Kling JWT token generated successfully")
    return {"success": True, "message": "Kling API connection successful. JWT token generated."}
