"""Kling image generation provider.

Supports kling-v1 / kling-v1-5 / kling-v2 image models, optionally guided by
a reference image.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from forge.config import Settings, get_settings
from forge.schemas.job import ImageGenerationRequest
from forge.services.providers.kling_tasks import PollingPolicy, run_job

logger = logging.getLogger(__name__)


async def generate_image(
    *,
    prompt: str,
    model: str | None = None,
    image_base64: str | None = None,
    aspect_ratio: str = "16:9",
    n: int = 1,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Generate image via Kling Image API.

    Returns dict with 'image_url' key.
    """
    settings = settings or get_settings()
    model = model or settings.KLING_DEFAULT_IMAGE_MODEL
    request = ImageGenerationRequest(
        prompt=prompt,
        model_name=model,
        reference_image=image_base64,
        aspect_ratio=aspect_ratio,
        n=n,
    )

    logger.info("Kling image generation (model=%s, reference=%s)", model, bool(image_base64))
    result = await run_job(request, settings=settings, http_client=http_client, policy=policy)
    return {
        "image_url": result.first_url,
        "task_id": result.job_id,
        "full_api_prompt": prompt,
        "result": result,
    }
