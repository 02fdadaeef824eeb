"""Kling video generation provider.

Supports:
- kling-v1, kling-v1-5, kling-v1-6, kling-v2-x (dotted names such as
  kling-v2.6 are normalized)
- Text-to-video and image-to-video (first + optional last frame)
- Avatar video, optionally speaking a dialogue line (kling-v2-6+)
- Voice generation, motion brush and explicit camera control
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from forge.config import Settings, get_settings
from forge.schemas.job import (
    AvatarVideoRequest,
    CameraConfig,
    CameraControl,
    CameraControlType,
    CameraMotion,
    DynamicMask,
    ImageToVideoRequest,
    JobResult,
    TextToVideoRequest,
    Voice,
)
from forge.services.providers.kling_tasks import PollingPolicy, run_job

logger = logging.getLogger(__name__)

VOICE_MODEL = "kling-v2-6"
MOTION_BRUSH_MODEL = "kling-v1"
CAMERA_CONTROL_MODEL = "kling-v1-6"


def _video_response(result: JobResult) -> dict[str, Any]:
    return {"video_url": result.first_url, "task_id": result.job_id, "result": result}


async def generate_video(
    *,
    prompt: str,
    model: str | None = None,
    image_base64: list[str] | None = None,
    aspect_ratio: str = "16:9",
    camera_motion: CameraMotion | str = CameraMotion.NONE,
    duration: str = "5",
    mode: str = "std",
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Generate video via Kling, image-to-video when an image is given.

    Returns dict with 'video_url' key on success.
    """
    settings = settings or get_settings()
    model = model or settings.KLING_DEFAULT_VIDEO_MODEL
    has_images = bool(image_base64)

    request: TextToVideoRequest | ImageToVideoRequest
    if has_images:
        request = ImageToVideoRequest(
            prompt=prompt,
            model_name=model,
            input_image=image_base64[0],
            image_tail=image_base64[1] if len(image_base64) > 1 else None,
            duration=duration,
            mode=mode,
        )
    else:
        request = TextToVideoRequest(
            prompt=prompt,
            model_name=model,
            aspect_ratio=aspect_ratio,
            camera_motion=CameraMotion(camera_motion),
            duration=duration,
            mode=mode,
        )

    logger.info("Kling video generation (i2v=%s, model=%s): %s", has_images, model, prompt[:100])
    result = await run_job(request, settings=settings, http_client=http_client, policy=policy)
    return _video_response(result)


async def generate_avatar_video(
    *,
    prompt: str,
    avatar_image: str,
    model: str | None = None,
    duration: str = "5",
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Animate an avatar image. Aspect ratio follows the image."""
    settings = settings or get_settings()
    request = AvatarVideoRequest(
        prompt=prompt,
        model_name=model or settings.KLING_DEFAULT_VIDEO_MODEL,
        input_image=avatar_image,
        duration=duration,
    )
    result = await run_job(request, settings=settings, http_client=http_client, policy=policy)
    return _video_response(result)


async def generate_avatar_with_dialogue(
    *,
    avatar_image: str,
    dialogue: str,
    voice_id: str,
    prompt: str | None = None,
    model: str = VOICE_MODEL,
    duration: str = "5",
    mode: str = "std",
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Talking-head video: the avatar speaks ``dialogue`` in voice ``voice_id``."""
    fields: dict[str, Any] = {}
    if prompt:
        fields["prompt"] = prompt
    request = AvatarVideoRequest(
        model_name=model,
        input_image=avatar_image,
        dialogue=dialogue,
        voice_id=voice_id,
        duration=duration,
        mode=mode,
        **fields,
    )
    logger.info("Kling avatar dialogue (voice=%s): %s", voice_id, dialogue[:50])
    result = await run_job(request, settings=settings, http_client=http_client, policy=policy)
    return _video_response(result)


async def generate_video_with_voice(
    *,
    prompt: str,
    image_base64: str,
    voice_list: list[str],
    dialogue: str,
    model: str = VOICE_MODEL,
    duration: str = "5",
    mode: str = "std",
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Image-to-video with synthesized speech; ``<<<voice_1>>>`` marks the speaker."""
    request = ImageToVideoRequest(
        prompt=f"{prompt}. <<<voice_1>>> {dialogue}",
        model_name=model,
        input_image=image_base64,
        voice_list=[Voice(voice_id=v) for v in voice_list],
        duration=duration,
        mode=mode,
    )
    result = await run_job(request, settings=settings, http_client=http_client, policy=policy)
    return _video_response(result)


async def generate_video_with_motion_brush(
    *,
    prompt: str,
    image_base64: str,
    static_mask: str | None = None,
    dynamic_masks: list[DynamicMask | dict[str, Any]] | None = None,
    model: str = MOTION_BRUSH_MODEL,
    duration: str = "5",
    mode: str = "std",
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Image-to-video where masked regions follow the given trajectories."""
    request = ImageToVideoRequest(
        prompt=prompt,
        model_name=model,
        input_image=image_base64,
        static_mask=static_mask,
        dynamic_masks=dynamic_masks,
        duration=duration,
        mode=mode,
    )
    logger.info(
        "Kling motion brush (static=%s, dynamic=%d)",
        bool(static_mask), len(dynamic_masks or []),
    )
    result = await run_job(request, settings=settings, http_client=http_client, policy=policy)
    return _video_response(result)


async def generate_video_with_camera_control(
    *,
    prompt: str,
    camera_type: CameraControlType | str,
    camera_config: CameraConfig | dict[str, float] | None = None,
    image_base64: str | None = None,
    aspect_ratio: str = "16:9",
    model: str = CAMERA_CONTROL_MODEL,
    duration: str = "5",
    mode: str = "std",
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    policy: PollingPolicy | None = None,
) -> dict[str, Any]:
    """Video with a preset camera move, or a custom one for the simple type."""
    camera_control = CameraControl(type=camera_type, config=camera_config)

    request: TextToVideoRequest | ImageToVideoRequest
    if image_base64:
        request = ImageToVideoRequest(
            prompt=prompt,
            model_name=model,
            input_image=image_base64,
            camera_control=camera_control,
            duration=duration,
            mode=mode,
        )
    else:
        request = TextToVideoRequest(
            prompt=prompt,
            model_name=model,
            aspect_ratio=aspect_ratio,
            camera_control=camera_control,
            duration=duration,
            mode=mode,
        )
    result = await run_job(request, settings=settings, http_client=http_client, policy=policy)
    return _video_response(result)
