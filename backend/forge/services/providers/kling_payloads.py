"""Kling request payloads.

Maps a ``JobRequest`` variant onto the endpoint and JSON body the provider
expects for that job kind.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from forge.schemas.job import (
    AvatarVideoRequest,
    CameraMotion,
    ImageGenerationRequest,
    ImageToVideoRequest,
    JobKind,
    JobRequest,
    TextToVideoRequest,
)

T2V_PATH = "/v1/videos/text2video"
I2V_PATH = "/v1/videos/image2video"
IMAGE_PATH = "/v1/images/generations"

# Submission and status paths per kind (status is "<path>/{task_id}")
ENDPOINTS: dict[JobKind, str] = {
    JobKind.TEXT_TO_VIDEO: T2V_PATH,
    JobKind.IMAGE_TO_VIDEO: I2V_PATH,
    JobKind.AVATAR_VIDEO: I2V_PATH,
    JobKind.IMAGE_GENERATION: IMAGE_PATH,
}

VIDEO_NEGATIVE_PROMPT = "blurry, distorted, low quality, watermark, text overlay"
IMAGE_NEGATIVE_PROMPT = "blurry, distorted, low quality, watermark, text overlay, deformed"
CFG_SCALE = 0.5
IMAGE_FIDELITY = 0.5
CAMERA_DEFLECTION = 5

ASPECT_RATIOS: dict[str, str] = {
    "1:1": "1:1",
    "16:9": "16:9",
    "9:16": "9:16",
    "4:3": "4:3",
    "3:4": "3:4",
}
DEFAULT_ASPECT_RATIO = "16:9"

# directive -> (horizontal, vertical, zoom, roll) sign
CAMERA_MOTIONS: dict[CameraMotion, tuple[int, int, int, int]] = {
    CameraMotion.PUSH_IN: (0, 0, 1, 0),
    CameraMotion.PULL_OUT: (0, 0, -1, 0),
    CameraMotion.PAN_LEFT: (-1, 0, 0, 0),
    CameraMotion.PAN_RIGHT: (1, 0, 0, 0),
    CameraMotion.TILT_UP: (0, -1, 0, 0),
    CameraMotion.TILT_DOWN: (0, 1, 0, 0),
    CameraMotion.ORBIT_LEFT: (0, 0, 0, -1),
    CameraMotion.ORBIT_RIGHT: (0, 0, 0, 1),
}

_MODEL_VERSION = re.compile(r"kling-v(\d+)\.(\d+)")


@dataclass(frozen=True)
class BuiltRequest:
    """Provider-ready submission for one job."""

    kind: JobKind
    method: str
    endpoint: str
    body: dict[str, Any]

    @property
    def poll_endpoint(self) -> str:
        return ENDPOINTS[self.kind]


def normalize_model_name(model_name: str) -> str:
    """Rewrite ``kling-v1.5`` style names to the provider's ``kling-v1-5``."""
    return _MODEL_VERSION.sub(r"kling-v\1-\2", model_name)


def strip_transport_prefix(data: str) -> str:
    """Strip a ``data:<mime>;base64,`` style prefix, Kling wants raw base64.

    Best-effort only: the remaining payload is not checked to be image bytes.
    """
    return data.split(",", 1)[1] if "," in data else data


def map_aspect_ratio(aspect_ratio: str | None) -> str:
    return ASPECT_RATIOS.get(aspect_ratio or "", DEFAULT_ASPECT_RATIO)


def camera_control_for(motion: CameraMotion) -> dict[str, Any] | None:
    """Simple camera-control block for a directive; ``None`` for NONE."""
    signs = CAMERA_MOTIONS.get(motion)
    if signs is None:
        return None
    horizontal, vertical, zoom, roll = (s * CAMERA_DEFLECTION for s in signs)
    return {
        "type": "simple",
        "config": {
            "horizontal": horizontal,
            "vertical": vertical,
            "zoom": zoom,
            "roll": roll,
        },
    }


def build(request: JobRequest) -> BuiltRequest:
    """Build the submission for any ``JobRequest`` variant."""
    match request:
        case TextToVideoRequest():
            body = _text_to_video_body(request)
        case ImageToVideoRequest():
            body = _image_to_video_body(request)
        case ImageGenerationRequest():
            body = _image_generation_body(request)
        case AvatarVideoRequest():
            body = _avatar_video_body(request)
        case _:
            raise TypeError(f"Unsupported job request: {type(request).__name__}")

    return BuiltRequest(
        kind=request.job_kind,
        method="POST",
        endpoint=ENDPOINTS[request.job_kind],
        body=body,
    )


def _text_to_video_body(request: TextToVideoRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model_name": normalize_model_name(request.model_name),
        "prompt": request.prompt,
        "negative_prompt": VIDEO_NEGATIVE_PROMPT,
        "cfg_scale": CFG_SCALE,
        "mode": request.mode,
        "aspect_ratio": map_aspect_ratio(request.aspect_ratio),
        "duration": request.duration,
    }
    if request.camera_control is not None:
        body["camera_control"] = request.camera_control.to_payload()
    else:
        camera = camera_control_for(request.camera_motion)
        if camera:
            body["camera_control"] = camera
    return body


def _image_to_video_body(request: ImageToVideoRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model_name": normalize_model_name(request.model_name),
        "prompt": request.prompt,
        "image": strip_transport_prefix(request.input_image),
        "cfg_scale": CFG_SCALE,
        "mode": request.mode,
        "duration": request.duration,
    }
    if request.image_tail:
        body["image_tail"] = strip_transport_prefix(request.image_tail)
    if request.camera_control is not None:
        body["camera_control"] = request.camera_control.to_payload()

    if request.static_mask:
        body["static_mask"] = strip_transport_prefix(request.static_mask)
    if request.dynamic_masks:
        body["dynamic_masks"] = [
            {
                "mask": strip_transport_prefix(dm.mask),
                "trajectories": [p.model_dump() for p in dm.trajectories],
            }
            for dm in request.dynamic_masks
        ]

    if request.voice_list:
        body["voice_list"] = [v.model_dump() for v in request.voice_list]
        body["sound"] = "on"
    return body


def _image_generation_body(request: ImageGenerationRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model_name": normalize_model_name(request.model_name),
        "prompt": request.prompt,
        "negative_prompt": IMAGE_NEGATIVE_PROMPT,
        "n": request.n,
        "aspect_ratio": map_aspect_ratio(request.aspect_ratio),
    }
    if request.reference_image:
        body["image"] = strip_transport_prefix(request.reference_image)
        body["image_fidelity"] = IMAGE_FIDELITY
    return body


def _avatar_video_body(request: AvatarVideoRequest) -> dict[str, Any]:
    prompt = request.prompt
    if request.dialogue:
        prompt = f'{prompt}. The person speaks: <<<voice_1>>> "{request.dialogue}"'

    body: dict[str, Any] = {
        "model_name": normalize_model_name(request.model_name),
        "prompt": prompt,
        "image": strip_transport_prefix(request.input_image),
        "duration": request.duration,
        "cfg_scale": CFG_SCALE,
        "mode": request.mode,
    }
    if request.voice_id:
        body["voice_list"] = [{"voice_id": request.voice_id}]
        body["sound"] = "on"
    return body
