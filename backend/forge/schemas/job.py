from __future__ import annotations
"""Pydantic v2 schemas for Kling generation jobs.

A generation request is a closed tagged union over ``JobKind``: each variant
carries only the fields its provider payload needs.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from forge.services.providers.kling_errors import InvalidTransitionError

logger = logging.getLogger(__name__)

Duration = Literal["5", "10"]
Mode = Literal["std", "pro"]


class JobKind(str, enum.Enum):
    """Generation job kinds supported by the client."""

    TEXT_TO_VIDEO = "TEXT_TO_VIDEO"
    IMAGE_TO_VIDEO = "IMAGE_TO_VIDEO"
    IMAGE_GENERATION = "IMAGE_GENERATION"
    AVATAR_VIDEO = "AVATAR_VIDEO"

    @property
    def is_video(self) -> bool:
        return self is not JobKind.IMAGE_GENERATION

    @property
    def result_field(self) -> str:
        """Key of ``task_result`` that holds this kind's artifacts."""
        return "videos" if self.is_video else "images"


class TaskStatus(str, enum.Enum):
    """Provider task statuses, in lifecycle order."""

    SUBMITTED = "submitted"
    PROCESSING = "processing"
    SUCCEED = "succeed"
    FAILED = "failed"

    @classmethod
    def parse(cls, raw: Any) -> "TaskStatus":
        """Single parse boundary for provider ``task_status`` strings.

        Unrecognised values are treated as still in progress.
        """
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Unknown Kling task status %r, treating as processing", raw)
            return cls.PROCESSING

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEED, TaskStatus.FAILED)

    @property
    def rank(self) -> int:
        return {
            TaskStatus.SUBMITTED: 0,
            TaskStatus.PROCESSING: 1,
            TaskStatus.SUCCEED: 2,
            TaskStatus.FAILED: 2,
        }[self]


class CameraMotion(str, enum.Enum):
    """Abstract camera directives mapped onto a simple camera-control block."""

    NONE = "NONE"
    PUSH_IN = "PUSH_IN"
    PULL_OUT = "PULL_OUT"
    PAN_LEFT = "PAN_LEFT"
    PAN_RIGHT = "PAN_RIGHT"
    TILT_UP = "TILT_UP"
    TILT_DOWN = "TILT_DOWN"
    ORBIT_LEFT = "ORBIT_LEFT"
    ORBIT_RIGHT = "ORBIT_RIGHT"


class CameraControlType(str, enum.Enum):
    """Provider camera-control types."""

    SIMPLE = "simple"
    DOWN_BACK = "down_back"
    FORWARD_UP = "forward_up"
    RIGHT_TURN_FORWARD = "right_turn_forward"
    LEFT_TURN_FORWARD = "left_turn_forward"


_Axis = Annotated[Optional[float], Field(ge=-10, le=10)]


class CameraConfig(BaseModel):
    """Custom camera movement, each axis in [-10, 10]."""

    horizontal: _Axis = None
    vertical: _Axis = None
    pan: _Axis = None
    tilt: _Axis = None
    roll: _Axis = None
    zoom: _Axis = None


class CameraControl(BaseModel):
    """Explicit camera control; ``config`` only applies to the simple type."""

    type: CameraControlType
    config: CameraConfig | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value}
        if self.type is CameraControlType.SIMPLE and self.config is not None:
            payload["config"] = self.config.model_dump(exclude_none=True)
        return payload


class TrajectoryPoint(BaseModel):
    """Pixel coordinate, origin at bottom-left."""

    x: int
    y: int


class DynamicMask(BaseModel):
    """Motion-brush mask with its movement trajectory (2-77 points for 5s)."""

    mask: str = Field(min_length=1)
    trajectories: list[TrajectoryPoint] = Field(min_length=2, max_length=77)


class Voice(BaseModel):
    voice_id: str = Field(min_length=1)


class _JobRequestBase(BaseModel):
    prompt: str
    model_name: str = "kling-v1-5"

    model_config = {"protected_namespaces": ()}

    @property
    def job_kind(self) -> JobKind:
        return JobKind(self.kind)


class TextToVideoRequest(_JobRequestBase):
    """Text-to-video job."""

    kind: Literal["TEXT_TO_VIDEO"] = "TEXT_TO_VIDEO"
    aspect_ratio: str = "16:9"
    duration: Duration = "5"
    mode: Mode = "std"
    camera_motion: CameraMotion = CameraMotion.NONE
    # Takes precedence over camera_motion when set
    camera_control: CameraControl | None = None


class ImageToVideoRequest(_JobRequestBase):
    """Image-to-video job; the provider infers aspect ratio from the image."""

    kind: Literal["IMAGE_TO_VIDEO"] = "IMAGE_TO_VIDEO"
    input_image: str = Field(min_length=1)
    image_tail: str | None = None
    duration: Duration = "5"
    mode: Mode = "std"
    camera_control: CameraControl | None = None

    # Motion brush
    static_mask: str | None = None
    dynamic_masks: list[DynamicMask] | None = Field(default=None, max_length=6)

    # Voice generation (kling-v2-6+)
    voice_list: list[Voice] | None = None


class ImageGenerationRequest(_JobRequestBase):
    """Still-image generation job, optionally guided by a reference image."""

    kind: Literal["IMAGE_GENERATION"] = "IMAGE_GENERATION"
    model_name: str = "kling-v1"
    aspect_ratio: str = "16:9"
    reference_image: str | None = None
    n: int = Field(default=1, ge=1, le=9)


class AvatarVideoRequest(_JobRequestBase):
    """Avatar-driven video, optionally speaking ``dialogue`` with ``voice_id``."""

    kind: Literal["AVATAR_VIDEO"] = "AVATAR_VIDEO"
    prompt: str = "Professional talking head video, natural expressions, lip sync, looking at camera"
    input_image: str = Field(min_length=1)
    duration: Duration = "5"
    mode: Mode = "std"
    dialogue: str | None = None
    voice_id: str | None = None

    @model_validator(mode="after")
    def _dialogue_needs_voice(self) -> "AvatarVideoRequest":
        if bool(self.dialogue) != bool(self.voice_id):
            raise ValueError("dialogue and voice_id must be given together")
        return self


JobRequest = Annotated[
    Union[TextToVideoRequest, ImageToVideoRequest, ImageGenerationRequest, AvatarVideoRequest],
    Field(discriminator="kind"),
]

job_request_adapter: TypeAdapter = TypeAdapter(JobRequest)


class VideoArtifact(BaseModel):
    model_config = {"coerce_numbers_to_str": True}

    id: str | None = None
    url: str
    duration: str | None = None


class ImageArtifact(BaseModel):
    index: int = 0
    url: str


class JobResult(BaseModel):
    """Resolved artifacts of a succeeded job. The full list is preserved."""

    job_id: str | None = None
    kind: JobKind
    videos: list[VideoArtifact] = Field(default_factory=list)
    images: list[ImageArtifact] = Field(default_factory=list)

    @property
    def artifacts(self) -> list[VideoArtifact] | list[ImageArtifact]:
        return self.videos if self.kind.is_video else self.images

    @property
    def first_url(self) -> str:
        return self.artifacts[0].url


def _from_epoch_ms(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Ignoring unparseable Kling timestamp %r", value)
        return None


@dataclass
class Job:
    """Client-side view of one provider task.

    Created by a successful submission and mutated only by poll responses.
    """

    id: str
    kind: JobKind
    status: TaskStatus = TaskStatus.SUBMITTED
    poll_endpoint: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    status_message: str | None = None
    result: JobResult | None = None
    history: list[TaskStatus] = field(default_factory=list)

    def advance(self, status: TaskStatus) -> None:
        """Move forward to ``status``; backward or post-terminal moves are rejected."""
        if self.status.is_terminal and status is not self.status:
            raise InvalidTransitionError(
                f"Task already {self.status.value}, cannot move to {status.value}",
                job_id=self.id,
            )
        if status.rank < self.status.rank:
            raise InvalidTransitionError(
                f"Task status moved backwards: {self.status.value} -> {status.value}",
                job_id=self.id,
            )
        self.status = status
        self.history.append(status)

    def update_from(self, data: dict[str, Any]) -> None:
        """Apply timestamps and status message from a ``data`` envelope."""
        self.created_at = _from_epoch_ms(data.get("created_at")) or self.created_at
        self.updated_at = _from_epoch_ms(data.get("updated_at")) or self.updated_at
        if data.get("task_status_msg"):
            self.status_message = data["task_status_msg"]
