"""Pydantic v2 schemas package."""

from forge.schemas.job import (
    AvatarVideoRequest,
    CameraConfig,
    CameraControl,
    CameraControlType,
    CameraMotion,
    DynamicMask,
    ImageArtifact,
    ImageGenerationRequest,
    ImageToVideoRequest,
    Job,
    JobKind,
    JobRequest,
    JobResult,
    TaskStatus,
    TextToVideoRequest,
    TrajectoryPoint,
    VideoArtifact,
    Voice,
    job_request_adapter,
)

__all__ = [
    "AvatarVideoRequest",
    "CameraConfig",
    "CameraControl",
    "CameraControlType",
    "CameraMotion",
    "DynamicMask",
    "ImageArtifact",
    "ImageGenerationRequest",
    "ImageToVideoRequest",
    "Job",
    "JobKind",
    "JobRequest",
    "JobResult",
    "TaskStatus",
    "TextToVideoRequest",
    "TrajectoryPoint",
    "VideoArtifact",
    "Voice",
    "job_request_adapter",
]
