"""Command-line entry point.

Usage:
    python -m forge check
    python -m forge video --prompt "a red bicycle" --camera-motion PAN_LEFT
    python -m forge video --prompt "she waves" --image avatar.png
    python -m forge image --prompt "a red bicycle" --aspect-ratio 16:9
    python -m forge avatar --image avatar.png --dialogue "Hello!" --voice-id voice_1
    python -m forge run request.json
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from forge.config import get_settings
from forge.schemas.job import (
    AvatarVideoRequest,
    CameraMotion,
    ImageGenerationRequest,
    ImageToVideoRequest,
    TextToVideoRequest,
    job_request_adapter,
)
from forge.services.job_gen import check_connection, generate
from forge.services.providers.kling_errors import KlingError

logger = logging.getLogger("forge")


def _read_image(path: str | None) -> str | None:
    if not path:
        return None
    return base64.b64encode(Path(path).read_bytes()).decode("utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="forge", description="Kling generation job client")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="Verify credentials by signing a token")

    video = sub.add_parser("video", help="Text-to-video, or image-to-video with --image")
    video.add_argument("--prompt", required=True)
    video.add_argument("--image")
    video.add_argument("--aspect-ratio", default="16:9")
    video.add_argument("--camera-motion", default="NONE", choices=[m.value for m in CameraMotion])
    video.add_argument("--duration", default="5", choices=["5", "10"])
    video.add_argument("--model")

    image = sub.add_parser("image", help="Still-image generation")
    image.add_argument("--prompt", required=True)
    image.add_argument("--reference")
    image.add_argument("--aspect-ratio", default="16:9")
    image.add_argument("--n", type=int, default=1)
    image.add_argument("--model")

    avatar = sub.add_parser("avatar", help="Avatar-driven video")
    avatar.add_argument("--image", required=True)
    avatar.add_argument("--prompt")
    avatar.add_argument("--dialogue")
    avatar.add_argument("--voice-id")
    avatar.add_argument("--duration", default="5", choices=["5", "10"])
    avatar.add_argument("--model")

    run = sub.add_parser("run", help="Run a JSON-encoded job request")
    run.add_argument("request_file")

    return parser


def request_from_args(args: argparse.Namespace) -> Any:
    """Translate parsed CLI arguments into a job request."""
    settings = get_settings()

    if args.command == "video":
        model = args.model or settings.KLING_DEFAULT_VIDEO_MODEL
        if args.image:
            return ImageToVideoRequest(
                prompt=args.prompt,
                model_name=model,
                input_image=_read_image(args.image),
                duration=args.duration,
            )
        return TextToVideoRequest(
            prompt=args.prompt,
            model_name=model,
            aspect_ratio=args.aspect_ratio,
            camera_motion=args.camera_motion,
            duration=args.duration,
        )

    if args.command == "image":
        return ImageGenerationRequest(
            prompt=args.prompt,
            model_name=args.model or settings.KLING_DEFAULT_IMAGE_MODEL,
            reference_image=_read_image(args.reference),
            aspect_ratio=args.aspect_ratio,
            n=args.n,
        )

    if args.command == "avatar":
        fields: dict[str, Any] = {
            "model_name": args.model or settings.KLING_DEFAULT_VIDEO_MODEL,
            "input_image": _read_image(args.image),
            "dialogue": args.dialogue,
            "voice_id": args.voice_id,
            "duration": args.duration,
        }
        if args.prompt:
            fields["prompt"] = args.prompt
        return AvatarVideoRequest(**fields)

    if args.command == "run":
        return job_request_adapter.validate_json(Path(args.request_file).read_text(encoding="utf-8"))

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "check":
        status = check_connection(settings)
        print(json.dumps(status, indent=2))
        return 0 if status["success"] else 1

    try:
        request = request_from_args(args)
        result = asyncio.run(generate(request))
    except (KlingError, ValidationError, OSError) as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1

    print(result.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
