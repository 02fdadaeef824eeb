"""Avatar Forge — Kling generation job client."""

__version__ = "0.1.0"
