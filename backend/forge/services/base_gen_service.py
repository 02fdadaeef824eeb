from __future__ import annotations
"""Base generation service — opt-in caller-level retry, timeout, and metrics."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from forge.services.providers.kling_errors import KlingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class GenResult(Generic[T]):
    """Standardized generation result."""
    data: T
    provider: str
    latency_ms: int
    retries_used: int


@dataclass
class GenServiceConfig:
    """Configuration for a generation service.

    Retries default to off: a resubmitted job consumes provider compute again.
    """
    max_retries: int = 0
    retry_delay: float = 2.0
    timeout: float | None = None


class BaseGenService(ABC, Generic[T]):
    """Abstract base class for generation services.

    Provides:
    - Optional retry with linear backoff, limited to retriable errors
    - Optional overall deadline
    - Call / error / latency metrics
    """

    service_name: str = "unknown"
    config: GenServiceConfig

    def __init__(self, config: GenServiceConfig | None = None):
        self.config = config or GenServiceConfig()
        self._total_calls = 0
        self._total_errors = 0
        self._total_successes = 0
        self._total_latency_ms = 0

    async def execute(self, **kwargs: Any) -> GenResult[T]:
        """Unified execution entry point with retry/metrics."""
        self._total_calls += 1
        start = time.monotonic()
        attempt = 0

        while True:
            try:
                result = await asyncio.wait_for(
                    self._generate(**kwargs),
                    timeout=self.config.timeout,
                )
                break
            except Exception as e:
                retriable = isinstance(e, KlingError) and e.retriable
                if not retriable or attempt >= self.config.max_retries:
                    self._total_errors += 1
                    logger.error("%s failed: %s", self.service_name, e)
                    raise
                logger.warning(
                    "%s attempt %d/%d failed: %s",
                    self.service_name, attempt + 1, self.config.max_retries + 1, e,
                )
                attempt += 1
                await asyncio.sleep(self.config.retry_delay * attempt)

        latency = int((time.monotonic() - start) * 1000)
        self._total_successes += 1
        self._total_latency_ms += latency
        return GenResult(
            data=result,
            provider=self.service_name,
            latency_ms=latency,
            retries_used=attempt,
        )

    @abstractmethod
    async def _generate(self, **kwargs: Any) -> T:
        """Subclass implements actual generation logic."""
        ...

    def get_metrics(self) -> dict[str, Any]:
        """Return usage statistics for this service."""
        return {
            "service": self.service_name,
            "total_calls": self._total_calls,
            "total_errors": self._total_errors,
            "error_rate": round(self._total_errors / max(self._total_calls, 1), 3),
            "avg_latency_ms": (
                round(self._total_latency_ms / self._total_successes)
                if self._total_successes else 0
            ),
        }
