"""Kling job client error taxonomy.

Every error carries the provider job id when one exists and the provider's
own message text when available. None of these are retried inside the
client; ``retriable`` only informs caller-level retry policies.
"""

from __future__ import annotations

# Provider application codes returned in the ``code`` field of every envelope.
KLING_ERROR_CODES: dict[int, str] = {
    0: "Success",
    1000: "Authentication failed",
    1001: "Authorization is empty",
    1002: "Authorization is invalid",
    1003: "Authorization is not yet valid",
    1004: "Authorization has expired",
    1100: "Account exception",
    1101: "Account in arrears",
    1102: "Resource pack depleted or expired",
    1103: "Unauthorized access to requested resource",
    1200: "Invalid request parameters",
    1201: "Invalid parameters (incorrect key or illegal value)",
    1202: "The requested method is invalid",
    1203: "The requested resource does not exist",
    1300: "Trigger platform strategy",
    1301: "Trigger content security policy",
    1302: "API request rate limit exceeded",
    1303: "Concurrency or QPS exceeds prepaid limit",
    1304: "Trigger IP whitelisting policy",
    5000: "Server internal error",
    5001: "Server temporarily unavailable",
    5002: "Server internal timeout",
}


def describe_error_code(code: int | None) -> str:
    """Return the documented meaning of a provider code."""
    if code is None:
        return "No code"
    return KLING_ERROR_CODES.get(code, f"Unknown error code {code}")


class KlingError(Exception):
    """Base error for the Kling job client."""

    retriable = False

    def __init__(self, message: str, *, job_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id:
            return f"{self.message} (task_id={self.job_id})"
        return self.message


class ConfigurationError(KlingError):
    """Issuer or signing secret is missing."""


class SubmissionError(KlingError):
    """The provider rejected a job submission."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        http_status: int | None = None,
        job_id: str | None = None,
    ):
        super().__init__(message, job_id=job_id)
        self.code = code
        self.http_status = http_status


class PollError(KlingError):
    """A status query was rejected by the provider (e.g. expired credential)."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        http_status: int | None = None,
        job_id: str | None = None,
    ):
        super().__init__(message, job_id=job_id)
        self.code = code
        self.http_status = http_status


class PollTimeoutError(KlingError):
    """No terminal status was observed within the polling bound."""

    def __init__(self, job_id: str, last_status: str | None, attempts: int):
        super().__init__(
            f"Kling task timed out after {attempts} attempts "
            f"(last status: {last_status or 'unknown'})",
            job_id=job_id,
        )
        self.last_status = last_status
        self.attempts = attempts


class TaskFailureError(KlingError):
    """The provider reported the task as failed."""


class MissingResultError(KlingError):
    """The task succeeded but carried no usable artifact."""


class NetworkError(KlingError):
    """Transport-level failure talking to the provider."""

    retriable = True


class InvalidTransitionError(KlingError):
    """A job status moved backwards or out of a terminal state."""
