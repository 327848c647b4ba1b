"""Exception hierarchy for the CLI bridge.

One exception per failure mode. Every failure carries an ErrorKind so the
HTTP layer can report it without inspecting message text.
"""
from __future__ import annotations

from .models import ErrorKind, UpstreamStatus


class BridgeError(Exception):
    """Base exception for all bridge failures."""
    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        *,
        status: UpstreamStatus | None = None,
        partial_answer: str = "",
    ):
        self.message = message
        self.status = status
        self.partial_answer = partial_answer
        super().__init__(message)


class InvalidInputError(BridgeError):
    """Question missing or blank. Rejected before any subprocess starts."""
    kind = ErrorKind.INVALID_INPUT


class AuthRequiredError(BridgeError):
    """The CLI is waiting for interactive authentication."""
    kind = ErrorKind.AUTH_REQUIRED

    def __init__(self, detail: str = ""):
        message = (
            "authentication required: gemini CLI is not authenticated. "
            "Make sure the credential directory is mounted and writable"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class UpstreamError(BridgeError):
    """Upstream reported a failure and no answer text came back."""
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, status: UpstreamStatus, *, partial_answer: str = ""):
        super().__init__(
            f"upstream error {status.http_status} ({status.code}): {status.message}",
            status=status,
            partial_answer=partial_answer,
        )


class UpstreamRateLimitedError(UpstreamError):
    """Upstream capacity exhausted (HTTP 429 or equivalent)."""
    kind = ErrorKind.UPSTREAM_RATE_LIMITED


class UpstreamModelNotFoundError(BridgeError):
    """Requested model identifier is unknown upstream."""
    kind = ErrorKind.UPSTREAM_MODEL_NOT_FOUND

    def __init__(self, model: str, hint: str):
        self.model = model
        label = f"'{model}'" if model else "(default)"
        super().__init__(f"model {label} not found upstream. {hint}")


class BridgeTimeoutError(BridgeError):
    """No terminal signal within the configured bound."""
    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"timeout waiting for gemini response after {timeout_seconds}s"
        )


class NoResponseError(BridgeError):
    """Exchange finished but answer collection never started."""
    kind = ErrorKind.NO_RESPONSE

    def __init__(self, raw_output: str = ""):
        self.raw_output = raw_output
        message = "no response from gemini"
        if raw_output.strip():
            message = f"no clear response from gemini. Raw output:\n{raw_output}"
        super().__init__(message)


class EmptyResponseError(BridgeError):
    """Process completed without any usable text."""
    kind = ErrorKind.EMPTY_RESPONSE

    def __init__(self, returncode: int | None = None):
        self.returncode = returncode
        suffix = f" (exit code {returncode})" if returncode else ""
        super().__init__(f"empty response from gemini{suffix}")


class ProcessSpawnError(BridgeError):
    """The gemini subprocess could not be started at all."""
    kind = ErrorKind.PROCESS_SPAWN_FAILURE

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"failed to start {command}: {reason}")


class SessionUnavailableError(BridgeError):
    """The long-lived interactive session is not ready or has died."""
    kind = ErrorKind.SESSION_UNAVAILABLE
