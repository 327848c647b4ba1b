"""Core data models for the CLI bridge.

All dataclasses and enums shared by the filter, extractor, classifier,
strategies and HTTP layer. Single source of truth to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable failure taxonomy reported to HTTP callers."""
    INVALID_INPUT = "invalid_input"
    AUTH_REQUIRED = "auth_required"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    UPSTREAM_MODEL_NOT_FOUND = "upstream_model_not_found"
    UPSTREAM_ERROR = "upstream_error"
    TIMEOUT = "timeout"
    NO_RESPONSE = "no_response"
    EMPTY_RESPONSE = "empty_response"
    PROCESS_SPAWN_FAILURE = "process_spawn_failure"
    SESSION_UNAVAILABLE = "session_unavailable"


@dataclass(frozen=True)
class FilteredLine:
    """One line of terminal output after ANSI stripping and classification."""
    text: str
    is_noise: bool = False
    is_prompt: bool = False
    is_auth_wait: bool = False


@dataclass
class ErrorInfo:
    """Error object reported inside the CLI's JSON payload."""
    kind: str
    message: str
    code: int | None = None


@dataclass
class ParsedResponse:
    """Structured result parsed from headless `--output-format json` output."""
    text: str = ""
    token_stats: dict[str, Any] = field(default_factory=dict)
    error_info: ErrorInfo | None = None
    session_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParsedResponse:
        """Build from the CLI JSON object (`response`, `stats`, `error`)."""
        text = data.get("response")
        stats = data.get("stats")
        error_info = None
        raw_error = data.get("error")
        if isinstance(raw_error, dict):
            code = raw_error.get("code")
            if isinstance(code, str) and code.isdigit():
                code = int(code)
            if not isinstance(code, int) or isinstance(code, bool):
                code = None
            error_info = ErrorInfo(
                kind=str(raw_error.get("type") or raw_error.get("kind")
                         or raw_error.get("status") or "error"),
                message=str(raw_error.get("message") or ""),
                code=code,
            )
        elif isinstance(raw_error, str) and raw_error:
            error_info = ErrorInfo(kind="error", message=raw_error)
        session_id = data.get("session_id")
        return cls(
            text=text if isinstance(text, str) else "",
            token_stats=stats if isinstance(stats, dict) else {},
            error_info=error_info,
            session_id=session_id if isinstance(session_id, str) else None,
        )


@dataclass(frozen=True)
class UpstreamStatus:
    """Normalized upstream failure signal, independent of CLI phrasing."""
    http_status: int
    code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "httpStatus": self.http_status,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class AskResult:
    """Terminal success outcome of one bridge exchange.

    `status` is set when an answer came back alongside a recognized
    upstream failure signal (degraded but usable result).
    """
    answer: str
    status: UpstreamStatus | None = None
    model: str = ""
