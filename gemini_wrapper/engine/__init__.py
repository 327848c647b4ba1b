"""Gemini CLI bridge: strategies, output parsing and failure classification."""
from .models import (
    AskResult,
    ErrorInfo,
    ErrorKind,
    FilteredLine,
    ParsedResponse,
    UpstreamStatus,
)
from .config import BridgeConfig, ServerConfig
from .errors import (
    AuthRequiredError,
    BridgeError,
    BridgeTimeoutError,
    EmptyResponseError,
    InvalidInputError,
    NoResponseError,
    ProcessSpawnError,
    SessionUnavailableError,
    UpstreamError,
    UpstreamModelNotFoundError,
    UpstreamRateLimitedError,
)
from .bridge import Bridge, build_bridge

__all__ = [
    "Bridge",
    "build_bridge",
    "BridgeConfig",
    "ServerConfig",
    # Models
    "AskResult",
    "ErrorInfo",
    "ErrorKind",
    "FilteredLine",
    "ParsedResponse",
    "UpstreamStatus",
    # Errors
    "AuthRequiredError",
    "BridgeError",
    "BridgeTimeoutError",
    "EmptyResponseError",
    "InvalidInputError",
    "NoResponseError",
    "ProcessSpawnError",
    "SessionUnavailableError",
    "UpstreamError",
    "UpstreamModelNotFoundError",
    "UpstreamRateLimitedError",
]
