"""Classify upstream failure signals into a stable shape.

The CLI reports the same failure through different channels depending on
version and transport: a structured `error` object in the JSON payload,
retry diagnostics on stderr, or a raw Google API error array. Callers only
ever see UpstreamStatus and the ErrorKind taxonomy.
"""
from __future__ import annotations

import json
import re

from .json_extract import extract_last_json_object
from .models import ParsedResponse, UpstreamStatus

RATE_LIMIT_HTTP_STATUS = 429
RATE_LIMIT_CODE = "RESOURCE_EXHAUSTED"
RATE_LIMIT_MESSAGE = "Upstream Gemini capacity exhausted (rate limited); retry later"

_RATE_LIMIT_RE = re.compile(
    r"status\s*:?\s*429"
    r"|\"code\"\s*:\s*429"
    r"|Too Many Requests"
    r"|rateLimitExceeded"
    r"|RESOURCE_EXHAUSTED",
    re.IGNORECASE,
)

_AUTH_REQUIRED_MARKERS = (
    "Waiting for auth",
    "Please set an Auth method",
    "GEMINI_API_KEY environment variable",
    "Failed to login",
    "authentication required",
)

_MODEL_NOT_FOUND_RE = re.compile(
    r"ModelNotFoundError"
    r"|Requested entity was not found"
    r"|models/[\w.\-]+ is not found"
    r"|model not found",
    re.IGNORECASE,
)

# How the CLI itself opens an error report: "✕ [API Error: ...]",
# "ModelNotFoundError: ...", "models/x is not found ...".
_ERROR_REPORT_RE = re.compile(
    r"^[\W_]*(?:API Error|\w*Error\s*:|Requested entity was not found"
    r"|models/[\w.\-]+ is not found)",
    re.IGNORECASE,
)

MODEL_HINT = (
    "Use a valid Gemini model identifier such as 'gemini-2.5-pro', "
    "'gemini-2.5-flash' or 'gemini-2.5-flash-lite', or omit the model "
    "to let the CLI choose."
)


def _without_answer(blob: str, parsed: ParsedResponse | None) -> str:
    """The raw output with the payload's `response` text cut out.

    Answer text may legitimately talk about "429 Too Many Requests"; only
    the diagnostics around it and the rest of the payload carry signal.
    """
    if parsed is None or not parsed.text:
        return blob
    payload, found = extract_last_json_object(blob)
    if not found:
        return blob
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return blob
    if not isinstance(data, dict):
        return blob
    data.pop("response", None)
    head, _, tail = blob.rpartition(payload)
    return head + json.dumps(data) + tail


def detect_upstream_status(
    blob: str,
    parsed: ParsedResponse | None,
) -> UpstreamStatus | None:
    """Normalize the upstream failure signal, if any.

    1. A numeric code in the parsed JSON error wins.
    2. Otherwise known rate-limit phrasings in the raw output, outside
       the answer text of the payload.
    3. Otherwise None.
    """
    if parsed is not None and parsed.error_info is not None:
        info = parsed.error_info
        if info.code is not None:
            return UpstreamStatus(
                http_status=info.code,
                code=info.kind,
                message=info.message,
            )

    if blob and _RATE_LIMIT_RE.search(_without_answer(blob, parsed)):
        return UpstreamStatus(
            http_status=RATE_LIMIT_HTTP_STATUS,
            code=RATE_LIMIT_CODE,
            message=RATE_LIMIT_MESSAGE,
        )
    return None


def is_rate_limited(status: UpstreamStatus | None) -> bool:
    return status is not None and status.http_status == RATE_LIMIT_HTTP_STATUS


def detect_auth_required(text: str) -> bool:
    lowered = text.lower()
    return any(marker.lower() in lowered for marker in _AUTH_REQUIRED_MARKERS)


def detect_model_not_found(text: str) -> bool:
    return bool(text) and _MODEL_NOT_FOUND_RE.search(text) is not None


def is_model_not_found_report(answer: str) -> bool:
    """True when a transcript answer is the CLI's own model error.

    An answer that merely explains ModelNotFoundError is still an answer;
    only text that opens like an error report counts.
    """
    first = next((line for line in answer.splitlines() if line.strip()), "")
    return bool(_ERROR_REPORT_RE.match(first)) and detect_model_not_found(first)
