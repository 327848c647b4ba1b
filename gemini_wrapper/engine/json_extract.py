"""Extract the CLI's JSON payload from mixed headless output.

`gemini --output-format json` prints one JSON object, but stdout/stderr
also carry retry diagnostics ("Attempt 1 failed with status 429 ..."),
credential notices and raw error arrays. The payload is the last
structured content emitted, so scan from the end for the last balanced
object instead of guessing where it starts.
"""
from __future__ import annotations

import json
import logging

from .models import ParsedResponse

logger = logging.getLogger(__name__)


def _is_escaped(blob: str, index: int) -> bool:
    """True when the character at index follows an odd run of backslashes."""
    backslashes = 0
    i = index - 1
    while i >= 0 and blob[i] == "\\":
        backslashes += 1
        i -= 1
    return backslashes % 2 == 1


def extract_last_json_object(blob: str) -> tuple[str, bool]:
    """Return the last brace-balanced `{...}` substring of blob.

    Braces inside string literals are ignored. String state is only
    tracked inside the candidate object, so quotes in trailing noise after
    the payload cannot flip it. Returns ("", False) when no balanced
    object exists.
    """
    end = -1
    depth = 0
    in_string = False

    for i in range(len(blob) - 1, -1, -1):
        ch = blob[i]
        if end == -1:
            if ch == "}":
                end = i
                depth = 1
            continue

        if ch == '"' and not _is_escaped(blob, i):
            in_string = not in_string
            continue
        if in_string:
            continue

        if ch == "}":
            depth += 1
        elif ch == "{":
            depth -= 1
            if depth == 0:
                return blob[i:end + 1], True

    return "", False


# Keys of the CLI's `--output-format json` object. A trailing object with
# none of them is part of a plain-text answer, not the payload.
_PAYLOAD_KEYS = ("response", "error", "stats")


def parse_gemini_output(blob: str) -> ParsedResponse | None:
    """Parse the trailing JSON payload of a headless run.

    Returns None when there is no balanced object, it is not a JSON
    object, or it carries none of the payload keys; the caller then falls
    back to the raw text.
    """
    payload, found = extract_last_json_object(blob)
    if not found:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        logger.debug("Trailing brace block is not valid JSON: %s", exc)
        return None
    if not isinstance(data, dict):
        return None
    if not any(key in data for key in _PAYLOAD_KEYS):
        logger.debug("Trailing JSON object is not a CLI payload: keys=%s", sorted(data))
        return None
    return ParsedResponse.from_dict(data)
