"""Tests for upstream failure classification."""
from __future__ import annotations

import json

import pytest

from gemini_wrapper.engine.models import ErrorInfo, ParsedResponse
from gemini_wrapper.engine.status import (
    RATE_LIMIT_CODE,
    RATE_LIMIT_MESSAGE,
    detect_auth_required,
    detect_model_not_found,
    detect_upstream_status,
    is_model_not_found_report,
    is_rate_limited,
)


def test_parsed_error_code_wins_over_text_patterns():
    parsed = ParsedResponse(
        error_info=ErrorInfo(kind="INTERNAL", message="backend failed", code=503),
    )
    status = detect_upstream_status("Too Many Requests", parsed)
    assert status is not None
    assert status.http_status == 503
    assert status.code == "INTERNAL"
    assert status.message == "backend failed"


@pytest.mark.parametrize(
    "blob",
    [
        "Attempt 1 failed with status 429. Retrying with backoff...",
        '[{"error": {"code": 429, "message": "No capacity"}}]',
        "GaxiosError: 429 Too Many Requests",
        "reason: rateLimitExceeded",
        "status: RESOURCE_EXHAUSTED",
    ],
)
def test_rate_limit_phrasings_synthesize_429(blob):
    status = detect_upstream_status(blob, None)
    assert status is not None
    assert status.http_status == 429
    assert status.code == RATE_LIMIT_CODE
    assert status.message == RATE_LIMIT_MESSAGE
    assert is_rate_limited(status) is True


def test_parsed_error_without_code_falls_back_to_patterns():
    parsed = ParsedResponse(error_info=ErrorInfo(kind="error", message="x"))
    assert detect_upstream_status("all good", parsed) is None
    status = detect_upstream_status("status 429", parsed)
    assert status is not None and status.http_status == 429


def test_no_signal_returns_none():
    assert detect_upstream_status("Paris is the capital of France.", None) is None
    assert detect_upstream_status("", None) is None
    assert is_rate_limited(None) is False


def test_status_to_dict_uses_wire_names():
    status = detect_upstream_status("Too Many Requests", None)
    assert status.to_dict() == {
        "httpStatus": 429,
        "code": RATE_LIMIT_CODE,
        "message": RATE_LIMIT_MESSAGE,
    }


def test_detect_auth_required():
    assert detect_auth_required("Waiting for auth... (Press ESC to cancel)")
    assert detect_auth_required(
        "Please set an Auth method in your settings.json or specify the "
        "GEMINI_API_KEY environment variable"
    )
    assert not detect_auth_required("The answer is 4.")


def test_rate_limit_text_inside_answer_is_not_a_signal():
    payload = json.dumps({"response": "429 Too Many Requests is a rate limit.", "stats": {}})
    parsed = ParsedResponse(text="429 Too Many Requests is a rate limit.")
    assert detect_upstream_status(payload, parsed) is None

    blob = "Attempt 1 failed with status 429.\n" + payload
    status = detect_upstream_status(blob, parsed)
    assert status is not None and status.http_status == 429


def test_model_error_report_versus_explanation():
    assert is_model_not_found_report(
        "✕ [API Error: ModelNotFoundError: Requested entity was not found.]"
    )
    assert is_model_not_found_report(
        "ModelNotFoundError: Requested entity was not found.\n    at Client.call"
    )
    assert not is_model_not_found_report(
        "A ModelNotFoundError means the model name is wrong; check spelling."
    )
    assert not is_model_not_found_report(
        "ModelNotFoundError is raised when the model id is unknown."
    )
    assert not is_model_not_found_report("")


def test_detect_model_not_found():
    assert detect_model_not_found("ModelNotFoundError: Requested entity was not found.")
    assert detect_model_not_found("models/gemini-9-ultra is not found for API version v1beta")
    assert not detect_model_not_found("Found the model answer.")
    assert not detect_model_not_found("")
