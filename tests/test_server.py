"""HTTP route tests for WrapperServer."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from aiohttp.test_utils import AioHTTPTestCase

from gemini_wrapper.api.server import WrapperServer
from gemini_wrapper.engine.errors import (
    AuthRequiredError,
    InvalidInputError,
    SessionUnavailableError,
    UpstreamRateLimitedError,
)
from gemini_wrapper.engine.models import AskResult, UpstreamStatus


def _stub_bridge() -> MagicMock:
    bridge = MagicMock()
    bridge.strategy_name = "headless"
    bridge.is_ready = True
    bridge.start = AsyncMock()
    bridge.shutdown = AsyncMock()
    bridge.ask = AsyncMock(return_value=AskResult(answer="4", model=""))
    return bridge


class TestWrapperServer(AioHTTPTestCase):
    async def get_application(self):
        self.bridge = _stub_bridge()
        self.wrapper_server = WrapperServer(self.bridge)
        return self.wrapper_server.app

    async def test_root_reports_running(self):
        resp = await self.client.get("/")
        assert resp.status == 200
        assert await resp.json() == {"message": "Gemini Wrapper API", "status": "running"}
        self.bridge.ask.assert_not_awaited()

    async def test_bridge_started_with_app(self):
        self.bridge.start.assert_awaited_once()

    async def test_health_reports_strategy_and_readiness(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert data["strategy"] == "headless"
        assert data["ready"] is True
        assert data["uptime_seconds"] >= 0
        assert isinstance(data["pid"], int)

    async def test_ask_returns_answer(self):
        resp = await self.client.post("/api/ask", json={"question": "What is 2+2?"})
        assert resp.status == 200
        assert await resp.json() == {"answer": "4"}
        self.bridge.ask.assert_awaited_once_with("What is 2+2?", "")

    async def test_ask_forwards_model_and_degraded_status(self):
        status = UpstreamStatus(429, "RESOURCE_EXHAUSTED", "retry later")
        self.bridge.ask.return_value = AskResult(answer="ok", status=status, model="gemini-2.5-pro")
        resp = await self.client.post(
            "/api/ask", json={"question": "hi", "model": "gemini-2.5-pro"},
        )
        assert resp.status == 200
        data = await resp.json()
        assert data["answer"] == "ok"
        assert data["status"] == {
            "httpStatus": 429,
            "code": "RESOURCE_EXHAUSTED",
            "message": "retry later",
        }
        self.bridge.ask.assert_awaited_once_with("hi", "gemini-2.5-pro")

    async def test_ask_rejects_malformed_body(self):
        resp = await self.client.post(
            "/api/ask", data="not json", headers={"Content-Type": "application/json"},
        )
        assert resp.status == 400
        assert await resp.json() == {"error": "Invalid request format"}

        resp = await self.client.post("/api/ask", json=["question"])
        assert resp.status == 400
        assert await resp.json() == {"error": "Invalid request format"}

        resp = await self.client.post("/api/ask", json={"question": 42})
        assert resp.status == 400
        assert await resp.json() == {"error": "Invalid request format"}
        self.bridge.ask.assert_not_awaited()

    async def test_ask_requires_question(self):
        for body in ({}, {"question": ""}, {"question": "   "}, {"model": "x"}):
            resp = await self.client.post("/api/ask", json=body)
            assert resp.status == 400
            assert await resp.json() == {"error": "Question is required"}
        self.bridge.ask.assert_not_awaited()

    async def test_ask_maps_invalid_input_from_bridge_to_400(self):
        self.bridge.ask.side_effect = InvalidInputError("Question is required")
        resp = await self.client.post("/api/ask", json={"question": "x"})
        assert resp.status == 400
        assert await resp.json() == {"error": "Question is required"}

    async def test_ask_maps_rate_limit_to_500_with_status(self):
        status = UpstreamStatus(429, "RESOURCE_EXHAUSTED", "No capacity")
        self.bridge.ask.side_effect = UpstreamRateLimitedError(status)
        resp = await self.client.post("/api/ask", json={"question": "x"})
        assert resp.status == 500
        data = await resp.json()
        assert data["kind"] == "upstream_rate_limited"
        assert data["status"]["httpStatus"] == 429
        assert "No capacity" in data["error"]

    async def test_ask_maps_auth_required_to_500(self):
        self.bridge.ask.side_effect = AuthRequiredError()
        resp = await self.client.post("/api/ask", json={"question": "x"})
        assert resp.status == 500
        data = await resp.json()
        assert data["kind"] == "auth_required"
        assert "status" not in data

    async def test_unexpected_exception_becomes_json_500(self):
        self.bridge.ask.side_effect = RuntimeError("boom")
        resp = await self.client.post("/api/ask", json={"question": "x"})
        assert resp.status == 500
        assert await resp.json() == {"error": "Internal server error"}

    async def test_generate_content_shape(self):
        self.bridge.ask.return_value = AskResult(answer="Hello!", model="gemini-2.5-flash")
        resp = await self.client.post(
            "/v1beta/models/gemini-2.5-flash:generateContent",
            json={"contents": [{"role": "user", "parts": [{"text": "Say hello"}]}]},
        )
        assert resp.status == 200
        assert await resp.json() == {
            "model": "gemini-2.5-flash",
            "candidates": [
                {"content": {"parts": [{"text": "Hello!"}], "role": "model"}},
            ],
        }
        self.bridge.ask.assert_awaited_once_with("Say hello", "gemini-2.5-flash")

    async def test_generate_content_rejects_bad_bodies(self):
        resp = await self.client.post("/v1beta/models/gemini-2.5-flash", json={"contents": []})
        assert resp.status == 400
        assert await resp.json() == {"error": "Invalid request format"}

        resp = await self.client.post(
            "/v1beta/models/gemini-2.5-flash",
            json={"contents": [{"parts": [{"text": "  "}]}]},
        )
        assert resp.status == 400
        assert await resp.json() == {"error": "Question is required"}
        self.bridge.ask.assert_not_awaited()

    async def test_generate_content_maps_bridge_errors(self):
        self.bridge.ask.side_effect = SessionUnavailableError("gemini session is not ready")
        resp = await self.client.post(
            "/v1beta/models/gemini-2.5-pro",
            json={"contents": [{"parts": [{"text": "hi"}]}]},
        )
        assert resp.status == 500
        data = await resp.json()
        assert data["kind"] == "session_unavailable"

    async def test_cors_headers_and_preflight(self):
        resp = await self.client.get("/")
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

        resp = await self.client.options(
            "/api/ask",
            headers={
                "Origin": "http://example.com",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.status == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]


class TestWrapperServerBridgeStartFailure(AioHTTPTestCase):
    async def get_application(self):
        self.bridge = _stub_bridge()
        self.bridge.is_ready = False
        self.bridge.start.side_effect = SessionUnavailableError("gemini exited")
        return WrapperServer(self.bridge).app

    async def test_server_still_serves_when_bridge_fails_to_start(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        assert (await resp.json())["ready"] is False
