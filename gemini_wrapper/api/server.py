"""HTTP server for the gemini wrapper.

Thin aiohttp routing over the Bridge: handlers validate and shape JSON,
the bridge does everything else.

Routes:
    GET  /                       liveness banner
    GET  /health                 strategy readiness and uptime
    POST /api/ask                {question, model?} -> {answer, status?}
    POST /v1beta/models/{model}  generateContent-shaped ask

Usage:
    gemini-wrapper [--host HOST] [--port PORT]
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from typing import Any

from aiohttp import web

from gemini_wrapper.engine.bridge import Bridge
from gemini_wrapper.engine.errors import BridgeError, InvalidInputError

logger = logging.getLogger(__name__)

INVALID_REQUEST_MESSAGE = "Invalid request format"
QUESTION_REQUIRED_MESSAGE = "Question is required"
INTERNAL_ERROR_MESSAGE = "Internal server error"

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, PUT, PATCH, POST, DELETE",
    "Access-Control-Allow-Headers": "*",
}


class _BadRequest(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def _error_payload(exc: BridgeError) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": exc.message, "kind": exc.kind.value}
    if exc.status is not None:
        payload["status"] = exc.status.to_dict()
    if exc.partial_answer:
        payload["partial_answer"] = exc.partial_answer
    return payload


def _question_from_contents(body: dict[str, Any]) -> str:
    """contents[0].parts[0].text of a generateContent body."""
    contents = body.get("contents")
    if not isinstance(contents, list) or not contents:
        raise _BadRequest(INVALID_REQUEST_MESSAGE)
    first = contents[0]
    parts = first.get("parts") if isinstance(first, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        raise _BadRequest(INVALID_REQUEST_MESSAGE)
    text = parts[0].get("text")
    if text is not None and not isinstance(text, str):
        raise _BadRequest(INVALID_REQUEST_MESSAGE)
    if not (text or "").strip():
        raise _BadRequest(QUESTION_REQUIRED_MESSAGE)
    return text


class WrapperServer:
    """aiohttp application around one Bridge."""

    def __init__(
        self,
        bridge: Bridge,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self._bridge = bridge
        self._host = host
        self._port = port
        self._started_at = time.time()
        self._app = web.Application(
            middlewares=[self._request_logging_middleware, self._cors_middleware],
        )
        self._app.on_startup.append(self._on_startup)
        self._app.on_cleanup.append(self._on_cleanup)
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def bridge(self) -> Bridge:
        return self._bridge

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
        except web.HTTPException:
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            return web.json_response({"error": INTERNAL_ERROR_MESSAGE}, status=500)
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "HTTP %s %s req=%s status=%s duration_ms=%.1f",
            request.method, request.path_qs, req_id,
            getattr(response, "status", "?"), elapsed_ms,
        )
        return response

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
            response: web.StreamResponse = web.Response(status=204)
        else:
            try:
                response = await handler(request)
            except web.HTTPException as exc:
                exc.headers.update(_CORS_HEADERS)
                raise
        response.headers.update(_CORS_HEADERS)
        return response

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/", self._handle_root)
        r.add_get("/health", self._handle_health)
        r.add_post("/api/ask", self._handle_ask)
        r.add_post("/v1beta/models/{model}", self._handle_generate_content)

    # ── Lifecycle ──

    async def _on_startup(self, app: web.Application) -> None:
        try:
            await self._bridge.start()
        except BridgeError as exc:
            # The server still answers; asks report session_unavailable.
            logger.error(
                "Bridge failed to start (strategy=%s kind=%s): %s",
                self._bridge.strategy_name, exc.kind.value, exc.message,
            )

    async def _on_cleanup(self, app: web.Application) -> None:
        await self._bridge.shutdown()

    async def start(self) -> None:
        """Serve until cancelled or interrupted."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        logger.info(
            "gemini wrapper listening on %s:%d strategy=%s",
            self._host, self._port, self._bridge.strategy_name,
        )
        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    # ── Handlers ──

    async def _handle_root(self, request: web.Request) -> web.Response:
        return web.json_response({"message": "Gemini Wrapper API", "status": "running"})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "strategy": self._bridge.strategy_name,
            "ready": self._bridge.is_ready,
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "pid": os.getpid(),
        })

    @staticmethod
    async def _read_json_object(request: web.Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
            raise _BadRequest(INVALID_REQUEST_MESSAGE) from None
        if not isinstance(body, dict):
            raise _BadRequest(INVALID_REQUEST_MESSAGE)
        return body

    async def _handle_ask(self, request: web.Request) -> web.Response:
        try:
            body = await self._read_json_object(request)
            question = body.get("question")
            model = body.get("model") or ""
            if question is not None and not isinstance(question, str):
                raise _BadRequest(INVALID_REQUEST_MESSAGE)
            if not isinstance(model, str):
                raise _BadRequest(INVALID_REQUEST_MESSAGE)
            if not (question or "").strip():
                raise _BadRequest(QUESTION_REQUIRED_MESSAGE)
        except _BadRequest as exc:
            return web.json_response({"error": exc.message}, status=400)

        try:
            result = await self._bridge.ask(question, model)
        except InvalidInputError as exc:
            return web.json_response({"error": exc.message}, status=400)
        except BridgeError as exc:
            return web.json_response(_error_payload(exc), status=500)

        payload: dict[str, Any] = {"answer": result.answer}
        if result.status is not None:
            payload["status"] = result.status.to_dict()
        return web.json_response(payload)

    async def _handle_generate_content(self, request: web.Request) -> web.Response:
        # "gemini-2.5-flash:generateContent" -> "gemini-2.5-flash"
        model = request.match_info["model"].split(":", 1)[0]
        try:
            body = await self._read_json_object(request)
            question = _question_from_contents(body)
        except _BadRequest as exc:
            return web.json_response({"error": exc.message}, status=400)

        try:
            result = await self._bridge.ask(question, model)
        except InvalidInputError as exc:
            return web.json_response({"error": exc.message}, status=400)
        except BridgeError as exc:
            return web.json_response(_error_payload(exc), status=500)

        payload: dict[str, Any] = {
            "model": result.model or model,
            "candidates": [
                {"content": {"parts": [{"text": result.answer}], "role": "model"}},
            ],
        }
        if result.status is not None:
            payload["status"] = result.status.to_dict()
        return web.json_response(payload)
