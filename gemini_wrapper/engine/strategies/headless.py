"""Headless strategy: one gemini process per question.

Runs `gemini --prompt=... --output-format=json`, captures stdout and
stderr merged in arrival order, and pulls the JSON payload out of
whatever diagnostics surround it. A lock held across spawn and capture
keeps concurrent requests from racing on the console and the shared
credential directory.
"""
from __future__ import annotations

import asyncio
import logging
import time

from ..ansi import strip_ansi
from ..config import BridgeConfig
from ..errors import (
    AuthRequiredError,
    BridgeTimeoutError,
    EmptyResponseError,
    ProcessSpawnError,
    UpstreamError,
    UpstreamModelNotFoundError,
    UpstreamRateLimitedError,
)
from ..json_extract import parse_gemini_output
from ..models import AskResult, ParsedResponse, UpstreamStatus
from ..process_control import stop_process
from ..status import (
    MODEL_HINT,
    detect_auth_required,
    detect_model_not_found,
    detect_upstream_status,
    is_rate_limited,
)
from .base import AskStrategy

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096

# Status reported for a JSON error object that carries no numeric code.
_UNCODED_ERROR_STATUS = 500


class HeadlessStrategy(AskStrategy):
    """Strategy backed by `gemini --output-format=json`."""

    def __init__(self, config: BridgeConfig) -> None:
        super().__init__(config)
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "headless"

    @property
    def is_ready(self) -> bool:
        # Each call owns a fresh process; there is no session to lose.
        return True

    def build_command(self, question: str, model: str) -> list[str]:
        cmd = [self._config.command, *self._config.extra_args]
        if model:
            cmd.append(f"--model={model}")
        # --flag=value keeps yargs from reading the prompt as a positional.
        cmd.append(f"--prompt={question}")
        cmd.append("--output-format=json")
        return cmd

    async def ask(
        self,
        question: str,
        model: str,
        *,
        extra_env: dict[str, str] | None = None,
    ) -> AskResult:
        cmd = self.build_command(question, model)
        env = self._config.subprocess_env(extra_env)
        async with self._lock:
            blob, returncode, timed_out = await self._capture(cmd, env)
        return self._interpret(blob, returncode, timed_out, model)

    async def _capture(
        self,
        cmd: list[str],
        env: dict[str, str],
    ) -> tuple[str, int | None, bool]:
        """Run cmd to completion (or timeout) and return (blob, rc, timed_out)."""
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("Failed to start %s: %s", cmd[0], exc)
            raise ProcessSpawnError(cmd[0], str(exc)) from exc

        chunks: list[bytes] = []

        async def _drain() -> None:
            assert proc.stdout is not None
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                chunks.append(chunk)
            await proc.wait()

        timed_out = False
        try:
            await asyncio.wait_for(_drain(), timeout=self._config.timeout_seconds)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(
                "gemini pid=%s produced no result within %.1fs; stopping it",
                proc.pid, self._config.timeout_seconds,
            )
        finally:
            if proc.returncode is None:
                await stop_process(
                    proc,
                    interrupt_grace=self._config.interrupt_grace_seconds,
                    terminate_grace=self._config.terminate_grace_seconds,
                )

        blob = b"".join(chunks).decode("utf-8", errors="replace")
        logger.info(
            "gemini pid=%s rc=%s bytes=%d timed_out=%s duration_ms=%.1f",
            proc.pid, proc.returncode, len(blob), timed_out,
            (time.monotonic() - started) * 1000,
        )
        return blob, proc.returncode, timed_out

    def _interpret(
        self,
        blob: str,
        returncode: int | None,
        timed_out: bool,
        model: str,
    ) -> AskResult:
        """Map captured output to an answer or a classified error."""
        parsed = parse_gemini_output(blob)
        status = detect_upstream_status(blob, parsed)

        text = parsed.text.strip() if parsed is not None else ""
        if text:
            if status is not None:
                logger.warning(
                    "Answer returned with upstream status %s (%s)",
                    status.http_status, status.code,
                )
            return AskResult(answer=text, status=status, model=model)

        if detect_auth_required(blob):
            raise AuthRequiredError()
        if detect_model_not_found(blob):
            raise UpstreamModelNotFoundError(model, MODEL_HINT)

        if parsed is not None:
            self._raise_for_empty_payload(parsed, status, returncode, timed_out)

        raw = "\n".join(strip_ansi(line) for line in blob.splitlines()).strip()
        if not raw:
            if timed_out:
                raise BridgeTimeoutError(self._config.timeout_seconds)
            raise EmptyResponseError(returncode)

        logger.info("No JSON payload in gemini output; returning raw text")
        return AskResult(answer=raw, status=status, model=model)

    def _raise_for_empty_payload(
        self,
        parsed: ParsedResponse,
        status: UpstreamStatus | None,
        returncode: int | None,
        timed_out: bool,
    ) -> None:
        if status is None and parsed.error_info is not None:
            status = UpstreamStatus(
                http_status=_UNCODED_ERROR_STATUS,
                code=parsed.error_info.kind,
                message=parsed.error_info.message,
            )
        if status is None:
            if timed_out:
                raise BridgeTimeoutError(self._config.timeout_seconds)
            raise EmptyResponseError(returncode)
        if is_rate_limited(status):
            raise UpstreamRateLimitedError(status)
        raise UpstreamError(status)
