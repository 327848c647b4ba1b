"""Interactive strategy: one long-lived gemini session on a pseudo-terminal.

The CLI behaves differently when it is not attached to a terminal, so the
session runs it on a pty and scrapes the transcript:

- a background reader decodes the pty, splits lines, classifies them and
  feeds a bounded queue;
- readiness is a one-shot future resolved by the first prompt redraw;
- one consumer task serves questions FIFO, so in-band `/model` switches
  never interleave with another caller's question.

The session is created once. If the CLI exits it is not respawned and
every later ask fails with SessionUnavailableError.
"""
from __future__ import annotations

import asyncio
import codecs
import fcntl
import logging
import os
import pty
import re
import struct
import termios
from dataclasses import dataclass

from ..ansi import classify_line, strip_ansi
from ..collector import TranscriptCollector
from ..config import BridgeConfig
from ..errors import (
    AuthRequiredError,
    BridgeError,
    BridgeTimeoutError,
    ProcessSpawnError,
    SessionUnavailableError,
    UpstreamModelNotFoundError,
)
from ..models import AskResult, FilteredLine
from ..process_control import stop_process
from ..status import MODEL_HINT, detect_upstream_status, is_model_not_found_report
from .base import AskStrategy

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096
_LINE_SPLIT_RE = re.compile(r"\r\n|\n|\r")
_CTRL_C = "\x03"
_ENTER = "\r"

PTY_ROWS = 50
PTY_COLUMNS = 200


def _set_window_size(fd: int, rows: int, columns: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, columns, 0, 0))


class GeminiSession:
    """Owned pty session with explicit lifecycle (start once, close once)."""

    def __init__(self, config: BridgeConfig) -> None:
        self._config = config
        self._proc: asyncio.subprocess.Process | None = None
        self._master_fd: int | None = None
        self._reader_task: asyncio.Task | None = None
        self._ready: asyncio.Future[None] | None = None
        self._exited = asyncio.Event()
        self._lines: asyncio.Queue[FilteredLine | None] = asyncio.Queue(
            maxsize=max(1, config.line_queue_size),
        )
        self._current_model = config.default_model
        self._failure: BridgeError | None = None
        self._started = False
        self._closed = False

    # ── Lifecycle ──

    @property
    def is_ready(self) -> bool:
        return (
            self._ready is not None
            and self._ready.done()
            and not self._ready.cancelled()
            and self._ready.exception() is None
            and not self._exited.is_set()
            and not self._closed
        )

    @property
    def failure(self) -> BridgeError | None:
        return self._failure

    @property
    def current_model(self) -> str:
        return self._current_model

    def build_command(self) -> list[str]:
        cmd = [self._config.command, *self._config.extra_args]
        if self._config.default_model:
            cmd.extend(["--model", self._config.default_model])
        return cmd

    async def start(self) -> None:
        """Spawn the CLI on a pty and wait (bounded) for its first prompt."""
        if self._started:
            raise SessionUnavailableError("gemini session was already started")
        self._started = True
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()

        cmd = self.build_command()
        env = self._config.subprocess_env()
        env.setdefault("TERM", "xterm-256color")

        master_fd, slave_fd = pty.openpty()
        try:
            _set_window_size(slave_fd, PTY_ROWS, PTY_COLUMNS)
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            os.close(master_fd)
            self._failure = ProcessSpawnError(cmd[0], str(exc))
            logger.error("Failed to start interactive gemini session: %s", exc)
            raise self._failure from exc
        finally:
            os.close(slave_fd)

        self._master_fd = master_fd
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info(
            "Interactive gemini session spawned pid=%s cmd=%s",
            self._proc.pid, " ".join(cmd),
        )

        try:
            await asyncio.wait_for(
                asyncio.shield(self._ready),
                timeout=self._config.startup_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._ready.cancel()
            self._failure = BridgeTimeoutError(self._config.startup_timeout_seconds)
            logger.error(
                "gemini session showed no prompt within %.1fs",
                self._config.startup_timeout_seconds,
            )
            await self.close()
            raise self._failure from None
        except BridgeError as exc:
            self._failure = exc
            logger.error("gemini session failed to become ready: %s", exc)
            await self.close()
            raise
        logger.info("Interactive gemini session ready pid=%s", self._proc.pid)

    async def close(self) -> None:
        """Ctrl+C, then escalate until the CLI exits; release the pty."""
        if self._closed:
            return
        self._closed = True
        proc = self._proc
        if proc is not None and proc.returncode is None:
            try:
                self._write(_CTRL_C)
            except SessionUnavailableError:
                pass
            await stop_process(
                proc,
                interrupt_grace=self._config.interrupt_grace_seconds,
                terminate_grace=self._config.terminate_grace_seconds,
            )
            logger.info("Interactive gemini session stopped rc=%s", proc.returncode)
        if self._reader_task is not None:
            try:
                await asyncio.wait_for(self._reader_task, timeout=1.0)
            except asyncio.TimeoutError:
                pass
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None

    # ── Reader ──

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            while True:
                try:
                    data = await loop.run_in_executor(
                        None, os.read, self._master_fd, _READ_CHUNK,
                    )
                except OSError:
                    # EIO once the child side of the pty is gone.
                    break
                if not data:
                    break
                pending += decoder.decode(data)
                parts = _LINE_SPLIT_RE.split(pending)
                pending = parts.pop()
                for raw in parts:
                    await self._emit(raw)
                # A bare prompt is drawn without a trailing newline.
                if pending and self._config.noise.is_prompt(strip_ansi(pending)):
                    await self._emit(pending)
                    pending = ""
            pending += decoder.decode(b"", final=True)
            if pending:
                await self._emit(pending)
        finally:
            self._on_eof()

    async def _emit(self, raw: str) -> None:
        line = classify_line(raw, self._config.noise)
        if self._ready is not None and not self._ready.done():
            if line.is_auth_wait:
                self._ready.set_exception(AuthRequiredError("session startup"))
            elif line.is_prompt:
                self._ready.set_result(None)
        await self._lines.put(line)

    def _on_eof(self) -> None:
        self._exited.set()
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(
                SessionUnavailableError("gemini session exited before it became ready")
            )
        if self._proc is not None and not self._closed:
            logger.warning(
                "Interactive gemini session output closed unexpectedly pid=%s rc=%s",
                self._proc.pid, self._proc.returncode,
            )
        try:
            self._lines.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the EOF sentinel; the oldest line is stale anyway.
            self._lines.get_nowait()
            self._lines.put_nowait(None)

    # ── Exchange ──

    def _write(self, text: str) -> None:
        if self._master_fd is None or self._exited.is_set():
            raise SessionUnavailableError("gemini session is not running")
        try:
            os.write(self._master_fd, text.encode("utf-8"))
        except OSError as exc:
            raise SessionUnavailableError(f"failed to write to gemini session: {exc}") from exc

    def _ensure_alive(self) -> None:
        if self._closed or self._exited.is_set():
            raise SessionUnavailableError(
                "gemini session has exited; restart the service to recreate it"
            )

    def _drain_stale(self) -> int:
        dropped = 0
        while True:
            try:
                line = self._lines.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            if line is not None:
                dropped += 1

    async def _settle(self, *, ignore: str, bound: float) -> bool:
        """Consume output until the prompt redraws, a quiet period, or bound.

        Returns True when the prompt was seen.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + bound
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            try:
                line = await asyncio.wait_for(
                    self._lines.get(),
                    timeout=min(remaining, self._config.quiet_seconds),
                )
            except asyncio.TimeoutError:
                return False
            if line is None:
                return False
            if ignore and ignore in line.text:
                continue
            if line.is_auth_wait:
                raise AuthRequiredError("during settle")
            if line.is_prompt:
                return True

    async def switch_model(self, model: str) -> None:
        command = f"/model {model}"
        logger.info("Switching interactive session model %r -> %r", self._current_model, model)
        self._write(command + _ENTER)
        await self._settle(ignore=command, bound=self._config.startup_timeout_seconds)
        self._current_model = model

    async def exchange(self, question: str, model: str) -> str:
        """Send one question and collect its answer. Caller serializes."""
        self._ensure_alive()
        dropped = self._drain_stale()
        if dropped:
            logger.debug("Dropped %d stale session lines before exchange", dropped)
        # The drain may have swallowed the EOF sentinel.
        self._ensure_alive()

        if model and model != self._current_model:
            await self.switch_model(model)

        # A newline would submit early; the CLI gets one line.
        flat = " ".join(question.split())
        self._write(flat + _ENTER)

        collector = TranscriptCollector(flat)
        try:
            answer = await collector.collect(
                self._lines,
                quiet_seconds=self._config.quiet_seconds,
                timeout_seconds=self._config.timeout_seconds,
            )
        except BridgeTimeoutError:
            await self._recover(flat, interrupt=True)
            raise

        if not collector.saw_prompt and not self._exited.is_set():
            await self._recover(flat, interrupt=collector.hit_deadline)
        return answer

    async def _recover(self, flat: str, *, interrupt: bool) -> None:
        """Bring the CLI back to its prompt before the next question."""
        if self._exited.is_set():
            return
        if interrupt:
            logger.warning("Interrupting unfinished gemini answer")
            self._write(_CTRL_C)
        seen = await self._settle(
            ignore=flat, bound=self._config.startup_timeout_seconds,
        )
        if not seen:
            logger.warning("gemini prompt did not reappear after exchange")


@dataclass
class _Request:
    question: str
    model: str
    future: asyncio.Future[AskResult]


class InteractiveStrategy(AskStrategy):
    """Strategy backed by one long-lived pty session and a FIFO queue."""

    def __init__(self, config: BridgeConfig) -> None:
        super().__init__(config)
        self._session = GeminiSession(config)
        self._requests: asyncio.Queue[_Request] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._busy = False

    @property
    def name(self) -> str:
        return "interactive"

    @property
    def is_ready(self) -> bool:
        return self._session.is_ready and self._consumer is not None

    @property
    def session(self) -> GeminiSession:
        return self._session

    async def start(self) -> None:
        await self._session.start()
        self._consumer = asyncio.create_task(self._serve())

    async def shutdown(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        while True:
            try:
                request = self._requests.get_nowait()
            except asyncio.QueueEmpty:
                break
            if not request.future.done():
                request.future.set_exception(
                    SessionUnavailableError("gemini session is shutting down")
                )
        await self._session.close()

    def exchange_bound(self) -> float:
        """Upper bound on one queued exchange, including settle phases."""
        cfg = self._config
        return cfg.timeout_seconds + 2 * cfg.startup_timeout_seconds + cfg.quiet_seconds

    async def ask(
        self,
        question: str,
        model: str,
        *,
        extra_env: dict[str, str] | None = None,
    ) -> AskResult:
        if extra_env:
            logger.warning(
                "extra_env is ignored by the interactive strategy (session env is fixed)"
            )
        if not self.is_ready:
            failure = self._session.failure
            if isinstance(failure, AuthRequiredError):
                raise AuthRequiredError("session startup")
            detail = f": {failure}" if failure is not None else ""
            raise SessionUnavailableError(f"gemini session is not ready{detail}")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[AskResult] = loop.create_future()
        ahead = self._requests.qsize() + (1 if self._busy else 0)
        bound = (ahead + 1) * self.exchange_bound()
        await self._requests.put(_Request(question=question, model=model, future=future))
        try:
            return await asyncio.wait_for(future, timeout=bound)
        except asyncio.TimeoutError:
            raise BridgeTimeoutError(bound) from None

    async def _serve(self) -> None:
        """Single consumer: exactly one exchange in flight at a time."""
        while True:
            request = await self._requests.get()
            if request.future.done():
                # Caller already gave up.
                continue
            self._busy = True
            try:
                answer = await self._session.exchange(request.question, request.model)
                result = self._to_result(answer, request.model)
            except BridgeError as exc:
                if not request.future.done():
                    request.future.set_exception(exc)
            except Exception as exc:
                logger.exception("Unexpected failure in interactive exchange")
                if not request.future.done():
                    request.future.set_exception(
                        SessionUnavailableError(f"interactive exchange failed: {exc}")
                    )
            else:
                if not request.future.done():
                    request.future.set_result(result)
            finally:
                self._busy = False

    @staticmethod
    def _to_result(answer: str, model: str) -> AskResult:
        if is_model_not_found_report(answer):
            raise UpstreamModelNotFoundError(model, MODEL_HINT)
        status = detect_upstream_status(answer, None)
        if status is not None:
            logger.warning(
                "Answer returned with upstream status %s (%s)",
                status.http_status, status.code,
            )
        return AskResult(answer=answer, status=status, model=model)
