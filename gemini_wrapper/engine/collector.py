"""Transcript collector for the interactive (pty) strategy.

Assembles one answer from a live stream of classified terminal lines.
The CLI redraws its input prompt when it is ready for the next message;
that redraw is the only reliable end-of-answer marker, so the collector
finishes on the prompt, on a quiet period once text has started, or on
the overall deadline.

    IDLE --first signal line--> COLLECTING --prompt / quiet / deadline--> DONE
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .errors import AuthRequiredError, BridgeTimeoutError, NoResponseError
from .models import FilteredLine

logger = logging.getLogger(__name__)

DEFAULT_QUIET_SECONDS = 2.0
DEFAULT_TIMEOUT_SECONDS = 90.0

# Cap on lines kept for the "no clear response" diagnostic.
_MAX_SEEN_LINES = 200


class CollectorState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    DONE = "done"


class TranscriptCollector:
    """Collects the answer to one question from classified lines."""

    def __init__(self, question: str) -> None:
        self._echo = question.strip()
        self._state = CollectorState.IDLE
        self._lines: list[str] = []
        self._seen: list[str] = []
        self._saw_prompt = False
        self._hit_deadline = False

    @property
    def state(self) -> CollectorState:
        return self._state

    @property
    def saw_prompt(self) -> bool:
        """True when collection ended on a prompt redraw."""
        return self._saw_prompt

    @property
    def hit_deadline(self) -> bool:
        return self._hit_deadline

    @property
    def started(self) -> bool:
        return self._state is not CollectorState.IDLE

    @property
    def answer(self) -> str:
        return "\n".join(self._lines).strip()

    def feed(self, line: FilteredLine) -> bool:
        """Consume one line. Returns True once the collector is DONE.

        Raises AuthRequiredError when the CLI reports it is waiting for
        authentication.
        """
        if self._state is CollectorState.DONE:
            return True

        text = line.text
        if text.strip() and len(self._seen) < _MAX_SEEN_LINES:
            self._seen.append(text)

        # Terminal echo of the typed question.
        if self._echo and self._echo in text:
            return False

        if line.is_auth_wait:
            raise AuthRequiredError("CLI is waiting for auth")

        if self._state is CollectorState.IDLE:
            if line.is_noise or not text.strip():
                return False
            self._state = CollectorState.COLLECTING
            self._lines.append(text.rstrip())
            return False

        if line.is_prompt:
            self._saw_prompt = True
            self._state = CollectorState.DONE
            return True
        if not text.strip():
            # Keep paragraph breaks inside the answer.
            self._lines.append("")
            return False
        if line.is_noise:
            return False
        self._lines.append(text.rstrip())
        return False

    def finish(self) -> None:
        self._state = CollectorState.DONE

    async def collect(
        self,
        lines: asyncio.Queue[FilteredLine | None],
        *,
        quiet_seconds: float = DEFAULT_QUIET_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> str:
        """Drive the state machine from a live line queue.

        A None item on the queue means the reader reached EOF.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._on_deadline(timeout_seconds)

            wait = min(remaining, quiet_seconds) if self.started else remaining
            try:
                line = await asyncio.wait_for(lines.get(), timeout=wait)
            except asyncio.TimeoutError:
                if self.started and wait < remaining:
                    logger.debug(
                        "Collector finished on quiet period (%d lines)",
                        len(self._lines),
                    )
                    self.finish()
                    return self.answer
                continue

            if line is None:
                self.finish()
                if self.answer:
                    return self.answer
                raise NoResponseError("\n".join(self._seen))

            if self.feed(line):
                logger.debug("Collector finished on prompt redraw")
                return self.answer

    def _on_deadline(self, timeout_seconds: float) -> str:
        self._hit_deadline = True
        self.finish()
        if self.answer:
            logger.warning(
                "Collector hit %.1fs deadline; returning partial answer",
                timeout_seconds,
            )
            return self.answer
        raise BridgeTimeoutError(timeout_seconds)
