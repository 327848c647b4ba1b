"""Upstream CLI bridge.

The single entry point HTTP handlers use to reach the gemini CLI. Validates
input before anything is spawned, applies the configured default model, and
delegates the exchange to one AskStrategy chosen at construction time.
"""
from __future__ import annotations

import logging
import time

from .config import BridgeConfig
from .errors import BridgeError, InvalidInputError
from .models import AskResult
from .strategies import AskStrategy, build_strategy

logger = logging.getLogger(__name__)


class Bridge:
    """Owns one strategy and turns every ask into AskResult or BridgeError."""

    def __init__(self, strategy: AskStrategy) -> None:
        self._strategy = strategy

    @property
    def strategy(self) -> AskStrategy:
        return self._strategy

    @property
    def strategy_name(self) -> str:
        return self._strategy.name

    @property
    def is_ready(self) -> bool:
        return self._strategy.is_ready

    @property
    def config(self) -> BridgeConfig:
        return self._strategy.config

    async def start(self) -> None:
        logger.info("Starting bridge strategy=%s", self._strategy.name)
        await self._strategy.start()

    async def shutdown(self) -> None:
        logger.info("Shutting down bridge strategy=%s", self._strategy.name)
        await self._strategy.shutdown()

    async def ask(
        self,
        question: str,
        model_hint: str = "",
        *,
        extra_env: dict[str, str] | None = None,
    ) -> AskResult:
        """Send one question to the CLI and return its answer.

        An empty model hint falls back to the configured default model,
        and an empty default lets the CLI choose. extra_env is applied to
        the spawned process only.
        """
        question = (question or "").strip()
        if not question:
            raise InvalidInputError("Question is required")

        model = (model_hint or "").strip() or self.config.default_model
        started = time.monotonic()
        logger.info(
            "Bridge ask strategy=%s model=%s question_chars=%d",
            self._strategy.name, model or "(default)", len(question),
        )
        try:
            result = await self._strategy.ask(question, model, extra_env=extra_env)
        except BridgeError as exc:
            logger.warning(
                "Bridge ask failed kind=%s duration_ms=%.1f: %s",
                exc.kind.value, (time.monotonic() - started) * 1000, exc.message,
            )
            raise

        logger.info(
            "Bridge ask ok answer_chars=%d status=%s duration_ms=%.1f",
            len(result.answer),
            result.status.http_status if result.status else None,
            (time.monotonic() - started) * 1000,
        )
        return result


def build_bridge(config: BridgeConfig) -> Bridge:
    """Build a Bridge around the strategy config.strategy names."""
    return Bridge(build_strategy(config))
