"""Answer-extraction strategies for the gemini CLI."""
from __future__ import annotations

import logging

from ..config import STRATEGY_HEADLESS, STRATEGY_INTERACTIVE, BridgeConfig
from .base import AskStrategy
from .headless import HeadlessStrategy
from .interactive import GeminiSession, InteractiveStrategy

logger = logging.getLogger(__name__)

__all__ = [
    "AskStrategy",
    "HeadlessStrategy",
    "InteractiveStrategy",
    "GeminiSession",
    "build_strategy",
]


def build_strategy(config: BridgeConfig) -> AskStrategy:
    """Build the strategy named by config.strategy.

    Raises ValueError for an unknown name.
    """
    if config.strategy == STRATEGY_HEADLESS:
        strategy: AskStrategy = HeadlessStrategy(config)
    elif config.strategy == STRATEGY_INTERACTIVE:
        strategy = InteractiveStrategy(config)
    else:
        raise ValueError(f"Unknown strategy {config.strategy!r}")

    if not strategy.is_available():
        logger.warning(
            "gemini CLI %r not found on PATH; %s asks will fail to spawn",
            config.command, strategy.name,
        )
    return strategy
