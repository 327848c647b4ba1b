"""Abstract base for answer-extraction strategies.

Each strategy drives the gemini CLI a different way:
- HeadlessStrategy: one process per question, JSON payload extraction.
- InteractiveStrategy: one long-lived pty session, transcript scraping.

The Bridge owns exactly one strategy, chosen at construction time, and
never depends on which one it got.
"""
from __future__ import annotations

import abc
import logging
import shutil

from ..config import BridgeConfig
from ..models import AskResult

logger = logging.getLogger(__name__)


class AskStrategy(abc.ABC):
    """Abstract strategy interface.

    Implementations must guarantee single flight against their subprocess
    or session, and a bounded wait for every ask().
    """

    def __init__(self, config: BridgeConfig) -> None:
        self._config = config

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short strategy name ('headless', 'interactive')."""

    @property
    @abc.abstractmethod
    def is_ready(self) -> bool:
        """Whether ask() can currently be served."""

    @abc.abstractmethod
    async def ask(
        self,
        question: str,
        model: str,
        *,
        extra_env: dict[str, str] | None = None,
    ) -> AskResult:
        """Run one exchange. `question` is already validated and stripped.

        Returns AskResult on success (possibly with a degraded status) and
        raises a BridgeError subclass otherwise.
        """

    async def start(self) -> None:
        """Acquire long-lived resources. Default no-op."""
        return None

    async def shutdown(self) -> None:
        """Release long-lived resources. Default no-op."""
        return None

    def is_available(self) -> bool:
        """Check if the CLI binary can be found."""
        return shutil.which(self._config.command) is not None
