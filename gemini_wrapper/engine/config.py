"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via GEMINI_WRAPPER_* env vars
(plus PORT for the HTTP listener, as the container sets it).
"""
from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field

from .ansi import DEFAULT_NOISE, NoiseVocabulary

logger = logging.getLogger(__name__)

ENV_PREFIX = "GEMINI_WRAPPER_"

STRATEGY_HEADLESS = "headless"
STRATEGY_INTERACTIVE = "interactive"
STRATEGIES = (STRATEGY_HEADLESS, STRATEGY_INTERACTIVE)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r (expected a number)", name, raw)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r (expected an integer)", name, raw)
        return default


@dataclass
class BridgeConfig:
    """CLI bridge configuration."""

    # Which answer-extraction strategy to build: "headless" or "interactive".
    strategy: str = STRATEGY_HEADLESS

    # CLI binary and extra arguments placed before the per-call flags.
    command: str = "gemini"
    extra_args: list[str] = field(default_factory=list)

    # Fixed environment overrides pointing the CLI at the credential store.
    home_dir: str = "/app"
    config_dir: str = "/app/.gemini"
    user: str | None = "root"

    # Model used when the caller sends no hint ("" lets the CLI choose).
    default_model: str = ""

    # Upper bound for one exchange (headless process run or interactive answer).
    timeout_seconds: float = 90.0
    # Interactive: silence after the answer started that ends collection.
    quiet_seconds: float = 2.0
    # Interactive: bound on waiting for the first prompt at startup.
    startup_timeout_seconds: float = 15.0

    # Stop escalation: SIGINT -> grace -> SIGTERM -> grace -> SIGKILL.
    interrupt_grace_seconds: float = 0.5
    terminate_grace_seconds: float = 2.0

    # Interactive: bounded buffer between the pty reader and the collector.
    line_queue_size: int = 1000

    log_level: str = "INFO"

    noise: NoiseVocabulary = field(default=DEFAULT_NOISE, repr=False)

    def subprocess_env(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """Environment for a spawned CLI: inherited + credential overrides + extra."""
        env = os.environ.copy()
        env["HOME"] = self.home_dir
        env["GEMINI_CONFIG_DIR"] = self.config_dir
        env["XDG_CONFIG_HOME"] = self.home_dir
        if self.user:
            env["USER"] = self.user
        if extra:
            env.update({str(k): str(v) for k, v in extra.items()})
        return env

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from GEMINI_WRAPPER_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)
        }
        if overrides:
            logger.info(
                "BridgeConfig.from_env: env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("BridgeConfig.from_env: no %s* env vars set, using defaults", ENV_PREFIX)

        strategy = os.getenv(f"{ENV_PREFIX}STRATEGY", cls.strategy).strip().lower()
        if strategy not in STRATEGIES:
            logger.warning(
                "Unknown strategy %r; falling back to %s", strategy, cls.strategy,
            )
            strategy = cls.strategy

        home_dir = os.getenv(f"{ENV_PREFIX}HOME") or os.getenv("HOME") or cls.home_dir
        config = cls(
            strategy=strategy,
            command=os.getenv(f"{ENV_PREFIX}COMMAND", cls.command),
            extra_args=shlex.split(os.getenv(f"{ENV_PREFIX}EXTRA_ARGS", "")),
            home_dir=home_dir,
            config_dir=(
                os.getenv(f"{ENV_PREFIX}CONFIG_DIR")
                or os.getenv("GEMINI_CONFIG_DIR")
                or os.path.join(home_dir, ".gemini")
            ),
            user=os.getenv(f"{ENV_PREFIX}USER", cls.user or "") or None,
            default_model=os.getenv(f"{ENV_PREFIX}DEFAULT_MODEL", cls.default_model),
            timeout_seconds=_env_float(f"{ENV_PREFIX}TIMEOUT", cls.timeout_seconds),
            quiet_seconds=_env_float(f"{ENV_PREFIX}QUIET_SECONDS", cls.quiet_seconds),
            startup_timeout_seconds=_env_float(
                f"{ENV_PREFIX}STARTUP_TIMEOUT", cls.startup_timeout_seconds,
            ),
            interrupt_grace_seconds=_env_float(
                f"{ENV_PREFIX}INTERRUPT_GRACE", cls.interrupt_grace_seconds,
            ),
            terminate_grace_seconds=_env_float(
                f"{ENV_PREFIX}TERMINATE_GRACE", cls.terminate_grace_seconds,
            ),
            line_queue_size=_env_int(f"{ENV_PREFIX}QUEUE_SIZE", cls.line_queue_size),
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "BridgeConfig.from_env: strategy=%s command=%s config_dir=%s timeout=%.1fs",
            config.strategy, config.command, config.config_dir, config.timeout_seconds,
        )
        return config


@dataclass
class ServerConfig:
    """HTTP listener configuration."""

    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv(f"{ENV_PREFIX}HOST", cls.host),
            port=_env_int("PORT", cls.port),
        )
