"""YAML configuration loader.

Loads a single YAML file on top of the environment-derived config. Keys
present in the file win over GEMINI_WRAPPER_* env vars; absent keys keep
the env/default value.

Example YAML:
    bridge:
      strategy: headless
      command: gemini
      extra_args: ["--sandbox=false"]
      home_dir: /app
      config_dir: /app/.gemini
      default_model: gemini-2.5-flash
      timeout_seconds: 90
      quiet_seconds: 2
      startup_timeout_seconds: 15

    server:
      host: 0.0.0.0
      port: 8080

    noise:
      substrings: ["Loaded cached credentials"]
      prefixes: ["Tip:"]
      exact_lines: ["Thinking..."]
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .config import STRATEGIES, BridgeConfig, ServerConfig

logger = logging.getLogger(__name__)

_FLOAT_KEYS = {
    "timeout_seconds",
    "quiet_seconds",
    "startup_timeout_seconds",
    "interrupt_grace_seconds",
    "terminate_grace_seconds",
}
_INT_KEYS = {"line_queue_size"}
_NOISE_KEYS = ("substrings", "prefixes", "exact_lines")


@dataclass
class WrapperConfig:
    """Fully resolved configuration for the service."""
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _coerce(key: str, value: Any) -> Any:
    if key in _FLOAT_KEYS:
        return float(value)
    if key in _INT_KEYS:
        return int(value)
    if key == "extra_args":
        return [str(v) for v in (value or [])]
    if value is None:
        return None
    return str(value)


def _apply_bridge(base: BridgeConfig, raw: dict[str, Any]) -> BridgeConfig:
    known = {f.name for f in fields(BridgeConfig)} - {"noise"}
    updates: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("load_yaml_config: ignoring unknown bridge key %r", key)
            continue
        updates[key] = _coerce(key, value)
    if "strategy" in updates:
        updates["strategy"] = updates["strategy"].lower()
        if updates["strategy"] not in STRATEGIES:
            raise ValueError(
                f"bridge.strategy must be one of {', '.join(STRATEGIES)}, "
                f"got {updates['strategy']!r}"
            )
    return replace(base, **updates)


def _apply_server(base: ServerConfig, raw: dict[str, Any]) -> ServerConfig:
    updates: dict[str, Any] = {}
    for key, value in raw.items():
        if key == "host":
            updates["host"] = str(value)
        elif key == "port":
            updates["port"] = int(value)
        else:
            logger.warning("load_yaml_config: ignoring unknown server key %r", key)
    return replace(base, **updates)


def load_yaml_config(
    path: str | Path,
    *,
    base: WrapperConfig | None = None,
) -> WrapperConfig:
    """Load and parse a YAML config file over `base` (env config by default)."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    if base is None:
        base = WrapperConfig(
            bridge=BridgeConfig.from_env(),
            server=ServerConfig.from_env(),
        )

    for section in sorted(raw.keys()):
        if section not in ("bridge", "server", "noise"):
            logger.warning("load_yaml_config: ignoring unknown section %r", section)

    bridge = _apply_bridge(base.bridge, raw.get("bridge") or {})
    server = _apply_server(base.server, raw.get("server") or {})

    noise_raw = raw.get("noise") or {}
    if noise_raw:
        bridge.noise = bridge.noise.extend(
            **{key: [str(v) for v in (noise_raw.get(key) or [])] for key in _NOISE_KEYS}
        )

    logger.info(
        "Parsed YAML config %s: strategy=%s command=%s port=%d",
        path.name, bridge.strategy, bridge.command, server.port,
    )
    return WrapperConfig(bridge=bridge, server=server)
