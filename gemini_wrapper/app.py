"""gemini-wrapper: main application entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess
import sys
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml

from gemini_wrapper import __version__
from gemini_wrapper.engine.config import STRATEGIES, BridgeConfig, ServerConfig
from gemini_wrapper.engine.yaml_config import WrapperConfig, load_yaml_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(level: str, log_file: str | None = None) -> None:
    """Root logger to stderr, plus a rotating file when log_file is set."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)


def _log_cli_version(command: str) -> str:
    """Log the installed gemini CLI version. Never fails startup."""
    cli_version = "unknown"
    try:
        out = subprocess.check_output(
            [command, "--version"], text=True, stderr=subprocess.STDOUT, timeout=30,
        ).strip()
        match = re.search(r"(\d+\.\d+\.\d+)", out)
        cli_version = match.group(1) if match else out
    except (OSError, subprocess.SubprocessError):
        logger.debug("Could not resolve %s CLI version", command, exc_info=True)

    logger.info(
        "Runtime versions: gemini-wrapper=%s gemini-cli=%s",
        __version__,
        cli_version,
    )
    return cli_version


def check_credential_dir(config_dir: str) -> bool:
    """Check the credential directory exists and is writable.

    The CLI refreshes OAuth tokens in place; a read-only mount makes the
    first renewal fail. Returns True when the directory is usable.
    """
    path = Path(config_dir)
    if not path.is_dir():
        logger.warning(
            "Credential directory %s does not exist; gemini will ask for auth",
            path,
        )
        return False
    if not os.access(path, os.W_OK):
        logger.warning(
            "No write access to %s (uid=%d); token renewal may fail. "
            "Fix ownership on the host: chown -R $USER:$USER ~/.gemini",
            path, os.getuid(),
        )
        return False
    logger.info("Credential directory %s is writable", path)
    return True


def resolve_config(args) -> WrapperConfig:
    """Env config, then the YAML file (if any), then CLI flags."""
    config = WrapperConfig(
        bridge=BridgeConfig.from_env(),
        server=ServerConfig.from_env(),
    )
    if args.config:
        config = load_yaml_config(args.config, base=config)

    bridge = config.bridge
    server = config.server
    if args.strategy:
        bridge = replace(bridge, strategy=args.strategy)
    if args.model:
        bridge = replace(bridge, default_model=args.model)
    if args.host:
        server = replace(server, host=args.host)
    if args.port is not None:
        server = replace(server, port=args.port)
    return WrapperConfig(bridge=bridge, server=server)


async def _ask_once(config: BridgeConfig, question: str, model: str) -> int:
    from gemini_wrapper.engine.bridge import build_bridge
    from gemini_wrapper.engine.errors import BridgeError

    bridge = build_bridge(config)
    try:
        await bridge.start()
        result = await bridge.ask(question, model)
    except BridgeError as exc:
        print(f"error ({exc.kind.value}): {exc.message}", file=sys.stderr)
        return 1
    finally:
        await bridge.shutdown()

    print(result.answer)
    if result.status is not None:
        print(
            f"upstream status {result.status.http_status} ({result.status.code}): "
            f"{result.status.message}",
            file=sys.stderr,
        )
    return 0


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="gemini-wrapper",
        description="HTTP API that answers questions through the gemini CLI",
    )
    parser.add_argument(
        "--host", default=None,
        help="Interface to listen on (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port to listen on (default: $PORT or 8080)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        default=os.getenv("GEMINI_WRAPPER_CONFIG"),
        help="YAML config file (default: $GEMINI_WRAPPER_CONFIG)",
    )
    parser.add_argument(
        "--strategy", choices=STRATEGIES, default=None,
        help="Answer-extraction strategy",
    )
    parser.add_argument(
        "--model", default=None,
        help="Default model when a request names none",
    )
    parser.add_argument(
        "--ask", metavar="TEXT", default=None,
        help="Ask one question, print the answer and exit",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    args = parser.parse_args()

    configure_logging(
        os.getenv("GEMINI_WRAPPER_LOG_LEVEL", "INFO"),
        os.getenv("GEMINI_WRAPPER_LOG_FILE") or None,
    )

    try:
        config = resolve_config(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    logging.getLogger().setLevel(
        getattr(logging, config.bridge.log_level.upper(), logging.INFO)
    )
    logger.info(
        "Starting gemini-wrapper strategy=%s host=%s port=%d config=%s",
        config.bridge.strategy,
        config.server.host,
        config.server.port,
        args.config or "<none>",
    )
    _log_cli_version(config.bridge.command)
    check_credential_dir(config.bridge.config_dir)

    if args.ask is not None:
        sys.exit(asyncio.run(_ask_once(config.bridge, args.ask, "")))

    from gemini_wrapper.api.server import WrapperServer
    from gemini_wrapper.engine.bridge import build_bridge

    server = WrapperServer(
        build_bridge(config.bridge),
        host=config.server.host,
        port=config.server.port,
    )
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        pass
    sys.exit(0)


if __name__ == "__main__":
    main()
