"""Tests for HeadlessStrategy against fake gemini executables."""
from __future__ import annotations

import asyncio
import os
import sys
import textwrap
import time
from pathlib import Path

import pytest

from gemini_wrapper.engine.config import BridgeConfig
from gemini_wrapper.engine.errors import (
    AuthRequiredError,
    BridgeTimeoutError,
    EmptyResponseError,
    ProcessSpawnError,
    UpstreamError,
    UpstreamModelNotFoundError,
    UpstreamRateLimitedError,
)
from gemini_wrapper.engine.strategies.headless import HeadlessStrategy

_PRELUDE = """\
import json
import os
import signal
import sys
import time

signal.signal(signal.SIGINT, signal.SIG_DFL)
ARGS = sys.argv[1:]
PROMPT = next((a.split("=", 1)[1] for a in ARGS if a.startswith("--prompt=")), "")
MODEL = next((a.split("=", 1)[1] for a in ARGS if a.startswith("--model=")), "")
"""


def _fake_gemini(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "gemini"
    script.write_text(
        f"#!{sys.executable}\n" + _PRELUDE + textwrap.dedent(body),
        encoding="utf-8",
    )
    script.chmod(0o755)
    return script


def _strategy(tmp_path: Path, body: str, **overrides) -> HeadlessStrategy:
    config = BridgeConfig(
        command=str(_fake_gemini(tmp_path, body)),
        home_dir=str(tmp_path),
        config_dir=str(tmp_path / ".gemini"),
        timeout_seconds=overrides.pop("timeout_seconds", 20.0),
        interrupt_grace_seconds=0.2,
        terminate_grace_seconds=0.5,
        **overrides,
    )
    return HeadlessStrategy(config)


def test_build_command_orders_flags():
    strategy = HeadlessStrategy(BridgeConfig(command="gemini", extra_args=["--yolo"]))
    assert strategy.build_command("hi there", "gemini-2.5-flash") == [
        "gemini",
        "--yolo",
        "--model=gemini-2.5-flash",
        "--prompt=hi there",
        "--output-format=json",
    ]
    assert "--model=" not in " ".join(strategy.build_command("hi", ""))


@pytest.mark.asyncio
async def test_returns_response_from_json_payload(tmp_path):
    strategy = _strategy(tmp_path, """
        sys.stderr.write("Loaded cached credentials.\\n")
        sys.stderr.flush()
        print(json.dumps({
            "response": f"echo:{PROMPT} model:{MODEL}",
            "stats": {"models": {}},
        }))
    """)
    result = await strategy.ask("What is 2+2?", "gemini-2.5-flash")
    assert result.answer == "echo:What is 2+2? model:gemini-2.5-flash"
    assert result.status is None
    assert result.model == "gemini-2.5-flash"


@pytest.mark.asyncio
async def test_rate_limit_with_answer_returns_both(tmp_path):
    strategy = _strategy(tmp_path, """
        sys.stderr.write("Attempt 1 failed with status 429. Retrying with backoff...\\n")
        sys.stderr.flush()
        print(json.dumps({"response": "ok", "stats": {"models": {}}}))
    """)
    result = await strategy.ask("q", "")
    assert result.answer == "ok"
    assert result.status is not None
    assert result.status.http_status == 429


@pytest.mark.asyncio
async def test_rate_limit_without_answer_raises(tmp_path):
    strategy = _strategy(tmp_path, """
        print(json.dumps({
            "error": {"type": "RESOURCE_EXHAUSTED", "message": "No capacity", "code": 429},
        }))
        sys.exit(1)
    """)
    with pytest.raises(UpstreamRateLimitedError) as exc_info:
        await strategy.ask("q", "")
    assert exc_info.value.status.http_status == 429
    assert exc_info.value.kind.value == "upstream_rate_limited"


@pytest.mark.asyncio
async def test_other_upstream_error_raises_upstream_error(tmp_path):
    strategy = _strategy(tmp_path, """
        print(json.dumps({
            "error": {"type": "UNAVAILABLE", "message": "backend down", "code": 503},
        }))
        sys.exit(1)
    """)
    with pytest.raises(UpstreamError) as exc_info:
        await strategy.ask("q", "")
    assert not isinstance(exc_info.value, UpstreamRateLimitedError)
    assert exc_info.value.status.http_status == 503
    assert exc_info.value.status.code == "UNAVAILABLE"


@pytest.mark.asyncio
async def test_auth_prompt_raises_auth_required(tmp_path):
    strategy = _strategy(tmp_path, """
        print("Please set an Auth method in your settings.json")
        sys.exit(1)
    """)
    with pytest.raises(AuthRequiredError):
        await strategy.ask("q", "")


@pytest.mark.asyncio
async def test_unknown_model_raises_with_hint(tmp_path):
    strategy = _strategy(tmp_path, """
        sys.stderr.write("ModelNotFoundError: Requested entity was not found.\\n")
        sys.exit(1)
    """)
    with pytest.raises(UpstreamModelNotFoundError) as exc_info:
        await strategy.ask("q", "gemini-9-ultra")
    assert "gemini-9-ultra" in exc_info.value.message
    assert "gemini-2.5-flash" in exc_info.value.message


@pytest.mark.asyncio
async def test_output_without_json_is_returned_raw(tmp_path):
    strategy = _strategy(tmp_path, """
        print("\\x1b[32mplain answer\\x1b[0m")
    """)
    result = await strategy.ask("q", "")
    assert result.answer == "plain answer"
    assert result.status is None


def test_plain_answer_ending_in_example_object_is_returned_raw():
    strategy = HeadlessStrategy(BridgeConfig(command="gemini"))
    blob = 'Here is an example config:\n{"name": "demo", "port": 8080}\n'
    result = strategy._interpret(blob, 0, False, "")
    assert result.answer == 'Here is an example config:\n{"name": "demo", "port": 8080}'
    assert result.status is None


def test_answer_about_rate_limits_carries_no_status():
    strategy = HeadlessStrategy(BridgeConfig(command="gemini"))
    blob = (
        '{"response": "HTTP 429 Too Many Requests means the client is rate '
        'limited (RESOURCE_EXHAUSTED in gRPC).", "stats": {"models": {}}}\n'
    )
    result = strategy._interpret(blob, 0, False, "")
    assert result.answer.startswith("HTTP 429 Too Many Requests")
    assert result.status is None


@pytest.mark.asyncio
async def test_empty_output_raises_empty_response(tmp_path):
    strategy = _strategy(tmp_path, """
        sys.exit(0)
    """)
    with pytest.raises(EmptyResponseError):
        await strategy.ask("q", "")


@pytest.mark.asyncio
async def test_timeout_with_no_output_is_bounded(tmp_path):
    strategy = _strategy(tmp_path, """
        time.sleep(60)
    """, timeout_seconds=0.5)
    started = time.monotonic()
    with pytest.raises(BridgeTimeoutError):
        await strategy.ask("q", "")
    # timeout + interrupt grace + slack; far below the child's 60s sleep.
    assert time.monotonic() - started < 10.0


@pytest.mark.asyncio
async def test_spawn_failure_raises_process_spawn_error(tmp_path):
    strategy = HeadlessStrategy(BridgeConfig(command=str(tmp_path / "missing-gemini")))
    with pytest.raises(ProcessSpawnError):
        await strategy.ask("q", "")


@pytest.mark.asyncio
async def test_environment_overrides_and_extra_env(tmp_path):
    strategy = _strategy(tmp_path, """
        print(json.dumps({"response": "|".join([
            os.environ["HOME"],
            os.environ["GEMINI_CONFIG_DIR"],
            os.environ["XDG_CONFIG_HOME"],
            os.environ.get("GEMINI_API_KEY", "-"),
        ])}))
    """)
    result = await strategy.ask("q", "", extra_env={"GEMINI_API_KEY": "per-call"})
    home, config_dir, xdg, key = result.answer.split("|")
    assert home == str(tmp_path)
    assert config_dir == str(tmp_path / ".gemini")
    assert xdg == str(tmp_path)
    assert key == "per-call"
    assert os.environ.get("GEMINI_API_KEY") != "per-call"


@pytest.mark.asyncio
async def test_concurrent_asks_never_interleave(tmp_path):
    marker = tmp_path / "in-flight"
    strategy = _strategy(tmp_path, f"""
        marker = {str(marker)!r}
        overlap = os.path.exists(marker)
        open(marker, "w").close()
        try:
            sys.stdout.write("thinking about " + PROMPT + "\\n")
            sys.stdout.flush()
            time.sleep(0.2)
            answer = PROMPT + (" OVERLAP" if overlap else "")
            print(json.dumps({{"response": answer}}))
        finally:
            os.remove(marker)
    """)
    questions = [f"question-{i}" for i in range(4)]
    results = await asyncio.gather(*(strategy.ask(q, "") for q in questions))

    for question, result in zip(questions, results):
        assert result.answer == question
        for other in questions:
            if other != question:
                assert other not in result.answer
