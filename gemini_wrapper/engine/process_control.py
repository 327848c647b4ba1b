"""Graceful stop for gemini subprocesses.

Both strategies start the CLI in its own session (process group) so the
whole tree, including node child processes, can be signalled at once.
Stopping escalates SIGINT (Ctrl+C semantics) -> SIGTERM -> SIGKILL with a
bounded grace period between steps.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal

logger = logging.getLogger(__name__)

DEFAULT_INTERRUPT_GRACE_SECONDS = 0.5
DEFAULT_TERMINATE_GRACE_SECONDS = 2.0


def signal_process_group(
    proc: asyncio.subprocess.Process,
    sig: signal.Signals,
) -> bool:
    """Send a signal to the process group led by proc."""
    if proc.returncode is not None:
        return False
    try:
        os.killpg(proc.pid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Group already reaped and pid reused; fall back to the child only.
        try:
            proc.send_signal(sig)
            return True
        except ProcessLookupError:
            return False


async def _wait_exited(proc: asyncio.subprocess.Process, grace: float) -> bool:
    try:
        await asyncio.wait_for(proc.wait(), timeout=max(0.0, grace))
        return True
    except asyncio.TimeoutError:
        return False


async def stop_process(
    proc: asyncio.subprocess.Process,
    *,
    interrupt_grace: float = DEFAULT_INTERRUPT_GRACE_SECONDS,
    terminate_grace: float = DEFAULT_TERMINATE_GRACE_SECONDS,
    interrupt: bool = True,
) -> int | None:
    """Stop proc, escalating until it exits. Returns the exit code.

    With interrupt=False the SIGINT step is skipped (the caller already
    sent Ctrl+C in-band, e.g. through a pty).
    """
    if proc.returncode is not None:
        return proc.returncode

    if interrupt:
        signal_process_group(proc, signal.SIGINT)
    if await _wait_exited(proc, interrupt_grace):
        return proc.returncode

    sent = signal_process_group(proc, signal.SIGTERM)
    logger.warning(
        "gemini subprocess still running after interrupt; sent SIGTERM pid=%s sent=%s",
        proc.pid, sent,
    )
    if await _wait_exited(proc, terminate_grace):
        return proc.returncode

    sent = signal_process_group(proc, signal.SIGKILL)
    logger.error(
        "gemini subprocess still running after SIGTERM; sent SIGKILL pid=%s sent=%s",
        proc.pid, sent,
    )
    if not sent:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await _wait_exited(proc, terminate_grace)
    return proc.returncode
