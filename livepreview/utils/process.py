"""Process helpers shared by the launcher and the reaper."""

import asyncio
import logging
import os
import signal
import time
from pathlib import Path

from livepreview.core.constants import MAX_LOG_TAIL_LINES

logger = logging.getLogger(__name__)


def pid_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
        return True
    except (OSError, ProcessLookupError):
        return False


def group_exists(pgid: int) -> bool:
    if not hasattr(os, "killpg"):
        return False
    try:
        os.killpg(pgid, 0)
        return True
    except (OSError, ProcessLookupError):
        return False


def process_group_of(pid: int) -> int | None:
    """Process group id of ``pid``, or None where groups don't exist.

    Never returns our own group, so signalling it can't take the service down.
    """
    if not hasattr(os, "getpgid"):
        return None
    try:
        pgid = os.getpgid(pid)
    except (OSError, ProcessLookupError):
        return None
    if pgid == os.getpgrp():
        return None
    return pgid


def _send(pid: int, pgid: int | None, sig: int) -> bool:
    try:
        if pgid is not None and hasattr(os, "killpg") and pgid != os.getpgrp():
            os.killpg(pgid, sig)
        else:
            os.kill(pid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError as e:
        logger.warning("Not permitted to signal pid=%d pgid=%s: %s", pid, pgid, e)
        return False


async def terminate_process(
    pid: int,
    *,
    pgid: int | None = None,
    process: asyncio.subprocess.Process | None = None,
    grace: float = 5.0,
) -> bool:
    """SIGTERM a dev server (and its whole group), escalating to SIGKILL.

    Dev servers routinely fork watchers and bundlers, so when the child
    was spawned as a group leader the entire group is signalled. Never
    raises for processes that are already gone.

    Returns:
        True if a signal was delivered, False if nothing was running.
    """
    sigkill = getattr(signal, "SIGKILL", signal.SIGTERM)
    delivered = _send(pid, pgid, signal.SIGTERM)

    if process is not None:
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("pid=%d ignored SIGTERM for %.1fs, killing", pid, grace)
            _send(pid, pgid, sigkill)
            try:
                await asyncio.wait_for(process.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.error("pid=%d survived SIGKILL", pid)
    else:
        deadline = time.monotonic() + grace
        while pid_exists(pid) and time.monotonic() < deadline:
            await asyncio.sleep(0.1)
        if pid_exists(pid):
            _send(pid, pgid, sigkill)

    # The leader may be gone while forked helpers in its group linger
    if pgid is not None and pgid != os.getpgrp() and group_exists(pgid):
        _send(pid, pgid, sigkill)

    return delivered


def read_log_tail(log_path: Path | None, max_lines: int = MAX_LOG_TAIL_LINES) -> str | None:
    """Read the last N lines of a dev server log."""
    if log_path is None or not log_path.is_file():
        return None
    try:
        text = log_path.read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return None
    if not text:
        return None
    return "\n".join(text.splitlines()[-max_lines:])
