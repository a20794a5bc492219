"""Dev Server Launcher - start a project's own dev server and confirm it serves.

Each attempt pairs the next strategy for the framework with a freshly
allocated port, spawns the child in its own process group with output
captured to a per-attempt log, and races the health probe against the
child's exit. A requested port is only a hint: when the dev server logs
that it bound somewhere else, the probe and the returned port follow it.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Mapping

from livepreview.core.exceptions import LaunchTimeout, ProcessSpawnError
from livepreview.core.health_prober import HealthProber
from livepreview.core.port_allocator import PortAllocator
from livepreview.core.strategies import (
    STRATEGY_TABLE,
    LaunchStrategy,
    pick_strategy,
    strategies_for,
)
from livepreview.core.types import LaunchResult
from livepreview.utils.process import process_group_of, read_log_tail, terminate_process

logger = logging.getLogger(__name__)

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
# "Local: http://localhost:5174/", "ready on 0.0.0.0:3001", "http://127.0.0.1:4321"
_ANNOUNCED_PORT = re.compile(r"(?:localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1?\]):(\d{2,5})\b")
_ANNOUNCE_WORDS = re.compile(r"\b(local|ready|listening|started|running)\b", re.IGNORECASE)


def parse_announced_port(log_text: str) -> int | None:
    """Return the last port a dev server printed as its listening address.

    Lines that read like a listening announcement ("Local:", "ready",
    "listening", "started") win over incidental URLs such as proxy targets.
    """
    lines = _ANSI_ESCAPE.sub("", log_text).splitlines()
    announcing = [line for line in lines if _ANNOUNCE_WORDS.search(line)]
    for candidates in (announcing, lines):
        for line in reversed(candidates):
            for raw in reversed(_ANNOUNCED_PORT.findall(line)):
                port = int(raw)
                if 0 < port < 65536:
                    return port
    return None


class DevServerLauncher:
    """Tries launch strategies until one yields a healthy dev server."""

    def __init__(
        self,
        allocator: PortAllocator,
        prober: HealthProber,
        *,
        log_dir: Path,
        port_range: tuple[int, int] = (5100, 5199),
        health_budget: float = 20.0,
        poll_interval: float = 0.6,
        kill_grace: float = 5.0,
        npm_command: str = "npm",
        bind_host: str = "127.0.0.1",
        strategy_table: Mapping[str, tuple[LaunchStrategy, ...]] = STRATEGY_TABLE,
    ) -> None:
        self.allocator = allocator
        self.prober = prober
        self.log_dir = log_dir
        self.port_range = port_range
        self.health_budget = health_budget
        self.poll_interval = poll_interval
        self.kill_grace = kill_grace
        self.npm_command = npm_command
        self.bind_host = bind_host
        self.strategy_table = strategy_table

    async def launch(
        self,
        project_root: Path,
        framework: str | None,
        max_attempts: int,
        *,
        label: str = "launch",
        base_path: str | None = None,
    ) -> LaunchResult:
        """Start a dev server for ``project_root``.

        Args:
            project_root: Working directory of the child process.
            framework: Framework tag selecting the strategy list.
            max_attempts: Total spawn attempts across ports and strategies.
            label: Prefix of the per-attempt log files.
            base_path: Public base path to pass to strategies that support it.

        Raises:
            PortExhausted: If the port range is used up.
            ProcessSpawnError: If no attempt could even start its executable.
            LaunchTimeout: If no attempt became healthy.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        strategies = strategies_for(framework, self.strategy_table)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        last_log: Path | None = None
        spawn_errors: list[str] = []

        for attempt in range(max_attempts):
            strategy = pick_strategy(strategies, attempt)
            port = self.allocator.acquire(*self.port_range)
            attempt_base = base_path if strategy.supports_base_path else None
            argv, env_overrides = strategy.render(
                port=port,
                host=self.bind_host,
                npm=self.npm_command,
                base_path=attempt_base,
            )
            log_path = self.log_dir / f"{label}-{attempt + 1}.log"

            logger.info(
                "Launch attempt %d/%d for %s: strategy=%s port=%d cmd=%s",
                attempt + 1, max_attempts, project_root, strategy.name, port, " ".join(argv),
            )

            try:
                process = await self._spawn(argv, project_root, env_overrides, log_path)
            except OSError as e:
                self.allocator.release(port)
                spawn_errors.append(f"{strategy.name}: {e}")
                logger.warning("Strategy %s could not spawn: %s", strategy.name, e)
                continue
            except BaseException:
                self.allocator.release(port)
                raise

            last_log = log_path
            pgid = process_group_of(process.pid)

            try:
                ready_port = await self._wait_until_ready(process, port, log_path, attempt_base)
            except BaseException:
                # Cancelled mid-probe: nothing of this attempt may survive
                await terminate_process(process.pid, pgid=pgid, process=process, grace=self.kill_grace)
                self.allocator.release(port)
                raise

            if ready_port is not None:
                if ready_port != port:
                    logger.info(
                        "Dev server self-selected port %d instead of %d", ready_port, port,
                    )
                    self.allocator.release(port)
                    self.allocator.claim(ready_port)
                logger.info(
                    "Dev server healthy (pid=%d, port=%d, strategy=%s)",
                    process.pid, ready_port, strategy.name,
                )
                return LaunchResult(
                    process=process,
                    port=ready_port,
                    strategy=strategy.name,
                    log_path=log_path,
                    attempts=attempt + 1,
                    pgid=pgid,
                    base_path=attempt_base,
                )

            logger.warning(
                "Strategy %s on port %d did not become healthy (exit=%s)",
                strategy.name, port, process.returncode,
            )
            await terminate_process(process.pid, pgid=pgid, process=process, grace=self.kill_grace)
            self.allocator.release(port)

        if len(spawn_errors) == max_attempts:
            raise ProcessSpawnError(
                "Failed to start dev server: " + "; ".join(spawn_errors)
            )

        raise LaunchTimeout(
            f"No strategy became healthy after {max_attempts} attempt(s)",
            log_path=str(last_log) if last_log else None,
            log_tail=read_log_tail(last_log),
        )

    async def _spawn(
        self,
        argv: list[str],
        cwd: Path,
        env_overrides: dict[str, str],
        log_path: Path,
    ) -> asyncio.subprocess.Process:
        env = {**os.environ, **env_overrides}
        log_fh = open(log_path, "wb")
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log_fh,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
                start_new_session=True,
            )
        finally:
            # The child holds its own copy of the descriptor
            log_fh.close()

    async def _wait_until_ready(
        self,
        process: asyncio.subprocess.Process,
        requested_port: int,
        log_path: Path,
        base_path: str | None,
    ) -> int | None:
        """Race the health probe against the child's exit.

        Returns:
            The port the dev server answers on, or None if it never did.
        """
        current = {"port": requested_port}
        suffix = base_path.rstrip("/") if base_path else ""

        def target() -> str:
            announced = self._announced_port(log_path)
            if announced is not None and announced != current["port"]:
                logger.debug("Re-targeting probe from %d to %d", current["port"], announced)
                current["port"] = announced
            return f"http://127.0.0.1:{current['port']}{suffix}"

        probe_task = asyncio.create_task(
            self.prober.probe(target, self.health_budget, self.poll_interval)
        )
        exit_task = asyncio.create_task(process.wait())
        try:
            done, _ = await asyncio.wait(
                {probe_task, exit_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (probe_task, exit_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(probe_task, exit_task, return_exceptions=True)

        if probe_task in done and not probe_task.cancelled() and probe_task.result():
            return current["port"]
        return None

    @staticmethod
    def _announced_port(log_path: Path) -> int | None:
        try:
            text = log_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None
        return parse_announced_port(text)
