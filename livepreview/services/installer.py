"""Dependency installer - runs the project's package manager before launch."""

import asyncio
import logging
import os
import shutil
from pathlib import Path

from livepreview.core.exceptions import InstallError
from livepreview.utils.process import process_group_of, read_log_tail, terminate_process

logger = logging.getLogger(__name__)

INSTALL_COMMANDS: dict[str, tuple[str, ...]] = {
    "npm": ("npm", "install", "--silent", "--no-audit", "--no-fund"),
    "pnpm": ("pnpm", "install"),
    "yarn": ("yarn", "install"),
    "bun": ("bun", "install"),
}


def install_command(package_manager: str, npm_command: str = "npm") -> list[str]:
    """Install argv for a package manager, falling back to npm when it isn't on PATH."""
    argv = list(INSTALL_COMMANDS.get(package_manager, INSTALL_COMMANDS["npm"]))
    if argv[0] != "npm" and shutil.which(argv[0]) is None:
        logger.info("%s not found on PATH, installing with npm", argv[0])
        argv = list(INSTALL_COMMANDS["npm"])
    if argv[0] == "npm":
        argv[0] = npm_command
    return argv


async def install_dependencies(
    project_root: Path,
    package_manager: str = "npm",
    *,
    timeout: float = 240.0,
    log_path: Path,
    npm_command: str = "npm",
    kill_grace: float = 5.0,
) -> None:
    """Install dependencies in ``project_root``.

    Skipped when there is no ``package.json``.

    Raises:
        InstallError: On a missing executable, non-zero exit or timeout.
    """
    if not (project_root / "package.json").is_file():
        logger.debug("No package.json in %s, skipping install", project_root)
        return

    argv = install_command(package_manager, npm_command)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Installing dependencies in %s: %s", project_root, " ".join(argv))

    log_fh = open(log_path, "wb")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(project_root),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=log_fh,
            stderr=asyncio.subprocess.STDOUT,
            env={**os.environ, "CI": "true"},
            start_new_session=True,
        )
    except OSError as e:
        raise InstallError(f"Failed to run {argv[0]}: {e}") from e
    finally:
        log_fh.close()

    pgid = process_group_of(process.pid)
    try:
        returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        await terminate_process(process.pid, pgid=pgid, process=process, grace=kill_grace)
        raise InstallError(
            f"Dependency install timed out after {timeout:.0f}s",
            output_tail=read_log_tail(log_path),
        )
    except BaseException:
        await terminate_process(process.pid, pgid=pgid, process=process, grace=kill_grace)
        raise

    if returncode != 0:
        raise InstallError(
            f"{argv[0]} install exited with code {returncode}",
            output_tail=read_log_tail(log_path),
        )
    logger.info("Dependencies installed in %s", project_root)
