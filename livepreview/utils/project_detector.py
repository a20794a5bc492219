"""Framework detection for live preview launch strategies."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from livepreview.core.constants import Framework

logger = logging.getLogger(__name__)

CONFIG_SUFFIXES = (".js", ".mjs", ".cjs", ".ts", ".mts")

# Lock file -> package manager, first hit wins
LOCK_FILES: tuple[tuple[str, str], ...] = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
)

ENV_FILES = (".env", ".env.local", ".env.development", ".env.production", ".env.example")


@dataclass
class DetectionResult:
    framework: str = Framework.UNKNOWN.value
    package_manager: str = "npm"
    dependencies: dict[str, str] = field(default_factory=dict)
    has_package_json: bool = False
    has_env_files: bool = False


def _has_config(root: Path, stem: str) -> bool:
    return any((root / f"{stem}{suffix}").is_file() for suffix in CONFIG_SUFFIXES)


def _read_dependencies(package_json: Path) -> dict[str, str]:
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        logger.warning("Failed to parse %s", package_json)
        return {}
    if not isinstance(data, dict):
        return {}
    dependencies: dict[str, str] = {}
    for key in ("dependencies", "devDependencies"):
        section = data.get(key) or {}
        if not isinstance(section, dict):
            logger.warning("Ignoring non-object %r in %s", key, package_json)
            continue
        dependencies.update(section)
    return dependencies


def detect_framework(root: Path, dependencies: dict[str, str]) -> str:
    """Pick the framework tag from dependencies and config files.

    Next.js is checked before Vite since Next projects may carry Vite
    tooling (e.g. vitest) in devDependencies.
    """
    if "next" in dependencies or _has_config(root, "next.config"):
        return Framework.NEXTJS.value
    if "vite" in dependencies or _has_config(root, "vite.config"):
        return Framework.VITE.value
    if "react-scripts" in dependencies:
        return Framework.CRA.value
    if "nuxt" in dependencies or _has_config(root, "nuxt.config"):
        return Framework.NUXT.value
    if "astro" in dependencies or _has_config(root, "astro.config"):
        return Framework.ASTRO.value
    if "express" in dependencies:
        return Framework.EXPRESS.value
    return Framework.UNKNOWN.value


def detect_project(project_root: str | Path) -> DetectionResult:
    """Detect framework, package manager and dependency manifest of a project.

    Returns:
        DetectionResult; ``framework`` is ``unknown`` when nothing matches.
    """
    root = Path(project_root)
    package_json = root / "package.json"
    has_package_json = package_json.is_file()
    dependencies = _read_dependencies(package_json) if has_package_json else {}

    package_manager = "npm"
    for lock_file, manager in LOCK_FILES:
        if (root / lock_file).is_file():
            package_manager = manager
            break

    return DetectionResult(
        framework=detect_framework(root, dependencies),
        package_manager=package_manager,
        dependencies=dependencies,
        has_package_json=has_package_json,
        has_env_files=any((root / name).is_file() for name in ENV_FILES),
    )
