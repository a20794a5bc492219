"""Declarative launch strategies, keyed by framework class.

Each framework maps to an ordered list of ``LaunchStrategy``; the launcher
walks the list (cycling) with a fresh port per attempt. Adding a framework
or a fallback is a table edit, never a control-flow change.

Templates may reference ``{npm}``, ``{port}``, ``{host}`` and ``{base_path}``.
"""

from dataclasses import dataclass, field
from typing import Mapping

from livepreview.core.constants import Framework


@dataclass(frozen=True)
class LaunchStrategy:
    """One candidate command/flag/environment combination."""

    name: str
    command: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    # Extra args that make the dev server serve under a path prefix
    base_path_args: tuple[str, ...] = ()

    @property
    def supports_base_path(self) -> bool:
        return bool(self.base_path_args)

    @property
    def encodes_port_in_args(self) -> bool:
        return any("{port}" in part for part in self.command)

    def render(
        self,
        *,
        port: int,
        host: str = "127.0.0.1",
        npm: str = "npm",
        base_path: str | None = None,
    ) -> tuple[list[str], dict[str, str]]:
        """Instantiate the templates for one attempt.

        Returns:
            (argv, env_overrides)
        """
        values = {"port": str(port), "host": host, "npm": npm, "base_path": base_path or "/"}
        argv = [part.format(**values) for part in self.command]
        if base_path and self.base_path_args:
            argv.extend(part.format(**values) for part in self.base_path_args)
        env = {key: value.format(**values) for key, value in self.env.items()}
        return argv, env


_PORT_ENV = {"PORT": "{port}"}

STRATEGY_TABLE: dict[str, tuple[LaunchStrategy, ...]] = {
    Framework.VITE.value: (
        # Vite ignores PORT, so the flag plus --strictPort is what pins it
        LaunchStrategy(
            name="vite-strict-port",
            command=("{npm}", "run", "dev", "--", "--port", "{port}", "--host", "{host}", "--strictPort"),
            env=_PORT_ENV,
            base_path_args=("--base", "{base_path}"),
        ),
        LaunchStrategy(
            name="vite-env-port",
            command=("{npm}", "run", "dev"),
            env=_PORT_ENV,
        ),
    ),
    Framework.NEXTJS.value: (
        LaunchStrategy(
            name="next-port-flag",
            command=("{npm}", "run", "dev", "--", "--port", "{port}"),
            env=_PORT_ENV,
        ),
        # Next honours PORT even when the dev script rejects extra flags
        LaunchStrategy(
            name="next-env-port",
            command=("{npm}", "run", "dev"),
            env=_PORT_ENV,
        ),
    ),
    Framework.CRA.value: (
        LaunchStrategy(
            name="cra-env-port",
            command=("{npm}", "start"),
            env={"PORT": "{port}", "HOST": "{host}", "BROWSER": "none", "CI": "true"},
        ),
    ),
    Framework.NUXT.value: (
        LaunchStrategy(
            name="nuxt-port-flag",
            command=("{npm}", "run", "dev", "--", "--port", "{port}", "--host", "{host}"),
            env=_PORT_ENV,
        ),
        LaunchStrategy(
            name="nuxt-env-port",
            command=("{npm}", "run", "dev"),
            env={"PORT": "{port}", "NUXT_PORT": "{port}"},
        ),
    ),
    Framework.ASTRO.value: (
        LaunchStrategy(
            name="astro-port-flag",
            command=("{npm}", "run", "dev", "--", "--port", "{port}", "--host", "{host}"),
            env=_PORT_ENV,
        ),
    ),
    Framework.EXPRESS.value: (
        LaunchStrategy(
            name="express-start",
            command=("{npm}", "start"),
            env=_PORT_ENV,
        ),
        LaunchStrategy(
            name="express-dev",
            command=("{npm}", "run", "dev"),
            env=_PORT_ENV,
        ),
    ),
    Framework.UNKNOWN.value: (
        LaunchStrategy(
            name="generic-port-flag",
            command=("{npm}", "run", "dev", "--", "--port", "{port}"),
            env=_PORT_ENV,
        ),
        LaunchStrategy(
            name="generic-start",
            command=("{npm}", "start"),
            env=_PORT_ENV,
        ),
    ),
}


def strategies_for(
    framework: str | None,
    table: Mapping[str, tuple[LaunchStrategy, ...]] = STRATEGY_TABLE,
) -> tuple[LaunchStrategy, ...]:
    """Ordered strategies for a framework tag, falling back to ``unknown``."""
    strategies = table.get(framework or Framework.UNKNOWN.value)
    if not strategies:
        strategies = table[Framework.UNKNOWN.value]
    return strategies


def pick_strategy(strategies: tuple[LaunchStrategy, ...], attempt: int) -> LaunchStrategy:
    """Strategy for a 0-based attempt, cycling back to the first when exhausted."""
    return strategies[attempt % len(strategies)]
