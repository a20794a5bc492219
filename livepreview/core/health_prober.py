"""Health Prober - bounded, multi-path liveness checks against a backend."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Sequence

import httpx

from livepreview.core.constants import HEALTH_CANDIDATE_PATHS

logger = logging.getLogger(__name__)

# A probe target is either a fixed base URL or a callable re-evaluated every
# tick, so the launcher can re-target once a dev server announces its port.
ProbeTarget = str | Callable[[], str]


class HealthProber:
    """Polls candidate paths on a base URL until one answers 2xx.

    Each request is capped at ``request_timeout`` seconds, so a single
    probe never holds the event loop hostage and probes for different
    sessions run side by side.
    """

    def __init__(
        self,
        request_timeout: float = 2.0,
        candidate_paths: Sequence[str] = HEALTH_CANDIDATE_PATHS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.request_timeout = request_timeout
        self.candidate_paths = tuple(candidate_paths)
        self._client = client

    async def probe(
        self,
        target: ProbeTarget,
        total_budget: float,
        poll_interval: float,
    ) -> bool:
        """Return True as soon as any candidate path answers successfully.

        Args:
            target: Base URL (e.g. ``http://127.0.0.1:5100``) or a callable
                returning one.
            total_budget: Seconds before giving up.
            poll_interval: Seconds to sleep between unsuccessful ticks.
        """
        deadline = time.monotonic() + total_budget

        async with self._session() as client:
            while True:
                base_url = target() if callable(target) else target
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if await self._tick(client, base_url, deadline):
                    logger.debug("Probe succeeded for %s", base_url)
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(poll_interval, remaining))

        logger.debug("Probe budget of %.1fs exhausted", total_budget)
        return False

    async def check_once(self, base_url: str) -> bool:
        """One pass over the candidate paths, no retries."""
        async with self._session() as client:
            return await self._tick(client, base_url, None)

    async def _tick(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        deadline: float | None,
    ) -> bool:
        base = base_url.rstrip("/")
        for path in self.candidate_paths:
            url = f"{base}{path}"
            for method in ("HEAD", "GET"):
                timeout = self.request_timeout
                if deadline is not None:
                    timeout = min(timeout, deadline - time.monotonic())
                    if timeout <= 0:
                        return False
                if await self._ping(client, method, url, timeout):
                    return True
        return False

    @staticmethod
    async def _ping(
        client: httpx.AsyncClient,
        method: str,
        url: str,
        timeout: float,
    ) -> bool:
        """One request, decided on its status line; the body is never read.

        ``timeout`` caps the whole exchange rather than each httpx phase,
        so a backend trickling its response cannot stretch one check.
        """
        try:
            return await asyncio.wait_for(
                HealthProber._status_ok(client, method, url, timeout),
                timeout=timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError):
            return False

    @staticmethod
    async def _status_ok(
        client: httpx.AsyncClient,
        method: str,
        url: str,
        timeout: float,
    ) -> bool:
        request = client.build_request(method, url, timeout=timeout)
        response = await client.send(request, stream=True)
        try:
            return response.is_success
        finally:
            await response.aclose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected client, or a throwaway one closed on exit."""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(follow_redirects=True, trust_env=False) as client:
            yield client
