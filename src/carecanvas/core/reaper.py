"""Periodic eviction of aged deployments."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TypeAlias
from collections.abc import Awaitable, Callable

from carecanvas.config import (
    DEFAULT_MAX_AGE_SECONDS,
    DEFAULT_REAPER_INITIAL_DELAY_SECONDS,
    DEFAULT_REAPER_INTERVAL_SECONDS,
)
from carecanvas.core.deployment_manager import LocalDeploymentManager

logger = logging.getLogger(__name__)

Sleeper: TypeAlias = Callable[[float], Awaitable[None]]


class ProjectReaper:
    """Background task that sweeps old projects on a fixed schedule."""

    def __init__(
        self,
        manager: LocalDeploymentManager,
        *,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        interval_seconds: float = DEFAULT_REAPER_INTERVAL_SECONDS,
        initial_delay_seconds: float = DEFAULT_REAPER_INITIAL_DELAY_SECONDS,
        sleeper: Sleeper | None = None,
    ) -> None:
        self._manager = manager
        self._max_age_seconds = max_age_seconds
        self._interval_seconds = interval_seconds
        self._initial_delay_seconds = initial_delay_seconds
        self._sleep = sleeper or asyncio.sleep
        self._task: asyncio.Task[None] | None = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="carecanvas-reaper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def sweep_once(self) -> list[str]:
        """Run one sweep, logging instead of raising on failure."""
        self.sweeps += 1
        try:
            removed = await self._manager.sweep(self._max_age_seconds)
        except Exception:
            logger.exception("Error during project cleanup")
            return []
        if removed:
            logger.info("Reaper removed %d project(s): %s", len(removed), ", ".join(removed))
        return removed

    async def _run(self) -> None:
        await self._sleep(self._initial_delay_seconds)
        while True:
            await self.sweep_once()
            await self._sleep(self._interval_seconds)
