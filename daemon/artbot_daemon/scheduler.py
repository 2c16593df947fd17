"""Periodic handler registry refresh.

Runs one refresh at startup and then one every ``interval_minutes``. Refresh
cycles never overlap: a tick that arrives while a cycle is still running is
skipped. A failed cycle leaves the previous snapshot in place.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping

from artbot_daemon.channel import ChannelRoute
from artbot_daemon.registry import RegistryBuilder, RegistryRefreshError, RegistryStore

log = logging.getLogger(__name__)


class RefreshScheduler:
    """Drives registry rebuilds and publishes the results.

    Args:
        routes: Channel routes whose handler ids are refreshed.
        builder: Builds each new snapshot.
        store: Where snapshots are published; shared with the Router.
        interval_minutes: Time between refresh cycles (default 60).
    """

    def __init__(
        self,
        routes: Mapping[str, ChannelRoute],
        builder: RegistryBuilder,
        store: RegistryStore,
        interval_minutes: float = 60.0,
    ) -> None:
        self._routes = routes
        self._builder = builder
        self._store = store
        self._interval = interval_minutes * 60.0
        self._refreshing = False
        self._task: asyncio.Task | None = None

    @property
    def refreshing(self) -> bool:
        """True while a refresh cycle is in progress."""
        return self._refreshing

    @property
    def interval(self) -> float:
        """Refresh interval in seconds."""
        return self._interval

    async def refresh(self) -> bool:
        """Run one refresh cycle.

        Returns True if a new snapshot was published. Failures are logged and
        reported as False; the previous snapshot stays current.
        """
        if self._refreshing:
            log.warning("registry refresh already in progress, skipping this cycle")
            return False

        self._refreshing = True
        started = time.monotonic()
        try:
            registry = await self._builder.build(self._routes, previous=self._store.current)
        except RegistryRefreshError as exc:
            log.error("registry refresh failed, keeping previous snapshot: %s", exc)
            return False
        except Exception:
            log.exception("registry refresh failed, keeping previous snapshot")
            return False
        finally:
            self._refreshing = False

        self._store.publish(registry)
        log.info(
            "registry refreshed: %d handlers in %.1fs",
            len(registry),
            time.monotonic() - started,
        )
        return True

    async def initialize(self) -> bool:
        """Run the startup refresh and wait for it to finish."""
        log.info("building initial handler registry")
        ok = await self.refresh()
        if not ok:
            log.error("initial handler registry build failed; routes will fail until a refresh succeeds")
        return ok

    async def _refresh_loop(self) -> None:
        """Background loop: refresh at the configured interval."""
        while True:
            await asyncio.sleep(self._interval)
            await self.refresh()

    def start(self) -> None:
        """Start the periodic refresh task."""
        self._task = asyncio.create_task(self._refresh_loop())
        log.info("refresh scheduler started (interval=%.0fs)", self._interval)

    async def stop(self) -> None:
        """Stop the periodic refresh task."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        log.info("refresh scheduler stopped")
