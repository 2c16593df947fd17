"""Tests for the periodic registry refresh scheduler."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from artbot_daemon.channel import ChannelRoute
from artbot_daemon.config import ChannelConfig, ChannelHandlers
from artbot_daemon.message import ChatMessage
from artbot_daemon.registry import RegistryBuilder, RegistryStore
from artbot_daemon.router import Router
from artbot_daemon.scheduler import RefreshScheduler
from artbot_daemon.source import ProjectMetadata


@pytest.fixture
def routes() -> dict[str, ChannelRoute]:
    return {
        "100": ChannelRoute.from_config(ChannelConfig(
            channel_id="100",
            name="squiggles",
            handlers=ChannelHandlers(default="0", string_triggers={"1": ["genesis"]}),
        )),
    }


def _scheduler(source, routes, store=None, interval_minutes=60.0, reply=None) -> tuple[RefreshScheduler, RegistryStore]:
    store = store or RegistryStore()
    builder = RegistryBuilder(source, reply=reply)
    return RefreshScheduler(routes, builder, store, interval_minutes=interval_minutes), store


async def _wait_until(predicate, attempts: int = 50) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class TestInitialize:
    async def test_publishes_first_snapshot(self, source, routes):
        scheduler, store = _scheduler(source, routes)
        assert await scheduler.initialize() is True
        assert store.ready
        assert store.generation == 1
        assert set(store.current.handlers) == {"0", "1"}

    async def test_failure_logged_not_raised(self, source, routes, caplog):
        source.fail.add(0)
        scheduler, store = _scheduler(source, routes)
        assert await scheduler.initialize() is False
        assert not store.ready
        assert "initial handler registry build failed" in caplog.text


class TestRefresh:
    async def test_failed_refresh_keeps_previous_snapshot(self, source, routes):
        scheduler, store = _scheduler(source, routes)
        await scheduler.refresh()
        before = store.current

        source.fail.add(1)
        assert await scheduler.refresh() is False
        assert store.current is before
        assert store.generation == 1

    async def test_unexpected_error_keeps_previous_snapshot(self, source, routes):
        scheduler, store = _scheduler(source, routes)
        await scheduler.refresh()
        before = store.current

        scheduler._builder.build = AsyncMock(side_effect=RuntimeError("boom"))
        assert await scheduler.refresh() is False
        assert store.current is before
        assert not scheduler.refreshing

    async def test_successful_refresh_replaces_snapshot(self, source, projects, routes):
        scheduler, store = _scheduler(source, routes)
        await scheduler.refresh()
        first = store.current

        projects[1] = ProjectMetadata(invocations=513, name="Genesis", active=False, contract_id="0xcore")
        assert await scheduler.refresh() is True
        assert store.current is not first
        assert store.current.handlers["1"].invocations == 513
        assert store.generation == 2

    async def test_overlapping_refresh_skipped(self, source, routes):
        scheduler, store = _scheduler(source, routes)
        source.gate = asyncio.Event()

        first = asyncio.create_task(scheduler.refresh())
        await _wait_until(lambda: scheduler.refreshing)
        assert await scheduler.refresh() is False

        source.gate.set()
        assert await first is True
        assert store.generation == 1
        assert not scheduler.refreshing

    async def test_routes_use_old_snapshot_during_refresh(self, source, projects, routes):
        reply = AsyncMock()
        scheduler, store = _scheduler(source, routes, reply=reply)
        await scheduler.refresh()
        router = Router(routes, store)

        projects[0] = ProjectMetadata(invocations=9763, name="Renamed Squiggle", active=False, contract_id="0xcore")
        source.gate = asyncio.Event()
        pending = asyncio.create_task(scheduler.refresh())
        await _wait_until(lambda: scheduler.refreshing)

        msg = ChatMessage(id="m1", channel_id="100", content="#5", ts=1700000000)
        await router.route("100", msg)
        assert reply.call_args.args[1].startswith("Chromie Squiggle #5")

        source.gate.set()
        await pending
        await router.route("100", msg)
        assert reply.call_args.args[1].startswith("Renamed Squiggle #5")


class TestLoop:
    async def test_interval_in_seconds(self, source, routes):
        scheduler, _ = _scheduler(source, routes, interval_minutes=60)
        assert scheduler.interval == 3600.0

    async def test_periodic_refresh(self, source, routes):
        scheduler, store = _scheduler(source, routes, interval_minutes=0.0001)
        scheduler.start()
        try:
            await asyncio.sleep(0.1)
        finally:
            await scheduler.stop()
        assert store.generation >= 1

    async def test_loop_survives_failures(self, source, routes):
        source.fail.add(0)
        scheduler, store = _scheduler(source, routes, interval_minutes=0.0001)
        scheduler.start()
        try:
            await asyncio.sleep(0.05)
            assert not scheduler._task.done()
            source.fail.clear()
            await asyncio.sleep(0.05)
        finally:
            await scheduler.stop()
        assert store.ready

    async def test_stop_without_start(self, source, routes):
        scheduler, _ = _scheduler(source, routes)
        await scheduler.stop()
