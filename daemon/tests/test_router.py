"""Tests for routing messages to project handlers."""

import logging
from unittest.mock import AsyncMock

import pytest

from artbot_daemon.channel import ChannelRoute
from artbot_daemon.config import ChannelConfig, ChannelHandlers
from artbot_daemon.handler import ProjectHandler
from artbot_daemon.message import ChatMessage
from artbot_daemon.registry import HandlerRegistry, RegistryStore
from artbot_daemon.router import RegistryDriftError, Router, UnknownChannelError


def _make_message(content: str = "#42", channel_id: str = "100") -> ChatMessage:
    return ChatMessage(id="test-1", channel_id=channel_id, content=content, ts=1700000000)


def _handler(project_id: int, name: str, reply=None) -> ProjectHandler:
    return ProjectHandler(
        project_id=project_id, contract_id="0xcore", invocations=1000,
        name=name, active=True, reply=reply,
    )


@pytest.fixture
def routes() -> dict[str, ChannelRoute]:
    return {
        "100": ChannelRoute.from_config(ChannelConfig(
            channel_id="100",
            name="squiggles",
            handlers=ChannelHandlers(
                default="0",
                string_triggers={"1": ["sale"]},
                token_id_triggers=[{"2": (100, 200)}],
            ),
        )),
        "200": ChannelRoute.from_config(ChannelConfig(channel_id="200", name="general")),
    }


@pytest.fixture
def reply() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def store(reply) -> RegistryStore:
    store = RegistryStore()
    store.publish(HandlerRegistry(
        handlers={
            "0": _handler(0, "Default", reply),
            "1": _handler(1, "Sale", reply),
            "2": _handler(2, "Ranged", reply),
        },
        channel_of_handler={"0": "100", "1": "100", "2": "100"},
    ))
    return store


class TestRoute:
    async def test_dispatch_to_default(self, routes, store, reply):
        router = Router(routes, store)
        msg = _make_message("#42")
        assert await router.route("100", msg) == "0"
        reply.assert_awaited_once()
        assert reply.call_args.args[0] is msg
        assert reply.call_args.args[1].startswith("Default #42")

    async def test_dispatch_to_string_trigger(self, routes, store, reply):
        router = Router(routes, store)
        assert await router.route("100", _make_message("big sale today")) == "1"

    async def test_content_lowercased(self, routes, store):
        router = Router(routes, store)
        assert await router.route("100", _make_message("BIG SALE")) == "1"

    async def test_token_trigger_wins(self, routes, store):
        router = Router(routes, store)
        assert await router.route("100", _make_message("sale #150")) == "2"

    async def test_channel_without_handler_does_not_raise(self, routes, store, reply, caplog):
        router = Router(routes, store)
        with caplog.at_level(logging.ERROR, logger="artbot_daemon.router"):
            assert await router.route("200", _make_message("#1", channel_id="200")) is None
        reply.assert_not_awaited()
        assert "does not have a project handler" in caplog.text

    async def test_unknown_channel_raises(self, routes, store):
        router = Router(routes, store)
        with pytest.raises(UnknownChannelError):
            await router.route("999", _make_message())

    async def test_unknown_channel_is_key_error(self, routes, store):
        with pytest.raises(KeyError):
            Router(routes, store).resolve("999", "#1")

    async def test_missing_handler_is_drift(self, routes, reply):
        store = RegistryStore()
        store.publish(HandlerRegistry(handlers={"0": _handler(0, "Default", reply)}))
        router = Router(routes, store)
        with pytest.raises(RegistryDriftError, match="'1'"):
            await router.route("100", _make_message("sale"))
        reply.assert_not_awaited()

    async def test_empty_registry_is_drift(self, routes):
        router = Router(routes, RegistryStore())
        with pytest.raises(RegistryDriftError):
            await router.route("100", _make_message())

    async def test_reads_latest_snapshot(self, routes, store, reply):
        router = Router(routes, store)
        newer = AsyncMock()
        store.publish(HandlerRegistry(handlers={"0": _handler(0, "Newer", newer)}))
        await router.route("100", _make_message("#1"))
        newer.assert_awaited_once()
        reply.assert_not_awaited()


class TestResolve:
    def test_resolve_without_dispatch(self, routes, store, reply):
        router = Router(routes, store)
        assert router.resolve("100", "Sale #150") == "2"
        assert router.resolve("200", "anything") is None
        reply.assert_not_awaited()
