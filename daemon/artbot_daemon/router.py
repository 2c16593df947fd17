"""Message routing to project handlers.

The router resolves each message's project handler from its channel's
triggers, then hands the message to that handler in the current registry
snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from artbot_daemon.channel import ChannelRoute
from artbot_daemon.message import ChatMessage
from artbot_daemon.registry import RegistryStore

log = logging.getLogger(__name__)


class UnknownChannelError(KeyError):
    """Raised when routing a message from a channel missing from the config."""


class RegistryDriftError(RuntimeError):
    """Raised when a resolved handler id has no entry in the registry.

    Means the registry and channel config disagree; not recoverable.
    """


class Router:
    """Routes chat messages to project handlers.

    Args:
        routes: Channel id -> ChannelRoute.
        store: Registry snapshot holder; always read at dispatch time so a
            refresh that completes between messages takes effect immediately.
    """

    def __init__(self, routes: Mapping[str, ChannelRoute], store: RegistryStore) -> None:
        self._routes = routes
        self._store = store

    def resolve(self, channel_id: str, content: str) -> str | None:
        """Resolve the handler id for a message without dispatching it.

        Raises UnknownChannelError if the channel isn't configured.
        """
        route = self._routes.get(channel_id)
        if route is None:
            raise UnknownChannelError(channel_id)
        return route.resolve_handler(content.lower())

    async def route(self, channel_id: str, message: ChatMessage) -> str | None:
        """Route a message and return the handler id it was dispatched to.

        Returns None (after logging) when the channel has no project handler.
        Raises UnknownChannelError for unconfigured channels and
        RegistryDriftError when the resolved handler isn't registered.
        """
        handler_id = self.resolve(channel_id, message.content)
        if handler_id is None:
            log.error("channel %s does not have a project handler, dropping message %s", channel_id, message.id)
            return None

        registry = self._store.current
        handler = registry.get(handler_id)
        if handler is None:
            raise RegistryDriftError(
                f"handler {handler_id!r} resolved for channel {channel_id} is not in the registry "
                f"(generation {self._store.generation}, {len(registry)} handlers)"
            )

        log.info("routing message %s on channel %s to handler %s", message.id, channel_id, handler_id)
        await handler.handle_message(message)
        return handler_id
