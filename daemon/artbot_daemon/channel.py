"""Per-channel project handler resolution.

Each observed channel may declare a default project handler plus trigger
words and token id ranges that redirect a message to another handler.
Precedence is fixed: string triggers are evaluated first, then token id
triggers, each in declared order, and the last match evaluated wins. There is
no "most specific" rule, so config authors must order overlapping triggers
deliberately.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from artbot_daemon.config import ChannelConfig

_TOKEN_RE = re.compile(r"\d+", re.ASCII)


@dataclass(frozen=True, slots=True)
class ChannelRoute:
    """Routing configuration for one channel."""

    channel_id: str
    name: str
    default_handler: str | None = None
    string_triggers: tuple[tuple[str, tuple[str, ...]], ...] = ()
    token_id_triggers: tuple[tuple[tuple[str, tuple[int, int]], ...], ...] = ()

    @property
    def has_handler(self) -> bool:
        return self.default_handler is not None

    @classmethod
    def from_config(cls, config: ChannelConfig) -> ChannelRoute:
        if config.handlers is None:
            return cls(channel_id=config.channel_id, name=config.name)
        h = config.handlers
        return cls(
            channel_id=config.channel_id,
            name=config.name,
            default_handler=h.default,
            string_triggers=tuple(
                (handler_id, tuple(t.lower() for t in triggers))
                for handler_id, triggers in h.string_triggers.items()
            ),
            token_id_triggers=tuple(
                tuple(mapping.items()) for mapping in h.token_id_triggers
            ),
        )

    def handler_ids(self) -> list[str]:
        """Every handler id this channel references, in declaration order."""
        if not self.has_handler:
            return []
        ids = [self.default_handler]
        ids.extend(handler_id for handler_id, _ in self.string_triggers)
        for mapping in self.token_id_triggers:
            ids.extend(handler_id for handler_id, _ in mapping)
        return ids

    def resolve_handler(self, content_lower: str) -> str | None:
        """Return the handler id for a lowercased message, or None if this
        channel has no project handler.

        Falls back to the default handler when no trigger matches.
        """
        if not self.has_handler:
            return None

        handler_id = self.default_handler

        for candidate, triggers in self.string_triggers:
            for trigger in triggers:
                if trigger in content_lower:
                    handler_id = candidate

        if self.token_id_triggers:
            match = _TOKEN_RE.search(content_lower)
            if match:
                token_id = int(match.group())
                for mapping in self.token_id_triggers:
                    for candidate, (low, high) in mapping:
                        if low <= token_id <= high:
                            handler_id = candidate

        return handler_id


def build_channel_routes(channels: Mapping[str, ChannelConfig]) -> dict[str, ChannelRoute]:
    """Build a channel id -> ChannelRoute map, preserving config order."""
    return {channel_id: ChannelRoute.from_config(ch) for channel_id, ch in channels.items()}


def channel_ids_by_name(routes: Mapping[str, ChannelRoute]) -> dict[str, str]:
    """Map channel display name -> channel id."""
    return {route.name: channel_id for channel_id, route in routes.items()}
