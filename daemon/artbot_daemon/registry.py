"""Project handler registry: immutable snapshots and how they are built.

A HandlerRegistry snapshot maps every handler id referenced by the channel
config to a ProjectHandler built from freshly fetched project metadata. A
snapshot is never modified after construction; refreshing builds a whole new
one and publishes it through a RegistryStore, so readers only ever see a
complete snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from artbot_daemon.channel import ChannelRoute
from artbot_daemon.config import ContractDescriptor, NamedMappings
from artbot_daemon.handler import ProjectHandler, ReplyPublisher
from artbot_daemon.handler_key import HandlerKey
from artbot_daemon.source import MetadataError, MetadataSource

log = logging.getLogger(__name__)


class RegistryRefreshError(RuntimeError):
    """Raised when one or more metadata fetches fail during a rebuild.

    ``failures`` maps each failed handler id to its exception.
    """

    def __init__(self, failures: dict[str, Exception]) -> None:
        self.failures = failures
        ids = ", ".join(sorted(failures))
        super().__init__(f"{len(failures)} handler(s) failed to refresh: {ids}")


@dataclass(frozen=True, slots=True)
class HandlerRegistry:
    """One complete snapshot of the project handlers.

    Both maps are copied into read-only views on construction.
    """

    handlers: Mapping[str, ProjectHandler] = field(default_factory=dict)
    channel_of_handler: Mapping[str, str] = field(default_factory=dict)
    built_at: float = field(default=0.0, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "handlers", MappingProxyType(dict(self.handlers)))
        object.__setattr__(self, "channel_of_handler", MappingProxyType(dict(self.channel_of_handler)))

    def get(self, handler_id: str) -> ProjectHandler | None:
        return self.handlers.get(handler_id)

    def __contains__(self, handler_id: object) -> bool:
        return handler_id in self.handlers

    def __len__(self) -> int:
        return len(self.handlers)


class RegistryStore:
    """Holds the current registry snapshot.

    Readers use ``current``; the refresh path calls ``publish``. Publishing is
    a single reference swap.
    """

    def __init__(self, initial: HandlerRegistry | None = None) -> None:
        self._current = initial if initial is not None else HandlerRegistry()
        self._generation = 0

    @property
    def current(self) -> HandlerRegistry:
        return self._current

    @property
    def generation(self) -> int:
        """Number of snapshots published so far."""
        return self._generation

    @property
    def ready(self) -> bool:
        """True once at least one snapshot has been published."""
        return self._generation > 0

    def publish(self, registry: HandlerRegistry) -> None:
        self._current = registry
        self._generation += 1
        log.debug("published registry generation %d (%d handlers)", self._generation, len(registry))


def collect_handler_ids(routes: Mapping[str, ChannelRoute]) -> dict[str, str]:
    """Collect every referenced handler id and the channel that declared it.

    Returns an insertion-ordered map of handler id -> channel id. When several
    channels reference the same handler id, the last channel processed wins.
    """
    channel_of_handler: dict[str, str] = {}
    for channel_id, route in routes.items():
        for handler_id in route.handler_ids():
            channel_of_handler[handler_id] = channel_id
    return channel_of_handler


class RegistryBuilder:
    """Builds HandlerRegistry snapshots by fetching metadata concurrently.

    Args:
        source: Where project metadata comes from.
        handler_config: Named mappings per handler id.
        contracts: Partner contract descriptors by contract name.
        fetch_timeout: Per-fetch timeout in seconds, None for no limit.
        partial_refresh: When False (default) any failed fetch aborts the
            whole build. When True, handlers that failed keep their entry from
            the previous snapshot and the rest are replaced.
        reply: Reply publisher handed to every built handler.
    """

    def __init__(
        self,
        source: MetadataSource,
        *,
        handler_config: Mapping[str, NamedMappings] | None = None,
        contracts: Mapping[str, ContractDescriptor] | None = None,
        fetch_timeout: float | None = 30.0,
        partial_refresh: bool = False,
        reply: ReplyPublisher | None = None,
    ) -> None:
        self._source = source
        self._handler_config = dict(handler_config or {})
        self._contracts = dict(contracts or {})
        self._fetch_timeout = fetch_timeout
        self._partial_refresh = partial_refresh
        self._reply = reply

    def _contract_for(self, handler_id: str, key: HandlerKey) -> ContractDescriptor | None:
        if key.contract_name is None:
            return None
        contract = self._contracts.get(key.contract_name)
        if contract is None:
            log.warning(
                "handler %s names contract %r but no such contract is configured, fetching without it",
                handler_id,
                key.contract_name,
            )
        return contract

    async def build_handler(self, handler_id: str) -> ProjectHandler:
        """Fetch metadata for one handler id and build its ProjectHandler."""
        key = HandlerKey.parse(handler_id)
        contract = self._contract_for(handler_id, key)
        try:
            meta = await asyncio.wait_for(
                self._source.fetch_project(key.project_id, contract),
                timeout=self._fetch_timeout,
            )
        except asyncio.TimeoutError:
            raise MetadataError(
                f"fetching project {key.project_id} for {handler_id} timed out after {self._fetch_timeout}s"
            ) from None
        log.info("refreshing project cache for project %d %s", key.project_id, meta.name)
        return ProjectHandler(
            project_id=key.project_id,
            contract_id=meta.contract_id,
            invocations=meta.invocations,
            name=meta.name,
            active=meta.active,
            named_mappings=self._handler_config.get(handler_id, NamedMappings()),
            reply=self._reply,
        )

    async def build(
        self,
        routes: Mapping[str, ChannelRoute],
        previous: HandlerRegistry | None = None,
    ) -> HandlerRegistry:
        """Build a new snapshot for every handler id the routes reference.

        Raises RegistryRefreshError if any fetch fails and partial refresh is
        off. ``previous`` is only consulted for partial refresh.
        """
        channel_of_handler = collect_handler_ids(routes)
        handler_ids = list(channel_of_handler)
        results = await asyncio.gather(
            *(self.build_handler(handler_id) for handler_id in handler_ids),
            return_exceptions=True,
        )

        handlers: dict[str, ProjectHandler] = {}
        failures: dict[str, Exception] = {}
        for handler_id, result in zip(handler_ids, results):
            if isinstance(result, ProjectHandler):
                handlers[handler_id] = result
            elif isinstance(result, Exception):
                failures[handler_id] = result
                log.error("failed to refresh handler %s: %s", handler_id, result)
            else:
                # CancelledError and friends
                raise result

        if failures:
            if not self._partial_refresh:
                raise RegistryRefreshError(failures)
            # A failed handler with nothing to fall back on would leave a
            # routable id missing from the snapshot.
            unrecoverable = [
                h for h in failures if previous is None or previous.get(h) is None
            ]
            if unrecoverable:
                log.error(
                    "partial refresh: no previous entry for %s, keeping the current snapshot",
                    ", ".join(unrecoverable),
                )
                raise RegistryRefreshError(failures)
            for handler_id in failures:
                handlers[handler_id] = previous.get(handler_id)
            log.warning(
                "partial refresh: %d refreshed, %d failed and kept from previous snapshot",
                len(handler_ids) - len(failures),
                len(failures),
            )

        # Keep config order regardless of which fetches finished first.
        ordered = {h: handlers[h] for h in handler_ids if h in handlers}
        return HandlerRegistry(
            handlers=ordered,
            channel_of_handler=channel_of_handler,
            built_at=time.time(),
        )
