"""Configuration loading for the artbot daemon."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from artbot_daemon.handler_key import HandlerKey, HandlerKeyError

DEFAULT_SUBGRAPH_URL = "https://api.thegraph.com/subgraphs/name/artblocks/art-blocks"

# Overrides [refresh] interval_minutes when set.
INTERVAL_ENV_KEY = "METADATA_REFRESH_INTERVAL_MINUTES"


class ConfigError(ValueError):
    """Raised when the config file is structurally valid TOML but semantically wrong."""


@dataclass(frozen=True, slots=True)
class MqttConfig:
    """MQTT broker connection settings."""

    host: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    keepalive: int = 60


@dataclass(frozen=True, slots=True)
class RefreshConfig:
    """Handler registry refresh settings.

    A full refresh takes around a minute against the public subgraph, so the
    default interval is an hour.
    """

    interval_minutes: float = 60.0
    fetch_timeout: float = 30.0
    partial_refresh: bool = False


@dataclass(frozen=True, slots=True)
class SubgraphConfig:
    """Metadata source (GraphQL subgraph) settings."""

    url: str = DEFAULT_SUBGRAPH_URL
    core_contracts: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContractDescriptor:
    """A partner contract, looked up by the contract name in a handler id."""

    name: str
    address: str


@dataclass(frozen=True, slots=True)
class NamedMappings:
    """Optional named-token mapping labels for a project handler."""

    sets: str | None = None
    singles: str | None = None


@dataclass(frozen=True, slots=True)
class ChannelHandlers:
    """Project handler routing for one channel.

    ``string_triggers`` and each mapping in ``token_id_triggers`` keep the
    order they were declared in; routing depends on it.
    """

    default: str
    string_triggers: dict[str, list[str]] = field(default_factory=dict)
    token_id_triggers: list[dict[str, tuple[int, int]]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    """A single observed chat channel."""

    channel_id: str
    name: str
    handlers: ChannelHandlers | None = None


@dataclass(frozen=True, slots=True)
class ArtbotConfig:
    """Top-level daemon configuration."""

    node_id: str
    topic_prefix: str = "artbot"
    trigger_prefix: str = "#"
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    subgraph: SubgraphConfig = field(default_factory=SubgraphConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)
    handlers: dict[str, NamedMappings] = field(default_factory=dict)
    contracts: dict[str, ContractDescriptor] = field(default_factory=dict)
    log_level: str = "INFO"


def _check_handler_id(handler_id: Any, where: str) -> str:
    try:
        HandlerKey.parse(handler_id)
    except HandlerKeyError as exc:
        raise ConfigError(f"{where}: {exc}") from exc
    return handler_id


def _parse_range(value: Any, where: str) -> tuple[int, int]:
    if (
        not isinstance(value, list)
        or len(value) != 2
        or not all(isinstance(v, int) and not isinstance(v, bool) for v in value)
    ):
        raise ConfigError(f"{where}: token id range must be [low, high], got {value!r}")
    low, high = value
    if low > high:
        raise ConfigError(f"{where}: token id range low {low} is above high {high}")
    return low, high


def _parse_channel_handlers(section: dict[str, Any], channel_id: str) -> ChannelHandlers:
    where = f"channel {channel_id}"
    if "default" not in section:
        raise ConfigError(f"{where}: handlers table requires a default handler")
    default = _check_handler_id(section["default"], where)

    raw_string_triggers = section.get("string_triggers", {})
    if not isinstance(raw_string_triggers, dict):
        raise ConfigError(f"{where}: string_triggers must be a table of handler id -> trigger list")
    string_triggers: dict[str, list[str]] = {}
    for handler_id, triggers in raw_string_triggers.items():
        _check_handler_id(handler_id, where)
        if not isinstance(triggers, list) or not all(isinstance(t, str) and t for t in triggers):
            raise ConfigError(f"{where}: string triggers for {handler_id!r} must be a list of non-empty strings")
        string_triggers[handler_id] = list(triggers)

    raw_token_id_triggers = section.get("token_id_triggers", [])
    if not isinstance(raw_token_id_triggers, list):
        raise ConfigError(f"{where}: token_id_triggers must be an array of tables")
    token_id_triggers: list[dict[str, tuple[int, int]]] = []
    for mapping in raw_token_id_triggers:
        if not isinstance(mapping, dict):
            raise ConfigError(f"{where}: each token id trigger must be a table")
        token_id_triggers.append({
            _check_handler_id(handler_id, where): _parse_range(bounds, f"{where} handler {handler_id}")
            for handler_id, bounds in mapping.items()
        })

    return ChannelHandlers(
        default=default,
        string_triggers=string_triggers,
        token_id_triggers=token_id_triggers,
    )


def _refresh_interval(section: dict[str, Any]) -> float:
    env_value = os.environ.get(INTERVAL_ENV_KEY)
    if env_value:
        try:
            return float(env_value)
        except ValueError as exc:
            raise ConfigError(f"{INTERVAL_ENV_KEY} must be a number, got {env_value!r}") from exc
    return float(section.get("interval_minutes", 60.0))


def load_config(path: Path) -> ArtbotConfig:
    """Load configuration from a TOML file.

    Raises FileNotFoundError if the file doesn't exist.
    Raises KeyError if required fields are missing.
    Raises ConfigError on invalid handler ids or trigger definitions.
    """
    with open(path, "rb") as f:
        raw = tomllib.load(f)

    node_section = raw.get("node", {})
    node_id = node_section["id"]  # required, let KeyError propagate

    mqtt_section = raw.get("mqtt", {})
    mqtt = MqttConfig(
        host=mqtt_section.get("host", "localhost"),
        port=mqtt_section.get("port", 1883),
        username=mqtt_section.get("username"),
        password=mqtt_section.get("password"),
        keepalive=mqtt_section.get("keepalive", 60),
    )

    refresh_section = raw.get("refresh", {})
    refresh = RefreshConfig(
        interval_minutes=_refresh_interval(refresh_section),
        fetch_timeout=float(refresh_section.get("fetch_timeout", 30.0)),
        partial_refresh=bool(refresh_section.get("partial_refresh", False)),
    )

    subgraph_section = raw.get("subgraph", {})
    subgraph = SubgraphConfig(
        url=subgraph_section.get("url", DEFAULT_SUBGRAPH_URL),
        core_contracts=tuple(c.lower() for c in subgraph_section.get("core_contracts", [])),
    )

    channels: dict[str, ChannelConfig] = {}
    for channel_id, ch in raw.get("channels", {}).items():
        if any(c.name == ch["name"] for c in channels.values()):
            raise ConfigError(f"channel name {ch['name']!r} is used by more than one channel")
        handlers_section = ch.get("handlers")
        if handlers_section is not None and not isinstance(handlers_section, dict):
            raise ConfigError(f"channel {channel_id}: handlers must be a table")
        channels[channel_id] = ChannelConfig(
            channel_id=channel_id,
            name=ch["name"],
            handlers=(
                _parse_channel_handlers(handlers_section, channel_id)
                if handlers_section is not None
                else None
            ),
        )

    handlers: dict[str, NamedMappings] = {}
    for handler_id, h in raw.get("handlers", {}).items():
        _check_handler_id(handler_id, "handlers")
        mappings = h.get("named_mappings", {})
        handlers[handler_id] = NamedMappings(
            sets=mappings.get("sets"),
            singles=mappings.get("singles"),
        )

    contracts = {
        name: ContractDescriptor(name=name, address=c["address"].lower())
        for name, c in raw.get("contracts", {}).items()
    }

    return ArtbotConfig(
        node_id=node_id,
        topic_prefix=node_section.get("topic_prefix", "artbot"),
        trigger_prefix=node_section.get("trigger_prefix", "#"),
        mqtt=mqtt,
        refresh=refresh,
        subgraph=subgraph,
        channels=channels,
        handlers=handlers,
        contracts=contracts,
        log_level=raw.get("logging", {}).get("level", "INFO"),
    )
