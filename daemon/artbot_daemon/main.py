"""Entry point for the artbot daemon: MQTT subscribe loop."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import signal
from collections.abc import Mapping
from pathlib import Path

import aiomqtt

from artbot_daemon.channel import ChannelRoute, build_channel_routes
from artbot_daemon.config import ArtbotConfig, load_config
from artbot_daemon.handler import ReplyPublisher
from artbot_daemon.message import ChatMessage, MessageError
from artbot_daemon.registry import RegistryBuilder, RegistryStore
from artbot_daemon.router import RegistryDriftError, Router
from artbot_daemon.scheduler import RefreshScheduler
from artbot_daemon.source import MetadataSource, SubgraphSource

log = logging.getLogger("artbot_daemon")


def message_topic(config: ArtbotConfig, channel_id: str) -> str:
    return f"{config.topic_prefix}/channel/{channel_id}/message"


def reply_topic(config: ArtbotConfig, channel_id: str) -> str:
    return f"{config.topic_prefix}/channel/{channel_id}/reply"


def _build_topics(config: ArtbotConfig) -> list[str]:
    """One message topic per configured channel."""
    return [message_topic(config, channel_id) for channel_id in config.channels]


def _parse_topic_channel(topic: str, config: ArtbotConfig) -> str | None:
    """Extract the channel id from ``{prefix}/channel/{channel_id}/message``.

    Returns None if the topic doesn't match the expected format.
    """
    prefix_parts = config.topic_prefix.split("/")
    parts = topic.split("/")
    if len(parts) != len(prefix_parts) + 3:
        return None
    if parts[:len(prefix_parts)] != prefix_parts:
        return None
    if parts[-3] != "channel" or parts[-1] != "message":
        return None
    return parts[-2]


async def _handle_message(
    msg: aiomqtt.Message,
    config: ArtbotConfig,
    router: Router,
) -> None:
    """Parse an MQTT message into a ChatMessage and route it.

    Malformed input is logged and dropped. RegistryDriftError propagates.
    """
    topic = str(msg.topic)
    channel_id = _parse_topic_channel(topic, config)
    if channel_id is None or channel_id not in config.channels:
        log.debug("ignoring message on unexpected topic %s", topic)
        return

    try:
        payload = json.loads(msg.payload)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as exc:
        log.error("invalid JSON on topic %s: %s", topic, exc)
        return

    try:
        message = ChatMessage.from_json(payload)
    except MessageError as exc:
        log.error("invalid message on topic %s: %s", topic, exc)
        return

    if message.channel_id != channel_id:
        log.warning(
            "message %s claims channel %s but arrived on %s, using topic channel",
            message.id, message.channel_id, channel_id,
        )
        # Replies go to the channel whose config routed the message.
        message = dataclasses.replace(message, channel_id=channel_id)

    if not message.content.startswith(config.trigger_prefix):
        log.debug("ignoring non-trigger message %s on channel %s", message.id, channel_id)
        return

    await router.route(channel_id, message)


def make_reply_publisher(config: ArtbotConfig, client: aiomqtt.Client) -> ReplyPublisher:
    """Build a reply publisher that posts to the message's reply topic."""

    async def _publish_reply(message: ChatMessage, text: str) -> None:
        payload = {"reply_to": message.id, "channel_id": message.channel_id, "text": text}
        topic = reply_topic(config, message.channel_id)
        await client.publish(topic, json.dumps(payload))
        log.info("published reply to %s -> %s", message.id, topic)

    return _publish_reply


class _LateReply:
    """Reply publisher whose MQTT client is bound after connecting.

    The registry is built before the first connection, so handlers get this
    indirection instead of a live client.
    """

    def __init__(self) -> None:
        self.target: ReplyPublisher | None = None

    async def __call__(self, message: ChatMessage, text: str) -> None:
        if self.target is None:
            log.warning("not connected, dropping reply to %s", message.id)
            return
        await self.target(message, text)


def setup_routing(
    config: ArtbotConfig,
    source: MetadataSource,
    *,
    reply: ReplyPublisher | None = None,
    routes: Mapping[str, ChannelRoute] | None = None,
) -> tuple[Router, RefreshScheduler, RegistryStore]:
    """Wire channel routes, registry store, builder, scheduler and router."""
    routes = routes if routes is not None else build_channel_routes(config.channels)
    store = RegistryStore()
    builder = RegistryBuilder(
        source,
        handler_config=config.handlers,
        contracts=config.contracts,
        fetch_timeout=config.refresh.fetch_timeout,
        partial_refresh=config.refresh.partial_refresh,
        reply=reply,
    )
    scheduler = RefreshScheduler(routes, builder, store, interval_minutes=config.refresh.interval_minutes)
    router = Router(routes, store)
    return router, scheduler, store


async def run_daemon(config: ArtbotConfig) -> None:
    """Main daemon loop: build the registry, connect to MQTT, route messages."""
    topics = _build_topics(config)
    log.info("starting artbot daemon as %s", config.node_id)
    log.info("subscribing to: %s", topics)

    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    late_reply = _LateReply()
    async with SubgraphSource(config.subgraph) as source:
        router, scheduler, _ = setup_routing(config, source, reply=late_reply)

        await scheduler.initialize()
        scheduler.start()

        try:
            while not shutdown.is_set():
                try:
                    async with aiomqtt.Client(
                        hostname=config.mqtt.host,
                        port=config.mqtt.port,
                        username=config.mqtt.username,
                        password=config.mqtt.password,
                        keepalive=config.mqtt.keepalive,
                    ) as client:
                        late_reply.target = make_reply_publisher(config, client)
                        try:
                            for topic in topics:
                                await client.subscribe(topic)
                                log.info("subscribed to %s", topic)

                            async for msg in client.messages:
                                if shutdown.is_set():
                                    break
                                try:
                                    await _handle_message(msg, config, router)
                                except RegistryDriftError as exc:
                                    log.critical("handler registry out of sync with channel config: %s", exc)
                                    raise
                        finally:
                            late_reply.target = None

                except aiomqtt.MqttError as exc:
                    if shutdown.is_set():
                        break
                    log.error("MQTT connection error: %s, reconnecting in 5s", exc)
                    await asyncio.sleep(5)
        finally:
            await scheduler.stop()

    log.info("artbot daemon shutting down")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Artbot project handler routing daemon")
    parser.add_argument("--config", type=Path, default=Path("artbot.toml"), help="config file path")
    args = parser.parse_args()

    config = load_config(args.config)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    asyncio.run(run_daemon(config))


if __name__ == "__main__":
    main()
