"""CLI commands: channels, handlers, resolve, send."""

from __future__ import annotations

import asyncio
import json

import aiomqtt
import click

from artbot_daemon.channel import build_channel_routes, channel_ids_by_name
from artbot_daemon.config import ArtbotConfig
from artbot_daemon.handler_key import HandlerKey
from artbot_daemon.main import message_topic
from artbot_daemon.message import create_message
from artbot_daemon.registry import RegistryStore, collect_handler_ids
from artbot_daemon.router import Router, UnknownChannelError


def _get_config(ctx: click.Context) -> ArtbotConfig:
    return ctx.obj["config"]


def _mqtt_client(cfg: ArtbotConfig) -> aiomqtt.Client:
    """Build an aiomqtt Client from config."""
    return aiomqtt.Client(
        hostname=cfg.mqtt.host,
        port=cfg.mqtt.port,
        username=cfg.mqtt.username,
        password=cfg.mqtt.password,
    )


async def _publish(cfg: ArtbotConfig, topic: str, payload: str) -> None:
    """Connect, publish one message, disconnect."""
    async with _mqtt_client(cfg) as client:
        await client.publish(topic, payload.encode())


def _channel_id(cfg: ArtbotConfig, channel: str) -> str:
    """Accept either a channel id or a channel name."""
    if channel in cfg.channels:
        return channel
    by_name = channel_ids_by_name(build_channel_routes(cfg.channels))
    if channel in by_name:
        return by_name[channel]
    raise click.BadParameter(f"unknown channel: {channel!r}", param_hint="--channel")


@click.command()
@click.pass_context
def channels(ctx: click.Context) -> None:
    """List configured channels and their default project handler."""
    cfg = _get_config(ctx)
    routes = build_channel_routes(cfg.channels)
    if not routes:
        click.echo("no channels configured")
        return

    click.echo(f"{'CHANNEL':<22} {'NAME':<28} {'DEFAULT'}")
    click.echo("-" * 70)
    for channel_id, route in routes.items():
        default = route.default_handler if route.has_handler else "-"
        click.echo(f"{channel_id:<22} {route.name:<28} {default}")


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON.")
@click.pass_context
def handlers(ctx: click.Context, as_json: bool) -> None:
    """List every project handler id referenced by the channel config."""
    cfg = _get_config(ctx)
    routes = build_channel_routes(cfg.channels)
    channel_of_handler = collect_handler_ids(routes)

    entries = []
    for handler_id, channel_id in channel_of_handler.items():
        key = HandlerKey.parse(handler_id)
        if key.contract_name is None:
            contract = "core"
        elif key.contract_name in cfg.contracts:
            contract = key.contract_name
        else:
            contract = f"{key.contract_name} (not configured)"
        entries.append({
            "handler": handler_id,
            "project": key.project_id,
            "contract": contract,
            "channel": channel_id,
            "channel_name": routes[channel_id].name,
        })

    if as_json:
        click.echo(json.dumps(entries, indent=2))
        return

    if not entries:
        click.echo("no project handlers configured")
        return

    click.echo(f"{'HANDLER':<22} {'CONTRACT':<28} {'CHANNEL'}")
    click.echo("-" * 70)
    for e in entries:
        click.echo(f"{e['handler']:<22} {e['contract']:<28} {e['channel_name']} ({e['channel']})")


@click.command()
@click.option("--channel", required=True, help="Channel id or channel name.")
@click.argument("text")
@click.pass_context
def resolve(ctx: click.Context, channel: str, text: str) -> None:
    """Show which project handler a message would be routed to.

    Exits 1 if the channel has no project handler.
    """
    cfg = _get_config(ctx)
    channel_id = _channel_id(cfg, channel)
    router = Router(build_channel_routes(cfg.channels), RegistryStore())
    try:
        handler_id = router.resolve(channel_id, text)
    except UnknownChannelError as exc:
        raise click.BadParameter(f"unknown channel: {exc}", param_hint="--channel") from exc

    if handler_id is None:
        click.echo(f"channel {channel_id} has no project handler", err=True)
        ctx.exit(1)
    click.echo(handler_id)


@click.command()
@click.option("--channel", required=True, help="Channel id or channel name.")
@click.option("--author", default=None, help="Author name to attach.")
@click.argument("text")
@click.pass_context
def send(ctx: click.Context, channel: str, author: str | None, text: str) -> None:
    """Publish a chat message to a channel's message topic."""
    cfg = _get_config(ctx)
    channel_id = _channel_id(cfg, channel)
    message = create_message(channel_id=channel_id, content=text, author=author)
    topic = message_topic(cfg, channel_id)
    asyncio.run(_publish(cfg, topic, json.dumps(message.to_json())))
    click.echo(f"sent {message.id} -> {topic}")
