"""Artbot CLI entry point: click group with config loading."""

from __future__ import annotations

from pathlib import Path

import click

from artbot_daemon.config import load_config

from artbot_cli.commands import channels, handlers, resolve, send


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=Path.home() / ".config" / "artbot" / "artbot.toml",
    help="Path to artbot.toml config file (defaults to ~/.config/artbot/artbot.toml).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path) -> None:
    """Artbot CLI: inspect channel routing and inject test messages."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config_path)


cli.add_command(channels)
cli.add_command(handlers)
cli.add_command(resolve)
cli.add_command(send)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
