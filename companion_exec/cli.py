"""CLI entry point for companion-exec."""

from __future__ import annotations

import asyncio
import json
import shutil
import sys
from pathlib import Path

import click

BANNER = """\
╔══════════════════════════════════════╗
║  COMPANION-EXEC — Approved Commands  ║
║  System Initialization               ║
╚══════════════════════════════════════╝"""

VERSION = "0.1.0"


def _find_template() -> Path:
    """Locate config.cp.yaml, supporting both dev and PyInstaller."""
    if getattr(sys, "_MEIPASS", None):
        return Path(sys._MEIPASS) / "companion_exec" / "config.cp.yaml"
    return Path(__file__).parent / "config.cp.yaml"


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """companion-exec — chat assistant with approval-gated shell commands"""
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option(
    "--mode",
    type=click.Choice(["direct", "message"]),
    default=None,
    help="Host transport. Overrides bridge.mode from the config file.",
)
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to a config.yaml.")
def run(mode: str | None, config_path: str | None) -> None:
    """Start the chat TUI."""
    from companion_exec.config import load_config
    from companion_exec.core.enums import BridgeMode
    from companion_exec.logging_config import setup_logging
    from companion_exec.tui.app import CompanionApp

    config = load_config(config_path)
    if mode is not None:
        config.bridge.mode = BridgeMode(mode)
    setup_logging()
    app = CompanionApp()
    app.run()


@cli.command()
@click.option("--socket", "socket_path", type=click.Path(dir_okay=False), default=None,
              help="Unix socket to listen on. Defaults to bridge.socket_path.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to a config.yaml.")
def host(socket_path: str | None, config_path: str | None) -> None:
    """Run the privileged host process for the message transport."""
    from companion_exec.config import load_config
    from companion_exec.host.server import HostServer
    from companion_exec.logging_config import setup_logging

    config = load_config(config_path)
    setup_logging(app_log_name="companion_exec_host.log")
    path = socket_path or config.bridge.socket_path

    async def _serve() -> None:
        server = HostServer(path)
        try:
            await server.serve_forever()
        finally:
            await server.stop()

    click.echo(f"  [ok] Listening on {path}")
    click.echo("       Press Ctrl+C to stop.")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo()
        click.echo("  [--] Host stopped.")


@cli.command()
def sysinfo() -> None:
    """Print the detected system information as JSON."""
    from companion_exec.host.executor import detect_system_info

    info = detect_system_info()
    click.echo(json.dumps(info.model_dump(), indent=2))


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite existing config file.")
def init(force: bool) -> None:
    """Initialize config to ~/.companion_exec/."""
    from companion_exec.config import _default_data_dir

    config_dir = _default_data_dir()
    config_dest = config_dir / "config.yaml"
    template = _find_template()

    click.echo(BANNER)
    click.echo()

    config_dir.mkdir(parents=True, exist_ok=True)
    click.echo(f"  [ok] Directory ready: {config_dir}")

    if config_dest.exists() and not force:
        click.echo(f"  [--] Config already exists: {config_dest}")
        click.echo("       Use --force to overwrite.")
    else:
        shutil.copy2(template, config_dest)
        click.echo(f"  [ok] Config created: {config_dest}")

    for subdir in ["logs", "exports"]:
        p = config_dir / subdir
        p.mkdir(parents=True, exist_ok=True)
        click.echo(f"  [ok] Subdirectory ready: {p}")

    click.echo()
    click.echo(f"  -> Edit {config_dest} to set your API key.")
    click.echo("  -> Then run `companion-exec` to start chatting.")


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"companion-exec v{VERSION}")
