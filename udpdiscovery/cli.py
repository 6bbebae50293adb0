#!/usr/bin/env python3
"""
UDP Discovery CLI

Command-line interface for finding a host on the local network.

Usage:
    udpdiscovery respond            # Answer discovery requests until Ctrl+C
    udpdiscovery seek               # Broadcast until a host answers
    udpdiscovery addresses          # List this machine's addresses
    udpdiscovery config             # Show the effective configuration
    udpdiscovery config --example   # Print an example config file
"""

import logging
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import EXAMPLE_CONFIG, Config, load_config
from .discovery import (
    DiscoveryError,
    DiscoveryResponder,
    DiscoverySeeker,
    local_addresses,
)

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    if verbose:
        level = 'DEBUG'
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(__version__, prog_name='udpdiscovery')
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              help='JSON config file')
@click.option('--port', type=int, help='Discovery UDP port')
@click.pass_context
def cli(ctx, verbose, config_path, port):
    """UDP Discovery - find a host on the local network by broadcast."""
    try:
        config = load_config(config_path)
        if port is not None:
            config.port = port
            config.validate()
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--duration', type=float, help='Stop after this many seconds')
@click.pass_context
def respond(ctx, duration):
    """Answer discovery requests until interrupted."""
    config: Config = ctx.obj['config']
    responder = DiscoveryResponder(
        port=config.port,
        bind_host=config.bind_host,
        reuse_address=config.reuse_address,
        stop_timeout=config.stop_timeout,
    )

    try:
        responder.start()
    except DiscoveryError as e:
        console.print(f"[red]✗ {e}[/red]")
        ctx.exit(1)

    console.print(Panel.fit(
        f"[bold green]Responder Started[/bold green]\n\n"
        f"Listening on: [yellow]{responder.bound_endpoint}[/yellow]",
        title="Discovery Host"
    ))
    if duration is None:
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

    deadline = None if duration is None else time.monotonic() + duration
    try:
        while responder.is_running:
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(0.1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    finally:
        responder.stop()

    console.print(f"[green]Responder stopped[/green] "
                  f"([yellow]{responder.requests_served}[/yellow] request(s) answered)")

    if responder.error is not None:
        console.print(f"[red]✗ Responder failed: {responder.error}[/red]")
        ctx.exit(1)


@cli.command()
@click.option('--interval', type=float, help='Seconds between broadcasts')
@click.option('--jitter', type=float, help='Random extra seconds per interval')
@click.option('--broadcast', 'broadcast_address', help='Broadcast address')
@click.option('--bind-port', type=int, help='Local port (default: discovery port)')
@click.option('--timeout', type=float, help='Give up after this many seconds')
@click.pass_context
def seek(ctx, interval, jitter, broadcast_address, bind_port, timeout):
    """Broadcast until a host answers, then print its address."""
    config: Config = ctx.obj['config']
    try:
        seeker = DiscoverySeeker(
            port=config.port,
            broadcast_interval=config.broadcast_interval if interval is None else interval,
            broadcast_address=broadcast_address or config.broadcast_address,
            bind_host=config.bind_host,
            bind_port=bind_port,
            jitter=config.jitter if jitter is None else jitter,
            stop_timeout=config.stop_timeout,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    address: Optional[str] = None
    try:
        seeker.start()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Looking for a host on port {seeker.port}...", total=None)
            address = seeker.wait(timeout)
    except DiscoveryError as e:
        console.print(f"[red]✗ {e}[/red]")
        ctx.exit(1)
    except TimeoutError:
        console.print(f"[red]✗ No host found within {timeout}s[/red]")
        ctx.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        ctx.exit(130)
    finally:
        seeker.stop()

    console.print(f"[green]✓ Host found:[/green] [cyan]{address}[/cyan]")


@cli.command()
def addresses():
    """List this machine's network addresses."""
    local = local_addresses()

    if local.is_empty:
        console.print("[yellow]No local addresses found[/yellow]")
        return

    table = Table(title="Local Addresses")
    table.add_column("Address", style="cyan")
    table.add_column("Family", style="yellow")
    table.add_column("Scope")

    for ip in local:
        if ip.is_loopback:
            scope = "loopback"
        elif ip.is_link_local:
            scope = "link-local"
        elif ip.is_private:
            scope = "private"
        else:
            scope = "global"
        table.add_row(str(ip), f"IPv{ip.version}", scope)

    console.print(table)


@cli.command('config')
@click.option('--save', 'save_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Write the effective configuration as JSON')
@click.option('--example', is_flag=True, help='Print an example config file and exit')
@click.pass_context
def show_config(ctx, save_path, example):
    """Show the effective configuration."""
    if example:
        click.echo(EXAMPLE_CONFIG.strip())
        return

    config: Config = ctx.obj['config']

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    for key, value in config.to_dict().items():
        table.add_row(key, repr(value))
    console.print(table)

    if save_path:
        config.save(save_path)
        console.print(f"[green]✓ Saved to {save_path}[/green]")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
