"""Directory commands: sync, watch, status."""

from __future__ import annotations

import signal
import threading
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ._common import MIRROR_HOME, console, load_context, logger
from ..audit import AuditLog
from ..config import CONFIG_FILE
from ..watcher import MirrorWatcher, scan_directory, setup_file_logging


def register_sync_commands(main: click.Group) -> None:
    """Register the whole-directory commands."""

    @main.command("sync")
    @click.option("--home", default=MIRROR_HOME, type=click.Path(), help="Mirror home directory.")
    @click.option("--seed", default=None, help="Base58 seed (default: from the configured env var).")
    def sync(home: str, seed: Optional[str]):
        """One full pass in both directions, then exit."""
        ctx = load_context(home, seed)
        watcher = MirrorWatcher(
            ctx.engine, ctx.identity, ctx.config,
            peer_did=ctx.peer_did, peer_public_key=ctx.peer_public_key,
        )

        console.print("\n  Syncing mirror...", end=" ")
        counts = watcher.initial_sync()
        state = watcher.state.snapshot()
        console.print("[green]done[/]")
        console.print(
            f"  {counts['plaintext']} plaintext, {counts['ciphertext']} ciphertext | "
            f"[green]{state['encrypted']}[/] encrypted, [green]{state['restored']}[/] restored"
        )
        for err in state["recent_errors"]:
            console.print(f"  [red]{err}[/]")
        console.print()

    @main.command("watch")
    @click.option("--home", default=MIRROR_HOME, type=click.Path(), help="Mirror home directory.")
    @click.option("--seed", default=None, help="Base58 seed (default: from the configured env var).")
    def watch(home: str, seed: Optional[str]):
        """Mirror continuously until interrupted (Ctrl+C)."""
        ctx = load_context(home, seed)
        log_file = setup_file_logging(ctx.home)
        watcher = MirrorWatcher(
            ctx.engine, ctx.identity, ctx.config,
            peer_did=ctx.peer_did, peer_public_key=ctx.peer_public_key,
        )

        console.print(f"\n  [green]Watching[/] {ctx.plaintext_root} <-> {ctx.ciphertext_root}")
        console.print(f"  Log: {log_file}")
        console.print("  [dim]Ctrl+C to stop[/]\n")

        stop = threading.Event()

        def _handle_signal(signum, frame):
            logger.info("Received signal %s, stopping", signal.Signals(signum).name)
            stop.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, _handle_signal)
        watcher.run(stop)
        state = watcher.state.snapshot()
        console.print(
            f"\n  Stopped after {state['events']} events: "
            f"{state['encrypted']} encrypted, {state['restored']} restored, "
            f"{state['deleted']} deleted\n"
        )

    @main.command("status")
    @click.option("--home", default=MIRROR_HOME, type=click.Path(), help="Mirror home directory.")
    @click.option("--limit", default=10, help="Recent audit entries to show.")
    def status(home: str, limit: int):
        """Show mirror configuration and recent activity."""
        ctx = load_context(home, need_identity=False)
        ignore = frozenset(ctx.config.ignore_names)
        plain_count = len(scan_directory(ctx.plaintext_root, ignore))
        cipher_count = len(scan_directory(ctx.ciphertext_root, ignore))

        console.print()
        console.print(
            Panel(
                f"Plaintext:  [cyan]{ctx.plaintext_root}[/] ({plain_count} files)\n"
                f"Ciphertext: [cyan]{ctx.ciphertext_root}[/] ({cipher_count} files)\n"
                f"Identity:   {ctx.did}\n"
                f"Peer:       {ctx.config.peer_did or '[dim]self[/]'}\n"
                f"Config:     [dim]{ctx.home / CONFIG_FILE}[/]",
                title="didmirror",
                border_style="bright_blue",
            )
        )

        entries = AuditLog(ctx.home).entries(limit=limit)
        if not entries:
            console.print("  [dim]No mirror activity recorded.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Time", style="dim")
        table.add_column("Event", style="cyan")
        table.add_column("Detail")
        for entry in entries:
            table.add_row(entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"), entry.event_type, entry.detail)
        console.print(table)
        console.print()
