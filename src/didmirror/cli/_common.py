"""Shared utilities for all CLI command modules.

Provides the Rich console instance and the loader that turns
``--home``/``--seed`` into a ready engine, identity and peer.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import MIRROR_HOME
from ..config import build_wallet, load_config, mirror_home, peer_of, resolve_identity
from ..engine import MirrorEngine
from ..errors import MirrorError
from ..identity import DEFAULT_DID, KeyIdentity
from ..models import MirrorConfig

console = Console()
logger = logging.getLogger("didmirror.cli")


def fail(message: str) -> None:
    """Print an error in red and exit 1."""
    console.print(f"[bold red]Error:[/] {message}")
    sys.exit(1)


@dataclass
class MirrorContext:
    """Everything a command needs to touch the mirror."""

    home: Path
    config: MirrorConfig
    engine: MirrorEngine
    identity: Optional[KeyIdentity] = None
    peer_did: Optional[str] = None
    peer_public_key: Optional[bytes] = None

    @property
    def plaintext_root(self) -> Path:
        return Path(self.config.plaintext_root).expanduser()

    @property
    def ciphertext_root(self) -> Path:
        return Path(self.config.ciphertext_root).expanduser()

    @property
    def did(self) -> str:
        if self.identity is not None:
            return self.identity.did
        return self.config.did or DEFAULT_DID


def load_context(home: str, seed: Optional[str] = None, need_identity: bool = True) -> MirrorContext:
    """Load config (and the identity, if needed) from ``home``.

    Exits with an error if the mirror is not configured or the seed is
    missing or malformed.
    """
    home_path = mirror_home(Path(home))
    config = load_config(home_path)
    if config.plaintext_root is None or config.ciphertext_root is None:
        fail("No mirror configured. Run [bold]didmirror init[/] first.")

    try:
        wallet = build_wallet(config)
        ctx = MirrorContext(
            home=home_path,
            config=config,
            engine=MirrorEngine(wallet=wallet, audit_home=home_path if config.audit else None),
        )
        if need_identity:
            ctx.identity = resolve_identity(config, seed)
            ctx.peer_did, ctx.peer_public_key = peer_of(config, ctx.identity)
    except MirrorError as exc:
        fail(str(exc))
    return ctx
