"""Setup commands: init, keygen."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ._common import MIRROR_HOME, console, fail
from ..audit import AuditLog
from ..config import CONFIG_FILE, load_config, mirror_home, save_config
from ..encoding import b58decode
from ..errors import DecodeError
from ..identity import KeyIdentity


def register_setup_commands(main: click.Group) -> None:
    """Register init and keygen on the main CLI group."""

    @main.command()
    @click.option("--home", default=MIRROR_HOME, type=click.Path(), help="Mirror home directory.")
    @click.option("--plaintext-root", required=True, type=click.Path(), help="Plaintext directory.")
    @click.option("--ciphertext-root", required=True, type=click.Path(), help="Ciphertext directory.")
    @click.option("--did", default=None, help="DID for the local identity.")
    @click.option("--recipient-did", default=None, help="DID of the peer (default: self).")
    @click.option(
        "--recipient-public-key", default=None,
        help="Peer's base58 X25519 public key (default: own key).",
    )
    def init(
        home: str,
        plaintext_root: str,
        ciphertext_root: str,
        did: Optional[str],
        recipient_did: Optional[str],
        recipient_public_key: Optional[str],
    ):
        """Configure a mirror: two roots and who the envelopes are for."""
        home_path = mirror_home(Path(home))

        if recipient_public_key:
            try:
                b58decode(recipient_public_key, length=32, what="recipient public key")
            except DecodeError as exc:
                fail(str(exc))

        plain = Path(plaintext_root).expanduser().absolute()
        cipher = Path(ciphertext_root).expanduser().absolute()
        if plain == cipher:
            fail("Plaintext and ciphertext roots must differ.")
        plain.mkdir(parents=True, exist_ok=True)
        cipher.mkdir(parents=True, exist_ok=True)

        config = load_config(home_path)
        config.plaintext_root = plain
        config.ciphertext_root = cipher
        config.did = did or config.did
        config.peer_did = recipient_did or config.peer_did
        config.peer_public_key = recipient_public_key or config.peer_public_key
        save_config(home_path, config)
        AuditLog(home_path).record("MIRROR_INIT", f"Mirror configured: {plain} <-> {cipher}")

        console.print()
        console.print(
            Panel(
                f"Plaintext:  [cyan]{plain}[/]\n"
                f"Ciphertext: [cyan]{cipher}[/]\n"
                f"Config:     [dim]{home_path / CONFIG_FILE}[/]",
                title="Mirror configured",
                border_style="green",
            )
        )
        console.print(
            f"  [dim]Export your seed as {config.seed_env_var} or pass --seed to each command.[/]\n"
        )

    @main.command()
    @click.option("--seed", default=None, help="Base58 seed to derive from (default: random).")
    @click.option("--did", default=None, help="DID to attach to the identity.")
    def keygen(seed: Optional[str], did: Optional[str]):
        """Generate (or re-derive) an X25519 identity."""
        try:
            identity = KeyIdentity.generate(seed, did=did) if seed else KeyIdentity.random(did=did)
        except DecodeError as exc:
            fail(str(exc))

        console.print()
        console.print(
            Panel(
                f"DID:         [cyan]{identity.did}[/]\n"
                f"Derived DID: [dim]{identity.derived_did()}[/]\n"
                f"Public key:  [green]{identity.public_key_b58}[/]\n"
                f"Seed:        [yellow]{identity.private_key_b58}[/]",
                title="Key identity",
                border_style="bright_blue",
            )
        )
        console.print("  [dim]Keep the seed secret. It never belongs in config.yaml.[/]\n")
