"""Single-file mirror commands: encrypt, decrypt, rm-plain, rm-cipher."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from ._common import MIRROR_HOME, console, fail, load_context
from ..errors import MirrorError


def _home_option(f):
    return click.option(
        "--home", default=MIRROR_HOME, type=click.Path(), help="Mirror home directory.",
    )(f)


def _seed_option(f):
    return click.option(
        "--seed", default=None, help="Base58 seed (default: from the configured env var).",
    )(f)


def register_mirror_commands(main: click.Group) -> None:
    """Register the single-file mirror commands."""

    @main.command("encrypt")
    @click.argument("file", type=click.Path())
    @_home_option
    @_seed_option
    def encrypt(file: str, home: str, seed: Optional[str]):
        """Write the ciphertext twin of a plaintext FILE."""
        ctx = load_context(home, seed)
        path = Path(file)
        if not path.is_file():
            fail(f"No such plaintext file: {file}")
        try:
            result = ctx.engine.encrypt_and_store(
                path,
                ctx.identity,
                ctx.peer_did,
                ctx.peer_public_key,
                ctx.plaintext_root,
                ctx.ciphertext_root,
            )
        except (MirrorError, ValueError, OSError) as exc:
            fail(str(exc))
        console.print(f"  [green]Encrypted[/] {path.name} -> [cyan]{result.name}[/]")

    @main.command("decrypt")
    @click.argument("file", type=click.Path())
    @_home_option
    @_seed_option
    def decrypt(file: str, home: str, seed: Optional[str]):
        """Restore the plaintext twin of a ciphertext FILE."""
        ctx = load_context(home, seed)
        try:
            result = ctx.engine.decrypt_and_restore(
                Path(file),
                ctx.identity,
                ctx.peer_public_key,
                ctx.plaintext_root,
            )
        except (MirrorError, ValueError, OSError) as exc:
            fail(str(exc))
        if result is None:
            fail(f"No ciphertext record at {file}")
        console.print(f"  [green]Restored[/] {Path(file).name} -> [cyan]{result}[/]")

    @main.command("rm-plain")
    @click.argument("file", type=click.Path())
    @_home_option
    def rm_plain(file: str, home: str):
        """Delete a plaintext FILE and its ciphertext twin."""
        ctx = load_context(home, need_identity=False)
        try:
            mirror = ctx.engine.delete_plaintext_and_mirror(
                ctx.did, Path(file), ctx.plaintext_root, ctx.ciphertext_root,
            )
        except (MirrorError, ValueError, OSError) as exc:
            fail(str(exc))
        console.print(f"  [yellow]Deleted[/] {Path(file).name} and [dim]{mirror.name}[/]")

    @main.command("rm-cipher")
    @click.argument("file", type=click.Path())
    @_home_option
    def rm_cipher(file: str, home: str):
        """Delete a ciphertext FILE and its plaintext twin."""
        ctx = load_context(home, need_identity=False)
        try:
            plain = ctx.engine.delete_ciphertext_and_mirror(
                Path(file), ctx.ciphertext_root, ctx.plaintext_root,
            )
        except (MirrorError, ValueError, OSError) as exc:
            fail(str(exc))
        if plain is None:
            console.print(f"  [yellow]Deleted[/] {Path(file).name} [dim](no plaintext match)[/]")
        else:
            console.print(f"  [yellow]Deleted[/] {Path(file).name} and [dim]{plain.name}[/]")
