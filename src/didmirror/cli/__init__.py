"""
didmirror CLI — keep a plaintext folder and its encrypted twin in step.

Each command group lives in its own module. The main Click group is
defined here and every module registers its commands on it.

Entry point: didmirror.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="didmirror")
def main():
    """didmirror — encrypted directory mirrors.

    Plaintext on one side, keyed-hash names and sealed envelopes on the other.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .setup import register_setup_commands
from .mirror import register_mirror_commands
from .sync_cmd import register_sync_commands

register_setup_commands(main)
register_mirror_commands(main)
register_sync_commands(main)
