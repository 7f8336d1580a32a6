"""
Mirror configuration — ``<home>/config/config.yaml``.

The config names the two mirror roots, the local identity's DID, and
the peer on the other side. The seed never touches disk: it is read
from the environment variable named by ``seed_env_var``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from . import MIRROR_HOME
from .encoding import b58decode
from .errors import DecodeError
from .identity import KeyIdentity
from .models import MirrorConfig
from .wallet import Wallet

logger = logging.getLogger("didmirror.config")

CONFIG_FILE = Path("config") / "config.yaml"


def mirror_home(home: Optional[Path] = None) -> Path:
    """Resolve the mirror home directory (``DIDMIRROR_HOME`` or ``~/.didmirror``)."""
    return Path(home or MIRROR_HOME).expanduser()


def load_config(home: Path) -> MirrorConfig:
    """Load configuration from disk, falling back to defaults."""
    config_file = home / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return MirrorConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load mirror config: %s", exc)
    return MirrorConfig()


def save_config(home: Path, config: MirrorConfig) -> Path:
    """Persist configuration to disk."""
    config_file = home / CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    return config_file


def resolve_identity(config: MirrorConfig, seed: Optional[str] = None) -> KeyIdentity:
    """Build the local identity from an explicit seed or the configured env var.

    Raises:
        DecodeError: If no seed is available or it is malformed.
    """
    seed = seed or os.environ.get(config.seed_env_var)
    if not seed:
        raise DecodeError(
            f"No seed given; pass --seed or set {config.seed_env_var}"
        )
    return KeyIdentity.generate(seed, did=config.did)


def peer_of(config: MirrorConfig, identity: KeyIdentity) -> tuple[str, bytes]:
    """Return the peer's ``(did, public_key)``; defaults to ``identity`` itself."""
    did = config.peer_did or identity.did
    if config.peer_public_key:
        return did, b58decode(config.peer_public_key, length=32, what="peer public key")
    return did, identity.public_key


def build_wallet(config: MirrorConfig) -> Wallet:
    return Wallet(keys=config.filename_keys, default_key=config.default_key)
