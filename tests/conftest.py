"""Shared test fixtures for didmirror."""

from __future__ import annotations

from pathlib import Path

import pytest

from didmirror.engine import MirrorEngine
from didmirror.identity import KeyIdentity

SEED = "6QN8DfuN9hjgHgPvLXqgzqYE3jRRGRrmJQZkd5tL8paR"


@pytest.fixture
def identity() -> KeyIdentity:
    """The well-known test identity."""
    return KeyIdentity.generate(SEED)


@pytest.fixture
def plain_root(tmp_path: Path) -> Path:
    """Provide an empty plaintext root."""
    root = tmp_path / "plain"
    root.mkdir()
    return root


@pytest.fixture
def cipher_root(tmp_path: Path) -> Path:
    """Provide an empty ciphertext root."""
    root = tmp_path / "cipher"
    root.mkdir()
    return root


@pytest.fixture
def mirror_home(tmp_path: Path) -> Path:
    """Provide a temporary mirror home directory."""
    home = tmp_path / ".didmirror"
    home.mkdir()
    return home


@pytest.fixture
def engine(mirror_home: Path) -> MirrorEngine:
    """An engine with the default wallet, auditing into ``mirror_home``."""
    return MirrorEngine(audit_home=mirror_home)


@pytest.fixture
def seed() -> str:
    """Base58 seed of the well-known test identity."""
    return SEED
