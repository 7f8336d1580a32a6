"""
Wallet — the filename-key lookup a DID wallet would normally provide.

Filename hashing and encryption need a 32-byte AES key per sender DID.
Real deployments keep those keys in a decentralized identity wallet;
this stand-in holds them in memory, can derive them from a master
secret via HKDF, and falls back to a well-known default key for any DID
it does not know. The reference wallet returns the all-zero key for
every identifier, which is what ``Wallet()`` does out of the box.

The default key is also the only key reverse lookup can try when a
ciphertext file disappeared before its header could be read.
"""

from __future__ import annotations

import logging
from typing import Optional

from .encoding import KeyLike, as_key_bytes

logger = logging.getLogger("didmirror.wallet")

AES256_KEY_LENGTH = 32
ZERO_KEY = bytes(AES256_KEY_LENGTH)


def _derive_key(master_material: bytes, info: bytes, length: int = AES256_KEY_LENGTH) -> bytes:
    """Derive a key using HKDF-SHA256.

    Args:
        master_material: Input keying material.
        info: Context and application-specific info string.
        length: Desired output key length in bytes.

    Returns:
        Derived key bytes.
    """
    from cryptography.hazmat.primitives.hashes import SHA256
    from cryptography.hazmat.primitives.kdf.hkdf import HKDF

    hkdf = HKDF(
        algorithm=SHA256(),
        length=length,
        salt=None,
        info=info,
    )
    return hkdf.derive(master_material)


class Wallet:
    """In-memory DID -> filename key map with a default fallback.

    Args:
        keys: Initial DID -> key mapping (raw bytes or base58).
        default_key: Key returned for unknown DIDs. Defaults to all zeros.
    """

    def __init__(
        self,
        keys: Optional[dict[str, KeyLike]] = None,
        default_key: Optional[KeyLike] = None,
    ) -> None:
        self._keys: dict[str, bytes] = {}
        self._default = (
            ZERO_KEY if default_key is None
            else as_key_bytes(default_key, AES256_KEY_LENGTH, "default key")
        )
        for did, key in (keys or {}).items():
            self.register(did, key)

    @property
    def default_key(self) -> bytes:
        return self._default

    def register(self, did: str, key: KeyLike) -> bytes:
        """Store an explicit filename key for a DID.

        Raises:
            DecodeError: If the key is not 32 bytes (or base58 of 32 bytes).
        """
        raw = as_key_bytes(key, AES256_KEY_LENGTH, f"filename key for {did}")
        self._keys[did] = raw
        logger.debug("Registered filename key for %s", did)
        return raw

    def derive(self, did: str, master: bytes) -> bytes:
        """Derive and register a per-DID key from a master secret."""
        raw = _derive_key(master, f"didmirror:filename-key:{did}".encode())
        self._keys[did] = raw
        return raw

    def key_for(self, did: str) -> bytes:
        """Return the filename key for a DID, or the default key."""
        key = self._keys.get(did)
        if key is None:
            return self._default
        return key
