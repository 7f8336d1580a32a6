"""
Key identities — an X25519 key pair plus a decentralized identifier.

Identities are immutable values. Build one from a base58 seed and pass
it around by reference; nothing mutates it after construction.

The identifier defaults to a fixed ``did:key`` constant inherited from
the reference deployment. It is NOT derived from the key material unless
the caller asks for it (``did_from_public_key``) or supplies one.
"""

from __future__ import annotations

import secrets
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .encoding import b58decode, b58encode

CURVE25519_KEY_LENGTH = 32

DEFAULT_DID = "did:key:z6MkiTBz1ymuepAQ4HEHYSF1H8quG5GLVVQR3djdX3mDooWp"

# multicodec varint for x25519-pub
_X25519_PUB_MULTICODEC = b"\xec\x01"


def _public_from_private(private_key: bytes) -> bytes:
    secret = X25519PrivateKey.from_private_bytes(private_key)
    return secret.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def did_from_public_key(public_key: bytes) -> str:
    """Compute a ``did:key`` identifier for an X25519 public key."""
    return "did:key:z" + b58encode(_X25519_PUB_MULTICODEC + public_key)


class KeyIdentity(BaseModel):
    """A public/private key pair and the DID it answers to."""

    model_config = ConfigDict(frozen=True)

    did: str
    public_key: bytes
    private_key: bytes = Field(repr=False)

    @field_validator("public_key", "private_key")
    @classmethod
    def _check_length(cls, value: bytes) -> bytes:
        if len(value) != CURVE25519_KEY_LENGTH:
            raise ValueError(f"X25519 keys are {CURVE25519_KEY_LENGTH} bytes, got {len(value)}")
        return value

    @classmethod
    def generate(cls, seed: str, did: Optional[str] = None) -> "KeyIdentity":
        """Derive an identity from a base58-encoded 32-byte private scalar.

        Args:
            seed: Base58 private key bytes.
            did: Identifier to attach. Defaults to ``DEFAULT_DID``.

        Returns:
            The identity.

        Raises:
            DecodeError: If the seed is not base58 or not 32 bytes.
        """
        private = b58decode(seed, length=CURVE25519_KEY_LENGTH, what="seed")
        return cls(
            did=did or DEFAULT_DID,
            public_key=_public_from_private(private),
            private_key=private,
        )

    @classmethod
    def random(cls, did: Optional[str] = None) -> "KeyIdentity":
        """Generate a fresh identity from OS randomness."""
        return cls.generate(b58encode(secrets.token_bytes(CURVE25519_KEY_LENGTH)), did=did)

    @property
    def public_key_b58(self) -> str:
        return b58encode(self.public_key)

    @property
    def private_key_b58(self) -> str:
        return b58encode(self.private_key)

    def derived_did(self) -> str:
        """The ``did:key`` this identity would have if derived from its key."""
        return did_from_public_key(self.public_key)
