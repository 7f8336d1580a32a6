"""
Host function surface.

Flat functions taking only strings, byte sequences and integer lists,
for hosts that bind into Python without richer handle types. Hosts
without an unsigned byte type pass signed 8- or 16-bit values; every
variant converges on ``encrypt_file_u8``.

All functions share one module-level engine backed by the default
(zero-key) wallet, matching the reference deployment.
"""

from __future__ import annotations

from typing import Iterable, Union

from .engine import MirrorEngine
from .identity import KeyIdentity

_engine = MirrorEngine()


def _signed_to_unsigned(values: Iterable[int]) -> bytes:
    return bytes(v & 0xFF for v in values)


def generate_key_pair(initial_private_key: str) -> KeyIdentity:
    """Derive a key identity from a base58 seed."""
    return KeyIdentity.generate(initial_private_key)


def encrypt_file_u8(
    sender_did: str,
    sender_priv_key: str,
    recipient_did: str,
    recipient_pub_key: str,
    filename: str,
    file_data: Union[bytes, bytearray, list[int]],
    source_root: str,
    dest_root: str,
) -> str:
    """Encrypt ``file_data`` as the mirror of ``filename``; returns the ciphertext path."""
    sender = KeyIdentity.generate(sender_priv_key, did=sender_did)
    path = _engine.encrypt_and_store(
        filename,
        sender,
        recipient_did,
        recipient_pub_key,
        source_root,
        dest_root,
        content=bytes(file_data),
    )
    return str(path)


def encrypt_file_i8(
    sender_did: str,
    sender_priv_key: str,
    recipient_did: str,
    recipient_pub_key: str,
    filename: str,
    file_data: list[int],
    source_root: str,
    dest_root: str,
) -> str:
    return encrypt_file_u8(
        sender_did, sender_priv_key,
        recipient_did, recipient_pub_key,
        filename,
        _signed_to_unsigned(file_data),
        source_root,
        dest_root,
    )


def encrypt_file_i16(
    sender_did: str,
    sender_priv_key: str,
    recipient_did: str,
    recipient_pub_key: str,
    filename: str,
    file_data: list[int],
    source_root: str,
    dest_root: str,
) -> str:
    return encrypt_file_u8(
        sender_did, sender_priv_key,
        recipient_did, recipient_pub_key,
        filename,
        _signed_to_unsigned(file_data),
        source_root,
        dest_root,
    )


def decrypt_file_message(
    filepath: str,
    private_key: str,
    public_key: str,
    dest_root: str,
) -> str:
    """Restore the plaintext of ``filepath``; empty string if the file is gone."""
    recipient = KeyIdentity.generate(private_key)
    path = _engine.decrypt_and_restore(filepath, recipient, public_key, dest_root)
    return "" if path is None else str(path)


def delete_plaintext_file(
    sender_did: str,
    filename: str,
    source_root: str,
    dest_root: str,
) -> None:
    _engine.delete_plaintext_and_mirror(sender_did, filename, source_root, dest_root)


def delete_encrypted_file(
    filename: str,
    source_root: str,
    dest_root: str,
) -> None:
    _engine.delete_ciphertext_and_mirror(filename, source_root, dest_root)
