"""
Filename codec — deterministic names, encrypted paths.

The ciphertext name of a file is the base58 HMAC-SHA256 of its relative
path under the sender's filename key. Because the name is a pure
function of (path, key), either side can locate the other without an
index.

The relative path itself travels AES-256-CBC encrypted in the header.
The IV is the first 16 bytes of the mac. That makes the cipher
deterministic and the IV public: acceptable for a mirror whose names
are already deterministic, NOT acceptable for general content. A
production format would store a random IV in the header instead.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .encoding import KeyLike, as_key_bytes, b58decode, b58encode
from .errors import CipherError, DecodeError, NotFoundError
from .models import FileHeader
from .record import parse_header, read_record_text

logger = logging.getLogger("didmirror.filename")

MAX_PATH_LENGTH = 1024
AES256_KEY_LENGTH = 32
AES256_IV_LENGTH = 16


def hash_filename(relative_path: str, key: KeyLike) -> str:
    """Keyed hash of a relative path, base58-encoded.

    Args:
        relative_path: Path relative to the plaintext root.
        key: Filename key, raw or base58.

    Returns:
        The mac, which doubles as the ciphertext file name.
    """
    raw_key = as_key_bytes(key, AES256_KEY_LENGTH, "filename key")
    mac = hmac.new(raw_key, relative_path.encode("utf-8"), hashlib.sha256)
    return b58encode(mac.digest())


def derive_iv(mac: str) -> bytes:
    """First 16 decoded bytes of a filename mac."""
    raw = b58decode(mac, what="filename mac")
    if len(raw) < AES256_IV_LENGTH:
        raise DecodeError(f"filename mac too short for an IV ({len(raw)} bytes)")
    return raw[:AES256_IV_LENGTH]


def _cipher(key: bytes, iv: bytes) -> Cipher:
    if len(key) != AES256_KEY_LENGTH:
        raise CipherError(f"AES-256 needs a {AES256_KEY_LENGTH}-byte key, got {len(key)}")
    if len(iv) != AES256_IV_LENGTH:
        raise CipherError(f"CBC needs a {AES256_IV_LENGTH}-byte IV, got {len(iv)}")
    return Cipher(algorithms.AES(key), modes.CBC(iv))


def encrypt_filename(relative_path: str, key: bytes, iv: bytes) -> bytes:
    """AES-256-CBC/PKCS7 over the path, truncated to ``MAX_PATH_LENGTH`` bytes.

    Raises:
        CipherError: On a bad key or IV length.
    """
    plaintext = relative_path.encode("utf-8")[:MAX_PATH_LENGTH]
    encryptor = _cipher(key, iv).encryptor()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    return encryptor.update(padded) + encryptor.finalize()


def decrypt_filename(header: FileHeader) -> str:
    """Recover the relative path stored in a header.

    Raises:
        CipherError: On any failure (bad key, bad padding, non-UTF-8 result).
    """
    try:
        iv = derive_iv(header.filename_mac)
        key = b58decode(header.key_id, what="key_id")
        ciphertext = b58decode(header.encrypted_filename, what="encrypted_filename")
    except DecodeError as exc:
        raise CipherError(f"Cannot decrypt filename: {exc}") from exc

    decryptor = _cipher(key, iv).decryptor()
    try:
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise CipherError(f"Cannot decrypt filename: {exc}") from exc


def build_header(relative_path: str, key: KeyLike) -> FileHeader:
    """Hash, derive the IV, and encrypt the path into a ``FileHeader``.

    Raises:
        CipherError: If the path is longer than ``MAX_PATH_LENGTH`` bytes.
            The header could only carry a truncated name, which would
            never match the payload on restore.
    """
    encoded_length = len(relative_path.encode("utf-8"))
    if encoded_length > MAX_PATH_LENGTH:
        raise CipherError(
            f"Relative path is {encoded_length} bytes; at most {MAX_PATH_LENGTH} can be mirrored"
        )
    raw_key = as_key_bytes(key, AES256_KEY_LENGTH, "filename key")
    mac = hash_filename(relative_path, raw_key)
    encrypted = encrypt_filename(relative_path, raw_key, derive_iv(mac))
    return FileHeader(
        encrypted_filename=b58encode(encrypted),
        filename_mac=mac,
        key_id=b58encode(raw_key),
    )


def read_header(path: Union[str, Path]) -> Optional[FileHeader]:
    """Read the header of a ciphertext file.

    Returns:
        The header, or None if the file does not exist.

    Raises:
        DecodeError: If the file exists but does not start with a header.
    """
    path = Path(path)
    if not path.is_file():
        return None
    try:
        text = read_record_text(path)
    except NotFoundError:
        logger.debug("Ciphertext %s vanished before its header was read", path.name)
        return None
    return parse_header(text, path.name)
