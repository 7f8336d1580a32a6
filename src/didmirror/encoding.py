"""Base58 and base64url helpers shared by the codecs."""

from __future__ import annotations

import base64
import binascii
from typing import Optional, Union

import base58

from .errors import DecodeError

KeyLike = Union[bytes, bytearray, str]


def b58encode(data: bytes) -> str:
    """Encode bytes as a base58 (bitcoin alphabet) string."""
    return base58.b58encode(bytes(data)).decode("ascii")


def b58decode(value: str, length: Optional[int] = None, what: str = "value") -> bytes:
    """Decode a base58 string, optionally enforcing the decoded length.

    Args:
        value: Base58 text.
        length: Required number of decoded bytes, or None for any.
        what: Name used in error messages.

    Returns:
        The decoded bytes.

    Raises:
        DecodeError: On a non-string, an invalid character, or a length mismatch.
    """
    if not isinstance(value, str) or not value:
        raise DecodeError(f"{what} must be a non-empty base58 string")
    try:
        raw = base58.b58decode(value)
    except ValueError as exc:
        raise DecodeError(f"{what} is not valid base58: {exc}") from exc
    if length is not None and len(raw) != length:
        raise DecodeError(f"{what} must decode to {length} bytes, got {len(raw)}")
    return raw


def as_key_bytes(value: KeyLike, length: int = 32, what: str = "key") -> bytes:
    """Accept raw key bytes or their base58 form."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != length:
            raise DecodeError(f"{what} must be {length} bytes, got {len(value)}")
        return bytes(value)
    return b58decode(value, length=length, what=what)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    """Decode unpadded base64url.

    Raises:
        DecodeError: If the text is not base64url.
    """
    if not isinstance(value, str):
        raise DecodeError("base64url value must be a string")
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise DecodeError(f"invalid base64url data: {exc}") from exc
