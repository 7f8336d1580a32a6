"""
Pydantic models for mirror records and configuration.

A ciphertext file is a ``FileHeader`` JSON document followed directly by
a sealed envelope document. The ``FilePayload`` only ever exists inside
an envelope.
"""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class FileHeader(BaseModel):
    """Leading record of a ciphertext file.

    All three fields are base58 strings. The mac is written under its
    historical on-disk name ``filename_hmac256``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    encrypted_filename: str
    filename_mac: str = Field(alias="filename_hmac256")
    key_id: str

    def to_json(self) -> str:
        """Serialize in on-disk field order."""
        return self.model_dump_json(by_alias=True)


class FilePayload(BaseModel):
    """Relative path plus raw content, sealed inside an envelope.

    On the wire the fields are ``file_name`` and ``file_data`` (base64).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    relative_path: str = Field(alias="file_name")
    content: bytes = Field(default=b"", alias="file_data")

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return base64.b64decode(value.encode("ascii"), validate=True)
            except (binascii.Error, UnicodeEncodeError) as exc:
                raise ValueError(f"file_data is not base64: {exc}") from exc
        if isinstance(value, list):
            return bytes(value)
        return value

    @field_serializer("content", when_used="json")
    def _encode_content(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class MirrorConfig(BaseModel):
    """Mirror configuration persisted in ``<home>/config/config.yaml``."""

    plaintext_root: Optional[Path] = None
    ciphertext_root: Optional[Path] = None

    # Identity: the seed itself never lives in the config file
    seed_env_var: str = "DIDMIRROR_SEED"
    did: Optional[str] = None

    # The other side of the mirror; None means "this identity" (two devices)
    peer_did: Optional[str] = None
    peer_public_key: Optional[str] = None

    default_key: Optional[str] = Field(
        default=None,
        description="Base58 filename key used for reverse lookup and unknown DIDs",
    )
    filename_keys: dict[str, str] = Field(
        default_factory=dict,
        description="Base58 filename keys for specific sender DIDs",
    )
    ignore_names: list[str] = Field(default_factory=lambda: [".DS_Store"])
    audit: bool = True
