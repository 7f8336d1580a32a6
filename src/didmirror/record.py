"""
Ciphertext record framing.

A ciphertext file holds two JSON documents back to back with no
delimiter: the ``FileHeader`` and then the sealed envelope. Readers walk
the stream value by value with ``JSONDecoder.raw_decode``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator, Union

from .errors import DecodeError, NotFoundError, OpenError
from .models import FileHeader

logger = logging.getLogger("didmirror.record")

_decoder = json.JSONDecoder()


def _skip_whitespace(text: str, idx: int) -> int:
    end = len(text)
    while idx < end and text[idx].isspace():
        idx += 1
    return idx


def iter_documents(text: str) -> Iterator[tuple[Any, int, int]]:
    """Yield ``(value, start, end)`` for each JSON value in ``text``.

    Raises:
        json.JSONDecodeError: When a value is not well-formed.
    """
    idx = _skip_whitespace(text, 0)
    while idx < len(text):
        value, end = _decoder.raw_decode(text, idx)
        yield value, idx, end
        idx = _skip_whitespace(text, end)


def _read_text(path: Path) -> str:
    try:
        raw = path.read_bytes()
    except FileNotFoundError as exc:
        raise NotFoundError(f"Ciphertext file vanished: {path}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"{path.name} is not a ciphertext record: {exc}") from exc


def write_record(path: Union[str, Path], header: FileHeader, envelope: bytes) -> Path:
    """Create (or truncate) ``path`` and write header then envelope."""
    path = Path(path)
    with path.open("wb") as f:
        f.write(header.to_json().encode("utf-8"))
        f.write(envelope)
    return path


def parse_header(text: str, name: str = "record") -> FileHeader:
    """Parse the leading document of a record as a ``FileHeader``.

    Raises:
        DecodeError: If the first value is missing or not a valid header.
    """
    try:
        first = next(iter_documents(text), None)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Malformed header in {name}: {exc}") from exc
    if first is None:
        raise DecodeError(f"{name} is empty")
    value = first[0]
    if not isinstance(value, dict):
        raise DecodeError(f"Header in {name} is not an object")
    try:
        return FileHeader.model_validate(value)
    except ValueError as exc:
        raise DecodeError(f"Invalid header in {name}: {exc}") from exc


def read_envelope(path: Union[str, Path]) -> bytes:
    """Return the envelope document that follows the header.

    Raises:
        NotFoundError: If the file is gone.
        OpenError: If no well-formed second document exists.
    """
    path = Path(path)
    text = _read_text(path)
    documents = iter_documents(text)
    try:
        next(documents)
        _, start, end = next(documents)
    except StopIteration as exc:
        raise OpenError(f"No envelope after header in {path.name}") from exc
    except json.JSONDecodeError as exc:
        raise OpenError(f"Malformed envelope in {path.name}: {exc}") from exc
    return text[start:end].encode("utf-8")


def read_record_text(path: Path) -> str:
    return _read_text(path)
