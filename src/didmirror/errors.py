"""
Error taxonomy for mirror operations.

Decode, cipher and envelope failures abort the single-file operation
they occur in. Missing files on the decrypt and delete paths are
handled inside the engine. Filesystem failures surface as ``OSError``.
"""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for every didmirror failure."""


class DecodeError(MirrorError, ValueError):
    """Raised for malformed base58, seeds, keys or header documents."""


class CipherError(MirrorError):
    """Raised when the filename cipher rejects a key, IV or padding."""


class EnvelopeError(MirrorError):
    """Raised when a payload cannot be sealed into an envelope."""


class OpenError(MirrorError):
    """Raised when an envelope fails authentication or is malformed."""


class NotFoundError(MirrorError, FileNotFoundError):
    """Raised when a mirror member vanished mid-operation."""


class ReconciliationError(MirrorError):
    """Raised when header and payload disagree about a file's identity."""
