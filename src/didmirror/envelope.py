"""
Envelope codec — authenticated encryption between two identities.

Envelopes follow the shape of a DIDComm authcrypt JWE in JSON
serialization::

    {"protected": b64url(header), "iv": ..., "ciphertext": ..., "tag": ...}

The protected header names the sender (``skid``) and recipient
(``kid``). The content key is HKDF-SHA256 over the static-static X25519
secret between sender and recipient, bound to the protected header, so
only the two parties can open the envelope and the recipient knows the
sender produced it. Content is AES-256-GCM with the protected header as
associated data.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError

from .encoding import KeyLike, as_key_bytes, b64url_decode, b64url_encode
from .errors import DecodeError, EnvelopeError, OpenError
from .identity import KeyIdentity
from .models import FilePayload
from .wallet import _derive_key

logger = logging.getLogger("didmirror.envelope")

ENVELOPE_TYPE = "application/didcomm-encrypted+json"
KEY_AGREEMENT = "ECDH-SS+X25519"
CONTENT_ENCRYPTION = "A256GCM"
NONCE_LENGTH = 12
TAG_LENGTH = 16

_KDF_INFO = b"didmirror:envelope:v1:"


def _content_key(private_key: bytes, peer_public_key: bytes, protected: str) -> bytes:
    secret = X25519PrivateKey.from_private_bytes(private_key)
    shared = secret.exchange(X25519PublicKey.from_public_bytes(peer_public_key))
    return _derive_key(shared, _KDF_INFO + protected.encode("ascii"))


def _protected_header(sender_did: str, recipient_did: str) -> str:
    header = {
        "typ": ENVELOPE_TYPE,
        "alg": KEY_AGREEMENT,
        "enc": CONTENT_ENCRYPTION,
        "skid": sender_did,
        "kid": recipient_did,
    }
    return b64url_encode(json.dumps(header, sort_keys=True, separators=(",", ":")).encode())


def seal_envelope(
    payload: FilePayload,
    sender: KeyIdentity,
    recipient_did: str,
    recipient_public_key: KeyLike,
) -> bytes:
    """Seal a payload from ``sender`` to the recipient.

    Args:
        payload: Path and content to protect.
        sender: Identity whose private key authenticates the envelope.
        recipient_did: Identifier the envelope is addressed to.
        recipient_public_key: Recipient's X25519 public key (raw or base58).

    Returns:
        The envelope as UTF-8 JSON bytes.

    Raises:
        EnvelopeError: If the recipient key is unusable.
    """
    try:
        peer = as_key_bytes(recipient_public_key, 32, "recipient public key")
        protected = _protected_header(sender.did, recipient_did)
        key = _content_key(sender.private_key, peer, protected)
    except (DecodeError, ValueError) as exc:
        raise EnvelopeError(f"Cannot seal envelope for {recipient_did}: {exc}") from exc

    nonce = secrets.token_bytes(NONCE_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, payload.to_json().encode("utf-8"), protected.encode("ascii"))
    document = {
        "protected": protected,
        "iv": b64url_encode(nonce),
        "ciphertext": b64url_encode(sealed[:-TAG_LENGTH]),
        "tag": b64url_encode(sealed[-TAG_LENGTH:]),
    }
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


def _parse(envelope: Union[bytes, str]) -> dict[str, str]:
    if isinstance(envelope, bytes):
        try:
            envelope = envelope.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise OpenError(f"Envelope is not UTF-8: {exc}") from exc
    try:
        document = json.loads(envelope)
    except json.JSONDecodeError as exc:
        raise OpenError(f"Envelope is not JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise OpenError("Envelope is not a JSON object")
    for field in ("protected", "iv", "ciphertext", "tag"):
        if not isinstance(document.get(field), str):
            raise OpenError(f"Envelope is missing '{field}'")
    return document


def peek_addressing(envelope: Union[bytes, str]) -> tuple[str, str]:
    """Return ``(sender_did, recipient_did)`` from the protected header.

    The values are only trustworthy once ``open_envelope`` has succeeded.
    """
    document = _parse(envelope)
    try:
        header = json.loads(b64url_decode(document["protected"]))
        return header["skid"], header["kid"]
    except (DecodeError, ValueError, KeyError, TypeError) as exc:
        raise OpenError(f"Unreadable protected header: {exc}") from exc


def open_envelope(
    envelope: Union[bytes, str],
    recipient_private_key: KeyLike,
    sender_public_key: KeyLike,
) -> FilePayload:
    """Authenticate and decrypt an envelope.

    Raises:
        OpenError: Wrong key, tampered envelope, or malformed structure.
    """
    document = _parse(envelope)
    protected = document["protected"]
    try:
        private = as_key_bytes(recipient_private_key, 32, "recipient private key")
        peer = as_key_bytes(sender_public_key, 32, "sender public key")
        key = _content_key(private, peer, protected)
        nonce = b64url_decode(document["iv"])
        sealed = b64url_decode(document["ciphertext"]) + b64url_decode(document["tag"])
        body = AESGCM(key).decrypt(nonce, sealed, protected.encode("ascii"))
    except InvalidTag as exc:
        raise OpenError("Envelope authentication failed") from exc
    except (DecodeError, ValueError, UnicodeEncodeError) as exc:
        raise OpenError(f"Cannot open envelope: {exc}") from exc

    try:
        return FilePayload.model_validate_json(body)
    except ValidationError as exc:
        raise OpenError(f"Envelope body is not a file payload: {exc}") from exc
