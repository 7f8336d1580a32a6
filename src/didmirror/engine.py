"""
Mirror Engine -- keeps a plaintext directory and its ciphertext twin in step.

Every operation is a self-contained, idempotent, single-file transaction:

    encrypt_and_store            plaintext -> header + envelope -> ciphertext
    decrypt_and_restore          ciphertext -> header -> envelope -> plaintext
    delete_plaintext_and_mirror  plaintext gone -> recompute name -> delete both
    delete_ciphertext_and_mirror ciphertext gone -> header or reverse lookup -> delete both

A mirror member is rewritten only when its counterpart is strictly newer
(or it does not exist yet). After every write the target's mtime is set
to the source's, so a second call with nothing changed performs no I/O.

There is no locking between the staleness check and the write. Callers
that race on the same path must serialize themselves.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import NamedTuple, Optional, Union

from .encoding import KeyLike
from .envelope import open_envelope, seal_envelope
from .errors import NotFoundError, ReconciliationError
from .filename import build_header, decrypt_filename, hash_filename, read_header
from .identity import KeyIdentity
from .models import FilePayload
from .record import read_envelope, write_record
from .wallet import Wallet

logger = logging.getLogger("didmirror.engine")

PathLike = Union[str, Path]


def relative_path(path: PathLike, root: PathLike) -> str:
    """Path of ``path`` relative to ``root`` in POSIX form.

    Prefix stripping is done on path components, so a root that recurs
    inside the path (``/a`` in ``/a/b/a/c``) is only removed once.

    Raises:
        ValueError: If ``path`` is not strictly inside ``root``.
    """
    path = Path(path).absolute()
    root = Path(root).absolute()
    try:
        rel = path.relative_to(root)
    except ValueError as exc:
        raise ValueError(f"{path} is not inside mirror root {root}") from exc
    if not rel.parts:
        raise ValueError(f"{path} is the mirror root itself")
    return rel.as_posix()


def resolve_inside(root: PathLike, rel: str) -> Path:
    """Join a relative mirror path onto ``root``, refusing escapes.

    Raises:
        ReconciliationError: If ``rel`` is absolute or climbs out of ``root``.
    """
    posix = PurePosixPath(rel)
    if not rel or posix.is_absolute() or ".." in posix.parts or "\\" in rel:
        raise ReconciliationError(f"Refusing to restore outside the mirror root: {rel!r}")
    return Path(root).joinpath(*posix.parts)


def is_stale(source: PathLike, target: PathLike) -> bool:
    """True if ``source`` exists and ``target`` is missing or strictly older."""
    try:
        source_mtime = os.stat(source).st_mtime_ns
    except FileNotFoundError:
        return False
    try:
        target_mtime = os.stat(target).st_mtime_ns
    except FileNotFoundError:
        return True
    return source_mtime > target_mtime


def sync_mtime(source: PathLike, target: PathLike) -> None:
    """Copy ``source``'s modification time onto ``target`` (atime untouched)."""
    source_mtime = os.stat(source).st_mtime_ns
    target_atime = os.stat(target).st_atime_ns
    os.utime(target, ns=(target_atime, source_mtime))


class MirrorOutcome(NamedTuple):
    """Path an operation acted on, and whether any file was written or removed."""

    path: Optional[Path]
    changed: bool


def _remove(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


class MirrorEngine:
    """Encrypt, restore, and delete mirror members one file at a time.

    Holds no per-file state, so one engine can serve any number of
    threads working on distinct files.

    The four ``*_and_*`` operations return the path they acted on.
    ``store``, ``restore``, ``remove_plaintext`` and ``remove_ciphertext``
    do the same work and return a ``MirrorOutcome`` that also says
    whether anything on disk changed.

    Args:
        wallet: Filename key lookup. Defaults to a zero-key wallet.
        audit_home: If set, events are appended to this home's audit log.
    """

    def __init__(
        self,
        wallet: Optional[Wallet] = None,
        audit_home: Optional[Path] = None,
    ) -> None:
        self.wallet = wallet if wallet is not None else Wallet()
        self.audit_home = audit_home

    # -------------------------------------------------------------------
    # Plaintext -> ciphertext
    # -------------------------------------------------------------------

    def ciphertext_path_for(
        self,
        sender_did: str,
        plaintext_path: PathLike,
        source_root: PathLike,
        dest_root: PathLike,
    ) -> Path:
        """Where the ciphertext twin of ``plaintext_path`` lives."""
        rel = relative_path(plaintext_path, source_root)
        return Path(dest_root) / hash_filename(rel, self.wallet.key_for(sender_did))

    def store(
        self,
        plaintext_path: PathLike,
        sender: KeyIdentity,
        recipient_did: str,
        recipient_public_key: KeyLike,
        source_root: PathLike,
        dest_root: PathLike,
        content: Optional[bytes] = None,
    ) -> MirrorOutcome:
        """Write (or keep) the ciphertext twin of a plaintext file.

        Args:
            plaintext_path: File under ``source_root``.
            sender: Identity sealing the envelope.
            recipient_did: Identifier the envelope is addressed to.
            recipient_public_key: Recipient's X25519 public key.
            source_root: Plaintext root.
            dest_root: Ciphertext root.
            content: File bytes if the caller already has them; read from
                ``plaintext_path`` otherwise.

        Returns:
            The ciphertext path; ``changed`` is False when it was current.

        Raises:
            ValueError: If ``plaintext_path`` is outside ``source_root``.
            CipherError: If the relative path is too long to mirror.
            EnvelopeError: If the envelope cannot be sealed.
            OSError: On filesystem failures.
        """
        plaintext_path = Path(plaintext_path)
        rel = relative_path(plaintext_path, source_root)
        header = build_header(rel, self.wallet.key_for(sender.did))
        ciphertext_path = Path(dest_root) / header.filename_mac

        if ciphertext_path.exists() and not is_stale(plaintext_path, ciphertext_path):
            logger.debug("Mirror current for %s, skipping", rel)
            return MirrorOutcome(ciphertext_path, False)

        data = plaintext_path.read_bytes() if content is None else bytes(content)
        envelope = seal_envelope(
            FilePayload(relative_path=rel, content=data),
            sender,
            recipient_did,
            recipient_public_key,
        )
        write_record(ciphertext_path, header, envelope)

        if plaintext_path.exists():
            sync_mtime(plaintext_path, ciphertext_path)
        else:
            logger.debug("Plaintext %s absent, ciphertext mtime left as written", rel)

        logger.info(
            "Mirrored %s -> %s (%d bytes, %s -> %s)",
            rel, ciphertext_path.name, len(data), sender.did, recipient_did,
        )
        self._audit(
            "MIRROR_WRITE",
            f"Encrypted {rel}",
            ciphertext=ciphertext_path.name,
            peer=recipient_did,
        )
        return MirrorOutcome(ciphertext_path, True)

    def encrypt_and_store(
        self,
        plaintext_path: PathLike,
        sender: KeyIdentity,
        recipient_did: str,
        recipient_public_key: KeyLike,
        source_root: PathLike,
        dest_root: PathLike,
        content: Optional[bytes] = None,
    ) -> Path:
        """Same as ``store``; returns only the ciphertext path."""
        return self.store(
            plaintext_path, sender, recipient_did, recipient_public_key,
            source_root, dest_root, content,
        ).path

    # -------------------------------------------------------------------
    # Ciphertext -> plaintext
    # -------------------------------------------------------------------

    def restore(
        self,
        ciphertext_path: PathLike,
        recipient: KeyIdentity,
        sender_public_key: KeyLike,
        dest_root: PathLike,
    ) -> MirrorOutcome:
        """Restore the plaintext twin of a ciphertext file.

        The envelope's own relative path decides where the file is
        written. It must match the name decrypted from the header; a
        mismatch is a reconciliation bug and nothing is written.

        Returns:
            The plaintext path, or a None path if the ciphertext is gone
            (a remote deletion raced this call).

        Raises:
            DecodeError: If the file does not start with a header.
            CipherError: If the header's filename cannot be decrypted.
            OpenError: If the envelope fails authentication.
            ReconciliationError: If header and payload disagree.
        """
        ciphertext_path = Path(ciphertext_path)
        header = read_header(ciphertext_path)
        if header is None:
            logger.debug("No header at %s, nothing to restore", ciphertext_path)
            return MirrorOutcome(None, False)

        name = decrypt_filename(header)
        candidate = resolve_inside(dest_root, name)

        if not is_stale(ciphertext_path, candidate):
            logger.debug("Plaintext current for %s, skipping", name)
            return MirrorOutcome(candidate, False)

        try:
            envelope = read_envelope(ciphertext_path)
        except NotFoundError:
            logger.debug("Ciphertext %s vanished before restore", ciphertext_path.name)
            return MirrorOutcome(None, False)

        payload = open_envelope(envelope, recipient.private_key, sender_public_key)
        if payload.relative_path != name:
            raise ReconciliationError(
                f"{ciphertext_path.name}: header names {name!r} but "
                f"payload names {payload.relative_path!r}"
            )

        output_path = resolve_inside(dest_root, payload.relative_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(payload.content)
        sync_mtime(ciphertext_path, output_path)

        logger.info(
            "Restored %s from %s (%d bytes)",
            payload.relative_path, ciphertext_path.name, len(payload.content),
        )
        self._audit(
            "MIRROR_RESTORE",
            f"Decrypted {payload.relative_path}",
            ciphertext=ciphertext_path.name,
        )
        return MirrorOutcome(output_path, True)

    def decrypt_and_restore(
        self,
        ciphertext_path: PathLike,
        recipient: KeyIdentity,
        sender_public_key: KeyLike,
        dest_root: PathLike,
    ) -> Optional[Path]:
        """Same as ``restore``; returns only the plaintext path (or None)."""
        return self.restore(ciphertext_path, recipient, sender_public_key, dest_root).path

    # -------------------------------------------------------------------
    # Deletion propagation
    # -------------------------------------------------------------------

    def remove_plaintext(
        self,
        sender: Union[KeyIdentity, str],
        plaintext_path: PathLike,
        source_root: PathLike,
        dest_root: PathLike,
    ) -> MirrorOutcome:
        """Delete a plaintext file and its ciphertext twin.

        Missing files on either side are ignored, so repeating the call
        is a no-op.

        Args:
            sender: Identity (or bare DID) whose filename key names the twin.

        Returns:
            The ciphertext path that was (or would have been) removed.
        """
        did = sender.did if isinstance(sender, KeyIdentity) else sender
        plaintext_path = Path(plaintext_path)
        ciphertext_path = self.ciphertext_path_for(did, plaintext_path, source_root, dest_root)

        removed_plain = _remove(plaintext_path)
        removed_cipher = _remove(ciphertext_path)
        changed = removed_plain or removed_cipher
        if changed:
            logger.info(
                "Deleted %s and mirror %s", plaintext_path.name, ciphertext_path.name,
            )
            self._audit(
                "MIRROR_DELETE",
                f"Deleted plaintext {plaintext_path.name}",
                ciphertext=ciphertext_path.name,
            )
        return MirrorOutcome(ciphertext_path, changed)

    def delete_plaintext_and_mirror(
        self,
        sender: Union[KeyIdentity, str],
        plaintext_path: PathLike,
        source_root: PathLike,
        dest_root: PathLike,
    ) -> Path:
        """Same as ``remove_plaintext``; returns only the ciphertext path."""
        return self.remove_plaintext(sender, plaintext_path, source_root, dest_root).path

    def remove_ciphertext(
        self,
        ciphertext_path: PathLike,
        source_root: PathLike,
        dest_root: PathLike,
    ) -> MirrorOutcome:
        """Delete a ciphertext file and its plaintext twin.

        With the header still readable the plaintext name comes from it.
        Without it (the ciphertext was already deleted by a peer) the
        plaintext is found by reverse lookup under the wallet's default key.

        Args:
            ciphertext_path: File under ``source_root``.
            source_root: Ciphertext root.
            dest_root: Plaintext root.

        Returns:
            The plaintext path that was targeted, or a None path if no match.
        """
        ciphertext_path = Path(ciphertext_path)
        ciphertext_name = relative_path(ciphertext_path, source_root)

        header = read_header(ciphertext_path)
        if header is not None:
            plaintext_path: Optional[Path] = resolve_inside(dest_root, decrypt_filename(header))
        else:
            plaintext_path = self.find_plaintext_for(
                ciphertext_name, dest_root, self.wallet.default_key,
            )
            self._audit(
                "MIRROR_REVERSE_LOOKUP",
                f"Reverse lookup for {ciphertext_name}",
                ciphertext=ciphertext_name,
                match=plaintext_path.name if plaintext_path else None,
            )

        changed = _remove(ciphertext_path)
        if plaintext_path is not None and _remove(plaintext_path):
            changed = True
            logger.info(
                "Deleted %s following mirror %s", plaintext_path.name, ciphertext_name,
            )
            self._audit(
                "MIRROR_DELETE",
                f"Deleted plaintext {plaintext_path.name}",
                ciphertext=ciphertext_name,
            )
        return MirrorOutcome(plaintext_path, changed)

    def delete_ciphertext_and_mirror(
        self,
        ciphertext_path: PathLike,
        source_root: PathLike,
        dest_root: PathLike,
    ) -> Optional[Path]:
        """Same as ``remove_ciphertext``; returns only the plaintext path (or None)."""
        return self.remove_ciphertext(ciphertext_path, source_root, dest_root).path

    def find_plaintext_for(
        self,
        ciphertext_name: str,
        plaintext_root: PathLike,
        key: KeyLike,
    ) -> Optional[Path]:
        """Reverse lookup: which direct child of ``plaintext_root`` hashes to ``ciphertext_name``.

        Linear in the number of entries, stops at the first match. Not
        safe against concurrent writes into the directory; a miss is
        reported as None.
        """
        root = Path(plaintext_root)
        if not root.is_dir():
            return None
        with os.scandir(root) as entries:
            for entry in entries:
                if not entry.is_file():
                    continue
                if hash_filename(entry.name, key) == ciphertext_name:
                    logger.debug("Reverse lookup matched %s -> %s", ciphertext_name, entry.name)
                    return root / entry.name
        logger.debug("Reverse lookup found no plaintext for %s", ciphertext_name)
        return None

    def _audit(self, event_type: str, detail: str, **fields) -> None:
        """Log a mirror event to the audit trail."""
        if self.audit_home is None:
            return
        try:
            from .audit import AuditLog
            AuditLog(self.audit_home).record(event_type, detail, **fields)
        except OSError:
            logger.debug("Audit log unavailable: %s: %s", event_type, detail)
