"""Tests for the mirror engine.

Covers the four single-file operations, staleness, deletion symmetry,
reverse lookup, and the path helpers they rely on.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from didmirror.audit import AuditLog
from didmirror.engine import (
    MirrorEngine,
    is_stale,
    relative_path,
    resolve_inside,
)
from didmirror.envelope import seal_envelope
from didmirror.errors import CipherError, DecodeError, OpenError, ReconciliationError
from didmirror.filename import MAX_PATH_LENGTH, build_header, hash_filename, read_header
from didmirror.identity import KeyIdentity
from didmirror.models import FilePayload
from didmirror.record import write_record
from didmirror.wallet import ZERO_KEY, Wallet


def _touch_forward(path: Path, seconds: int = 10) -> None:
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


def _encrypt(engine: MirrorEngine, identity: KeyIdentity, plain: Path, plain_root: Path, cipher_root: Path) -> Path:
    return engine.encrypt_and_store(
        plain, identity, identity.did, identity.public_key, plain_root, cipher_root,
    )


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


class TestPathHelpers:
    """Tests for relativization, containment and staleness."""

    def test_relative_path(self, tmp_path: Path) -> None:
        """Nested paths come back in POSIX form without a leading slash."""
        assert relative_path(tmp_path / "a" / "b.txt", tmp_path) == "a/b.txt"

    def test_relative_path_recurring_root(self, tmp_path: Path) -> None:
        """A root name that recurs inside the path is stripped once."""
        root = tmp_path / "data"
        assert relative_path(root / "x" / "data" / "f", root) == "x/data/f"

    def test_relative_path_outside(self, tmp_path: Path) -> None:
        """Paths outside the root are rejected."""
        with pytest.raises(ValueError):
            relative_path(tmp_path / "other" / "f", tmp_path / "root")

    def test_relative_path_sibling_prefix(self, tmp_path: Path) -> None:
        """A sibling sharing the root's string prefix is outside it."""
        with pytest.raises(ValueError):
            relative_path(tmp_path / "rootx" / "f", tmp_path / "root")

    def test_relative_path_root_itself(self, tmp_path: Path) -> None:
        """The root is not a mirror member."""
        with pytest.raises(ValueError):
            relative_path(tmp_path, tmp_path)

    def test_resolve_inside_rejects_escape(self, tmp_path: Path) -> None:
        """Restores never leave the root."""
        for bad in ("../evil", "/etc/passwd", "a/../../b", ""):
            with pytest.raises(ReconciliationError):
                resolve_inside(tmp_path, bad)

    def test_resolve_inside(self, tmp_path: Path) -> None:
        """Relative paths join onto the root."""
        assert resolve_inside(tmp_path, "a/b.txt") == tmp_path / "a" / "b.txt"

    def test_is_stale(self, tmp_path: Path) -> None:
        """Missing targets are stale, missing sources never are."""
        source = tmp_path / "s"
        target = tmp_path / "t"
        assert not is_stale(source, target)
        source.write_text("x")
        assert is_stale(source, target)
        target.write_text("y")
        os.utime(target, ns=(0, source.stat().st_mtime_ns))
        assert not is_stale(source, target)
        _touch_forward(source)
        assert is_stale(source, target)


# ---------------------------------------------------------------------------
# encrypt_and_store
# ---------------------------------------------------------------------------


class TestEncryptAndStore:
    """Tests for plaintext -> ciphertext."""

    def test_writes_named_record(self, engine, identity, plain_root, cipher_root) -> None:
        """The ciphertext is named by the keyed hash of the relative path."""
        plain = plain_root / "file1.txt"
        plain.write_bytes(b"hello")
        result = _encrypt(engine, identity, plain, plain_root, cipher_root)
        assert result == cipher_root / hash_filename("file1.txt", ZERO_KEY)
        assert result.exists()
        assert read_header(result) is not None

    def test_mtime_synced(self, engine, identity, plain_root, cipher_root) -> None:
        """The ciphertext carries the plaintext's mtime."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"a")
        result = _encrypt(engine, identity, plain, plain_root, cipher_root)
        assert result.stat().st_mtime_ns == plain.stat().st_mtime_ns

    def test_second_call_no_write(self, engine, identity, plain_root, cipher_root) -> None:
        """An unmodified plaintext leaves the ciphertext untouched."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"a")
        first = _encrypt(engine, identity, plain, plain_root, cipher_root)
        before = first.read_bytes()
        second = _encrypt(engine, identity, plain, plain_root, cipher_root)
        assert second == first
        assert second.read_bytes() == before

    def test_touch_rewrites(self, engine, identity, plain_root, cipher_root) -> None:
        """A newer plaintext produces a new ciphertext with synced mtime."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"version one")
        result = _encrypt(engine, identity, plain, plain_root, cipher_root)
        before = result.read_bytes()

        plain.write_bytes(b"version two")
        _touch_forward(plain)
        again = _encrypt(engine, identity, plain, plain_root, cipher_root)

        assert again == result
        assert again.read_bytes() != before
        assert again.stat().st_mtime_ns >= plain.stat().st_mtime_ns

    def test_nested_path(self, engine, identity, plain_root, cipher_root) -> None:
        """Subdirectory files hash their full relative path."""
        nested = plain_root / "docs" / "a.txt"
        nested.parent.mkdir()
        nested.write_bytes(b"x")
        result = _encrypt(engine, identity, nested, plain_root, cipher_root)
        assert result.name == hash_filename("docs/a.txt", ZERO_KEY)

    def test_sender_key_from_wallet(self, identity, plain_root, cipher_root) -> None:
        """The sender's registered key names the ciphertext."""
        key = bytes(range(32))
        engine = MirrorEngine(wallet=Wallet({identity.did: key}))
        plain = plain_root / "a.txt"
        plain.write_bytes(b"x")
        result = _encrypt(engine, identity, plain, plain_root, cipher_root)
        assert result.name == hash_filename("a.txt", key)

    def test_outside_root(self, engine, identity, tmp_path, plain_root, cipher_root) -> None:
        """Files outside the plaintext root are refused."""
        stray = tmp_path / "stray.txt"
        stray.write_bytes(b"x")
        with pytest.raises(ValueError):
            _encrypt(engine, identity, stray, plain_root, cipher_root)

    def test_audited(self, engine, identity, plain_root, cipher_root, mirror_home) -> None:
        """Writes land in the audit log."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"x")
        _encrypt(engine, identity, plain, plain_root, cipher_root)
        assert AuditLog(mirror_home).entries()[0].event_type == "MIRROR_WRITE"

    def test_path_too_long(self, engine, identity, plain_root, cipher_root) -> None:
        """A path the header cannot carry whole is refused before anything is written."""
        deep = plain_root
        for letter in "abcdef":
            deep = deep / (letter * 200)
        deep.mkdir(parents=True)
        plain = deep / "f.txt"
        plain.write_bytes(b"x")
        assert len(relative_path(plain, plain_root).encode("utf-8")) > MAX_PATH_LENGTH

        with pytest.raises(CipherError, match="at most 1024"):
            _encrypt(engine, identity, plain, plain_root, cipher_root)
        assert list(cipher_root.iterdir()) == []


# ---------------------------------------------------------------------------
# decrypt_and_restore
# ---------------------------------------------------------------------------


class TestDecryptAndRestore:
    """Tests for ciphertext -> plaintext."""

    def test_restore_into_fresh_root(self, engine, identity, plain_root, cipher_root, tmp_path) -> None:
        """Content and mtime arrive on the other side."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"\x41\x41\x41\xea")
        cipher = _encrypt(engine, identity, plain, plain_root, cipher_root)

        other = tmp_path / "other"
        restored = engine.decrypt_and_restore(cipher, identity, identity.public_key, other)
        assert restored == other / "a.txt"
        assert restored.read_bytes() == b"AAA\xea"
        assert restored.stat().st_mtime_ns == cipher.stat().st_mtime_ns

    def test_restore_nested(self, engine, identity, plain_root, cipher_root, tmp_path) -> None:
        """Parent directories are created as needed."""
        nested = plain_root / "deep" / "er" / "a.txt"
        nested.parent.mkdir(parents=True)
        nested.write_bytes(b"x")
        cipher = _encrypt(engine, identity, nested, plain_root, cipher_root)
        restored = engine.decrypt_and_restore(cipher, identity, identity.public_key, tmp_path / "o")
        assert restored == tmp_path / "o" / "deep" / "er" / "a.txt"

    def test_current_plaintext_skipped(self, engine, identity, plain_root, cipher_root) -> None:
        """An up-to-date plaintext is returned without rewriting."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"original")
        cipher = _encrypt(engine, identity, plain, plain_root, cipher_root)
        plain.write_bytes(b"local edit")
        os.utime(plain, ns=(0, cipher.stat().st_mtime_ns))

        result = engine.decrypt_and_restore(cipher, identity, identity.public_key, plain_root)
        assert result == plain
        assert plain.read_bytes() == b"local edit"

    def test_missing_ciphertext(self, engine, identity, cipher_root, plain_root) -> None:
        """A vanished ciphertext is a None result, not an error."""
        assert engine.decrypt_and_restore(cipher_root / "gone", identity, identity.public_key, plain_root) is None

    def test_not_a_record(self, engine, identity, cipher_root, plain_root) -> None:
        """A junk file surfaces as a decode error."""
        junk = cipher_root / "junk"
        junk.write_text("nope")
        with pytest.raises(DecodeError):
            engine.decrypt_and_restore(junk, identity, identity.public_key, plain_root)

    def test_wrong_key(self, engine, identity, plain_root, cipher_root, tmp_path) -> None:
        """A recipient who is not addressed cannot restore."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"x")
        cipher = _encrypt(engine, identity, plain, plain_root, cipher_root)
        eve = KeyIdentity.random()
        with pytest.raises(OpenError):
            engine.decrypt_and_restore(cipher, eve, identity.public_key, tmp_path / "o")
        assert not (tmp_path / "o" / "a.txt").exists()

    def test_header_payload_mismatch(self, engine, identity, cipher_root, tmp_path) -> None:
        """Disagreeing header and payload names write nothing."""
        header = build_header("a.txt", ZERO_KEY)
        envelope = seal_envelope(
            FilePayload(relative_path="b.txt", content=b"x"),
            identity, identity.did, identity.public_key,
        )
        cipher = write_record(cipher_root / header.filename_mac, header, envelope)
        out = tmp_path / "o"
        with pytest.raises(ReconciliationError):
            engine.decrypt_and_restore(cipher, identity, identity.public_key, out)
        assert not (out / "a.txt").exists()
        assert not (out / "b.txt").exists()

    def test_between_two_identities(self, plain_root, cipher_root, tmp_path) -> None:
        """Alice encrypts for Bob, Bob restores with Alice's public key."""
        alice = KeyIdentity.random(did="did:example:alice")
        bob = KeyIdentity.random(did="did:example:bob")
        engine = MirrorEngine()
        plain = plain_root / "shared.txt"
        plain.write_bytes(b"for bob")
        cipher = engine.encrypt_and_store(plain, alice, bob.did, bob.public_key, plain_root, cipher_root)
        restored = engine.decrypt_and_restore(cipher, bob, alice.public_key, tmp_path / "bob")
        assert restored.read_bytes() == b"for bob"


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


class TestDeletion:
    """Tests for deletion propagation in both directions."""

    def test_delete_plaintext_and_mirror(self, engine, identity, plain_root, cipher_root) -> None:
        """Both files go, and a repeat is a no-op."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"x")
        cipher = _encrypt(engine, identity, plain, plain_root, cipher_root)

        removed = engine.delete_plaintext_and_mirror(identity, plain, plain_root, cipher_root)
        assert removed == cipher
        assert not plain.exists()
        assert not cipher.exists()

        engine.delete_plaintext_and_mirror(identity, plain, plain_root, cipher_root)

    def test_delete_plaintext_by_did(self, engine, identity, plain_root, cipher_root) -> None:
        """A bare DID is enough to locate the mirror."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"x")
        cipher = _encrypt(engine, identity, plain, plain_root, cipher_root)
        engine.delete_plaintext_and_mirror(identity.did, plain, plain_root, cipher_root)
        assert not cipher.exists()

    def test_delete_ciphertext_with_header(self, engine, identity, plain_root, cipher_root) -> None:
        """A readable header names the plaintext to delete."""
        nested = plain_root / "docs" / "a.txt"
        nested.parent.mkdir()
        nested.write_bytes(b"x")
        cipher = _encrypt(engine, identity, nested, plain_root, cipher_root)

        result = engine.delete_ciphertext_and_mirror(cipher, cipher_root, plain_root)
        assert result == nested
        assert not nested.exists()
        assert not cipher.exists()

    def test_reverse_lookup(self, engine, identity, plain_root, cipher_root, mirror_home) -> None:
        """With the ciphertext already gone, exactly the matching plaintext is deleted."""
        ciphers = {}
        for i in range(5):
            plain = plain_root / f"file{i}.txt"
            plain.write_bytes(b"x")
            ciphers[i] = _encrypt(engine, identity, plain, plain_root, cipher_root)

        ciphers[3].unlink()
        result = engine.delete_ciphertext_and_mirror(ciphers[3], cipher_root, plain_root)

        assert result == plain_root / "file3.txt"
        remaining = sorted(p.name for p in plain_root.iterdir())
        assert remaining == ["file0.txt", "file1.txt", "file2.txt", "file4.txt"]
        events = [e.event_type for e in AuditLog(mirror_home).entries()]
        assert "MIRROR_REVERSE_LOOKUP" in events

    def test_reverse_lookup_no_match(self, engine, plain_root, cipher_root) -> None:
        """No match leaves the plaintext side alone."""
        (plain_root / "keep.txt").write_bytes(b"x")
        result = engine.delete_ciphertext_and_mirror(cipher_root / "unknown", cipher_root, plain_root)
        assert result is None
        assert (plain_root / "keep.txt").exists()

    def test_reverse_lookup_uses_default_key(self, identity, plain_root, cipher_root) -> None:
        """Reverse lookup hashes under the wallet's default key."""
        key = bytes(range(32))
        engine = MirrorEngine(wallet=Wallet(default_key=key))
        plain = plain_root / "a.txt"
        plain.write_bytes(b"x")
        assert engine.find_plaintext_for(hash_filename("a.txt", key), plain_root, key) == plain
        assert engine.find_plaintext_for(hash_filename("a.txt", ZERO_KEY), plain_root, key) is None

    def test_reverse_lookup_skips_directories(self, engine, plain_root) -> None:
        """Only regular files are candidates."""
        (plain_root / "subdir").mkdir()
        name = hash_filename("subdir", ZERO_KEY)
        assert engine.find_plaintext_for(name, plain_root, ZERO_KEY) is None


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    """Tests for the changed flag reported alongside each path."""

    def test_store_changed_once(self, engine, identity, plain_root, cipher_root) -> None:
        """Only the first store of an unmodified file writes."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"a")
        first = engine.store(plain, identity, identity.did, identity.public_key, plain_root, cipher_root)
        second = engine.store(plain, identity, identity.did, identity.public_key, plain_root, cipher_root)
        assert first.changed
        assert not second.changed
        assert first.path == second.path

    def test_restore_current_unchanged(self, engine, identity, plain_root, cipher_root) -> None:
        """Restoring onto its own source is a no-op."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"a")
        cipher = _encrypt(engine, identity, plain, plain_root, cipher_root)
        outcome = engine.restore(cipher, identity, identity.public_key, plain_root)
        assert outcome.path == plain
        assert not outcome.changed

    def test_restore_writes(self, engine, identity, plain_root, cipher_root, tmp_path) -> None:
        """A restore into an empty root reports the write."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"a")
        cipher = _encrypt(engine, identity, plain, plain_root, cipher_root)
        outcome = engine.restore(cipher, identity, identity.public_key, tmp_path / "o")
        assert outcome.changed
        assert outcome.path == tmp_path / "o" / "a.txt"

    def test_restore_missing(self, engine, identity, plain_root, cipher_root) -> None:
        """A vanished ciphertext has no path and no change."""
        outcome = engine.restore(cipher_root / "gone", identity, identity.public_key, plain_root)
        assert outcome.path is None
        assert not outcome.changed

    def test_remove_plaintext_repeat(self, engine, identity, plain_root, cipher_root) -> None:
        """The first delete removes files, the repeat does not."""
        plain = plain_root / "a.txt"
        plain.write_bytes(b"x")
        _encrypt(engine, identity, plain, plain_root, cipher_root)
        assert engine.remove_plaintext(identity, plain, plain_root, cipher_root).changed
        assert not engine.remove_plaintext(identity, plain, plain_root, cipher_root).changed

    def test_remove_ciphertext_no_match(self, engine, plain_root, cipher_root) -> None:
        """Nothing to remove on either side is not a change."""
        outcome = engine.remove_ciphertext(cipher_root / "unknown", cipher_root, plain_root)
        assert outcome.path is None
        assert not outcome.changed
