"""
Mirror Watcher — keeps both roots in step while it runs.

A watchdog ``Observer`` watches the plaintext and ciphertext roots
(direct children only) and each event becomes one engine call:

    plaintext created/modified   -> encrypt
    plaintext deleted            -> delete plaintext and its twin
    ciphertext created/modified  -> restore
    ciphertext deleted           -> delete ciphertext and its twin

A move inside a root is a delete of the old name plus a create of the
new one. One lock serializes every engine call, in both directions and
against the startup pass, so the watcher never races itself on a mirror
pair. The events raised by the engine's own writes come back around
and are absorbed by the staleness check.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .engine import MirrorEngine, MirrorOutcome
from .errors import MirrorError
from .identity import KeyIdentity
from .models import MirrorConfig

logger = logging.getLogger("didmirror.watcher")

LOG_DIR = "logs"
PLAINTEXT = "plaintext"
CIPHERTEXT = "ciphertext"


def scan_directory(root: Path, ignore_names: frozenset[str] = frozenset()) -> list[str]:
    """Sorted names of the regular files directly under ``root``."""
    names: list[str] = []
    if not root.is_dir():
        return names
    with os.scandir(root) as entries:
        for entry in entries:
            if entry.name.startswith(".") or entry.name in ignore_names:
                continue
            try:
                if entry.is_file():
                    names.append(entry.name)
            except FileNotFoundError:
                continue
    return sorted(names)


class WatcherState:
    """Thread-safe counters for the watcher. All access is lock-protected."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_event: Optional[datetime] = None
        self.events: int = 0
        self.encrypted: int = 0
        self.restored: int = 0
        self.deleted: int = 0
        self.errors: list[str] = []

    def record(self, counter: str) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def record_event(self) -> None:
        with self._lock:
            self.last_event = datetime.now(timezone.utc)
            self.events += 1

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > 50:
                self.errors = self.errors[-50:]

    def snapshot(self) -> dict:
        """Return a serializable snapshot of current state."""
        with self._lock:
            return {
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "last_event": self.last_event.isoformat() if self.last_event else None,
                "events": self.events,
                "encrypted": self.encrypted,
                "restored": self.restored,
                "deleted": self.deleted,
                "recent_errors": self.errors[-10:],
            }


class MirrorEventHandler(FileSystemEventHandler):
    """Turns watchdog events on one root into watcher calls.

    Directories, dotfiles, ignored names and anything below a
    subdirectory are dropped before they reach the watcher.
    """

    def __init__(self, watcher: "MirrorWatcher", side: str) -> None:
        super().__init__()
        self.watcher = watcher
        self.side = side
        self.root = watcher.root_for(side).resolve()

    def _name(self, raw_path) -> Optional[str]:
        path = Path(os.fsdecode(raw_path))
        if path.parent.resolve() != self.root:
            return None
        if self.watcher.ignored(path.name):
            return None
        return path.name

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        name = self._name(event.src_path)
        if name:
            self.watcher.changed(self.side, name)

    def on_modified(self, event: FileSystemEvent) -> None:
        self.on_created(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        name = self._name(event.src_path)
        if name:
            self.watcher.deleted(self.side, name)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        old = self._name(event.src_path)
        if old:
            self.watcher.deleted(self.side, old)
        new = self._name(event.dest_path)
        if new:
            self.watcher.changed(self.side, new)


class MirrorWatcher:
    """Event-driven two-way mirror between a plaintext and a ciphertext root.

    Args:
        engine: Engine performing the per-file operations.
        identity: Local identity (sender of outgoing, recipient of incoming).
        config: Roots, peer and ignore list.
        peer_did: DID on the other side. Defaults to ``identity.did``.
        peer_public_key: Peer's public key. Defaults to ``identity.public_key``.
    """

    def __init__(
        self,
        engine: MirrorEngine,
        identity: KeyIdentity,
        config: MirrorConfig,
        peer_did: Optional[str] = None,
        peer_public_key: Optional[bytes] = None,
    ) -> None:
        if config.plaintext_root is None or config.ciphertext_root is None:
            raise ValueError("Both plaintext_root and ciphertext_root must be configured")
        self.engine = engine
        self.identity = identity
        self.plaintext_root = Path(config.plaintext_root).expanduser()
        self.ciphertext_root = Path(config.ciphertext_root).expanduser()
        self.ignore_names = frozenset(config.ignore_names)
        self.peer_did = peer_did or identity.did
        self.peer_public_key = peer_public_key or identity.public_key

        self.state = WatcherState()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._observer: Optional[Observer] = None

    def root_for(self, side: str) -> Path:
        return self.plaintext_root if side == PLAINTEXT else self.ciphertext_root

    def ignored(self, name: str) -> bool:
        return name.startswith(".") or name in self.ignore_names

    # -------------------------------------------------------------------
    # Single-file handlers
    # -------------------------------------------------------------------

    def _guarded(
        self, what: str, name: str, action: Callable[[], MirrorOutcome],
    ) -> Optional[MirrorOutcome]:
        with self._lock:
            try:
                return action()
            except (MirrorError, OSError, ValueError) as exc:
                logger.warning("Failed to %s %s: %s", what, name, exc)
                self.state.record_error(f"{what} {name}: {exc}")
                return None

    def _count(self, outcome: Optional[MirrorOutcome], counter: str) -> bool:
        if outcome is not None and outcome.changed:
            self.state.record(counter)
            return True
        return False

    def encrypt(self, name: str) -> bool:
        """Encrypt one plaintext file; True if a ciphertext was written."""
        path = self.plaintext_root / name
        return self._count(self._guarded("encrypt", name, lambda: self.engine.store(
            path,
            self.identity,
            self.peer_did,
            self.peer_public_key,
            self.plaintext_root,
            self.ciphertext_root,
        )), "encrypted")

    def restore(self, name: str) -> bool:
        """Restore one ciphertext file; True if a plaintext was written."""
        path = self.ciphertext_root / name
        return self._count(self._guarded("restore", name, lambda: self.engine.restore(
            path,
            self.identity,
            self.peer_public_key,
            self.plaintext_root,
        )), "restored")

    def plaintext_deleted(self, name: str) -> bool:
        path = self.plaintext_root / name
        return self._count(self._guarded("delete", name, lambda: self.engine.remove_plaintext(
            self.identity, path, self.plaintext_root, self.ciphertext_root,
        )), "deleted")

    def ciphertext_deleted(self, name: str) -> bool:
        path = self.ciphertext_root / name
        return self._count(self._guarded("delete", name, lambda: self.engine.remove_ciphertext(
            path, self.ciphertext_root, self.plaintext_root,
        )), "deleted")

    def changed(self, side: str, name: str) -> bool:
        """A file on ``side`` was created or modified."""
        self.state.record_event()
        logger.debug("%s changed: %s", side, name)
        if side == PLAINTEXT:
            return self.encrypt(name)
        return self.restore(name)

    def deleted(self, side: str, name: str) -> bool:
        """A file on ``side`` was deleted."""
        self.state.record_event()
        logger.debug("%s deleted: %s", side, name)
        if side == PLAINTEXT:
            return self.plaintext_deleted(name)
        return self.ciphertext_deleted(name)

    # -------------------------------------------------------------------
    # Startup pass
    # -------------------------------------------------------------------

    def initial_sync(self) -> dict[str, int]:
        """Full pass in both directions; returns the number of files visited."""
        self.plaintext_root.mkdir(parents=True, exist_ok=True)
        self.ciphertext_root.mkdir(parents=True, exist_ok=True)

        plain = scan_directory(self.plaintext_root, self.ignore_names)
        cipher = scan_directory(self.ciphertext_root, self.ignore_names)
        for name in plain:
            self.encrypt(name)
        for name in cipher:
            self.restore(name)

        logger.info(
            "Initial sync: %d plaintext, %d ciphertext files", len(plain), len(cipher),
        )
        return {"plaintext": len(plain), "ciphertext": len(cipher)}

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Schedule both roots, start observing, then run the startup pass.

        The observer starts first so nothing written during the pass is
        missed; the lock keeps the two from interleaving on one file.
        """
        if self._observer is not None:
            return
        self.plaintext_root.mkdir(parents=True, exist_ok=True)
        self.ciphertext_root.mkdir(parents=True, exist_ok=True)
        self._stop_event.clear()
        self.state.started_at = datetime.now(timezone.utc)

        observer = Observer()
        for side in (PLAINTEXT, CIPHERTEXT):
            observer.schedule(
                MirrorEventHandler(self, side), str(self.root_for(side)), recursive=False,
            )
        observer.start()
        self._observer = observer
        logger.info("Watching %s <-> %s", self.plaintext_root, self.ciphertext_root)

        self.initial_sync()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the observer and wait for its thread."""
        self._stop_event.set()
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=timeout)
        logger.info("Watcher stopped")

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Start, then block until ``stop_event`` (or ``stop()``) fires."""
        stop = stop_event if stop_event is not None else self._stop_event
        self.start()
        try:
            while not stop.wait(1.0) and not self._stop_event.is_set():
                pass
        finally:
            self.stop()


def setup_file_logging(home: Path) -> Path:
    """Attach a file handler writing to ``<home>/logs/watcher.log``."""
    log_dir = home / LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "watcher.log"
    handler = logging.FileHandler(log_file)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    )
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.INFO)
    return log_file
