"""
Mirror audit trail.

Every write, restore and delete the engine performs is appended to
``<home>/security/audit.log`` as one JSON object per line. The log is
append-only; readers skip lines they cannot parse, so a torn write at
the end of the file costs one event and nothing else.
"""

from __future__ import annotations

import json
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

AUDIT_DIR = "security"
AUDIT_LOG_NAME = "audit.log"


class MirrorEvent(BaseModel):
    """One mirror operation as recorded in the audit log."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: str
    detail: str
    host: str = Field(default_factory=socket.gethostname)

    # Ciphertext file name (the filename mac) the event touched
    ciphertext: Optional[str] = None
    # Recipient DID, for writes
    peer: Optional[str] = None
    # Plaintext name a reverse lookup settled on
    match: Optional[str] = None


class AuditLog:
    """Append-only JSONL log of mirror events under a mirror home.

    Args:
        home: Mirror home directory.
    """

    def __init__(self, home: Path) -> None:
        self.path = Path(home) / AUDIT_DIR / AUDIT_LOG_NAME

    def record(
        self,
        event_type: str,
        detail: str,
        ciphertext: Optional[str] = None,
        peer: Optional[str] = None,
        match: Optional[str] = None,
    ) -> MirrorEvent:
        """Append one event (MIRROR_WRITE, MIRROR_RESTORE, MIRROR_DELETE, ...)."""
        event = MirrorEvent(
            event_type=event_type,
            detail=detail,
            ciphertext=ciphertext,
            peer=peer,
            match=match,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(event.model_dump_json(exclude_none=True) + "\n")
        return event

    def entries(self, limit: int = 0, event_type: Optional[str] = None) -> list[MirrorEvent]:
        """Recorded events, newest first.

        Args:
            limit: Maximum events to return (0 = all).
            event_type: Only return events of this type.
        """
        if not self.path.exists():
            return []

        events: list[MirrorEvent] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                event = MirrorEvent.model_validate(json.loads(line))
            except ValueError:
                continue
            if event_type is None or event.event_type == event_type:
                events.append(event)

        events.reverse()
        return events[:limit] if limit else events
