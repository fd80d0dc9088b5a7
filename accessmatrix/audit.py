"""
Append-Only Role Change Audit Trail (Hash-Chained).

Every role lifecycle operation -- creation, relabelling, permission changes,
full-access switches, deletion and the user reassignment that accompanies
it -- is recorded as a structured, append-only entry.  Entries are linked by
SHA-256 hashes so that editing any recorded entry after the fact is
detectable by ``verify_chain()``.

Permission changes are stored as a ``granted`` / ``revoked`` diff of the
stored permission strings, which is what a reviewer needs to answer "who
gave this role access to X, and when?".
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from typing import AbstractSet, Any, Optional

from pydantic import BaseModel, Field


class RoleAuditEventType(str, enum.Enum):
    """Auditable role lifecycle events."""

    ROLE_CREATED = "ROLE_CREATED"
    ROLE_UPDATED = "ROLE_UPDATED"
    ROLE_DELETED = "ROLE_DELETED"
    USERS_REASSIGNED = "USERS_REASSIGNED"
    PERMISSIONS_CHANGED = "PERMISSIONS_CHANGED"
    FULL_ACCESS_ENABLED = "FULL_ACCESS_ENABLED"
    FULL_ACCESS_DISABLED = "FULL_ACCESS_DISABLED"


class RoleAuditEntry(BaseModel):
    """A single audit record: who changed which role, how, and when."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    actor_id: str = Field(
        ...,
        description="Administrator (or SYSTEM) performing the change.",
    )
    event_type: RoleAuditEventType
    role_id: str = Field(..., description="The role the event concerns.")
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description="Hash of the preceding entry; empty for the first entry.",
    )

    def canonical_bytes(self) -> bytes:
        """Deterministic serialization used for hashing."""
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "event_type": self.event_type.value,
            "role_id": self.role_id,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


def permission_diff(
    before: AbstractSet[str], after: AbstractSet[str]
) -> dict[str, list[str]]:
    """Sorted ``granted`` / ``revoked`` lists between two permission sets."""
    return {
        "granted": sorted(after - before),
        "revoked": sorted(before - after),
    }


class RoleAuditLog:
    """Append-only audit log with SHA-256 hash chaining.

    There is no update or delete API.  ``query()`` returns copies so callers
    cannot alter stored entries through the results.  Appends are serialised
    so concurrent writers always extend the chain tail.
    """

    def __init__(self) -> None:
        self._entries: list[RoleAuditEntry] = []
        self._hashes: list[str] = []
        self._lock = threading.Lock()

    def append(self, entry: RoleAuditEntry) -> RoleAuditEntry:
        """Link ``entry`` to the chain tail and store it."""
        with self._lock:
            entry.previous_hash = self._hashes[-1] if self._hashes else ""
            self._entries.append(entry)
            self._hashes.append(entry.compute_hash())
        return entry

    def record(
        self,
        event_type: RoleAuditEventType,
        role_id: str,
        actor_id: str = "SYSTEM",
        **metadata: Any,
    ) -> RoleAuditEntry:
        return self.append(RoleAuditEntry(
            actor_id=actor_id,
            event_type=event_type,
            role_id=role_id,
            metadata=metadata,
        ))

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Validate every hash link.

        Returns:
            ``(True, None)`` if intact, else ``(False, index)`` of the first
            entry whose link or stored hash does not match.
        """
        with self._lock:
            entries = list(self._entries)
            hashes = list(self._hashes)
        expected_previous = ""
        for i, entry in enumerate(entries):
            if entry.previous_hash != expected_previous:
                return (False, i)
            expected_previous = entry.compute_hash()
            if hashes[i] != expected_previous:
                return (False, i)
        return (True, None)

    def query(
        self,
        role_id: Optional[str] = None,
        event_type: Optional[RoleAuditEventType] = None,
        actor_id: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[RoleAuditEntry]:
        """Filter entries; every filter is optional and inclusive."""
        results = []
        for entry in self._entries:
            if role_id is not None and entry.role_id != role_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if actor_id is not None and entry.actor_id != actor_id:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def export_for_review(self, role_id: Optional[str] = None) -> dict[str, Any]:
        """JSON-serializable bundle of entries plus chain integrity status."""
        entries = []
        for entry in self.query(role_id=role_id):
            entry_dict = entry.model_dump(mode="json")
            entries.append(entry_dict)

        chain_valid, broken_at = self.verify_chain()
        return {
            "export_metadata": {
                "role_id": role_id,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(entries),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
            },
            "entries": entries,
        }

    def __len__(self) -> int:
        return len(self._entries)
