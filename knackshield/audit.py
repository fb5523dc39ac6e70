"""Audit trail for write operations.

Entries are append-only and held in a fixed-capacity ring buffer; once full,
the oldest entry is dropped for each new one.
"""

import json
import logging
import secrets
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def _new_entry_id() -> str:
    return f"audit-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class AuditEntry:
    """One audited action."""

    actor: str
    action: str  # CREATE, UPDATE, DELETE, INVALIDATE, SYNC
    resource: str
    resource_id: Optional[str] = None
    detail: Optional[dict[str, Any]] = None
    id: str = field(default_factory=_new_entry_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


class AuditLog:
    """Bounded in-memory audit log.

    Usage:
        audit = AuditLog(capacity=1000)
        audit.log("admin", "UPDATE", "object_7", resource_id="abc123")
        audit.recent(10)
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: deque[AuditEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def log(
        self,
        actor: str,
        action: str,
        resource: str,
        resource_id: Optional[str] = None,
        detail: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append an entry."""
        entry = AuditEntry(
            actor=actor,
            action=action,
            resource=resource,
            resource_id=resource_id,
            detail=detail,
        )
        with self._lock:
            self._entries.append(entry)
        logger.info(f"[AUDIT] {action} {resource}/{resource_id or '-'} by {actor}")
        return entry

    def recent(self, limit: int = 100) -> list[AuditEntry]:
        """Most recent entries, newest first."""
        with self._lock:
            entries = list(self._entries)
        return list(reversed(entries))[:limit]

    def by_actor(self, actor: str, limit: int = 100) -> list[AuditEntry]:
        """Most recent entries for one actor, newest first."""
        return [e for e in self.recent(self.capacity) if e.actor == actor][:limit]

    def export_json(self) -> str:
        """Export the whole log, oldest first."""
        with self._lock:
            entries = [e.to_dict() for e in self._entries]
        return json.dumps(entries, indent=2, default=str)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
