"""Tests for the audit log."""

import json

import pytest

from knackshield.audit import AuditEntry, AuditLog


class TestAuditLog:
    """Test append-only bounded audit log."""

    def test_log_entry(self):
        audit = AuditLog()
        entry = audit.log("admin", "UPDATE", "object_7", resource_id="abc", detail={"k": 1})

        assert isinstance(entry, AuditEntry)
        assert entry.id.startswith("audit-")
        assert entry.actor == "admin"
        assert entry.resource_id == "abc"
        assert len(audit) == 1

    def test_ids_are_unique(self):
        audit = AuditLog()
        ids = {audit.log("a", "CREATE", "object_7").id for _ in range(50)}
        assert len(ids) == 50

    def test_capacity_drops_oldest(self):
        """Test the ring buffer keeps only the most recent entries."""
        audit = AuditLog(capacity=3)
        for i in range(5):
            audit.log("admin", "UPDATE", "object_7", resource_id=str(i))

        assert len(audit) == 3
        assert [e.resource_id for e in audit.recent()] == ["4", "3", "2"]

    def test_recent_limit(self):
        audit = AuditLog()
        for i in range(10):
            audit.log("admin", "DELETE", "object_7", resource_id=str(i))

        assert [e.resource_id for e in audit.recent(2)] == ["9", "8"]

    def test_by_actor(self):
        audit = AuditLog()
        audit.log("admin", "UPDATE", "object_7")
        audit.log("cron", "SYNC", "cache")
        audit.log("admin", "DELETE", "object_7")

        entries = audit.by_actor("admin")
        assert [e.action for e in entries] == ["DELETE", "UPDATE"]

    def test_export_json(self):
        audit = AuditLog()
        audit.log("admin", "CREATE", "object_7", resource_id="new")

        exported = json.loads(audit.export_json())
        assert exported[0]["action"] == "CREATE"
        assert exported[0]["resource_id"] == "new"
        assert "T" in exported[0]["timestamp"]

    def test_entries_are_immutable(self):
        entry = AuditLog().log("admin", "CREATE", "object_7")
        with pytest.raises(AttributeError):
            entry.actor = "someone-else"

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            AuditLog(capacity=0)

    def test_clear(self):
        audit = AuditLog()
        audit.log("admin", "CREATE", "object_7")
        audit.clear()
        assert len(audit) == 0
