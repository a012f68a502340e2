"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection and integrity verification.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from ledger_core.storage import InMemoryStorage
from ledger_core.audit import AuditTrail, AuditEvent, AuditEventType


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_hash_is_deterministic(self):
        """Test the same event always hashes the same"""
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            sequence=1,
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id="1000",
            previous_hash="",
            current_hash="",
            metadata={"name": "Cash"},
            user_id="USER001"
        )
        event.current_hash = event.calculate_hash()

        assert len(event.current_hash) == 64
        assert event.current_hash == event.calculate_hash()
        assert event.verify_hash()

    def test_metadata_is_made_serializable(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT002",
            created_at=now,
            updated_at=now,
            sequence=1,
            event_type=AuditEventType.EXCHANGE_RATE_SET,
            entity_type="exchange_rate",
            entity_id="EUR:USD:2024-01-01",
            previous_hash="",
            current_hash="",
            metadata={"rate": Decimal("1.10"), "event": AuditEventType.EXCHANGE_RATE_SET}
        )
        assert event.metadata == {"rate": "1.10", "event": "exchange_rate_set"}

    def test_round_trip_through_dict(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT003",
            created_at=now,
            updated_at=now,
            sequence=4,
            event_type=AuditEventType.PERIOD_CLOSE_FAILED,
            entity_type="accounting_period",
            entity_id="P1",
            previous_hash="abc",
            current_hash="",
            metadata={"error": "unbalanced_period"}
        )
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())
        assert restored == event
        assert restored.verify_hash()


class TestAuditTrail:
    """Test hash chaining and verification"""

    def test_log_event_chains_hashes(self, audit_trail):
        first = audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "1000", {"name": "Cash"})
        second = audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "4000", {"name": "Fees"})

        assert first.previous_hash == ""
        assert second.previous_hash == first.current_hash
        assert second.sequence == first.sequence + 1
        assert audit_trail.get_latest_hash() == second.current_hash
        assert audit_trail.count_events() == 2

    def test_verify_integrity_valid_chain(self, audit_trail):
        for code in ("1000", "2000", "3000"):
            audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", code)

        result = audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 3
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_tampering_is_detected(self, storage, audit_trail):
        """Test that editing a stored event breaks its hash"""
        audit_trail.log_event(AuditEventType.JOURNAL_ENTRY_POSTED, "journal_entry", "E1", {"line_count": 2})
        event = audit_trail.log_event(AuditEventType.JOURNAL_ENTRY_POSTED, "journal_entry", "E2", {"line_count": 2})

        record = storage.load("audit_events", event.id)
        record["metadata"]["line_count"] = 3
        storage.save("audit_events", event.id, record)

        result = audit_trail.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [event.id]

    def test_deleted_event_breaks_chain(self, storage, audit_trail):
        first = audit_trail.log_event(AuditEventType.PERIOD_CREATED, "accounting_period", "P1")
        audit_trail.log_event(AuditEventType.PERIOD_CLOSE_INITIATED, "accounting_period", "P1")
        storage.delete("audit_events", first.id)

        result = audit_trail.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_events_for_entity_oldest_first(self, audit_trail):
        audit_trail.log_event(AuditEventType.PERIOD_CREATED, "accounting_period", "P1")
        audit_trail.log_event(AuditEventType.PERIOD_CREATED, "accounting_period", "P2")
        audit_trail.log_event(AuditEventType.PERIOD_CLOSE_INITIATED, "accounting_period", "P1")

        events = audit_trail.get_events_for_entity("accounting_period", "P1")
        assert [e.event_type for e in events] == [
            AuditEventType.PERIOD_CREATED,
            AuditEventType.PERIOD_CLOSE_INITIATED
        ]
        assert len(audit_trail.get_events_for_entity("accounting_period", "P1", limit=1)) == 1

    def test_events_by_type(self, audit_trail):
        audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "1000")
        audit_trail.log_event(AuditEventType.ACCOUNT_DEACTIVATED, "account", "1000")

        events = audit_trail.get_events_by_type(AuditEventType.ACCOUNT_DEACTIVATED)
        assert [e.entity_id for e in events] == ["1000"]

    def test_chain_resumes_after_restart(self, storage, audit_trail):
        """A new trail on the same storage continues the existing chain"""
        last = audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "1000")

        resumed = AuditTrail(storage)
        event = resumed.log_event(AuditEventType.ACCOUNT_CREATED, "account", "2000")

        assert event.previous_hash == last.current_hash
        assert event.sequence == last.sequence + 1
        assert resumed.verify_integrity()["valid"]
