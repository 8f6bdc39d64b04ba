"""Unit tests for provenance events and the append-only log."""

from datetime import datetime

import pytest

from app.medrec.modules.patient_records.provenance import (
    AccessRejected,
    Created,
    EventKind,
    FileAdded,
    OwnershipTransferred,
    ProvenanceLog,
    SharedWith,
    build_event,
)


def test_append_puts_newest_at_head():
    log = ProvenanceLog()
    log.append(Created(owner="alice"))
    log.append(SharedWith(grantee="bob"))
    assert log.kinds() == [EventKind.SHARED_WITH, EventKind.CREATED]
    assert log.head.kind is EventKind.SHARED_WITH


def test_identical_timestamps_keep_application_order():
    ts = datetime(2026, 1, 1, 12, 0, 0)
    log = ProvenanceLog()
    first = FileAdded(file_id="a", file_name="first.pdf", timestamp=ts)
    second = FileAdded(file_id="b", file_name="second.pdf", timestamp=ts)
    log.append(first)
    log.append(second)
    assert log.entries() == (second, first)
    assert log.pending() == [first, second]


def test_loaded_entries_are_not_pending():
    log = ProvenanceLog([Created(owner="alice")])
    assert log.pending() == []
    log.append(SharedWith(grantee="bob"))
    assert [e.kind for e in log.pending()] == [EventKind.SHARED_WITH]
    assert len(log) == 2


def test_events_carry_only_their_own_fields():
    d = OwnershipTransferred(previous_owner="alice", new_owner="carol").to_dict()
    assert d["type"] == "ownership_transferred"
    assert d["to"] == "carol"
    assert d["by"] == "alice"
    assert "with" not in d and "for" not in d and "file_name" not in d

    d = AccessRejected(requester="bob").to_dict()
    assert set(d) == {"type", "timestamp", "for"}


def test_build_event_from_wire_payload():
    ts = datetime(2026, 3, 4, 5, 6, 7)
    ev = build_event("shared_with", ts, {"with": "bob", "by": None, "file_name": None})
    assert ev == SharedWith(grantee="bob", timestamp=ts)


def test_build_event_rejects_missing_field():
    with pytest.raises(ValueError):
        build_event(EventKind.FILE_ADDED, datetime(2026, 1, 1), {"file_id": "x"})
