"""
Audit trail tests: append-only recording, ordering and id monotonicity.
"""

from datetime import datetime, timedelta

import pytest

from sitemaster.audit import AuditRecorder, status_action
from sitemaster.models import AuditEntry, Role, TaskStatus
from sitemaster.repositories import InMemoryAuditLog, InMemoryStore


def test_status_action_codes():
    assert status_action("task", TaskStatus.IN_PROGRESS) == "TASK_STATUS_IN_PROGRESS"
    assert status_action("material", "Delivered") == "MATERIAL_STATUS_DELIVERED"
    assert status_action("invoice", "Paid") == "INVOICE_STATUS_PAID"


def test_record_appends_entries_in_order(clock, now):
    log = InMemoryAuditLog()
    recorder = AuditRecorder(log, clock=clock)

    for n in range(5):
        recorder.record("TASK_CREATED", "Vikram Mehta", Role.SUPERVISOR, f"t{n}")

    entries = recorder.entries()
    assert [e.target_id for e in entries] == ["t0", "t1", "t2", "t3", "t4"]
    assert all(e.timestamp == now for e in entries)
    assert all(e.role == Role.SUPERVISOR for e in entries)


def test_ids_strictly_increase_with_a_frozen_clock(clock):
    recorder = AuditRecorder(InMemoryAuditLog(), clock=clock)
    ids = [int(recorder.record("X", "A", Role.ADMIN, "t").id) for _ in range(10)]
    assert ids == sorted(set(ids))


def test_ids_strictly_increase_when_clock_goes_backwards(now):
    times = iter([now, now - timedelta(seconds=30), now - timedelta(hours=1)])
    recorder = AuditRecorder(InMemoryAuditLog(), clock=lambda: next(times))

    ids = [int(recorder.record("X", "A", Role.ADMIN, "t").id) for _ in range(3)]
    assert ids[0] < ids[1] < ids[2]


def test_ids_derive_from_timestamp(clock, now):
    entry = AuditRecorder(InMemoryAuditLog(), clock=clock).record("X", "A", Role.ADMIN, "t")
    assert int(entry.id) == int((now - datetime(1970, 1, 1)).total_seconds() * 1000)


def test_recorder_resumes_after_existing_entries(now):
    log = InMemoryAuditLog()
    log.append(AuditEntry(id="9999999999999", action="X", performed_by="A", role=Role.ADMIN, target_id="t", timestamp=now))

    entry = AuditRecorder(log, clock=lambda: now).record("Y", "A", Role.ADMIN, "t")
    assert int(entry.id) == 9999999999999 + 1


def test_unknown_role_is_rejected(clock):
    recorder = AuditRecorder(InMemoryAuditLog(), clock=clock)
    with pytest.raises(ValueError):
        recorder.record("X", "Someone", "VISITOR", "t1")
    assert recorder.entries() == []


def test_entries_filter(clock):
    recorder = AuditRecorder(InMemoryAuditLog(), clock=clock)
    recorder.record("TASK_CREATED", "A", Role.ADMIN, "t1")
    recorder.record("DPR_SUBMITTED", "W", Role.WORKER, "d1", "Completion requested for tasks: t1")

    [entry] = recorder.entries(action="DPR_SUBMITTED")
    assert entry.target_id == "d1"
    assert entry.remarks == "Completion requested for tasks: t1"


def test_audit_trail_cannot_be_saved_as_a_collection(clock):
    store = InMemoryStore(clock=clock)
    entry = AuditEntry(id="1", action="X", performed_by="A", role=Role.ADMIN, target_id="t")
    with pytest.raises(ValueError):
        store.save("auditTrail", [entry])
    assert store.audit.list() == []
