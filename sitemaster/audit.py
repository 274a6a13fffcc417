"""
sitemaster/audit.py

Audit trail recorder.

Goals:
- Capture WHO (name + role) did WHAT (action code) to WHICH entity, and WHEN.
- Append-only: entries are never edited or removed.

IMPORTANT:
- record() ADDS the entry to the store's current unit of work.
  The calling workflow controls transaction boundaries (commit/rollback).
- Call it exactly once per state-mutating operation, after the mutation succeeded.

Action codes encode the entity type and the transition:
    TASK_STATUS_COMPLETED, DPR_SUBMITTED, DPR_APPROVED, INVOICE_STATUS_ISSUED, ...
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .models import AuditEntry, Role
from .repositories import AuditLog
from .utils import status_code, utcnow

logger = logging.getLogger(__name__)


def status_action(entity: str, status: str) -> str:
    """Action code for a status change, e.g. ("task", "In Progress") -> TASK_STATUS_IN_PROGRESS."""
    return f"{entity.upper()}_STATUS_{status_code(status)}"


def _epoch_ms(value: datetime) -> int:
    return int((value - datetime(1970, 1, 1)).total_seconds() * 1000)


class AuditRecorder:
    """Creates AuditEntry rows with strictly increasing, timestamp-derived ids."""

    def __init__(self, log: AuditLog, clock: Callable[[], datetime] = utcnow):
        self.log = log
        self.clock = clock
        self._last_id: int | None = None

    def _next_id(self, now: datetime) -> str:
        if self._last_id is None:
            existing = self.log.list()
            self._last_id = int(existing[-1].id) if existing else 0

        candidate = _epoch_ms(now)
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return str(candidate)

    def record(
        self,
        action: str,
        performed_by: str,
        role: str,
        target_id: str,
        remarks: str | None = None,
    ) -> AuditEntry:
        """Append one AuditEntry and return it."""
        if role not in Role.ALL:
            raise ValueError(f"Unknown role: {role}")

        now = self.clock()
        entry = AuditEntry(
            id=self._next_id(now),
            action=str(action),
            performed_by=performed_by,
            role=role,
            target_id=str(target_id),
            timestamp=now,
            remarks=remarks,
        )
        self.log.append(entry)
        logger.info("AUDIT %s by %s (%s) on %s", entry.action, performed_by, role, entry.target_id)
        return entry

    def entries(self, **filters) -> list[AuditEntry]:
        return self.log.list(**filters)
