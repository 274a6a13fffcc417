"""
sitemaster/errors.py

Domain errors raised by the workflow layer.

All of them are raised BEFORE any state is mutated, so a failed operation
leaves the collections untouched and writes no audit entry.
"""

from __future__ import annotations


class SiteMasterError(Exception):
    """Base class for workflow errors."""


class NotFoundError(SiteMasterError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(SiteMasterError):
    """Raised when workflow input is incomplete or inconsistent."""


class TransitionError(SiteMasterError):
    """Raised when a status transition is not allowed."""

    def __init__(self, entity: str, current: str | None, target: str, reason: str | None = None):
        msg = f"Cannot move {entity} from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.entity = entity
        self.current_status = current
        self.target_status = target
        self.reason = reason
