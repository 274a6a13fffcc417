"""
sitemaster/security.py

Role-based access control for SiteMaster workflows.

Key rules:
- The caller (UI, CLI, script) is never trusted; every workflow checks the actor's role itself.
- Admin: full access.
- Worker: attendance, DPR submission, material requests.
- Supervisor: site management (tasks, DPR review, material status).
- Manager / Owner: project oversight (material status, invoices).
- Admin-only: project setup, billing rules, party registration, invoice issue/payment.

Authentication is out of scope: the Actor is supplied by the caller.

IMPORTANT:
- Decorators must preserve wrapped function metadata.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable

from .errors import SiteMasterError
from .models import Role


@dataclass(frozen=True)
class Actor:
    """Who performs an operation (name and role are copied into the audit trail)."""

    id: str
    name: str
    role: str


class PermissionDenied(SiteMasterError):
    """Raised when an actor's role may not perform an operation."""

    def __init__(self, actor: Actor, operation: str):
        super().__init__(f"{actor.role} '{actor.name}' may not {operation}")
        self.actor = actor
        self.operation = operation


WORKERS = {Role.WORKER}
SUPERVISORS = {Role.SUPERVISOR}
MANAGERS = {Role.MANAGER, Role.OWNER}

PERMISSIONS = {
    "create_project": set(),
    "update_billing_rules": set(),
    "add_task": SUPERVISORS | MANAGERS,
    "update_task_status": WORKERS | SUPERVISORS | MANAGERS,
    "submit_dpr": WORKERS | SUPERVISORS,
    "review_dpr": SUPERVISORS,
    "add_material_request": WORKERS | SUPERVISORS | MANAGERS,
    "update_material_status": SUPERVISORS | MANAGERS,
    "record_material_usage": SUPERVISORS | MANAGERS,
    "attendance": WORKERS | SUPERVISORS | MANAGERS,
    "register_party": set(),
    "save_invoice": SUPERVISORS | MANAGERS,
    "update_invoice_status": set(),
}


def is_admin(actor: Actor) -> bool:
    return actor.role == Role.ADMIN


def can(actor: Actor, operation: str) -> bool:
    """Admin can do everything; other roles need an explicit grant."""
    if is_admin(actor):
        return True
    return actor.role in PERMISSIONS.get(operation, set())


def require(actor: Actor, operation: str) -> None:
    if not can(actor, operation):
        raise PermissionDenied(actor, operation)


def permission_required(operation: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator factory for workflow methods that receive an Actor (keyword `actor` or positional).

    Usage:
        @permission_required("review_dpr")
        def review_dpr(self, dpr_id, decision, actor, remarks=None): ...
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            actor = kwargs.get("actor")
            if actor is None:
                actor = next((a for a in args if isinstance(a, Actor)), None)
            if actor is None:
                raise TypeError(f"{func.__name__} requires an Actor")
            require(actor, operation)
            return func(*args, **kwargs)

        return wrapper

    return decorator
