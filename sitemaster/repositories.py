"""
sitemaster/repositories.py

Persistence collaborator.

Each entity type gets a narrow repository (list / get / add) and the audit trail
gets an append-only log (append / list). A Store bundles them and exposes the
collection-level interface used by the rest of the system:

    store.load("tasks")             -> list (tasks come back delay-annotated)
    store.get("tasks", "t1")        -> one entity or None (annotated the same way)
    store.save("dprs", [dpr, ...])  -> None (DPRs are leakage-annotated first)

Two implementations:
- SqlStore: Flask-SQLAlchemy session. save() stages rows; commit() ends the unit of work.
- InMemoryStore: dict-backed fake for tests and scripts. No storage dependency.

Error handling:
- A failed load never propagates. It is logged, and the well-known default for
  that collection (seed.default_collection) is returned instead.
- Reads run with autoflush off, so a bad pending write surfaces at commit(),
  not inside a load.
- A failed commit rolls back and propagates.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from .annotations import annotate_dprs, annotate_tasks
from .extensions import db
from .models import (
    DPR,
    AttendanceRecord,
    AuditEntry,
    Invoice,
    MaterialRequest,
    Party,
    Project,
    Task,
)
from .seed import default_collection
from .utils import utcnow

logger = logging.getLogger(__name__)


# Collection name -> (Store attribute, model)
COLLECTIONS = {
    "projects": ("projects", Project),
    "tasks": ("tasks", Task),
    "dprs": ("dprs", DPR),
    "attendance": ("attendance", AttendanceRecord),
    "materials": ("materials", MaterialRequest),
    "invoices": ("invoices", Invoice),
    "parties": ("parties", Party),
    "auditTrail": ("audit", AuditEntry),
}


def _matches(entity: Any, filters: dict) -> bool:
    return all(getattr(entity, key, None) == value for key, value in filters.items())


def _active_filters(filters: dict) -> dict:
    """Drop filters passed as None (None means 'any')."""
    return {k: v for k, v in filters.items() if v is not None}


# ---------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------
class Repository(ABC):
    """Narrow CRUD over one entity type."""

    name: str

    @abstractmethod
    def list(self, **filters: Any) -> list:
        """All entities matching the equality filters, in insertion order."""

    @abstractmethod
    def get(self, entity_id: str) -> Any | None:
        ...

    @abstractmethod
    def add(self, entity: Any) -> Any:
        """Insert or replace (by id)."""


class AuditLog(ABC):
    """Append-only log: entries can be added and listed, never changed."""

    @abstractmethod
    def append(self, entry: AuditEntry) -> AuditEntry:
        ...

    @abstractmethod
    def list(self, **filters: Any) -> list[AuditEntry]:
        """Entries in append order."""


# ---------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------
class SqlRepository(Repository):
    def __init__(self, name: str, model: Any, order_by: Callable[[Any], list] | None = None):
        self.name = name
        self.model = model
        self._order_by = order_by

    def list(self, **filters: Any) -> list:
        filters = _active_filters(filters)
        try:
            with db.session.no_autoflush:
                q = self.model.query.filter_by(**filters)
                if self._order_by is not None:
                    q = q.order_by(*self._order_by(self.model))
                return q.all()
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Could not load collection '%s'; using defaults", self.name, exc_info=True)
            return [e for e in default_collection(self.name) if _matches(e, filters)]

    def get(self, entity_id: str) -> Any | None:
        return db.session.get(self.model, entity_id)

    def add(self, entity: Any) -> Any:
        db.session.add(entity)
        return entity


class SqlAuditLog(AuditLog):
    def append(self, entry: AuditEntry) -> AuditEntry:
        db.session.add(entry)
        return entry

    def list(self, **filters: Any) -> list[AuditEntry]:
        filters = _active_filters(filters)
        try:
            with db.session.no_autoflush:
                return AuditEntry.query.filter_by(**filters).order_by(AuditEntry.id.asc()).all()
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Could not load the audit trail; using defaults", exc_info=True)
            return default_collection("auditTrail")


# ---------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------
class InMemoryRepository(Repository):
    def __init__(self, name: str, items: list | None = None):
        self.name = name
        self._items: dict[str, Any] = {}
        for item in items or []:
            self.add(item)

    def list(self, **filters: Any) -> list:
        filters = _active_filters(filters)
        return [e for e in self._items.values() if _matches(e, filters)]

    def get(self, entity_id: str) -> Any | None:
        return self._items.get(entity_id)

    def add(self, entity: Any) -> Any:
        self._items[entity.id] = entity
        return entity


class InMemoryAuditLog(AuditLog):
    def __init__(self):
        self._entries: list[AuditEntry] = []

    def append(self, entry: AuditEntry) -> AuditEntry:
        self._entries.append(entry)
        return entry

    def list(self, **filters: Any) -> list[AuditEntry]:
        filters = _active_filters(filters)
        return [e for e in self._entries if _matches(e, filters)]


# ---------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------
class Store(ABC):
    """
    Bundle of repositories plus the collection-level load/save interface.

    Subclasses set the repositories and implement commit()/rollback().
    """

    projects: Repository
    tasks: Repository
    dprs: Repository
    attendance: Repository
    materials: Repository
    invoices: Repository
    parties: Repository
    audit: AuditLog

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def _repo(self, name: str):
        if name not in COLLECTIONS:
            raise KeyError(f"Unknown collection: {name}")
        return getattr(self, COLLECTIONS[name][0])

    def load(self, name: str, **filters: Any) -> list:
        items = self._repo(name).list(**filters)
        if name == "tasks":
            project_id = filters.get("project_id")
            return annotate_tasks(items, self.materials.list(project_id=project_id), self.clock())
        return items

    def get(self, name: str, entity_id: str) -> Any | None:
        """One entity by id (tasks come back delay-annotated, like load())."""
        entity = self._repo(name).get(entity_id)
        if entity is not None and name == "tasks":
            annotate_tasks([entity], self.materials.list(project_id=entity.project_id), self.clock())
        return entity

    def save(self, name: str, items: list) -> None:
        if name == "auditTrail":
            raise ValueError("The audit trail is append-only; use AuditRecorder.record()")
        repo = self._repo(name)
        if name == "dprs":
            annotate_dprs(items, self.materials.list())
        for item in items:
            repo.add(item)

    @abstractmethod
    def commit(self) -> None:
        ...

    @abstractmethod
    def rollback(self) -> None:
        ...


class SqlStore(Store):
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        super().__init__(clock)
        self.projects = SqlRepository("projects", Project, lambda m: [m.created_at.asc(), m.id.asc()])
        self.tasks = SqlRepository("tasks", Task, lambda m: [m.created_at.asc(), m.id.asc()])
        self.dprs = SqlRepository("dprs", DPR, lambda m: [m.timestamp.asc(), m.id.asc()])
        self.attendance = SqlRepository("attendance", AttendanceRecord, lambda m: [m.check_in_time.asc()])
        self.materials = SqlRepository("materials", MaterialRequest, lambda m: [m.created_at.asc(), m.id.asc()])
        self.invoices = SqlRepository("invoices", Invoice, lambda m: [m.created_at.asc(), m.id.asc()])
        self.parties = SqlRepository("parties", Party, lambda m: [m.name.asc()])
        self.audit = SqlAuditLog()

    def commit(self) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Commit failed; changes rolled back")
            raise

    def rollback(self) -> None:
        db.session.rollback()


class InMemoryStore(Store):
    def __init__(self, clock: Callable[[], datetime] = utcnow, **collections: list):
        super().__init__(clock)
        for name, (attr, _model) in COLLECTIONS.items():
            if attr == "audit":
                continue
            setattr(self, attr, InMemoryRepository(name, collections.get(attr)))
        self.audit = InMemoryAuditLog()

    def commit(self) -> None:
        return None

    def rollback(self) -> None:
        return None
