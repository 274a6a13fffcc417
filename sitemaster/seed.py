"""
sitemaster/seed.py

Default (seed) data.

Two uses:
- default_collection(name): the well-known fallback returned when a collection
  cannot be loaded (corrupt/missing storage). Stable across restarts.
- seed_defaults(): idempotent insert of the same records into the database
  (`flask seed-data`).

NOTE:
- Users are not seeded here: authentication is handled outside this application.
"""

from __future__ import annotations

from datetime import date

from .extensions import db
from .models import Party, PartyType, Project, ProjectStatus, Task, TaskStatus


DEFAULT_PROJECTS = [
    # id, name, location, budget, start_date, state_code, milestones, retention %, gst required
    (
        "p1",
        "Skyline Towers",
        "Mumbai",
        50_000_000.0,
        date(2023, 1, 15),
        "27",
        ["Foundation", "Basement", "Level 1"],
        5.0,
        True,
    ),
]


DEFAULT_TASKS = [
    # id, project_id, title, assigned_to, status, due_date
    ("t1", "p1", "Foundation Pouring", "Ramesh", TaskStatus.IN_PROGRESS, date(2023, 11, 1)),
]


DEFAULT_PARTIES = [
    # id, name, gstin, address, state_code, type
    ("pt1", "Global Infra Corp", "27AABCU1234F1Z1", "Bandra, Mumbai", "27", PartyType.CLIENT),
    ("pt2", "Sitemaster Contractors", "27AABCV5678G1Z2", "Pune, Maharashtra", "27", PartyType.CONTRACTOR),
]


def _default_projects() -> list[Project]:
    return [
        Project(
            id=pid,
            name=name,
            location=location,
            status=ProjectStatus.ACTIVE,
            budget=budget,
            start_date=start,
            state_code=state,
            milestones=list(milestones),
            retention_percent=retention,
            gst_required=gst,
        )
        for pid, name, location, budget, start, state, milestones, retention, gst in DEFAULT_PROJECTS
    ]


def _default_tasks() -> list[Task]:
    return [
        Task(
            id=tid,
            project_id=project_id,
            title=title,
            assigned_to=assignee,
            status=status,
            due_date=due,
        )
        for tid, project_id, title, assignee, status, due in DEFAULT_TASKS
    ]


def _default_parties() -> list[Party]:
    return [
        Party(id=pid, name=name, gstin=gstin, address=address, state_code=state, type=ptype)
        for pid, name, gstin, address, state, ptype in DEFAULT_PARTIES
    ]


_DEFAULT_FACTORIES = {
    "projects": _default_projects,
    "tasks": _default_tasks,
    "parties": _default_parties,
}


def default_collection(name: str) -> list:
    """
    Fresh (transient) default records for a collection.

    projects -> the "Skyline Towers" seed project, tasks -> its seed task,
    parties -> the two seed parties, every other collection -> [].
    """
    factory = _DEFAULT_FACTORIES.get(name)
    return factory() if factory else []


def seed_defaults() -> None:
    """
    Insert default projects, tasks and parties if they don't exist.

    Idempotent behavior:
    - Match by primary key; existing rows are left as they are.
    """
    for model, records in (
        (Project, _default_projects()),
        (Party, _default_parties()),
        (Task, _default_tasks()),
    ):
        for record in records:
            if db.session.get(model, record.id) is not None:
                continue
            db.session.add(record)
        db.session.flush()

    db.session.commit()
