"""
sitemaster/reports.py

Read-only derivations for dashboards and the materials screen.
Tasks passed in are expected to be delay-annotated (Store.load("tasks")).
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from .models import DPR, MaterialRequest, MaterialStatus, Task, TaskStatus


def task_status_counts(tasks: Iterable[Task]) -> dict[str, int]:
    counts = Counter(t.status for t in tasks)
    return {status: counts.get(status, 0) for status in TaskStatus.ALL}


def delayed_tasks(tasks: Iterable[Task]) -> list[Task]:
    return [t for t in tasks if t.is_delayed]


def leakage_reports(dprs: Iterable[DPR]) -> list[DPR]:
    return [d for d in dprs if d.leakage_alert]


def project_progress(project_id: str, tasks: Iterable[Task]) -> dict:
    """Completed vs total tasks for one project."""
    project_tasks = [t for t in tasks if t.project_id == project_id]
    completed = sum(1 for t in project_tasks if t.status == TaskStatus.COMPLETED)
    total = len(project_tasks)
    return {
        "completed": completed,
        "total": total,
        "percent": (completed / total * 100) if total else 0.0,
    }


def material_inventory(materials: Iterable[MaterialRequest]) -> list[dict]:
    """
    Stock on site: delivered requests grouped by item name.

    Each row: item_name, unit (from the first delivery), total_purchased,
    total_used, balance.
    """
    rows: dict[str, dict] = {}
    for m in materials:
        if m.status != MaterialStatus.DELIVERED:
            continue
        row = rows.get(m.item_name)
        if row is None:
            row = rows[m.item_name] = {
                "item_name": m.item_name,
                "unit": m.unit,
                "total_purchased": 0.0,
                "total_used": 0.0,
            }
        row["total_purchased"] += m.quantity or 0.0
        row["total_used"] += m.used_quantity or 0.0

    for row in rows.values():
        row["balance"] = row["total_purchased"] - row["total_used"]
    return list(rows.values())


def pending_requests(materials: Iterable[MaterialRequest]) -> list[MaterialRequest]:
    """Requests still moving through procurement (Requested or Approved)."""
    return [m for m in materials if m.status in (MaterialStatus.REQUESTED, MaterialStatus.APPROVED)]
