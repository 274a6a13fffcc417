"""
sitemaster/annotations.py

Cross-entity derivations.

Task delay (READ-TIME projection)
- Recomputed on every load from the sibling material requests. Idempotent: the
  same inputs always give the same flags, and nothing here is history.

DPR leakage (WRITE-TIME fact)
- Computed once when the DPR is saved and persisted with it.

Both functions only read the collections they are given; the caller supplies a
consistent snapshot and owns persistence.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Iterable, NamedTuple

from .models import DPR, MaterialRequest, MaterialStatus, Task, TaskStatus

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED = "Deadline Exceeded"
MATERIAL_SHORTAGE = "Material Shortage"

# Usage above requested quantity * LEAKAGE_TOLERANCE raises a leakage alert
LEAKAGE_TOLERANCE = 1.1


class DelayAnnotation(NamedTuple):
    is_delayed: bool
    delay_reason: str | None


class LeakageAnnotation(NamedTuple):
    leakage_alert: bool
    leakage_excess: str


def _due_at(due: date | datetime) -> datetime:
    """Due dates without a time fall due at the start of the day."""
    if isinstance(due, datetime):
        return due
    return datetime.combine(due, time.min)


# ---------------------------------------------------------------------
# Task delay
# ---------------------------------------------------------------------
def annotate_task_delay(task: Task, materials: Iterable[MaterialRequest], now: datetime) -> DelayAnnotation:
    """
    Derive the delay flags for one task.

    Priority:
    1) past due and not Completed -> "Deadline Exceeded"
    2) any Requested material for the task's project -> "Material Shortage"
    3) otherwise the persisted manual reason is shown, but the task is not delayed
    """
    is_past_due = task.due_date is not None and _due_at(task.due_date) < now
    material_shortage = any(
        m.project_id == task.project_id and m.status == MaterialStatus.REQUESTED
        for m in materials
    )

    derived = None
    if is_past_due and task.status != TaskStatus.COMPLETED:
        derived = DEADLINE_EXCEEDED
    elif material_shortage:
        derived = MATERIAL_SHORTAGE

    return DelayAnnotation(
        is_delayed=derived is not None,
        delay_reason=derived or task.manual_delay_reason,
    )


def annotate_tasks(tasks: Iterable[Task], materials: Iterable[MaterialRequest], now: datetime) -> list[Task]:
    """Attach is_delayed / delay_reason to every task (instance attributes, never persisted)."""
    materials = list(materials)
    annotated = []
    for task in tasks:
        flags = annotate_task_delay(task, materials, now)
        task.is_delayed = flags.is_delayed
        task.delay_reason = flags.delay_reason
        annotated.append(task)
    return annotated


# ---------------------------------------------------------------------
# DPR leakage
# ---------------------------------------------------------------------
def _find_request(materials: list[MaterialRequest], project_id: str, item_name: str) -> MaterialRequest | None:
    # First match wins when several requests share an item name.
    for m in materials:
        if m.project_id == project_id and m.item_name == item_name:
            return m
    return None


def _round_half_up(value: float) -> int:
    # Half-up, not banker's rounding: 12.5 -> 13
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def annotate_dpr_leakage(dpr: DPR, materials: Iterable[MaterialRequest]) -> LeakageAnnotation:
    """
    Compare declared usage against the originally requested quantities.

    Usage above 110% of the request raises the alert. When several entries
    trigger, the last one processed sets leakage_excess (no aggregation).
    """
    materials = list(materials)
    alert = False
    excess = ""

    for used in dpr.materials_used or []:
        item_name = used.get("item_name")
        quantity_used = used.get("quantity_used") or 0

        req = _find_request(materials, dpr.project_id, item_name)
        if req is None or not req.quantity:
            continue

        if quantity_used > req.quantity * LEAKAGE_TOLERANCE:
            alert = True
            pct = _round_half_up((quantity_used - req.quantity) / req.quantity * 100)
            excess = f"{pct}% above request"

    return LeakageAnnotation(leakage_alert=alert, leakage_excess=excess)


def annotate_dprs(dprs: Iterable[DPR], materials: Iterable[MaterialRequest]) -> list[DPR]:
    """Set leakage_alert / leakage_excess on each DPR in place."""
    materials = list(materials)
    annotated = []
    for dpr in dprs:
        flags = annotate_dpr_leakage(dpr, materials)
        dpr.leakage_alert = flags.leakage_alert
        dpr.leakage_excess = flags.leakage_excess
        if flags.leakage_alert:
            logger.warning("Material leakage on DPR %s: %s", dpr.id, flags.leakage_excess)
        annotated.append(dpr)
    return annotated
