"""
Dashboard derivations, display formatting and logging setup.
"""

import json
import logging

import pytest

from sitemaster.logging_config import JSONFormatter, ReadableFormatter, configure_logging
from sitemaster.models import DPR, MaterialRequest, MaterialStatus, Task, TaskStatus
from sitemaster.reports import (
    delayed_tasks,
    leakage_reports,
    material_inventory,
    pending_requests,
    project_progress,
    task_status_counts,
)
from sitemaster.utils import format_currency, format_percent, status_code


def make_task(tid, status, project_id="p1", delayed=False):
    task = Task(id=tid, project_id=project_id, title=tid, status=status)
    task.is_delayed = delayed
    return task


def make_material(mid, item, quantity, status, used=0.0, unit="Bags"):
    return MaterialRequest(
        id=mid, project_id="p1", item_name=item, quantity=quantity, unit=unit, status=status, used_quantity=used
    )


# ── Reports ──────────────────────────────────────────────────────────────


def test_task_status_counts_and_progress():
    tasks = [
        make_task("t1", TaskStatus.COMPLETED),
        make_task("t2", TaskStatus.COMPLETED),
        make_task("t3", TaskStatus.IN_PROGRESS, delayed=True),
        make_task("t4", TaskStatus.PENDING),
        make_task("t5", TaskStatus.COMPLETED, project_id="p2"),
    ]

    counts = task_status_counts(tasks)
    assert counts[TaskStatus.COMPLETED] == 3
    assert counts[TaskStatus.REJECTED] == 0
    assert set(counts) == set(TaskStatus.ALL)

    assert [t.id for t in delayed_tasks(tasks)] == ["t3"]
    assert project_progress("p1", tasks) == {"completed": 2, "total": 4, "percent": 50.0}
    assert project_progress("empty", tasks)["percent"] == 0.0


def test_leakage_reports():
    dprs = [
        DPR(id="d1", project_id="p1", leakage_alert=True, leakage_excess="20% above request"),
        DPR(id="d2", project_id="p1", leakage_alert=False, leakage_excess=""),
    ]
    assert [d.id for d in leakage_reports(dprs)] == ["d1"]


def test_material_inventory_groups_delivered_items():
    materials = [
        make_material("m1", "Cement", 100, MaterialStatus.DELIVERED, used=60),
        make_material("m2", "Cement", 50, MaterialStatus.DELIVERED, used=10),
        make_material("m3", "Cement", 500, MaterialStatus.REQUESTED),
        make_material("m4", "Steel", 2, MaterialStatus.DELIVERED, unit="Tons"),
        make_material("m5", "Sand", 10, MaterialStatus.APPROVED),
    ]

    inventory = {row["item_name"]: row for row in material_inventory(materials)}
    assert inventory["Cement"] == {
        "item_name": "Cement",
        "unit": "Bags",
        "total_purchased": 150.0,
        "total_used": 70.0,
        "balance": 80.0,
    }
    assert inventory["Steel"]["balance"] == 2.0
    assert "Sand" not in inventory

    assert [m.id for m in pending_requests(materials)] == ["m3", "m5"]


# ── Formatting ───────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "value,expected",
    [
        (1180, "₹1,180.00"),
        (0.005, "₹0.01"),
        (1234567.891, "₹1,234,567.89"),
        (-59, "-₹59.00"),
        (None, "₹0.00"),
    ],
)
def test_format_currency(value, expected):
    assert format_currency(value) == expected


def test_format_currency_shows_non_finite_values():
    assert format_currency(float("nan")) == "₹nan"
    assert format_currency(float("inf")) == "₹inf"


def test_format_percent_and_status_code():
    assert format_percent(5) == "5.00%"
    assert format_percent(None) == "0.00%"
    assert status_code("Pending Approval") == "PENDING_APPROVAL"
    assert status_code(" In  Progress ") == "IN_PROGRESS"


# ── Logging ──────────────────────────────────────────────────────────────


def test_json_formatter():
    record = logging.LogRecord("sitemaster.services", logging.INFO, __file__, 10, "Invoice %s saved", ("INV/2024/1",), None)
    payload = json.loads(JSONFormatter().format(record))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "sitemaster.services"
    assert payload["message"] == "Invoice INV/2024/1 saved"


def test_readable_formatter_colors_only_on_request():
    record = logging.LogRecord("sitemaster.audit", logging.WARNING, __file__, 10, "AUDIT %s", ("DPR_SUBMITTED",), None)

    plain = ReadableFormatter().format(record)
    assert "\033[" not in plain
    assert plain.endswith("WARNING  sitemaster.audit: AUDIT DPR_SUBMITTED")

    colored = ReadableFormatter(use_color=True).format(record)
    assert colored.count("\033[") == 2
    assert "sitemaster.audit: AUDIT DPR_SUBMITTED" in colored


def test_configure_logging_does_not_duplicate_handlers(app):
    configure_logging(app)
    configure_logging(app)
    handlers = [h for h in logging.getLogger("sitemaster").handlers if h.get_name() == "sitemaster"]
    assert len(handlers) == 1
    assert logging.getLogger("sitemaster").level == logging.WARNING
