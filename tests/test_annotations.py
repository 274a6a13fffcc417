"""
Derivation tests: task delay (read-time) and DPR leakage (write-time).
"""

from datetime import date, datetime

import pytest

from sitemaster.annotations import (
    DEADLINE_EXCEEDED,
    MATERIAL_SHORTAGE,
    annotate_dpr_leakage,
    annotate_dprs,
    annotate_task_delay,
    annotate_tasks,
)
from sitemaster.models import DPR, MaterialRequest, MaterialStatus, Task, TaskStatus

NOW = datetime(2024, 6, 15, 10, 0, 0)


def make_task(status=TaskStatus.IN_PROGRESS, due=date(2024, 7, 1), project_id="p1", manual_reason=None):
    return Task(
        id="t1",
        project_id=project_id,
        title="Slab casting",
        status=status,
        due_date=due,
        manual_delay_reason=manual_reason,
    )


def make_request(item_name="Cement", quantity=100.0, status=MaterialStatus.REQUESTED, project_id="p1", id=None):
    return MaterialRequest(
        id=id or f"m-{item_name}-{quantity}",
        project_id=project_id,
        item_name=item_name,
        quantity=quantity,
        unit="Bags",
        status=status,
    )


def make_dpr(*usage, project_id="p1"):
    return DPR(
        id="d1",
        project_id=project_id,
        date=date(2024, 6, 15),
        description="Slab work",
        materials_used=[{"item_name": name, "quantity_used": qty} for name, qty in usage],
    )


# ── Task delay ───────────────────────────────────────────────────────────


def test_task_on_schedule_without_shortage():
    flags = annotate_task_delay(make_task(), [], NOW)
    assert flags.is_delayed is False
    assert flags.delay_reason is None


def test_deadline_takes_priority_over_shortage():
    task = make_task(due=date(2024, 6, 1))
    flags = annotate_task_delay(task, [make_request()], NOW)
    assert flags == (True, DEADLINE_EXCEEDED)


def test_material_shortage_for_requested_materials():
    flags = annotate_task_delay(make_task(), [make_request()], NOW)
    assert flags == (True, MATERIAL_SHORTAGE)


@pytest.mark.parametrize(
    "status",
    [MaterialStatus.APPROVED, MaterialStatus.DELIVERED, MaterialStatus.REJECTED],
)
def test_only_requested_materials_cause_shortage(status):
    flags = annotate_task_delay(make_task(), [make_request(status=status)], NOW)
    assert flags.is_delayed is False


def test_shortage_ignores_other_projects():
    flags = annotate_task_delay(make_task(), [make_request(project_id="p2")], NOW)
    assert flags.is_delayed is False


def test_completed_task_past_due_is_not_deadline_exceeded():
    task = make_task(status=TaskStatus.COMPLETED, due=date(2024, 6, 1))
    assert annotate_task_delay(task, [], NOW) == (False, None)

    # Completed tasks still report a shortage on their project
    assert annotate_task_delay(task, [make_request()], NOW) == (True, MATERIAL_SHORTAGE)


def test_manual_reason_shown_but_not_delayed():
    task = make_task(manual_reason="Rain")
    flags = annotate_task_delay(task, [], NOW)
    assert flags.is_delayed is False
    assert flags.delay_reason == "Rain"


def test_derived_reason_overrides_manual_reason():
    task = make_task(due=date(2024, 6, 1), manual_reason="Rain")
    assert annotate_task_delay(task, [], NOW).delay_reason == DEADLINE_EXCEEDED


def test_task_due_today_is_past_due_after_midnight():
    task = make_task(due=NOW.date())
    assert annotate_task_delay(task, [], NOW).delay_reason == DEADLINE_EXCEEDED
    assert annotate_task_delay(task, [], datetime.combine(NOW.date(), datetime.min.time())).is_delayed is False


def test_annotate_tasks_is_idempotent():
    tasks = [make_task(due=date(2024, 6, 1))]
    materials = [make_request()]

    first = [(t.is_delayed, t.delay_reason) for t in annotate_tasks(tasks, materials, NOW)]
    second = [(t.is_delayed, t.delay_reason) for t in annotate_tasks(tasks, materials, NOW)]
    assert first == second == [(True, DEADLINE_EXCEEDED)]


def test_annotate_tasks_reflects_material_changes():
    task = make_task()
    request = make_request()
    annotate_tasks([task], [request], NOW)
    assert task.delay_reason == MATERIAL_SHORTAGE

    request.status = MaterialStatus.APPROVED
    annotate_tasks([task], [request], NOW)
    assert task.is_delayed is False
    assert task.delay_reason is None


# ── DPR leakage ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "used,alert,excess",
    [
        (111, True, "11% above request"),
        (109, False, ""),
        (110, False, ""),            # exactly 110% is within tolerance
        (100, False, ""),
        (225, True, "125% above request"),
    ],
)
def test_leakage_threshold(used, alert, excess):
    flags = annotate_dpr_leakage(make_dpr(("Cement", used)), [make_request(quantity=100)])
    assert flags == (alert, excess)


def test_leakage_percent_rounds_half_up():
    flags = annotate_dpr_leakage(make_dpr(("Steel", 225)), [make_request("Steel", quantity=200)])
    assert flags.leakage_excess == "13% above request"


def test_last_triggering_entry_wins():
    dpr = make_dpr(("Cement", 150), ("Steel", 230))
    materials = [make_request("Cement", 100), make_request("Steel", 200)]
    flags = annotate_dpr_leakage(dpr, materials)
    assert flags.leakage_alert is True
    assert flags.leakage_excess == "15% above request"


def test_later_non_triggering_entry_keeps_earlier_excess():
    dpr = make_dpr(("Cement", 150), ("Steel", 100))
    materials = [make_request("Cement", 100), make_request("Steel", 200)]
    assert annotate_dpr_leakage(dpr, materials) == (True, "50% above request")


def test_first_matching_request_is_used():
    materials = [make_request("Cement", 100, id="m1"), make_request("Cement", 500, id="m2")]
    flags = annotate_dpr_leakage(make_dpr(("Cement", 200)), materials)
    assert flags == (True, "100% above request")


def test_usage_without_request_is_ignored():
    flags = annotate_dpr_leakage(make_dpr(("Sand", 1000)), [make_request("Cement", 100)])
    assert flags == (False, "")


def test_requests_from_other_projects_are_ignored():
    flags = annotate_dpr_leakage(make_dpr(("Cement", 500)), [make_request(project_id="p2")])
    assert flags == (False, "")


def test_zero_quantity_request_is_skipped():
    flags = annotate_dpr_leakage(make_dpr(("Cement", 50)), [make_request(quantity=0)])
    assert flags == (False, "")


def test_dpr_without_usage():
    dpr = make_dpr()
    dpr.materials_used = None
    assert annotate_dpr_leakage(dpr, [make_request()]) == (False, "")


def test_annotate_dprs_sets_fields_and_logs(caplog):
    dprs = [make_dpr(("Cement", 150))]
    with caplog.at_level("WARNING", logger="sitemaster"):
        annotate_dprs(dprs, [make_request()])

    assert dprs[0].leakage_alert is True
    assert dprs[0].leakage_excess == "50% above request"
    assert "Material leakage on DPR d1" in caplog.text
