"""
sitemaster/services.py

State-mutating workflows for SiteMaster.

Every operation is one unit of work:
    validate -> mutate -> re-annotate -> persist -> audit -> commit
If anything fails before the commit, the store is rolled back and no audit entry
survives. Validation happens before the first mutation, so a rejected request
never leaves a half-applied change behind (the in-memory store has no rollback).

Status machines:
- Task:     Pending -> In Progress -> Pending Approval -> Completed | Rejected
            (Rejected -> In Progress for rework). Pending Approval is entered only
            through DPR submission and left only through DPR review.
- DPR:      Pending -> Approved | Rejected (review moves every referenced task).
- Material: Requested -> Approved | Rejected, Approved -> Delivered.
- Invoice:  Draft -> Issued -> Paid. Only drafts can be edited.

Usage:
    service = SiteService(SqlStore(), assistant=build_assistant(app.config))
    dpr = service.submit_dpr({...}, actor=Actor("w1", "Ramesh Kumar", Role.WORKER))
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Iterator

from .ai import SiteAssistant, StubAssistant
from .audit import AuditRecorder, status_action
from .billing import GST_SLABS, is_inter_state, validate_gstin
from .errors import NotFoundError, TransitionError, ValidationError
from .models import (
    DPR,
    ApprovalStatus,
    AttendanceRecord,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    MaterialRequest,
    MaterialStatus,
    Party,
    PartyType,
    Project,
    ProjectStatus,
    Task,
    TaskStatus,
)
from .repositories import Store
from .security import Actor, permission_required

logger = logging.getLogger(__name__)


# Manual task moves. Pending Approval / Completed / Rejected are reserved for DPR flows.
TASK_MANUAL_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS},
    TaskStatus.REJECTED: {TaskStatus.IN_PROGRESS},
}

# Tasks a DPR may claim as complete
TASK_CLAIMABLE = {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}

MATERIAL_TRANSITIONS = {
    MaterialStatus.REQUESTED: {MaterialStatus.APPROVED, MaterialStatus.REJECTED},
    MaterialStatus.APPROVED: {MaterialStatus.DELIVERED},
}

INVOICE_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.ISSUED},
    InvoiceStatus.ISSUED: {InvoiceStatus.PAID},
}


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _new_id() -> str:
    return uuid.uuid4().hex


def _text(value: Any) -> str | None:
    return (str(value).strip() or None) if value is not None else None


def _required_text(data: dict, key: str, label: str) -> str:
    value = _text(data.get(key))
    if not value:
        raise ValidationError(f"{label} is required.")
    return value


def _parse_number(value: Any, label: str, default: float | None = None) -> float:
    """Parse a number from user input (accepts comma or dot)."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        if default is None:
            raise ValidationError(f"{label} is required.")
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number.")
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        raise ValidationError(f"{label} must be a number.") from None


def _parse_optional_number(value: Any, label: str) -> float | None:
    """Like _parse_number, but blank input stays None."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    return _parse_number(value, label)


def _parse_date(value: Any, label: str, default: date | None = None) -> date:
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{label} is required.")
        return default
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"{label} must be an ISO date (YYYY-MM-DD).") from None


def _check_transition(entity: str, current: str, target: str, allowed: dict[str, set[str]]) -> None:
    if target not in allowed.get(current, set()):
        raise TransitionError(entity, current, target)


# ---------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------
class SiteService:
    """Workflows over an injected Store (SQL or in-memory)."""

    def __init__(
        self,
        store: Store,
        audit: AuditRecorder | None = None,
        assistant: SiteAssistant | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.clock = clock or store.clock
        self.audit = audit or AuditRecorder(store.audit, clock=self.clock)
        self.assistant = assistant or StubAssistant()

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        try:
            yield
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

    def _record(self, action: str, actor: Actor, target_id: str, remarks: str | None = None) -> None:
        self.audit.record(action, actor.name, actor.role, target_id, remarks)

    # -----------------------------
    # Lookups
    # -----------------------------
    def _get(self, collection: str, label: str, entity_id: str):
        entity = self.store.get(collection, entity_id)
        if entity is None:
            raise NotFoundError(label, entity_id)
        return entity

    def get_project(self, project_id: str) -> Project:
        return self._get("projects", "Project", project_id)

    def get_task(self, task_id: str) -> Task:
        return self._get("tasks", "Task", task_id)

    def get_dpr(self, dpr_id: str) -> DPR:
        return self._get("dprs", "DPR", dpr_id)

    def get_material_request(self, request_id: str) -> MaterialRequest:
        return self._get("materials", "MaterialRequest", request_id)

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._get("invoices", "Invoice", invoice_id)

    def get_party(self, party_id: str) -> Party:
        return self._get("parties", "Party", party_id)

    def list_tasks(self, project_id: str | None = None) -> list[Task]:
        """Tasks with is_delayed / delay_reason freshly computed."""
        return self.store.load("tasks", project_id=project_id)

    # -----------------------------
    # Projects (Admin)
    # -----------------------------
    @permission_required("create_project")
    def create_project(self, data: dict, actor: Actor) -> Project:
        name = _required_text(data, "name", "Project name")
        state_code = _required_text(data, "state_code", "State code")
        if len(state_code) != 2 or not state_code.isdigit():
            raise ValidationError("State code must be two digits.")

        status = _text(data.get("status")) or ProjectStatus.ACTIVE
        if status not in ProjectStatus.ALL:
            raise ValidationError(f"Invalid project status: {status}")

        project_id = _text(data.get("id")) or _new_id()
        if self.store.projects.get(project_id) is not None:
            raise ValidationError(f"Project '{project_id}' already exists.")

        retention = _parse_number(data.get("retention_percent"), "Retention %", default=5.0)
        if not 0 <= retention <= 100:
            raise ValidationError("Retention % must be between 0 and 100.")

        project = Project(
            id=project_id,
            name=name,
            location=_text(data.get("location")),
            status=status,
            budget=_parse_number(data.get("budget"), "Budget", default=0.0),
            start_date=_parse_date(data.get("start_date"), "Start date", default=self.clock().date()),
            state_code=state_code,
            milestones=[m for m in (data.get("milestones") or []) if _text(m)],
            retention_percent=retention,
            gst_required=bool(data.get("gst_required", True)),
        )

        with self._unit_of_work():
            self.store.save("projects", [project])
            self._record("PROJECT_CREATED", actor, project.id)

        logger.info("Project %s created", project.id)
        return project

    @permission_required("update_billing_rules")
    def update_billing_rules(
        self,
        project_id: str,
        retention_percent: Any,
        gst_required: bool,
        actor: Actor,
    ) -> Project:
        project = self.get_project(project_id)
        retention = _parse_number(retention_percent, "Retention %")
        if not 0 <= retention <= 100:
            raise ValidationError("Retention % must be between 0 and 100.")

        with self._unit_of_work():
            project.retention_percent = retention
            project.gst_required = bool(gst_required)
            self.store.save("projects", [project])
            self._record(
                "PROJECT_BILLING_RULES_UPDATED",
                actor,
                project.id,
                f"retention={retention:g}%, gst_required={project.gst_required}",
            )
        return project

    # -----------------------------
    # Tasks
    # -----------------------------
    @permission_required("add_task")
    def add_task(self, data: dict, actor: Actor) -> Task:
        project = self.get_project(_required_text(data, "project_id", "Project"))

        task = Task(
            id=_text(data.get("id")) or _new_id(),
            project_id=project.id,
            title=_required_text(data, "title", "Task title"),
            assigned_to=_text(data.get("assigned_to")),
            status=TaskStatus.PENDING,
            due_date=_parse_date(data.get("due_date"), "Due date"),
            manual_delay_reason=_text(data.get("delay_reason")),
        )

        with self._unit_of_work():
            self.store.save("tasks", [task])
            self._record("TASK_CREATED", actor, task.id)
        return task

    @permission_required("update_task_status")
    def update_task_status(self, task_id: str, status: str, actor: Actor, remarks: str | None = None) -> Task:
        """Manual status moves only; approval outcomes go through review_dpr()."""
        task = self.get_task(task_id)

        if status in (TaskStatus.PENDING_APPROVAL, TaskStatus.COMPLETED, TaskStatus.REJECTED):
            raise TransitionError(
                "task", task.status, status, "only DPR submission and review may set this status"
            )
        _check_transition("task", task.status, status, TASK_MANUAL_TRANSITIONS)

        with self._unit_of_work():
            task.status = status
            if remarks:
                task.supervisor_remarks = remarks
            self.store.save("tasks", [task])
            self._record(status_action("task", status), actor, task.id, remarks)
        return task

    # -----------------------------
    # DPRs
    # -----------------------------
    def _usage_entries(self, raw: Any) -> list[dict]:
        """Keep entries with an item name and a positive quantity."""
        entries = []
        for entry in raw or []:
            item_name = _text(entry.get("item_name"))
            quantity = _parse_number(entry.get("quantity_used"), "Quantity used", default=0.0)
            if item_name and quantity > 0:
                entries.append({"item_name": item_name, "quantity_used": quantity})
        return entries

    @permission_required("submit_dpr")
    def submit_dpr(self, data: dict, actor: Actor) -> DPR:
        """
        Save a DPR (leakage-annotated) and move every claimed task to Pending Approval.

        Claimed tasks must belong to the DPR's project and be Pending or In Progress.
        """
        project = self.get_project(_required_text(data, "project_id", "Project"))
        description = _required_text(data, "description", "Description")

        workforce = int(_parse_number(data.get("workforce_count"), "Workforce count", default=0.0))
        if workforce < 0:
            raise ValidationError("Workforce count cannot be negative.")

        claimed: list[Task] = []
        for task_id in dict.fromkeys(data.get("completed_task_ids") or []):
            task = self.get_task(task_id)
            if task.project_id != project.id:
                raise ValidationError(f"Task '{task_id}' does not belong to project '{project.id}'.")
            if task.status not in TASK_CLAIMABLE:
                raise TransitionError("task", task.status, TaskStatus.PENDING_APPROVAL)
            claimed.append(task)

        now = self.clock()
        dpr = DPR(
            id=_text(data.get("id")) or _new_id(),
            project_id=project.id,
            date=_parse_date(data.get("date"), "Date", default=now.date()),
            description=description,
            weather=_text(data.get("weather")),
            workforce_count=workforce,
            photo_url=_text(data.get("photo_url")),
            submitted_by=actor.name,
            submitted_by_id=actor.id,
            timestamp=now,
            materials_used=self._usage_entries(data.get("materials_used")),
            completed_task_ids=[t.id for t in claimed],
            approval_status=ApprovalStatus.PENDING,
        )

        remarks = None
        if claimed:
            remarks = "Completion requested for tasks: " + ", ".join(t.id for t in claimed)

        with self._unit_of_work():
            self.store.save("dprs", [dpr])
            for task in claimed:
                task.status = TaskStatus.PENDING_APPROVAL
                task.related_dpr_id = dpr.id
            self.store.save("tasks", claimed)
            self._record("DPR_SUBMITTED", actor, dpr.id, remarks)

        logger.info("DPR %s submitted for project %s (%d task(s) claimed)", dpr.id, project.id, len(claimed))
        return dpr

    @permission_required("review_dpr")
    def review_dpr(self, dpr_id: str, decision: str, actor: Actor, remarks: str | None = None) -> DPR:
        """
        Approve or reject a DPR. Every referenced task moves with it, carrying the remarks:
        Approved -> Completed, Rejected -> Rejected.

        A rejection needs remarks. An approval without remarks keeps the tasks' earlier remarks.
        """
        if decision not in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
            raise ValidationError(f"Invalid review decision: {decision}")
        remarks = _text(remarks)
        if decision == ApprovalStatus.REJECTED and not remarks:
            raise ValidationError("Remarks are required when rejecting a DPR.")

        dpr = self.get_dpr(dpr_id)
        if dpr.approval_status != ApprovalStatus.PENDING:
            raise TransitionError("DPR", dpr.approval_status, decision, "already reviewed")

        tasks: list[Task] = []
        for task_id in dpr.completed_task_ids or []:
            task = self.get_task(task_id)
            if task.status != TaskStatus.PENDING_APPROVAL or task.related_dpr_id != dpr.id:
                raise TransitionError(
                    "task", task.status, TaskStatus.COMPLETED, f"not awaiting approval on DPR {dpr.id}"
                )
            tasks.append(task)

        task_status = TaskStatus.COMPLETED if decision == ApprovalStatus.APPROVED else TaskStatus.REJECTED
        now = self.clock()

        with self._unit_of_work():
            dpr.approval_status = decision
            dpr.approver_id = actor.id
            dpr.approver_remarks = remarks
            self.store.save("dprs", [dpr])

            for task in tasks:
                task.status = task_status
                if remarks:
                    task.supervisor_remarks = remarks
                if task_status == TaskStatus.COMPLETED:
                    task.completion_date = now
            self.store.save("tasks", tasks)

            self._record(f"DPR_{decision.upper()}", actor, dpr.id, remarks)

        return dpr

    # -----------------------------
    # Materials
    # -----------------------------
    @permission_required("add_material_request")
    def add_material_request(self, data: dict, actor: Actor) -> MaterialRequest:
        project = self.get_project(_required_text(data, "project_id", "Project"))

        quantity = _parse_number(data.get("quantity"), "Quantity")
        if quantity <= 0:
            raise ValidationError("Quantity must be positive.")

        request = MaterialRequest(
            id=_text(data.get("id")) or _new_id(),
            project_id=project.id,
            item_name=_required_text(data, "item_name", "Item name"),
            quantity=quantity,
            unit=_text(data.get("unit")),
            estimated_cost=_parse_number(data.get("estimated_cost"), "Estimated cost", default=0.0),
            status=MaterialStatus.REQUESTED,
            requested_by=actor.name,
            request_date=_parse_date(data.get("request_date"), "Request date", default=self.clock().date()),
            used_quantity=0.0,
        )

        with self._unit_of_work():
            self.store.save("materials", [request])
            self._record("MATERIAL_REQUESTED", actor, request.id)
        return request

    @permission_required("update_material_status")
    def update_material_status(self, request_id: str, status: str, actor: Actor) -> MaterialRequest:
        request = self.get_material_request(request_id)
        _check_transition("material request", request.status, status, MATERIAL_TRANSITIONS)

        with self._unit_of_work():
            request.status = status
            self.store.save("materials", [request])
            self._record(status_action("material", status), actor, request.id)
        return request

    @permission_required("record_material_usage")
    def record_material_usage(self, request_id: str, quantity: Any, actor: Actor) -> MaterialRequest:
        """Add consumed quantity to a delivered request (not reconciled against DPRs)."""
        request = self.get_material_request(request_id)
        used = _parse_number(quantity, "Quantity used")
        if used <= 0:
            raise ValidationError("Quantity used must be positive.")
        if request.status != MaterialStatus.DELIVERED:
            raise ValidationError("Usage can only be recorded for delivered materials.")

        with self._unit_of_work():
            request.used_quantity = (request.used_quantity or 0.0) + used
            self.store.save("materials", [request])
            self._record(
                "MATERIAL_USAGE_RECORDED",
                actor,
                request.id,
                f"+{used:g} {request.unit or ''}".strip(),
            )
        return request

    # -----------------------------
    # Attendance
    # -----------------------------
    @permission_required("attendance")
    def check_in(self, data: dict, actor: Actor) -> AttendanceRecord:
        project = self.get_project(_required_text(data, "project_id", "Project"))
        now = self.clock()

        open_records = [
            r for r in self.store.attendance.list(user_id=actor.id, date=now.date())
            if r.check_out_time is None
        ]
        if open_records:
            raise ValidationError(f"{actor.name} is already checked in.")

        record = AttendanceRecord(
            id=_new_id(),
            user_id=actor.id,
            user_name=actor.name,
            project_id=project.id,
            check_in_time=now,
            latitude=_parse_number(data.get("latitude"), "Latitude", default=0.0),
            longitude=_parse_number(data.get("longitude"), "Longitude", default=0.0),
            accuracy=_parse_optional_number(data.get("accuracy"), "Accuracy"),
            date=now.date(),
        )

        with self._unit_of_work():
            self.store.save("attendance", [record])
            self._record("ATTENDANCE_CHECK_IN", actor, record.id)
        return record

    @permission_required("attendance")
    def check_out(self, record_id: str, actor: Actor) -> AttendanceRecord:
        record = self._get("attendance", "AttendanceRecord", record_id)
        if record.user_id != actor.id:
            raise ValidationError("Attendance can only be closed by the person who checked in.")
        if record.check_out_time is not None:
            raise ValidationError("Already checked out.")

        with self._unit_of_work():
            record.check_out_time = self.clock()
            self.store.save("attendance", [record])
            self._record("ATTENDANCE_CHECK_OUT", actor, record.id)
        return record

    # -----------------------------
    # Parties & invoices
    # -----------------------------
    @permission_required("register_party")
    def register_party(self, data: dict, actor: Actor) -> Party:
        """Add billing reference data. The GSTIN must pass validate_gstin()."""
        gstin = _required_text(data, "gstin", "GSTIN")
        if not validate_gstin(gstin):
            raise ValidationError(f"Invalid GSTIN: {gstin}")

        party_type = _text(data.get("type")) or PartyType.CLIENT
        if party_type not in PartyType.ALL:
            raise ValidationError(f"Invalid party type: {party_type}")

        party = Party(
            id=_text(data.get("id")) or _new_id(),
            name=_required_text(data, "name", "Party name"),
            gstin=gstin,
            address=_text(data.get("address")),
            # The first two GSTIN digits are the state code
            state_code=_text(data.get("state_code")) or gstin[:2],
            type=party_type,
        )

        with self._unit_of_work():
            self.store.save("parties", [party])
            self._record("PARTY_CREATED", actor, party.id)
        return party

    def _next_invoice_number(self, invoice_date: date) -> str:
        existing = {i.invoice_number for i in self.store.invoices.list()}
        n = len(existing) + 1
        number = f"INV/{invoice_date.year}/{n}"
        while number in existing:
            n += 1
            number = f"INV/{invoice_date.year}/{n}"
        return number

    def _line_items(self, raw_items: Any) -> list[InvoiceLineItem]:
        raw_items = list(raw_items or [])
        if not raw_items:
            raise ValidationError("An invoice needs at least one line item.")

        items = []
        for position, raw in enumerate(raw_items):
            gst_rate = _parse_number(raw.get("gst_rate"), "GST rate", default=18.0)
            if gst_rate not in GST_SLABS:
                raise ValidationError(f"GST rate must be one of {', '.join(str(s) for s in GST_SLABS)}.")
            items.append(
                InvoiceLineItem(
                    id=_text(raw.get("id")) or _new_id(),
                    position=position,
                    description=_required_text(raw, "description", "Line description"),
                    hsn=_text(raw.get("hsn")) or "9954",
                    quantity=_parse_number(raw.get("quantity"), "Quantity"),
                    unit=_text(raw.get("unit")),
                    rate=_parse_number(raw.get("rate"), "Rate"),
                    gst_rate=gst_rate,
                )
            )
        return items

    @permission_required("save_invoice")
    def save_invoice(self, data: dict, actor: Actor) -> Invoice:
        """
        Create or update a Draft invoice.

        Line items are computed by the tax calculator (inter-state when the
        supplier and recipient state codes differ) and aggregated with the
        project's retention % unless one is given.
        """
        project = self.get_project(_required_text(data, "project_id", "Project"))
        supplier = self.get_party(_required_text(data, "supplier_id", "Supplier"))
        recipient = self.get_party(_required_text(data, "recipient_id", "Recipient"))
        items = self._line_items(data.get("items"))

        retention = _parse_number(data.get("retention_percent"), "Retention %", default=project.retention_percent)
        advance = _parse_number(data.get("advance_adjustment"), "Advance adjustment", default=0.0)
        invoice_date = _parse_date(data.get("date"), "Invoice date", default=self.clock().date())

        invoice_id = _text(data.get("id"))
        invoice = self.store.invoices.get(invoice_id) if invoice_id else None
        is_new = invoice is None
        if not is_new and invoice.status != InvoiceStatus.DRAFT:
            raise TransitionError("invoice", invoice.status, InvoiceStatus.DRAFT, "only drafts can be edited")

        inter_state = is_inter_state(supplier, recipient)

        with self._unit_of_work():
            if is_new:
                invoice = Invoice(
                    id=invoice_id or _new_id(),
                    invoice_number=self._next_invoice_number(invoice_date),
                    status=InvoiceStatus.DRAFT,
                    bill_type="Composite",
                )
            invoice.project_id = project.id
            invoice.date = invoice_date
            invoice.supplier_id = supplier.id
            invoice.recipient_id = recipient.id
            invoice.place_of_supply = recipient.state_code
            invoice.advance_adjustment = advance
            invoice.items = items
            invoice.recalc_totals(retention, inter_state)

            self.store.save("invoices", [invoice])
            self._record("INVOICE_DRAFT_CREATED" if is_new else "INVOICE_UPDATED", actor, invoice.id)

        logger.info(
            "Invoice %s saved (%s, net %.2f)",
            invoice.invoice_number,
            "inter-state" if inter_state else "intra-state",
            invoice.total_amount,
        )
        return invoice

    @permission_required("update_invoice_status")
    def update_invoice_status(self, invoice_id: str, status: str, actor: Actor) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        _check_transition("invoice", invoice.status, status, INVOICE_TRANSITIONS)

        with self._unit_of_work():
            invoice.status = status
            self.store.save("invoices", [invoice])
            self._record(status_action("invoice", status), actor, invoice.id)
        return invoice

    # -----------------------------
    # AI collaborators (never raise)
    # -----------------------------
    def site_summary(self, project_id: str) -> str:
        project = self.get_project(project_id)
        return self.assistant.summarize(
            project,
            self.store.load("dprs", project_id=project.id),
            self.store.load("materials", project_id=project.id),
        )

    def transcribe_note(self, base64_audio: str) -> str:
        return self.assistant.transcribe(base64_audio)
