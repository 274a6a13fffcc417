"""
SiteMaster – Construction Site Domain Models

Projects, tasks, daily progress reports (DPRs), attendance, material
procurement, GST billing and the audit trail.

Derived state follows two disciplines, one per entity type:
- Task.is_delayed / Task.delay_reason are READ-TIME projections. They are plain
  instance attributes (never columns) filled in by the repositories on every load.
- DPR.leakage_alert / DPR.leakage_excess are WRITE-TIME facts. They are columns,
  computed once when the DPR is saved.

IMPORTANT:
- Money and quantities are floats in the base currency unit (INR).
  Rounding happens only at display time (see utils.format_currency).
"""

from __future__ import annotations

from .billing import calculate_line_item, generate_invoice_summary
from .extensions import db
from .utils import utcnow


# ---------------------------------------------------------------------
# Status vocabularies
# ---------------------------------------------------------------------
class Role:
    WORKER = "WORKER"
    SUPERVISOR = "SUPERVISOR"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    OWNER = "OWNER"

    ALL = (WORKER, SUPERVISOR, MANAGER, ADMIN, OWNER)


class ProjectStatus:
    ACTIVE = "Active"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"

    ALL = (ACTIVE, COMPLETED, ON_HOLD)


class TaskStatus:
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    PENDING_APPROVAL = "Pending Approval"
    COMPLETED = "Completed"
    REJECTED = "Rejected"

    ALL = (PENDING, IN_PROGRESS, PENDING_APPROVAL, COMPLETED, REJECTED)


class ApprovalStatus:
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"

    ALL = (PENDING, APPROVED, REJECTED)


class MaterialStatus:
    REQUESTED = "Requested"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    DELIVERED = "Delivered"

    ALL = (REQUESTED, APPROVED, REJECTED, DELIVERED)


class InvoiceStatus:
    DRAFT = "Draft"
    ISSUED = "Issued"
    PAID = "Paid"

    ALL = (DRAFT, ISSUED, PAID)


class PartyType:
    CLIENT = "Client"
    CONTRACTOR = "Contractor"

    ALL = (CLIENT, CONTRACTOR)


# ---------------------------------------------------------------------
# Projects & tasks
# ---------------------------------------------------------------------
class Project(db.Model):
    """Construction project. Created and edited by admins, never deleted."""

    __tablename__ = "projects"

    id = db.Column(db.String(64), primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255))
    status = db.Column(db.String(20), nullable=False, default=ProjectStatus.ACTIVE, index=True)

    budget = db.Column(db.Float, nullable=False, default=0.0)
    start_date = db.Column(db.Date)

    # Tax jurisdiction (GST state code, e.g. "27" = Maharashtra)
    state_code = db.Column(db.String(2), nullable=False)

    milestones = db.Column(db.JSON, nullable=False, default=list)

    # Billing rule defaults
    retention_percent = db.Column(db.Float, nullable=False, default=5.0)
    gst_required = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f"<Project {self.id} {self.name}>"


class Task(db.Model):
    """Unit of site work. Status changes are driven by DPR submission and review."""

    __tablename__ = "tasks"

    id = db.Column(db.String(64), primary_key=True)

    project_id = db.Column(
        db.String(64),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title = db.Column(db.String(255), nullable=False)
    assigned_to = db.Column(db.String(120))
    status = db.Column(db.String(30), nullable=False, default=TaskStatus.PENDING, index=True)

    due_date = db.Column(db.Date, nullable=False)
    completion_date = db.Column(db.DateTime, nullable=True)

    supervisor_remarks = db.Column(db.Text, nullable=True)
    related_dpr_id = db.Column(db.String(64), nullable=True, index=True)

    # Manually entered reason; only shown when no derived reason applies
    manual_delay_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    # Read-time projection (not mapped). See annotations.annotate_tasks().
    is_delayed = False
    delay_reason = None

    def __repr__(self):
        return f"<Task {self.id} {self.status}>"


# ---------------------------------------------------------------------
# Procurement
# ---------------------------------------------------------------------
class MaterialRequest(db.Model):
    __tablename__ = "material_requests"

    id = db.Column(db.String(64), primary_key=True)

    project_id = db.Column(
        db.String(64),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    item_name = db.Column(db.String(255), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False, default=0.0)
    unit = db.Column(db.String(30))
    estimated_cost = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(20), nullable=False, default=MaterialStatus.REQUESTED, index=True)

    requested_by = db.Column(db.String(120))
    request_date = db.Column(db.Date)

    # Cumulative consumption, updated externally (not reconciled against DPR usage)
    used_quantity = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f"<MaterialRequest {self.item_name} {self.status}>"


# ---------------------------------------------------------------------
# Daily progress reports & attendance
# ---------------------------------------------------------------------
class DPR(db.Model):
    """Daily Progress Report."""

    __tablename__ = "dprs"

    id = db.Column(db.String(64), primary_key=True)

    project_id = db.Column(
        db.String(64),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text, nullable=False)
    weather = db.Column(db.String(50))
    workforce_count = db.Column(db.Integer, nullable=False, default=0)
    photo_url = db.Column(db.Text, nullable=True)

    submitted_by = db.Column(db.String(120), nullable=False)
    submitted_by_id = db.Column(db.String(64))
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)

    # [{"item_name": "Cement", "quantity_used": 12.0}, ...]
    materials_used = db.Column(db.JSON, nullable=False, default=list)
    completed_task_ids = db.Column(db.JSON, nullable=False, default=list)

    approval_status = db.Column(db.String(20), nullable=False, default=ApprovalStatus.PENDING, index=True)
    approver_id = db.Column(db.String(64), nullable=True)
    approver_remarks = db.Column(db.Text, nullable=True)

    # Write-time annotation (see annotations.annotate_dpr_leakage)
    leakage_alert = db.Column(db.Boolean, nullable=False, default=False, index=True)
    leakage_excess = db.Column(db.String(50), nullable=False, default="")

    def __repr__(self):
        return f"<DPR {self.id} {self.approval_status}>"


class AttendanceRecord(db.Model):
    __tablename__ = "attendance"

    id = db.Column(db.String(64), primary_key=True)

    user_id = db.Column(db.String(64), nullable=False, index=True)
    user_name = db.Column(db.String(120), nullable=False)

    project_id = db.Column(
        db.String(64),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    check_in_time = db.Column(db.DateTime, nullable=False)
    check_out_time = db.Column(db.DateTime, nullable=True)

    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    accuracy = db.Column(db.Float, nullable=True)

    date = db.Column(db.Date, nullable=False, index=True)

    @property
    def hours_worked(self) -> float | None:
        if not self.check_out_time:
            return None
        return (self.check_out_time - self.check_in_time).total_seconds() / 3600.0


# ---------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------
class Party(db.Model):
    """Billing party (reference data). GSTIN is validated before entry."""

    __tablename__ = "parties"

    id = db.Column(db.String(64), primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    gstin = db.Column(db.String(15), nullable=False, unique=True, index=True)
    address = db.Column(db.String(255))
    state_code = db.Column(db.String(2), nullable=False)
    type = db.Column(db.String(20), nullable=False, default=PartyType.CLIENT)

    def __repr__(self):
        return f"<Party {self.gstin} - {self.name}>"


class Invoice(db.Model):
    """GST invoice (composite works contract / RA bill)."""

    __tablename__ = "invoices"

    id = db.Column(db.String(64), primary_key=True)

    project_id = db.Column(
        db.String(64),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    invoice_number = db.Column(db.String(50), nullable=False, unique=True, index=True)
    date = db.Column(db.Date, nullable=False)

    supplier_id = db.Column(db.String(64), db.ForeignKey("parties.id"), nullable=False)
    recipient_id = db.Column(db.String(64), db.ForeignKey("parties.id"), nullable=False)
    place_of_supply = db.Column(db.String(2))

    total_taxable = db.Column(db.Float, nullable=False, default=0.0)
    total_cgst = db.Column(db.Float, nullable=False, default=0.0)
    total_sgst = db.Column(db.Float, nullable=False, default=0.0)
    total_igst = db.Column(db.Float, nullable=False, default=0.0)
    retention_amount = db.Column(db.Float, nullable=False, default=0.0)
    advance_adjustment = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(20), nullable=False, default=InvoiceStatus.DRAFT, index=True)
    bill_type = db.Column(db.String(20), nullable=False, default="Composite")

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        order_by="InvoiceLineItem.position",
        cascade="all, delete-orphan",
    )

    supplier = db.relationship("Party", foreign_keys=[supplier_id])
    recipient = db.relationship("Party", foreign_keys=[recipient_id])

    def recalc_totals(self, retention_percent: float, is_inter_state: bool) -> None:
        """Recompute every line item and the invoice-level totals in place."""
        for item in self.items:
            item.apply_tax(is_inter_state)

        summary = generate_invoice_summary(
            self.items,
            retention_percent=retention_percent,
            advance_adjustment=self.advance_adjustment or 0.0,
        )
        self.total_taxable = summary["total_taxable"]
        self.total_cgst = summary["total_cgst"]
        self.total_sgst = summary["total_sgst"]
        self.total_igst = summary["total_igst"]
        self.retention_amount = summary["retention_amount"]
        self.total_amount = summary["total_amount"]

    @property
    def gross_total(self) -> float:
        return (self.total_taxable or 0.0) + (self.total_cgst or 0.0) + (self.total_sgst or 0.0) + (self.total_igst or 0.0)

    def __repr__(self):
        return f"<Invoice {self.invoice_number} {self.status}>"


class InvoiceLineItem(db.Model):
    __tablename__ = "invoice_line_items"

    id = db.Column(db.String(64), primary_key=True)

    invoice_id = db.Column(
        db.String(64),
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position = db.Column(db.Integer, nullable=False, default=0)

    description = db.Column(db.Text, nullable=False)
    hsn = db.Column(db.String(10), nullable=False, default="9954")
    quantity = db.Column(db.Float, nullable=False, default=0.0)
    unit = db.Column(db.String(30))
    rate = db.Column(db.Float, nullable=False, default=0.0)
    gst_rate = db.Column(db.Float, nullable=False, default=18.0)

    # Derived by billing.calculate_line_item; must always match the inputs above
    taxable_amount = db.Column(db.Float, nullable=False, default=0.0)
    cgst = db.Column(db.Float, nullable=False, default=0.0)
    sgst = db.Column(db.Float, nullable=False, default=0.0)
    igst = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False, default=0.0)

    invoice = db.relationship("Invoice", back_populates="items")

    def apply_tax(self, is_inter_state: bool) -> None:
        calc = calculate_line_item(self.quantity, self.rate, self.gst_rate, is_inter_state)
        self.taxable_amount = calc["taxable_amount"]
        self.cgst = calc["cgst"]
        self.sgst = calc["sgst"]
        self.igst = calc["igst"]
        self.total = calc["total"]


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditEntry(db.Model):
    """Append-only audit record. Never updated or deleted."""

    __tablename__ = "audit_trail"

    # Timestamp-derived, strictly increasing (see audit.AuditRecorder)
    id = db.Column(db.String(32), primary_key=True)

    action = db.Column(db.String(80), nullable=False, index=True)
    performed_by = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    target_id = db.Column(db.String(64), nullable=False, index=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    remarks = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f"<AuditEntry {self.action} {self.target_id}>"

