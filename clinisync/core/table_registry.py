"""Table Registry — ordered bindings between local and remote table names.

Invariants:
    - Registry order is dependency order: identity/organisation tables first,
      dependent clinical tables after, so referenced rows exist locally before dependents
    - Local and remote names are each unique within a registry
    - Bindings are immutable once the registry is built (startup only)

Design Decisions:
    - Typed lookup maps built once instead of attribute dispatch on a store object
    - order_column defaults to updated_at; append-only logs order by their own column
    - Per-table date_fields optional: empty means "use the mapper's allowlist"
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from clinisync.core.domain_types import REMOTE_UPDATED_COLUMN
from clinisync.core.errors import TableNotRegisteredError


@dataclass(frozen=True)
class TableBinding:
    """One synced table: local name, remote name, ordering column."""
    local_name: str
    remote_name: str
    order_column: str = REMOTE_UPDATED_COLUMN
    date_fields: frozenset[str] = field(default_factory=frozenset)


class TableRegistry:
    """Ordered, immutable collection of TableBindings with name lookup."""

    def __init__(self, bindings: Iterable[TableBinding]):
        self._bindings: tuple[TableBinding, ...] = tuple(bindings)
        self._by_local: dict[str, TableBinding] = {}
        self._by_remote: dict[str, TableBinding] = {}
        for b in self._bindings:
            if b.local_name in self._by_local:
                raise ValueError(f"Duplicate local table name: {b.local_name}")
            if b.remote_name in self._by_remote:
                raise ValueError(f"Duplicate remote table name: {b.remote_name}")
            self._by_local[b.local_name] = b
            self._by_remote[b.remote_name] = b

    def __iter__(self) -> Iterator[TableBinding]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, local_name: object) -> bool:
        return local_name in self._by_local

    def by_local(self, local_name: str) -> TableBinding:
        try:
            return self._by_local[local_name]
        except KeyError:
            raise TableNotRegisteredError(local_name) from None

    def by_remote(self, remote_name: str) -> TableBinding:
        try:
            return self._by_remote[remote_name]
        except KeyError:
            raise TableNotRegisteredError(remote_name) from None

    def find_local(self, local_name: str) -> TableBinding | None:
        return self._by_local.get(local_name)

    def subset(self, local_names: Iterable[str]) -> list[TableBinding]:
        """Bindings for the given names, in the order given. Unknown names skipped."""
        return [
            self._by_local[n] for n in local_names if n in self._by_local
        ]


def _b(local_name: str, remote_name: str, order_column: str = REMOTE_UPDATED_COLUMN) -> TableBinding:
    return TableBinding(local_name, remote_name, order_column)


# ─── Default registry ────────────────────────────────────────────

DEFAULT_TABLES: tuple[TableBinding, ...] = (
    # Identity & organisation (must land before anything references them)
    _b("users", "users"),
    _b("hospitals", "hospitals"),
    _b("patients", "patients"),
    # Clinical
    _b("vitalSigns", "vital_signs"),
    _b("clinicalEncounters", "clinical_encounters"),
    _b("surgeries", "surgeries"),
    _b("wounds", "wounds"),
    _b("burnAssessments", "burn_assessments"),
    # Lab & pharmacy
    _b("labRequests", "lab_requests"),
    _b("prescriptions", "prescriptions"),
    # Nutrition
    _b("nutritionAssessments", "nutrition_assessments"),
    _b("nutritionPlans", "nutrition_plans"),
    # Billing
    _b("invoices", "invoices"),
    # Admission & ward
    _b("admissions", "admissions"),
    _b("admissionNotes", "admission_notes"),
    _b("bedAssignments", "bed_assignments"),
    # Treatment
    _b("treatmentPlans", "treatment_plans"),
    _b("treatmentProgress", "treatment_progress"),
    _b("wardRounds", "ward_rounds"),
    _b("doctorAssignments", "doctor_assignments"),
    _b("nurseAssignments", "nurse_assignments"),
    _b("investigations", "investigations"),
    # Communication
    _b("chatRooms", "chat_rooms"),
    _b("chatMessages", "chat_messages"),
    _b("videoConferences", "video_conferences"),
    # Discharge & documentation
    _b("dischargeSummaries", "discharge_summaries"),
    _b("consumableBOMs", "consumable_boms"),
    _b("histopathologyRequests", "histopathology_requests"),
    _b("bloodTransfusions", "blood_transfusions"),
    _b("mdtMeetings", "mdt_meetings"),
    _b("limbSalvageAssessments", "limb_salvage_assessments"),
    # Burn care monitoring
    _b("burnMonitoringRecords", "burn_monitoring_records"),
    _b("escharotomyRecords", "escharotomy_records"),
    _b("skinGraftRecords", "skin_graft_records"),
    _b("burnCarePlans", "burn_care_plans"),
    # Appointments
    _b("appointments", "appointments"),
    _b("appointmentReminders", "appointment_reminders"),
    _b("appointmentSlots", "appointment_slots"),
    _b("clinicSessions", "clinic_sessions"),
    # NPWT & medication
    _b("npwtSessions", "npwt_sessions"),
    _b("npwtNotifications", "npwt_notifications"),
    _b("medicationCharts", "medication_charts"),
    _b("nursePatientAssignments", "nurse_patient_assignments"),
    _b("transfusionOrders", "transfusion_orders"),
    _b("transfusionMonitoringCharts", "transfusion_monitoring_charts"),
    # Staff, billing activity & payroll
    _b("staffPatientAssignments", "staff_patient_assignments"),
    _b("activityBillingRecords", "activity_billing_records"),
    _b("payrollPeriods", "payroll_periods"),
    _b("staffPayrollRecords", "staff_payroll_records"),
    _b("payslips", "payslips"),
    # Peri-operative & reviews
    _b("postOperativeNotes", "post_operative_notes"),
    _b("preoperativeAssessments", "preoperative_assessments"),
    _b("externalReviews", "external_reviews"),
    _b("referrals", "referrals"),
    _b("patientEducationRecords", "patient_education_records"),
    _b("calculatorResults", "calculator_results"),
    # Settings
    _b("userSettings", "user_settings"),
    _b("hospitalSettings", "hospital_settings"),
    _b("meetingMinutes", "meeting_minutes"),
    _b("clinicalComments", "clinical_comments"),
    # Append-only logs order by their own timestamp column
    _b("investigationApprovalLogs", "investigation_approval_logs", "created_at"),
    _b("auditLogs", "audit_logs", "timestamp"),
)

# Live-channel capacity is limited: only these get realtime subscriptions.
ESSENTIAL_REALTIME_TABLES: tuple[str, ...] = (
    "patients", "admissions", "prescriptions", "appointments",
    "chatMessages", "medicationCharts", "vitalSigns", "clinicalEncounters",
    "wardRounds", "surgeries", "wounds", "burnAssessments", "labRequests",
    "investigations", "treatmentPlans", "treatmentProgress",
    "dischargeSummaries",
)

# Pulled on a shorter interval as a safety net for missed realtime events.
CRITICAL_TABLES: tuple[str, ...] = (
    "vitalSigns", "clinicalEncounters", "wardRounds",
    "prescriptions", "medicationCharts", "labRequests",
)


def default_registry() -> TableRegistry:
    return TableRegistry(DEFAULT_TABLES)
