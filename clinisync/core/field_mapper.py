"""Field Mapper — bidirectional record translation between local and remote conventions.

Invariants:
    - Local records use camelCase keys; remote rows use snake_case columns
    - FIELD_OVERRIDES wins over the regular rule, in both directions
    - to_local_name(to_remote_name(n)) == n for every camelCase name
    - Date values leave as ISO-8601 text; strings come back as datetime only
      for declared date fields (per-table set, else DEFAULT_DATE_FIELDS)
    - Pure functions: no IO, never raise on odd shapes (best-effort pass-through)

Design Decisions:
    - Module-level pure functions plus a thin FieldMapper class: the class binds the
      override table once so services can receive it by injection
    - Naive datetimes are treated as UTC: devices write local timestamps without tzinfo
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping

from clinisync.core.domain_types import Record, RecordValue


# Names that don't follow the regular camelCase <-> snake_case rule.
FIELD_OVERRIDES: dict[str, str] = {
    "patientWhatsApp": "patient_whatsapp",
    "whatsAppNumber": "whatsapp_number",
    "whatsApp": "whatsapp",
    "is24Hours": "is_24_hours",
}

# Fallback allowlist when a table declares no date fields of its own.
DEFAULT_DATE_FIELDS: frozenset[str] = frozenset({
    "createdAt", "updatedAt", "startDate", "endDate", "date",
    "recordedAt", "scheduledDate", "admissionDate", "dischargeDate",
    "requestedAt", "completedAt", "collectedAt", "prescribedAt",
    "dispensedAt", "assessedAt", "startedAt", "performedAt",
    "actualStartTime", "actualEndTime", "expectedDischargeDate",
    "actualDischargeDate", "expectedEndDate", "actualEndDate",
    "agreementAcceptedAt", "lastMessageAt", "dateOfBirth", "roundDate",
    "timeOfInjury", "followUpDate", "outcomeDate", "reviewedAt",
    "meetingDate", "requestDate", "scheduledAt", "assignedFrom",
    "assignedTo", "assignedAt", "scheduledStart", "scheduledEnd",
    "actualStart", "actualEnd", "assessmentDate", "timestamp",
})

_CAPITAL = re.compile(r"[A-Z]")
_SEPARATED_LOWER = re.compile(r"_([a-z])")


# ─── Names ───────────────────────────────────────────────────────

def camel_to_snake(name: str) -> str:
    return _CAPITAL.sub(lambda m: "_" + m.group(0).lower(), name)


def snake_to_camel(name: str) -> str:
    return _SEPARATED_LOWER.sub(lambda m: m.group(1).upper(), name)


# ─── Values ──────────────────────────────────────────────────────

def format_timestamp(value: date) -> str:
    """Serialize a date/datetime to ISO-8601 text (UTC datetimes end in Z)."""
    if not isinstance(value, datetime):
        return value.isoformat()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat()
    return text.replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime | None:
    """Parse ISO-8601 text into an aware datetime; None when unparseable."""
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sanitize_value(value: Any) -> Any:
    """Normalize nested remote values for local storage.

    Sets/tuples become lists, Firestore-style {seconds, nanoseconds} maps become
    ISO strings, dicts and lists recurse. Anything else passes through.
    """
    if value is None:
        return None
    if isinstance(value, (set, frozenset, tuple)):
        return [sanitize_value(v) for v in value]
    if isinstance(value, list):
        return [sanitize_value(v) for v in value]
    if isinstance(value, dict):
        seconds = value.get("seconds")
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool) and (
            set(value) <= {"seconds", "nanoseconds"}
        ):
            ts = datetime.fromtimestamp(seconds, tz=timezone.utc)
            return format_timestamp(ts)
        return {str(k): sanitize_value(v) for k, v in value.items()}
    return value


def _to_remote_value(value: Any) -> Any:
    if isinstance(value, date):
        return format_timestamp(value)
    return value


def _to_local_value(name: str, value: Any, date_fields: frozenset[str]) -> RecordValue:
    if isinstance(value, str) and name in date_fields:
        parsed = parse_timestamp(value)
        return parsed if parsed is not None else value
    return sanitize_value(value)


# ─── Mapper ──────────────────────────────────────────────────────

class FieldMapper:
    """Translates records between local (camelCase) and remote (snake_case) shape."""

    def __init__(
        self,
        overrides: Mapping[str, str] | None = None,
        default_date_fields: Iterable[str] = DEFAULT_DATE_FIELDS,
    ):
        self.overrides = dict(FIELD_OVERRIDES if overrides is None else overrides)
        self.reverse_overrides = {v: k for k, v in self.overrides.items()}
        self.default_date_fields = frozenset(default_date_fields)

    def to_remote_name(self, name: str) -> str:
        return self.overrides.get(name) or camel_to_snake(name)

    def to_local_name(self, name: str) -> str:
        return self.reverse_overrides.get(name) or snake_to_camel(name)

    def to_remote(self, record: Mapping[str, Any] | None) -> Record:
        if not record:
            return {}
        return {
            self.to_remote_name(str(k)): _to_remote_value(v)
            for k, v in record.items()
        }

    def to_local(
        self,
        record: Mapping[str, Any] | None,
        date_fields: Iterable[str] | None = None,
    ) -> Record:
        """Translate a remote row; date_fields overrides the default allowlist."""
        if not record:
            return {}
        fields = (
            frozenset(date_fields) if date_fields
            else self.default_date_fields
        )
        result: Record = {}
        for key, value in record.items():
            name = self.to_local_name(str(key))
            result[name] = _to_local_value(name, value, fields)
        return result
