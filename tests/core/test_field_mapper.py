"""Field Mapper — tests for local <-> remote record translation.

Tests cover:
    - camelCase <-> snake_case naming, including the override table
    - Round trip of names and dates
    - Date parsing only for declared date fields
    - Pass-through of odd shapes (empty records, unparseable dates)
"""

from datetime import date, datetime, timezone, timedelta

from clinisync.core.field_mapper import (
    FieldMapper, camel_to_snake, format_timestamp, parse_timestamp,
    sanitize_value, snake_to_camel,
)


def test_camel_to_snake_regular_names():
    assert camel_to_snake("hospitalId") == "hospital_id"
    assert camel_to_snake("createdAt") == "created_at"
    assert camel_to_snake("id") == "id"


def test_snake_to_camel_regular_names():
    assert snake_to_camel("hospital_id") == "hospitalId"
    assert snake_to_camel("first_name") == "firstName"
    assert snake_to_camel("status") == "status"


def test_overrides_win_in_both_directions():
    mapper = FieldMapper()
    assert mapper.to_remote_name("patientWhatsApp") == "patient_whatsapp"
    assert mapper.to_local_name("patient_whatsapp") == "patientWhatsApp"
    assert mapper.to_remote_name("is24Hours") == "is_24_hours"
    assert mapper.to_local_name("is_24_hours") == "is24Hours"


def test_regular_rule_would_mangle_override_names():
    # without the override table the round trip is lossy
    assert snake_to_camel(camel_to_snake("patientWhatsApp")) == "patientWhatsApp"
    assert camel_to_snake("patientWhatsApp") == "patient_whats_app"


def test_round_trip_names_and_dates():
    mapper = FieldMapper()
    created = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
    record = {
        "id": "p1", "firstName": "Ada", "patientWhatsApp": "+234",
        "createdAt": created, "hospitalId": "h1",
    }
    assert mapper.to_local(mapper.to_remote(record)) == record


def test_to_remote_formats_dates_as_iso_z():
    mapper = FieldMapper()
    row = mapper.to_remote({
        "updatedAt": datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        "dateOfBirth": date(1990, 5, 17),
    })
    assert row == {"updated_at": "2024-01-01T12:00:00Z", "date_of_birth": "1990-05-17"}


def test_naive_datetime_treated_as_utc():
    assert format_timestamp(datetime(2024, 1, 1, 8, 0)) == "2024-01-01T08:00:00Z"


def test_aware_datetime_converted_to_utc():
    lagos = timezone(timedelta(hours=1))
    assert format_timestamp(datetime(2024, 1, 1, 9, 0, tzinfo=lagos)) == "2024-01-01T08:00:00Z"


def test_to_local_parses_only_declared_date_fields():
    mapper = FieldMapper()
    local = mapper.to_local({"updated_at": "2024-01-01T00:00:00Z", "notes": "2024-01-01"})
    assert isinstance(local["updatedAt"], datetime)
    assert local["notes"] == "2024-01-01"


def test_per_table_date_fields_replace_default_allowlist():
    mapper = FieldMapper()
    local = mapper.to_local(
        {"visit_on": "2024-02-02T10:00:00Z", "created_at": "2024-01-01T00:00:00Z"},
        frozenset({"visitOn"}),
    )
    assert isinstance(local["visitOn"], datetime)
    assert local["createdAt"] == "2024-01-01T00:00:00Z"


def test_unparseable_date_passes_through():
    mapper = FieldMapper()
    assert mapper.to_local({"created_at": "yesterday"}) == {"createdAt": "yesterday"}


def test_empty_records_map_to_empty():
    mapper = FieldMapper()
    assert mapper.to_remote({}) == {}
    assert mapper.to_local(None) == {}


def test_parse_timestamp_variants():
    assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp("2024-01-01T00:00:00").tzinfo == timezone.utc
    assert parse_timestamp("") is None
    assert parse_timestamp("not a date") is None


def test_sanitize_value_nested_shapes():
    value = sanitize_value({
        "tags": ("a", "b"),
        "seen": {"seconds": 0, "nanoseconds": 0},
        "items": [{"codes": {1}}],
    })
    assert value == {
        "tags": ["a", "b"],
        "seen": "1970-01-01T00:00:00Z",
        "items": [{"codes": [1]}],
    }


def test_custom_overrides_replace_defaults():
    mapper = FieldMapper(overrides={"iOSVersion": "ios_version"})
    assert mapper.to_remote_name("iOSVersion") == "ios_version"
    assert mapper.to_remote_name("patientWhatsApp") == "patient_whats_app"
