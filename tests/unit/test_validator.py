"""Unit tests for record validation and the deterministic default record."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from alertsynth.core.models import Entity
from alertsynth.core.templates import KIBANA_VERSION, build_default_record
from alertsynth.core.timestamps import TimeWindow, parse_timestamp
from alertsynth.core.validator import (
    RECORD_ID_FIELD,
    STATUS_DEFAULTS,
    TIMESTAMP_FIELDS,
    get_nested,
    is_timestamp_field,
    is_valid_record_id,
    new_record_id,
    validate_record,
)

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def window():
    return TimeWindow(start=NOW - timedelta(hours=24), end=NOW)


@pytest.fixture
def entity():
    return Entity(host_name="web-01", user_name="alice")


class TestIdentity:
    """Identity fields always come from the caller."""

    def test_flat_identity_overwritten(self, entity, window):
        record = validate_record({"host.name": "other", "user.name": "mallory"}, entity, "prod", window)

        assert record["host.name"] == "web-01"
        assert record["user.name"] == "alice"
        assert record["kibana.space_ids"] == ["prod"]

    def test_nested_identity_removed(self, entity, window):
        candidate = {"host": {"name": "other", "os": {"name": "linux"}}, "user": {"name": "mallory"}}

        record = validate_record(candidate, entity, "default", window)

        assert "name" not in record["host"]
        assert record["host"]["os"] == {"name": "linux"}
        assert "name" not in record["user"]
        assert record["host.name"] == "web-01"

    def test_candidate_not_mutated(self, entity, window):
        candidate = {"host": {"name": "other"}}
        validate_record(candidate, entity, "default", window)
        assert candidate == {"host": {"name": "other"}}


class TestTimestamps:
    """Every timestamp ends up inside the window."""

    def test_primary_timestamp_always_present(self, entity, window):
        record = validate_record({}, entity, "default", window, rng=random.Random(1))

        assert window.contains(parse_timestamp(record["@timestamp"]))
        assert "kibana.alert.start" not in record

    def test_valid_timestamp_is_normalized(self, entity, window):
        record = validate_record({"@timestamp": "2024-05-01T08:00:00+00:00"}, entity, "default", window)
        assert record["@timestamp"] == "2024-05-01T08:00:00.000Z"

    def test_out_of_window_secondary_follows_primary(self, entity, window):
        candidate = {
            "@timestamp": "2024-05-01T08:00:00Z",
            "kibana.alert.start": "2020-01-01T00:00:00Z",
            "kibana.alert.last_detected": "garbage",
        }

        record = validate_record(candidate, entity, "default", window)

        assert record["kibana.alert.start"] == "2024-05-01T08:00:00.000Z"
        assert record["kibana.alert.last_detected"] == "2024-05-01T08:00:00.000Z"

    def test_out_of_window_primary_regenerated(self, entity, window):
        record = validate_record({"@timestamp": "2030-01-01T00:00:00Z"}, entity, "default", window)
        assert window.contains(parse_timestamp(record["@timestamp"]))

    def test_nested_timestamp_flattened(self, entity, window):
        candidate = {"kibana": {"alert": {"start": "2024-05-01T09:00:00Z", "severity": "high"}}}

        record = validate_record(candidate, entity, "default", window)

        assert record["kibana.alert.start"] == "2024-05-01T09:00:00.000Z"
        assert get_nested(record, "kibana.alert.start") is None
        assert record["kibana"]["alert"]["severity"] == "high"

    def test_backend_added_timestamps_are_checked(self, entity, window):
        candidate = {
            "@timestamp": "2024-05-01T08:00:00Z",
            "event.created": "2001-01-01T00:00:00Z",
            "event.end": "not a date",
            "kibana.alert.rule.updated_at": "2035-06-01T00:00:00Z",
            "process": {"start": "1999-12-31T23:59:59Z", "name": "cmd.exe"},
        }

        record = validate_record(candidate, entity, "default", window)

        assert record["event.created"] == "2024-05-01T08:00:00.000Z"
        assert record["event.end"] == "2024-05-01T08:00:00.000Z"
        assert record["kibana.alert.rule.updated_at"] == "2024-05-01T08:00:00.000Z"
        assert record["process"]["start"] == "2024-05-01T08:00:00.000Z"
        assert record["process"]["name"] == "cmd.exe"

    def test_backend_added_timestamps_inside_window_kept(self, entity, window):
        candidate = {"event.ingested": "2024-05-01T07:30:00Z", "event.start": "2024-05-01T07:00:00Z"}

        record = validate_record(candidate, entity, "default", window)

        assert record["event.ingested"] == "2024-05-01T07:30:00Z"
        assert record["event.start"] == "2024-05-01T07:00:00Z"

    @pytest.mark.parametrize("dotted, expected", [
        ("event.created", True),
        ("process.start", True),
        ("kibana.alert.rule.created_at", True),
        ("threat.enrichments.indicator.first_seen", True),
        ("event.kind", False),
        ("threat.attack_chain.stage_index", False),
    ])
    def test_timestamp_field_names(self, dotted, expected):
        assert is_timestamp_field(dotted) is expected


class TestIdsAndDefaults:
    """Record ids and status defaults."""

    def test_invalid_uuid_replaced(self, entity, window):
        record = validate_record({RECORD_ID_FIELD: "not-a-uuid"}, entity, "default", window)
        assert is_valid_record_id(record[RECORD_ID_FIELD])
        assert record[RECORD_ID_FIELD] != "not-a-uuid"

    def test_valid_uuid_kept(self, entity, window):
        record_id = new_record_id()
        record = validate_record({RECORD_ID_FIELD: record_id}, entity, "default", window)
        assert record[RECORD_ID_FIELD] == record_id

    def test_status_defaults_fill_gaps(self, entity, window):
        candidate = {"kibana.alert.severity": "", "kibana.alert.status": None, "event.kind": "alert"}

        record = validate_record(candidate, entity, "default", window)

        assert record["kibana.alert.severity"] == STATUS_DEFAULTS["kibana.alert.severity"]
        assert record["kibana.alert.status"] == "active"
        assert record["event.kind"] == "alert"
        assert record["kibana.alert.depth"] == 1

    def test_seeded_ids_are_deterministic(self):
        assert new_record_id(random.Random(5)) == new_record_id(random.Random(5))
        assert is_valid_record_id(new_record_id(random.Random(5)))

    @pytest.mark.parametrize("value", [None, 42, "", "1234"])
    def test_invalid_record_ids(self, value):
        assert is_valid_record_id(value) is False


class TestDefaultRecord:
    """The deterministic template record is already valid."""

    def test_default_record_fields(self, entity, window):
        record = build_default_record(entity, "prod", window, rng=random.Random(9))

        assert record["host.name"] == "web-01"
        assert record["kibana.space_ids"] == ["prod"]
        assert record["kibana.version"] == KIBANA_VERSION
        assert is_valid_record_id(record[RECORD_ID_FIELD])
        for field in TIMESTAMP_FIELDS:
            assert window.contains(parse_timestamp(record[field]))
        for field, value in STATUS_DEFAULTS.items():
            assert record[field] == value

    def test_default_record_survives_validation(self, entity, window):
        record = build_default_record(entity, "prod", window, rng=random.Random(9))
        assert validate_record(record, entity, "prod", window) == record

    def test_default_records_have_unique_ids(self, entity, window):
        rng = random.Random(11)
        ids = {build_default_record(entity, "prod", window, rng=rng)[RECORD_ID_FIELD] for _ in range(50)}
        assert len(ids) == 50
