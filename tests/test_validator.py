"""Tests for snapshot parsing and per-category validation."""

import json

import pytest

from opsnap.snapshot.errors import MalformedInput, MissingPayload, SchemaViolation
from opsnap.snapshot.models import Category
from opsnap.snapshot.records import Operation, TargetAssignment
from opsnap.snapshot.validator import EnvelopeSnapshot, LegacySnapshot, parse_snapshot, validate_payload


class TestShapes:
    """Envelope and legacy shapes resolve to the same payload."""

    def test_envelope(self, envelope_text) -> None:
        parsed = parse_snapshot(envelope_text)

        assert isinstance(parsed, EnvelopeSnapshot)
        assert parsed.shape == "envelope"
        assert parsed.format_version == "2.0"
        assert parsed.generated_at.year == 2024
        assert len(parsed.payload[Category.OPERATIONS]) == 1

    def test_legacy_bare_payload(self, full_payload) -> None:
        parsed = parse_snapshot(json.dumps(full_payload))

        assert isinstance(parsed, LegacySnapshot)
        assert parsed.shape == "legacy"
        assert set(parsed.payload) == set(Category)

    def test_shapes_yield_equal_payloads(self, envelope_text, full_payload) -> None:
        envelope = parse_snapshot(envelope_text)
        legacy = parse_snapshot(json.dumps(full_payload))
        assert envelope.payload == legacy.payload

    def test_older_envelope_key_spelling(self, full_payload) -> None:
        text = json.dumps({
            "version": "2.0",
            "timestamp": "2024-01-01T00:00:00Z",
            "data": full_payload,
        })
        parsed = parse_snapshot(text)
        assert parsed.shape == "envelope"
        assert parsed.payload[Category.TOOLS][0].id == "tool-1"

    def test_accepts_bytes(self, envelope_text) -> None:
        assert parse_snapshot(envelope_text.encode()).shape == "envelope"

    def test_absent_categories_stay_absent(self) -> None:
        parsed = parse_snapshot(json.dumps({"tags": []}))
        assert parsed.payload == {Category.TAGS: []}

    def test_unknown_keys_ignored(self) -> None:
        parsed = parse_snapshot(json.dumps({
            "tags": [{"id": "t", "name": "n", "description": "d", "createdAt": "2024-01-01"}],
            "dashboards": [{"id": 1}],
        }))
        assert list(parsed.payload) == [Category.TAGS]


class TestFailures:
    def test_not_json(self) -> None:
        with pytest.raises(MalformedInput):
            parse_snapshot("{not json")

    @pytest.mark.parametrize("text", ["[]", "42", '"payload"', "{}", '{"hello": 1}'])
    def test_no_recognizable_shape(self, text: str) -> None:
        with pytest.raises(MissingPayload):
            parse_snapshot(text)

    def test_envelope_without_payload(self) -> None:
        text = json.dumps({"formatVersion": "2.0", "generatedAt": "2024-01-01T00:00:00Z"})
        with pytest.raises(MissingPayload):
            parse_snapshot(text)

    def test_bad_enum_names_category_and_field(self, operations_payload) -> None:
        operations_payload["operations"][0]["status"] = "PAUSED"

        with pytest.raises(SchemaViolation) as exc_info:
            validate_payload(operations_payload)

        assert exc_info.value.category == "operations"
        assert exc_info.value.field == "0.status"
        assert exc_info.value.kind == "SchemaViolation"

    def test_missing_required_field(self) -> None:
        with pytest.raises(SchemaViolation) as exc_info:
            validate_payload({"tools": [{"id": "x", "name": "nmap", "type": "OFFENSIVE"}]})
        assert exc_info.value.category == "tools"
        assert exc_info.value.field == "0.categoryId"

    def test_groups_only_requires_access_group(self, operations_payload) -> None:
        operations_payload["operations"][0]["accessGroups"] = []
        with pytest.raises(SchemaViolation) as exc_info:
            validate_payload(operations_payload)
        assert exc_info.value.category == "operations"


class TestRecordCoercion:
    def test_dates_are_coerced(self, operations_payload) -> None:
        payload = validate_payload(operations_payload)
        operation = payload[Category.OPERATIONS][0]
        assert isinstance(operation, Operation)
        assert operation.start_date.isoformat() == "2024-03-01T09:00:00+00:00"

    def test_operation_defaults(self) -> None:
        payload = validate_payload({"operations": [
            {"id": 7, "name": "Quiet", "description": "", "createdById": "u"},
        ]})
        operation = payload[Category.OPERATIONS][0]
        assert operation.status == "PLANNING"
        assert operation.visibility == "EVERYONE"
        assert operation.tags == []

    def test_technique_target_assignment(self, operations_payload) -> None:
        technique = validate_payload(operations_payload)[Category.TECHNIQUES][0]
        assert technique.targets == [TargetAssignment(target_id="tgt-1", was_compromised=True)]

    def test_layout_graph_accepts_json_text(self) -> None:
        payload = validate_payload({"attackFlowLayouts": [
            {"operationId": 1, "nodes": '[{"id": "n1"}]', "edges": "[]"},
        ]})
        layout = payload[Category.ATTACK_FLOW_LAYOUTS][0]
        assert layout.nodes == [{"id": "n1"}]
        assert layout.edges == []

    def test_authenticator_credential_key(self, accounts_payload) -> None:
        authenticator = validate_payload(accounts_payload)[Category.AUTHENTICATORS][0]
        assert authenticator.credential_id == "cred-1"
        assert authenticator.model_dump(by_alias=True)["credentialID"] == "cred-1"
