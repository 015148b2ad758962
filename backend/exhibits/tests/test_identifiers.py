import uuid

import pytest

from exhibits.errors import InvalidIdentifier, ValidationError
from exhibits.identifiers import is_valid_uuid, validate_uuid
from exhibits.kinds import RecordKind


def test_generated_uuids_are_valid():
    assert is_valid_uuid(uuid.uuid4())


@pytest.mark.parametrize("value", ["", "not-a-uuid", None, 42, "123e4567-e89b-62d3-a456-426614174000"])
def test_invalid_values_are_rejected(value):
    assert not is_valid_uuid(value)
    with pytest.raises(InvalidIdentifier):
        validate_uuid(value)


def test_validate_uuid_accepts_uppercase_and_whitespace():
    raw = str(uuid.uuid4()).upper()
    assert validate_uuid(f"  {raw} ") == uuid.UUID(raw)


def test_invalid_identifier_reports_field_and_status():
    with pytest.raises(InvalidIdentifier) as excinfo:
        validate_uuid("nope", "parent_id")
    assert excinfo.value.status == "invalid"
    assert excinfo.value.data == {"field": "parent_id"}


def test_record_kind_parse_aliases():
    assert RecordKind.parse("griditem") is RecordKind.GRID_ITEM
    assert RecordKind.parse("Timeline-Item") is RecordKind.TIMELINE_ITEM
    assert RecordKind.parse(RecordKind.GRID) is RecordKind.GRID
    with pytest.raises(ValidationError):
        RecordKind.parse("gallery")
