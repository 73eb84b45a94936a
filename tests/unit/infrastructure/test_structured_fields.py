from datetime import datetime, timezone

import pytest

from app.enums.automation import RuleResult
from infrastructure.utils.structured_fields import dump_json_field, parse_json_dict, parse_json_list


def test_corrupt_columns_decode_to_empty_values():
    assert parse_json_list("[1, 2", "conditions") == []
    assert parse_json_list('{"a": 1}', "tags") == []
    assert parse_json_dict("[]", "config_value") is None
    assert parse_json_dict(b'{"vpd_min": 0.8}') == {"vpd_min": 0.8}
    assert parse_json_list("  ") == []


def test_dump_encodes_datetimes_and_enums():
    stamp = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    assert dump_json_field({"at": stamp, "result": RuleResult.SUCCESS}) == (
        '{"at": "2024-06-01T12:00:00+00:00", "result": "success"}'
    )
    assert dump_json_field(None) is None


def test_dump_rejects_unserializable_values():
    with pytest.raises(TypeError):
        dump_json_field({"callback": object()})
