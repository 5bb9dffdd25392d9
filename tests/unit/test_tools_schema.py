"""Tests for JSON Schema validation of tool arguments."""

from __future__ import annotations

import pytest

from toolmux.core.errors import InvalidParametersError
from toolmux.tools.schema import validate_arguments

SCHEMA = {
    "type": "object",
    "properties": {
        "path": {"type": "string"},
        "limit": {"type": "integer", "minimum": 1},
    },
    "required": ["path"],
    "additionalProperties": False,
}


class TestValidateArguments:
    def test_valid_returns_arguments(self) -> None:
        args = {"path": "/tmp", "limit": 3}
        assert validate_arguments("read", SCHEMA, args) is args

    def test_empty_schema_accepts_anything(self) -> None:
        assert validate_arguments("any", {}, {"x": 1}) == {"x": 1}

    def test_missing_required(self) -> None:
        with pytest.raises(InvalidParametersError) as exc_info:
            validate_arguments("read", SCHEMA, {})
        err = exc_info.value
        assert err.tool_name == "read"
        assert any("'path' is a required property" in e for e in err.errors)

    def test_collects_all_errors(self) -> None:
        with pytest.raises(InvalidParametersError) as exc_info:
            validate_arguments("read", SCHEMA, {"path": 1, "limit": 0, "extra": True})
        errors = exc_info.value.errors
        assert len(errors) == 3
        assert any(e.startswith("path:") for e in errors)
        assert any(e.startswith("limit:") for e in errors)
        assert any(e.startswith("<root>:") for e in errors)

    def test_invalid_schema_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        bogus = {"type": "not-a-type"}
        assert validate_arguments("odd", bogus, {"a": 1}) == {"a": 1}
        events = [getattr(r, "event", None) for r in caplog.records]
        assert "invalid_tool_schema" in events
