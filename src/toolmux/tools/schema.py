"""JSON Schema validation of tool arguments."""

from __future__ import annotations

import logging
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

from toolmux.core.errors import InvalidParametersError

logger = logging.getLogger(__name__)


def _format_error_path(path: Any) -> str:
    parts = [str(p) for p in path]
    return ".".join(parts) if parts else "<root>"


def validate_arguments(
    tool_name: str,
    schema: dict[str, Any],
    arguments: dict[str, Any],
) -> dict[str, Any]:
    """Validate ``arguments`` against ``schema`` and return them unchanged.

    A schema that is itself invalid is logged and skipped; the provider
    remains the final judge of such arguments.

    Raises:
        InvalidParametersError: If the arguments violate the schema.
    """
    if not schema:
        return arguments

    cls = validator_for(schema, default=Draft202012Validator)
    try:
        cls.check_schema(schema)
    except SchemaError as exc:
        logger.warning(
            "Skipping argument validation for %s: invalid schema (%s)",
            tool_name,
            exc.message,
            extra={"event": "invalid_tool_schema", "tool": tool_name},
        )
        return arguments

    validator = cls(schema)
    errors = sorted(
        validator.iter_errors(arguments),
        key=lambda e: [str(p) for p in e.path],
    )
    if errors:
        raise InvalidParametersError(
            tool_name,
            [f"{_format_error_path(e.path)}: {e.message}" for e in errors],
        )
    return arguments
