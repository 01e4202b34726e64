"""
Validation of model-supplied tool arguments against a tool's parameter schema.

Supports the JSON Schema subset tool servers publish in practice: ``type``
(single or list), ``properties``, ``required``, ``additionalProperties``,
``enum`` and ``items``.
"""

from typing import Any

from ..exceptions import ToolArgumentError

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
    "null": lambda v: v is None,
}


def _check_value(value: Any, schema: dict, path: str) -> None:
    expected = schema.get("type")
    if expected:
        types = expected if isinstance(expected, list) else [expected]
        known = [t for t in types if t in _TYPE_CHECKS]
        if known and not any(_TYPE_CHECKS[t](value) for t in known):
            raise ToolArgumentError(
                f"'{path}' must be of type {' or '.join(known)}, got {type(value).__name__}"
            )

    if "enum" in schema and value not in schema["enum"]:
        raise ToolArgumentError(f"'{path}' must be one of {schema['enum']}")

    if isinstance(value, dict) and ("properties" in schema or "required" in schema):
        _check_object(value, schema, path)

    item_schema = schema.get("items")
    if isinstance(value, list) and isinstance(item_schema, dict):
        for index, item in enumerate(value):
            _check_value(item, item_schema, f"{path}[{index}]")


def _check_object(value: dict, schema: dict, path: str) -> None:
    properties = schema.get("properties") or {}
    prefix = f"{path}." if path else ""

    missing = [key for key in schema.get("required") or [] if key not in value]
    if missing:
        raise ToolArgumentError(
            "missing required argument(s): " + ", ".join(prefix + key for key in missing)
        )

    if schema.get("additionalProperties", False) is False and properties:
        unknown = sorted(key for key in value if key not in properties)
        if unknown:
            raise ToolArgumentError(
                "unknown argument(s): " + ", ".join(prefix + key for key in unknown)
            )

    for key, item in value.items():
        if key in properties and isinstance(properties[key], dict):
            _check_value(item, properties[key], prefix + key)


def validate_arguments(arguments: Any, schema: dict) -> dict:
    """
    Check *arguments* against *schema*.

    Unknown keys are rejected when the schema lists ``properties`` and does
    not allow ``additionalProperties``.

    Returns:
        The arguments, unchanged.

    Raises:
        ToolArgumentError: Describing the first violation found.
    """
    if not isinstance(arguments, dict):
        raise ToolArgumentError(
            f"arguments must be an object, got {type(arguments).__name__}"
        )
    if "_raw" in arguments and "_raw" not in (schema.get("properties") or {}):
        raise ToolArgumentError(f"arguments are not valid JSON: {arguments['_raw']!r}")

    _check_object(arguments, schema or {}, "")
    return arguments
