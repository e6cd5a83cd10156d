"""Validate JSON values against SchemaNode trees with jsonschema."""

import re
from typing import Any

from jsonschema import Draft202012Validator

from auto_openapi.schema.nodes import BooleanNode, NumberNode, SchemaNode

_REQUIRED_MESSAGE = re.compile(r"^'(.+)' is a required property$")


def _strip_refs(schema: Any) -> Any:
    """Replace unresolvable ``$ref`` pointers with an accept-all schema."""
    if isinstance(schema, dict):
        if "$ref" in schema:
            return {}
        return {k: _strip_refs(v) for k, v in schema.items()}
    if isinstance(schema, list):
        return [_strip_refs(item) for item in schema]
    return schema


def compile_validator(node: SchemaNode) -> Draft202012Validator:
    schema = _strip_refs(node.to_json_schema())
    return Draft202012Validator(schema, format_checker=Draft202012Validator.FORMAT_CHECKER)


def error_path(parts) -> str:
    """``["user", 0, "name"]`` -> ``"user.0.name"``; the empty path is ``"root"``."""
    return ".".join(str(p) for p in parts) or "root"


def validate_instance(instance: Any, schema: SchemaNode | Draft202012Validator) -> list[dict]:
    """Check an instance against a schema.

    Returns a list of ``{path, keyword, message}`` issues, ordered by path.
    Empty list means the instance is valid.
    """
    validator = schema if isinstance(schema, Draft202012Validator) else compile_validator(schema)
    issues = []
    for err in sorted(validator.iter_errors(instance), key=lambda e: [str(p) for p in e.absolute_path]):
        parts = list(err.absolute_path)
        if err.validator == "required":
            match = _REQUIRED_MESSAGE.match(err.message)
            if match:
                parts.append(match.group(1))
        issues.append({"path": error_path(parts), "keyword": err.validator, "message": err.message})
    return issues


def coerce_scalar(value: Any, node: SchemaNode) -> Any:
    """Convert a raw string parameter to the number or boolean its schema declares.

    Values that do not parse are returned unchanged so validation reports them.
    """
    if not isinstance(value, str):
        return value
    if isinstance(node, NumberNode):
        try:
            return int(value) if node.is_integer else float(value)
        except ValueError:
            return value
    if isinstance(node, BooleanNode) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def validate_values(values: dict[str, Any], schemas: dict[str, SchemaNode], required: set[str]) -> list[dict]:
    """Validate named scalar values (headers, query, path params, cookies) one by one."""
    issues = []
    for name in sorted(required - values.keys()):
        issues.append({"path": name, "keyword": "required", "message": f"'{name}' is a required property"})
    for name, node in schemas.items():
        if name not in values:
            continue
        for issue in validate_instance(coerce_scalar(values[name], node), node):
            path = name if issue["path"] == "root" else f"{name}.{issue['path']}"
            issues.append({**issue, "path": path})
    return issues
