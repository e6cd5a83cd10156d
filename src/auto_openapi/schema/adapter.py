"""Adapt schemas from validation libraries into SchemaNode trees.

Supported inputs:

- pydantic models (``model_json_schema``), ``TypeAdapter`` (``json_schema``),
  anything exposing ``__json_schema__()``, and plain JSON Schema dicts
- builder objects with a ``kind`` discriminator (see ``schema.builder``)
"""

import logging
from typing import Any

from auto_openapi.schema.mapper import Diagnostic
from auto_openapi.schema.nodes import (
    ArrayNode,
    BooleanNode,
    NumberNode,
    ObjectNode,
    SchemaNode,
    StringNode,
    UnknownNode,
    is_node,
    schema_from_json,
)

logger = logging.getLogger(__name__)

BUILDER_KINDS = {"string", "number", "integer", "boolean", "array", "object", "optional"}


class SchemaAdaptationError(Exception):
    """Raised by a strict adapter when an object cannot be converted."""


class ExternalSchemaAdapter:
    """Converts library schema objects to SchemaNode.

    By default ``adapt`` never raises: unknown objects become an empty object
    schema and a diagnostic is recorded. ``strict=True`` raises instead.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.diagnostics: list[Diagnostic] = []

    def adapt(self, obj: Any) -> SchemaNode:
        try:
            return self._adapt(obj)
        except SchemaAdaptationError as e:
            if self.strict:
                raise
            return self._fallback(obj, str(e))
        except Exception as e:
            if self.strict:
                raise SchemaAdaptationError(f"Cannot adapt {_describe(obj)}: {e}") from e
            return self._fallback(obj, str(e))

    def _adapt(self, obj: Any) -> SchemaNode:
        if isinstance(obj, dict):
            return schema_from_json(obj)
        if is_node(obj):
            return obj
        json_schema = _json_schema_of(obj)
        if json_schema is not None:
            return schema_from_json(json_schema)
        kind = getattr(obj, "kind", None)
        if isinstance(kind, str) and kind in BUILDER_KINDS:
            node, _ = self._from_builder(obj)
            return node
        raise SchemaAdaptationError(f"Unsupported schema object {_describe(obj)}")

    def _from_builder(self, field: Any) -> tuple[SchemaNode, bool]:
        """Return ``(node, optional)`` for one builder object."""
        kind = getattr(field, "kind", None)
        description = getattr(field, "description", None)

        if kind == "optional":
            inner = getattr(field, "inner", None)
            if inner is None:
                raise SchemaAdaptationError("optional() without an inner schema")
            node, _ = self._from_builder(inner)
            return node, True
        if kind == "string":
            return StringNode(
                format=getattr(field, "format", None),
                pattern=getattr(field, "pattern", None),
                min_length=getattr(field, "min_length", None),
                max_length=getattr(field, "max_length", None),
                description=description,
            ), False
        if kind in ("number", "integer"):
            return NumberNode(
                is_integer=kind == "integer",
                minimum=getattr(field, "minimum", None),
                maximum=getattr(field, "maximum", None),
                description=description,
            ), False
        if kind == "boolean":
            return BooleanNode(description=description), False
        if kind == "array":
            items = getattr(field, "items", None)
            item_node = self._from_builder(items)[0] if items is not None else UnknownNode()
            return ArrayNode(
                items=item_node,
                min_items=getattr(field, "min_items", None),
                max_items=getattr(field, "max_items", None),
                description=description,
            ), False
        if kind == "object":
            properties: dict[str, SchemaNode] = {}
            required: list[str] = []
            for name, child in (getattr(field, "shape", None) or {}).items():
                node, optional = self._from_builder(child)
                properties[name] = node
                if not optional:
                    required.append(name)
            return ObjectNode(
                properties=properties,
                required=required,
                additional_properties=getattr(field, "additional_properties", None),
                description=description,
            ), False
        raise SchemaAdaptationError(f"Unknown builder kind {kind!r}")

    def _fallback(self, obj: Any, reason: str) -> SchemaNode:
        logger.warning("Falling back to a generic object schema for %s: %s", _describe(obj), reason)
        self.diagnostics.append(Diagnostic(location=_describe(obj), reason=reason))
        return ObjectNode()


def _json_schema_of(obj: Any) -> dict | None:
    """Ask an object to describe itself as JSON Schema."""
    if isinstance(obj, type) and hasattr(obj, "model_json_schema"):
        return obj.model_json_schema()
    if hasattr(obj, "__json_schema__"):
        return obj.__json_schema__()
    # TypeAdapter instances
    json_schema = getattr(obj, "json_schema", None)
    if callable(json_schema) and not isinstance(obj, type):
        return json_schema()
    return None


def _describe(obj: Any) -> str:
    if isinstance(obj, type):
        return obj.__name__
    return type(obj).__name__
