"""Operation descriptor models.

The merge engine works on plain OpenAPI-shaped dicts; the result is parsed
once into these frozen models, which the validation layer and the document
renderer share.
"""

import logging
import re
from enum import Enum

from pydantic import BaseModel, ConfigDict

from auto_openapi.schema.nodes import ObjectNode, SchemaNode, schema_from_json

logger = logging.getLogger(__name__)

SKIP_KEY = "$skip_validation"
DETAIL_KEY = "$detailed_error"
PARAMETER_GROUPS_KEY = "$parameters"
PARAMETER_FLAGS_KEY = "$parameter_flags"
JSON_CONTENT = "application/json"

STATUS_KEY = re.compile(r"^(?:[1-5]\d\d|[1-5]XX|default)$")


class ParameterLocation(str, Enum):
    QUERY = "query"
    PATH = "path"
    HEADER = "header"
    COOKIE = "cookie"


class SchemaSource(Enum):
    INFERRED = "inferred"
    EXPLICIT_VALIDATION = "explicit_validation"
    OVERRIDE = "override"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ValidationFlags(_Frozen):
    """Skip / detailed-error flags at one level. ``None`` defers to the next level."""

    skip: bool | None = None
    detailed_error: bool | None = None

    @classmethod
    def from_fragment(cls, fragment: dict | None) -> "ValidationFlags":
        if not isinstance(fragment, dict):
            return cls()
        return cls(skip=fragment.get(SKIP_KEY), detailed_error=fragment.get(DETAIL_KEY))

    def or_else(self, other: "ValidationFlags | None") -> "ValidationFlags":
        """Fill unset flags from a lower level."""
        if other is None:
            return self
        return ValidationFlags(
            skip=self.skip if self.skip is not None else other.skip,
            detailed_error=self.detailed_error if self.detailed_error is not None else other.detailed_error,
        )

    def to_fragment(self) -> dict:
        fragment = {}
        if self.skip is not None:
            fragment[SKIP_KEY] = self.skip
        if self.detailed_error is not None:
            fragment[DETAIL_KEY] = self.detailed_error
        return fragment


def resolve_flags(
    field: ValidationFlags | None,
    operation: ValidationFlags | None,
    default: ValidationFlags | None,
) -> ValidationFlags:
    """Resolve flags field > operation > default; unresolved flags are False."""
    levels = [level for level in (field, operation, default) if level is not None]

    def pick(name: str) -> bool:
        for level in levels:
            value = getattr(level, name)
            if value is not None:
                return value
        return False

    return ValidationFlags(skip=pick("skip"), detailed_error=pick("detailed_error"))


class ParameterDescriptor(_Frozen):
    name: str
    location: ParameterLocation
    required: bool = False
    schema_node: SchemaNode = ObjectNode()
    description: str | None = None

    def to_openapi(self) -> dict:
        result = {
            "name": self.name,
            "in": self.location.value,
            "required": self.required,
            "schema": self.schema_node.to_json_schema(),
        }
        if self.description:
            result["description"] = self.description
        return result


class RequestBodyDescriptor(_Frozen):
    required: bool = True
    schema_node: SchemaNode = ObjectNode()
    validation_flags: ValidationFlags = ValidationFlags()

    def to_openapi(self) -> dict:
        return {
            "required": self.required,
            "content": {JSON_CONTENT: {"schema": self.schema_node.to_json_schema()}},
        }


class ResponseDescriptor(_Frozen):
    description: str = ""
    body_schema: SchemaNode | None = None
    header_schemas: dict[str, SchemaNode] = {}
    validation_flags: ValidationFlags = ValidationFlags()
    header_flags: dict[str, ValidationFlags] = {}

    def to_openapi(self) -> dict:
        result: dict = {"description": self.description}
        if self.body_schema is not None:
            result["content"] = {JSON_CONTENT: {"schema": self.body_schema.to_json_schema()}}
        if self.header_schemas:
            result["headers"] = {
                name: {"schema": node.to_json_schema()} for name, node in self.header_schemas.items()
            }
        return result


class OperationDescriptor(_Frozen):
    """One merged, immutable API operation."""

    summary: str | None = None
    description: str | None = None
    tags: list[str] = []
    operation_id: str | None = None
    deprecated: bool = False
    parameters: list[ParameterDescriptor] = []
    parameter_flags: dict[ParameterLocation, ValidationFlags] = {}
    request_body: RequestBodyDescriptor | None = None
    responses: dict[str, ResponseDescriptor] = {}
    validation_flags: ValidationFlags = ValidationFlags()

    def parameters_in(self, location: ParameterLocation) -> list[ParameterDescriptor]:
        return [p for p in self.parameters if p.location == location]

    @classmethod
    def from_openapi(cls, operation: dict) -> "OperationDescriptor":
        """Parse a merged OpenAPI operation fragment (``$`` keys included)."""
        return cls(
            summary=operation.get("summary"),
            description=operation.get("description"),
            tags=list(operation.get("tags") or []),
            operation_id=operation.get("operationId"),
            deprecated=bool(operation.get("deprecated", False)),
            parameters=_parse_parameters(
                operation.get("parameters") or [], operation.get(PARAMETER_GROUPS_KEY) or {}
            ),
            parameter_flags=_parse_parameter_flags(operation.get(PARAMETER_FLAGS_KEY) or {}),
            request_body=_parse_request_body(operation.get("requestBody")),
            responses=_parse_responses(operation.get("responses") or {}),
            validation_flags=ValidationFlags.from_fragment(operation),
        )

    def to_openapi(self) -> dict:
        """Render for documentation; validation-only keys are not emitted."""
        result: dict = {}
        if self.summary:
            result["summary"] = self.summary
        if self.description:
            result["description"] = self.description
        if self.operation_id:
            result["operationId"] = self.operation_id
        if self.tags:
            result["tags"] = list(self.tags)
        if self.deprecated:
            result["deprecated"] = True
        if self.parameters:
            result["parameters"] = [p.to_openapi() for p in self.parameters]
        if self.request_body is not None:
            result["requestBody"] = self.request_body.to_openapi()
        result["responses"] = {status: r.to_openapi() for status, r in self.responses.items()}
        return result


def _schema(value) -> SchemaNode:
    if value is None:
        return ObjectNode()
    return schema_from_json(value)


def _json_schema(content: dict | None) -> dict | None:
    if not isinstance(content, dict):
        return None
    if JSON_CONTENT in content:
        return (content[JSON_CONTENT] or {}).get("schema")
    # Fallback: first media type with a schema
    for media in content.values():
        if isinstance(media, dict) and "schema" in media:
            return media["schema"]
    return None


def _parse_parameters(params: list[dict], groups: dict) -> list[ParameterDescriptor]:
    result: dict[tuple[str, str], ParameterDescriptor] = {}
    for p in params:
        if not isinstance(p, dict) or "name" not in p:
            continue
        location = ParameterLocation(p.get("in", "query"))
        result[(p["name"], location.value)] = ParameterDescriptor(
            name=p["name"],
            location=location,
            required=bool(p.get("required", location is ParameterLocation.PATH)),
            schema_node=_schema(p.get("schema")),
            description=p.get("description"),
        )

    # $parameters: {"header": {"x-api-key": {"schema": ..., "required": true}}}
    for location_name, entries in groups.items():
        location = ParameterLocation(location_name)
        for name, entry in (entries or {}).items():
            if entry is None:
                continue
            result[(name, location.value)] = ParameterDescriptor(
                name=name,
                location=location,
                required=bool(entry.get("required", location is ParameterLocation.PATH)),
                schema_node=_schema(entry.get("schema")),
                description=entry.get("description"),
            )
    return list(result.values())


def _parse_parameter_flags(flags: dict) -> dict[ParameterLocation, ValidationFlags]:
    return {
        ParameterLocation(location): ValidationFlags.from_fragment(fragment)
        for location, fragment in flags.items()
        if fragment
    }


def _parse_request_body(body: dict | None) -> RequestBodyDescriptor | None:
    if not body:
        return None
    schema = _json_schema(body.get("content"))
    return RequestBodyDescriptor(
        required=bool(body.get("required", True)),
        schema_node=_schema(schema),
        validation_flags=ValidationFlags.from_fragment(body),
    )


def _parse_responses(responses: dict) -> dict[str, ResponseDescriptor]:
    result = {}
    for status_code, resp in responses.items():
        status = str(status_code)
        if not STATUS_KEY.match(status):
            logger.warning("Ignoring response with invalid status key %r", status)
            continue
        resp = resp or {}
        schema = _json_schema(resp.get("content"))
        headers = {name: h for name, h in (resp.get("headers") or {}).items() if isinstance(h, dict)}
        result[status] = ResponseDescriptor(
            description=resp.get("description", ""),
            body_schema=schema_from_json(schema) if schema is not None else None,
            header_schemas={name: _schema(h.get("schema")) for name, h in headers.items()},
            validation_flags=ValidationFlags.from_fragment(resp),
            header_flags={
                name: ValidationFlags.from_fragment(h)
                for name, h in headers.items()
                if SKIP_KEY in h or DETAIL_KEY in h
            },
        )
    return result
