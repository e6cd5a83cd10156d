"""Build OpenAPI operation fragments from each schema source.

Every method returns a plain dict shaped like an OpenAPI operation, so the
merge engine can combine them without knowing where they came from.

Parameters contributed by inference, explicit validation and overrides go
into ``$parameters`` groups keyed by location and name. Groups merge key by
key, so an override of one header does not replace the path parameters.
"""

import copy
import logging
from typing import Any

from auto_openapi.analysis.context import AnalysisContext, HandlerRef
from auto_openapi.analysis.inference import infer_operation
from auto_openapi.analysis.types import TypeResolver
from auto_openapi.schema.adapter import ExternalSchemaAdapter
from auto_openapi.schema.mapper import Diagnostic
from auto_openapi.schema.nodes import ObjectNode, is_node

from .models import (
    DETAIL_KEY,
    JSON_CONTENT,
    PARAMETER_FLAGS_KEY,
    PARAMETER_GROUPS_KEY,
    SKIP_KEY,
    ParameterLocation,
    SchemaSource,
)
from .routes import OperationDeclaration, extract_path_params, status_description

logger = logging.getLogger(__name__)

DEFAULT_TAG = "Default"

# route_config "input" keys and override "$" keys -> parameter location
INPUT_LOCATIONS = {
    "query": ParameterLocation.QUERY,
    "path_params": ParameterLocation.PATH,
    "headers": ParameterLocation.HEADER,
    "cookies": ParameterLocation.COOKIE,
}
OVERRIDE_LOCATIONS = {
    "$query": ParameterLocation.QUERY,
    "$path_params": ParameterLocation.PATH,
    "$headers": ParameterLocation.HEADER,
    "$cookies": ParameterLocation.COOKIE,
}


class OperationSchemaBuilder:
    def __init__(self, context: AnalysisContext, adapter: ExternalSchemaAdapter | None = None):
        self.context = context
        self.adapter = adapter or ExternalSchemaAdapter()
        self.resolver = TypeResolver(context)
        self.diagnostics: list[Diagnostic] = []

    def reset(self) -> None:
        """Forget resolved types, e.g. after the analysis context was invalidated."""
        self.resolver = TypeResolver(self.context)

    def fragments(self, route: str, declaration: OperationDeclaration) -> dict:
        """All four fragments for one operation, keyed by source ("base" for defaults)."""
        inferred = self.inferred(declaration.static_type) if declaration.static_type else {}
        statuses = list((inferred.get("responses") or {}).keys())
        return {
            "base": self.base(route),
            SchemaSource.INFERRED: inferred,
            SchemaSource.EXPLICIT_VALIDATION: (
                self.explicit(declaration.explicit_schema, statuses) if declaration.explicit_schema else {}
            ),
            SchemaSource.OVERRIDE: (
                self.override(declaration.override_schema) if declaration.override_schema else {}
            ),
        }

    def base(self, route: str) -> dict:
        return {"tags": [DEFAULT_TAG], "parameters": extract_path_params(route)}

    def inferred(self, handler: HandlerRef) -> dict:
        result = infer_operation(handler, self.context, self.resolver)
        self.diagnostics.extend(result.diagnostics)

        fragment: dict = {}
        if result.summary:
            fragment["summary"] = result.summary
        if result.description:
            fragment["description"] = result.description
        if result.tags:
            fragment["tags"] = list(result.tags)
        if result.deprecated:
            fragment["deprecated"] = True
        if result.query_params:
            fragment[PARAMETER_GROUPS_KEY] = {
                ParameterLocation.QUERY.value: {
                    p.name: {"required": p.required, "schema": {"type": "string"}} for p in result.query_params
                }
            }
        if result.request_body is not None:
            fragment["requestBody"] = _json_body(result.request_body.to_json_schema(), required=True)

        responses = {}
        for status, node in result.responses.items():
            responses[status] = _json_response(status, node.to_json_schema())
        for status, node in result.error_responses.items():
            responses.setdefault(status, _json_response(status, node.to_json_schema()))
        if responses:
            fragment["responses"] = responses
        return fragment

    def explicit(self, config: dict, inferred_statuses: list[str] | None = None) -> dict:
        """Fragment from a route's validation config (``{"input": ..., "output": ...}``)."""
        fragment: dict = _flags_of(config)
        inputs = config.get("input") or {}
        groups: dict = {}

        for key, location in INPUT_LOCATIONS.items():
            if inputs.get(key) is not None:
                groups[location.value] = self._parameter_group(inputs[key], location)
        if groups:
            fragment[PARAMETER_GROUPS_KEY] = groups

        if inputs.get("body") is not None:
            fragment["requestBody"] = {
                **_json_body(self._json_schema(inputs["body"]), required=True),
                **_flags_of(inputs),
            }

        if "output" in config:
            responses = {}
            for status, entry in (config.get("output") or {}).items():
                response = self._explicit_response(str(status), entry)
                if response is not None:
                    responses[str(status)] = response
            if not responses:
                for status in inferred_statuses or ["200"]:
                    responses[status] = _json_response(status, {"type": "object"})
            fragment["responses"] = responses
        return fragment

    def _explicit_response(self, status: str, entry: Any) -> dict | None:
        if entry is None:
            return None
        if not (isinstance(entry, dict) and {"body", "headers", "cookies"} & entry.keys()):
            entry = {"body": entry}

        response: dict = {"description": status_description(status), **_flags_of(entry)}
        if entry.get("body") is not None:
            response["content"] = {JSON_CONTENT: {"schema": self._json_schema(entry["body"])}}

        headers = {}
        if entry.get("headers") is not None:
            node = self.adapter.adapt(entry["headers"])
            if isinstance(node, ObjectNode):
                for name, prop in node.properties.items():
                    headers[name] = {"schema": prop.to_json_schema(), "required": name in node.required}
        if entry.get("cookies") is not None:
            node = self.adapter.adapt(entry["cookies"])
            names = ", ".join(node.properties) if isinstance(node, ObjectNode) else ""
            headers["set-cookie"] = {
                "schema": {"type": "string"},
                "description": f"Sets cookies: {names}" if names else "Sets cookies",
            }
        if headers:
            response["headers"] = headers
        if "content" not in response and not headers:
            return None
        return response

    def override(self, raw: dict) -> dict:
        """Normalize a hand-written fragment. ``None`` values are kept as delete markers."""
        fragment = self._convert({key: value for key, value in raw.items() if key not in OVERRIDE_LOCATIONS})

        groups: dict = {}
        flags: dict = {}
        body = fragment.get("requestBody")
        sources = [raw]
        if isinstance(raw.get("requestBody"), dict):
            sources.append(raw["requestBody"])
        for source in sources:
            for key, location in OVERRIDE_LOCATIONS.items():
                if key not in source:
                    continue
                value = source[key]
                if value is None:
                    groups[location.value] = None
                    continue
                schema, location_flags = _split_flags(value)
                if schema is not None:
                    groups[location.value] = self._parameter_group(schema, location)
                if location_flags:
                    flags[location.value] = location_flags
        if isinstance(body, dict):
            for key in OVERRIDE_LOCATIONS:
                body.pop(key, None)
        if groups:
            fragment[PARAMETER_GROUPS_KEY] = groups
        if flags:
            fragment[PARAMETER_FLAGS_KEY] = flags
        return fragment

    def _convert(self, value: Any, key: str | None = None) -> Any:
        """Deep copy of an override fragment with schema objects rendered as JSON Schema."""
        if key == "schema" and value is not None:
            return self._json_schema(value)
        if isinstance(value, dict):
            converted = {k: self._convert(v, k) for k, v in value.items()}
            if key == "requestBody" and "schema" in converted and "content" not in converted:
                converted["content"] = {JSON_CONTENT: {"schema": converted.pop("schema")}}
            if key == "responses":
                for response in converted.values():
                    if isinstance(response, dict) and "schema" in response and "content" not in response:
                        response["content"] = {JSON_CONTENT: {"schema": response.pop("schema")}}
            return converted
        if isinstance(value, list):
            return [self._convert(item) for item in value]
        return copy.deepcopy(value)

    def _json_schema(self, value: Any) -> dict:
        if isinstance(value, dict) and "kind" not in value:
            return copy.deepcopy(value)
        if is_node(value):
            return value.to_json_schema()
        return self.adapter.adapt(value).to_json_schema()

    def _parameter_group(self, schema: Any, location: ParameterLocation) -> dict:
        node = self.adapter.adapt(schema)
        if not isinstance(node, ObjectNode):
            logger.warning("%s parameters must be described by an object schema; ignoring", location.value)
            self.diagnostics.append(
                Diagnostic(location=None, reason=f"{location.value} schema is not an object")
            )
            return {}
        return {
            name: {
                "required": location is ParameterLocation.PATH or name in node.required,
                "schema": prop.to_json_schema(),
                **({"description": prop.description} if prop.description else {}),
            }
            for name, prop in node.properties.items()
        }


def _json_body(schema: dict, required: bool) -> dict:
    return {"required": required, "content": {JSON_CONTENT: {"schema": schema}}}


def _json_response(status: str, schema: dict) -> dict:
    return {"description": status_description(status), "content": {JSON_CONTENT: {"schema": schema}}}


def _flags_of(source: Any) -> dict:
    if not isinstance(source, dict):
        return {}
    return {key: source[key] for key in (SKIP_KEY, DETAIL_KEY) if key in source}


def _split_flags(value: Any) -> tuple[Any, dict]:
    """``{"schema": X, "$skip_validation": True}`` -> ``(X, flags)``; anything else is a bare schema."""
    if isinstance(value, dict) and set(value) <= {"schema", SKIP_KEY, DETAIL_KEY}:
        return value.get("schema"), _flags_of(value)
    return value, {}
