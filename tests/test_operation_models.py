from auto_openapi.operations.models import (
    OperationDescriptor,
    ParameterLocation,
    ValidationFlags,
    resolve_flags,
)
from auto_openapi.schema.nodes import NumberNode, StringNode

FRAGMENT = {
    "summary": "Update a user",
    "tags": ["users"],
    "$skip_validation": False,
    "parameters": [
        {"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}},
        {"name": "x-trace", "in": "header", "schema": {"type": "string"}},
    ],
    "$parameters": {
        "header": {"x-trace": {"required": True, "schema": {"type": "string", "minLength": 4}}},
        "query": {"dry_run": {"schema": {"type": "boolean"}}},
    },
    "$parameter_flags": {"header": {"$detailed_error": True}},
    "requestBody": {
        "required": True,
        "$skip_validation": True,
        "content": {"application/json": {"schema": {"type": "object"}}},
    },
    "responses": {
        "200": {
            "description": "OK",
            "content": {"application/json": {"schema": {"type": "object"}}},
            "headers": {"x-rate-limit": {"schema": {"type": "integer"}, "$skip_validation": True}},
        },
        "4XX": {"description": "Client error"},
        "nonsense": {"description": "dropped"},
    },
}


class TestValidationFlags:
    def test_field_beats_operation_beats_default(self):
        flags = resolve_flags(
            ValidationFlags(skip=True),
            ValidationFlags(skip=False, detailed_error=True),
            ValidationFlags(skip=False, detailed_error=False),
        )
        assert flags == ValidationFlags(skip=True, detailed_error=True)

    def test_unset_everywhere_is_false(self):
        assert resolve_flags(None, ValidationFlags(), None) == ValidationFlags(skip=False, detailed_error=False)

    def test_from_fragment(self):
        flags = ValidationFlags.from_fragment({"$skip_validation": True, "other": 1})
        assert flags == ValidationFlags(skip=True)
        assert flags.to_fragment() == {"$skip_validation": True}

    def test_or_else(self):
        flags = ValidationFlags(skip=True).or_else(ValidationFlags(skip=False, detailed_error=True))
        assert flags == ValidationFlags(skip=True, detailed_error=True)


class TestFromOpenapi:
    def test_parameters_and_groups(self):
        op = OperationDescriptor.from_openapi(FRAGMENT)
        by_name = {p.name: p for p in op.parameters}
        assert by_name["id"].schema_node == NumberNode(is_integer=True)
        assert by_name["x-trace"].required is True
        assert by_name["x-trace"].schema_node == StringNode(min_length=4)
        assert by_name["dry_run"].location == ParameterLocation.QUERY
        assert op.parameter_flags[ParameterLocation.HEADER] == ValidationFlags(detailed_error=True)

    def test_flags_at_every_level(self):
        op = OperationDescriptor.from_openapi(FRAGMENT)
        assert op.validation_flags == ValidationFlags(skip=False)
        assert op.request_body.validation_flags == ValidationFlags(skip=True)
        assert op.responses["200"].header_flags["x-rate-limit"] == ValidationFlags(skip=True)

    def test_status_keys(self):
        op = OperationDescriptor.from_openapi(FRAGMENT)
        assert list(op.responses) == ["200", "4XX"]
        assert op.responses["4XX"].body_schema is None


class TestToOpenapi:
    def test_strips_validation_keys(self):
        rendered = OperationDescriptor.from_openapi(FRAGMENT).to_openapi()
        assert "$skip_validation" not in str(rendered)
        assert "$parameters" not in rendered
        assert rendered["requestBody"]["content"]["application/json"]["schema"] == {"type": "object"}
        assert rendered["responses"]["200"]["headers"]["x-rate-limit"] == {"schema": {"type": "integer"}}

    def test_round_trip(self):
        op = OperationDescriptor.from_openapi(FRAGMENT)
        assert OperationDescriptor.from_openapi(op.to_openapi()).parameters == op.parameters
