from typing import Optional

import pytest
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from auto_openapi.schema import builder as s
from auto_openapi.schema.adapter import ExternalSchemaAdapter, SchemaAdaptationError
from auto_openapi.schema.nodes import (
    ArrayNode,
    NullNode,
    NumberNode,
    ObjectNode,
    StringNode,
    UnionNode,
)
from auto_openapi.validation.validator import validate_instance


class Pet(BaseModel):
    name: str = Field(description="Pet name")
    age: int
    nickname: Optional[str] = None


class Owner(BaseModel):
    pets: list[Pet]


class Order(BaseModel):
    model_config = ConfigDict(extra="forbid")

    quantity: int = Field(ge=1, le=10)
    lines: list[str] = Field(min_length=1)


class TestPydantic:
    def test_model_class(self):
        node = ExternalSchemaAdapter().adapt(Pet)
        assert isinstance(node, ObjectNode)
        assert node.required == ["name", "age"]
        assert node.properties["name"] == StringNode(description="Pet name")
        assert node.properties["nickname"] == UnionNode(variants=[StringNode(), NullNode()])

    def test_nested_defs_are_inlined(self):
        node = ExternalSchemaAdapter().adapt(Owner)
        assert node.properties["pets"].items.required == ["name", "age"]

    def test_type_adapter(self):
        node = ExternalSchemaAdapter().adapt(TypeAdapter(list[int]))
        assert node == ArrayNode(items=NumberNode(is_integer=True))

    def test_json_schema_protocol(self):
        class Custom:
            def __json_schema__(self):
                return {"type": "string", "format": "uuid"}

        assert ExternalSchemaAdapter().adapt(Custom()) == StringNode(format="uuid")

    def test_model_constraints_are_enforced(self):
        node = ExternalSchemaAdapter().adapt(Order)
        assert node.additional_properties is False
        assert node.properties["quantity"] == NumberNode(is_integer=True, minimum=1, maximum=10)
        assert node.properties["lines"].min_items == 1
        assert validate_instance({"quantity": 2, "lines": ["a"]}, node) == []
        issues = validate_instance({"quantity": 0, "lines": [], "note": "x"}, node)
        assert {issue["keyword"] for issue in issues} == {"minimum", "minItems", "additionalProperties"}

    def test_plain_dict(self):
        node = ExternalSchemaAdapter().adapt({"type": "boolean"})
        assert node.to_json_schema() == {"type": "boolean"}


class TestBuilder:
    def test_object_with_optional_field(self):
        schema = s.object({
            "email": s.string(format="email"),
            "nickname": s.string(max_length=32).optional(),
        })
        node = ExternalSchemaAdapter().adapt(schema)
        assert node.required == ["email"]
        assert node.properties["nickname"] == StringNode(max_length=32)

    def test_constraints_and_description(self):
        node = ExternalSchemaAdapter().adapt(
            s.string(min_length=2, pattern="^[a-z]+$").describe("Slug")
        )
        assert node == StringNode(min_length=2, pattern="^[a-z]+$", description="Slug")

    def test_array_and_integer(self):
        node = ExternalSchemaAdapter().adapt(s.array(s.integer()))
        assert node == ArrayNode(items=NumberNode(is_integer=True))

    def test_numeric_array_and_strict_object_constraints(self):
        node = ExternalSchemaAdapter().adapt(
            s.object({"tags": s.array(s.string(), max_items=3), "score": s.number(minimum=0)}, strict=True)
        )
        assert node.to_json_schema() == {
            "type": "object",
            "properties": {
                "tags": {"type": "array", "items": {"type": "string"}, "maxItems": 3},
                "score": {"type": "number", "minimum": 0},
            },
            "required": ["tags", "score"],
            "additionalProperties": False,
        }

    def test_top_level_optional_unwraps(self):
        assert ExternalSchemaAdapter().adapt(s.optional(s.boolean())).to_json_schema() == {"type": "boolean"}


class TestFailures:
    def test_unsupported_object_falls_back(self):
        adapter = ExternalSchemaAdapter()
        node = adapter.adapt(object())
        assert node == ObjectNode()
        assert len(adapter.diagnostics) == 1

    def test_strict_raises(self):
        with pytest.raises(SchemaAdaptationError):
            ExternalSchemaAdapter(strict=True).adapt(42)

    def test_broken_protocol_falls_back(self):
        class Broken:
            def __json_schema__(self):
                raise RuntimeError("boom")

        adapter = ExternalSchemaAdapter()
        assert adapter.adapt(Broken()) == ObjectNode()
        assert "boom" in adapter.diagnostics[0].reason
