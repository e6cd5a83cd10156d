"""Structural schema tree shared by every schema source.

The type mapper, the external schema adapter and hand-written overrides all
produce these nodes, so they can be merged and validated interchangeably.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str | None = None

    def to_json_schema(self) -> dict:
        raise NotImplementedError

    def _with_description(self, schema: dict) -> dict:
        if self.description is not None:
            schema["description"] = self.description
        return schema


class StringNode(_Node):
    kind: Literal["string"] = "string"
    format: str | None = None
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None

    def to_json_schema(self) -> dict:
        schema: dict = {"type": "string"}
        if self.format is not None:
            schema["format"] = self.format
        if self.pattern is not None:
            schema["pattern"] = self.pattern
        if self.min_length is not None:
            schema["minLength"] = self.min_length
        if self.max_length is not None:
            schema["maxLength"] = self.max_length
        return self._with_description(schema)


class NumberNode(_Node):
    kind: Literal["number"] = "number"
    is_integer: bool = False
    minimum: int | float | None = None
    maximum: int | float | None = None
    exclusive_minimum: int | float | None = None
    exclusive_maximum: int | float | None = None

    def to_json_schema(self) -> dict:
        schema: dict = {"type": "integer" if self.is_integer else "number"}
        for key, value in (
            ("minimum", self.minimum),
            ("maximum", self.maximum),
            ("exclusiveMinimum", self.exclusive_minimum),
            ("exclusiveMaximum", self.exclusive_maximum),
        ):
            if value is not None:
                schema[key] = value
        return self._with_description(schema)


class BooleanNode(_Node):
    kind: Literal["boolean"] = "boolean"

    def to_json_schema(self) -> dict:
        return self._with_description({"type": "boolean"})


class NullNode(_Node):
    kind: Literal["null"] = "null"

    def to_json_schema(self) -> dict:
        return self._with_description({"type": "null"})


class ArrayNode(_Node):
    kind: Literal["array"] = "array"
    items: "SchemaNode"
    min_items: int | None = None
    max_items: int | None = None

    def to_json_schema(self) -> dict:
        schema: dict = {"type": "array", "items": self.items.to_json_schema()}
        if self.min_items is not None:
            schema["minItems"] = self.min_items
        if self.max_items is not None:
            schema["maxItems"] = self.max_items
        return self._with_description(schema)


class ObjectNode(_Node):
    """Object shape; ``required`` is always a subset of ``properties``.

    ``additional_properties`` is ``False`` for closed objects; ``additional_schema``
    describes the values of undeclared keys.
    """

    kind: Literal["object"] = "object"
    properties: dict[str, "SchemaNode"] = {}
    required: list[str] = []
    additional_properties: bool | None = None
    additional_schema: Optional["SchemaNode"] = None

    @model_validator(mode="before")
    @classmethod
    def _required_subset(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("required"):
            properties = data.get("properties") or {}
            seen: list[str] = []
            for name in data["required"]:
                if name in properties and name not in seen:
                    seen.append(name)
            data = {**data, "required": seen}
        return data

    def to_json_schema(self) -> dict:
        schema: dict = {"type": "object"}
        if self.properties:
            schema["properties"] = {
                name: node.to_json_schema() for name, node in self.properties.items()
            }
        if self.required:
            schema["required"] = list(self.required)
        if self.additional_schema is not None:
            schema["additionalProperties"] = self.additional_schema.to_json_schema()
        elif self.additional_properties is not None:
            schema["additionalProperties"] = self.additional_properties
        return self._with_description(schema)


class EnumNode(_Node):
    kind: Literal["enum"] = "enum"
    values: list[Any]

    @model_validator(mode="after")
    def _non_empty(self) -> "EnumNode":
        if not self.values:
            raise ValueError("enum values must not be empty")
        return self

    def to_json_schema(self) -> dict:
        schema: dict = {}
        value_type = _literal_type(self.values)
        if value_type is not None:
            schema["type"] = value_type
        schema["enum"] = list(self.values)
        return self._with_description(schema)


class UnionNode(_Node):
    kind: Literal["union"] = "union"
    variants: list["SchemaNode"]

    def to_json_schema(self) -> dict:
        return self._with_description(
            {"anyOf": [variant.to_json_schema() for variant in self.variants]}
        )


class ReferenceNode(_Node):
    kind: Literal["reference"] = "reference"
    target: str

    def to_json_schema(self) -> dict:
        return self._with_description({"$ref": self.target})


class UnknownNode(_Node):
    kind: Literal["unknown"] = "unknown"

    def to_json_schema(self) -> dict:
        return self._with_description({})


SchemaNode = Annotated[
    Union[
        StringNode,
        NumberNode,
        BooleanNode,
        NullNode,
        ArrayNode,
        ObjectNode,
        EnumNode,
        UnionNode,
        ReferenceNode,
        UnknownNode,
    ],
    Field(discriminator="kind"),
]

for _model in (ArrayNode, ObjectNode, UnionNode):
    _model.model_rebuild()


def is_node(value: Any) -> bool:
    return isinstance(value, _Node)


def _literal_type(values: list[Any]) -> str | None:
    """Return the JSON type shared by all literal values, if there is one."""
    kinds = set()
    for value in values:
        if isinstance(value, bool):
            kinds.add("boolean")
        elif isinstance(value, int):
            kinds.add("integer")
        elif isinstance(value, float):
            kinds.add("number")
        elif isinstance(value, str):
            kinds.add("string")
        else:
            return None
    if kinds == {"integer", "number"}:
        return "number"
    if len(kinds) == 1:
        return kinds.pop()
    return None


def schema_from_json(schema: Any, defs: dict | None = None, _resolving: tuple = ()) -> SchemaNode:
    """Parse a JSON Schema dict into a SchemaNode.

    Local ``$ref`` pointers into ``$defs`` / ``definitions`` are inlined; a
    pointer that is already being resolved (a recursive model) stays a
    ReferenceNode. Anything unrecognized becomes UnknownNode.
    """
    if not isinstance(schema, dict):
        return UnknownNode()

    if defs is None:
        defs = {**schema.get("definitions", {}), **schema.get("$defs", {})}
    description = schema.get("description")

    if "$ref" in schema:
        ref = schema["$ref"]
        name = ref.rsplit("/", 1)[-1]
        if name in defs and ref not in _resolving:
            node = schema_from_json(defs[name], defs, _resolving + (ref,))
            if description is not None:
                node = node.model_copy(update={"description": description})
            return node
        return ReferenceNode(target=ref, description=description)

    if "const" in schema:
        return EnumNode(values=[schema["const"]], description=description)
    if schema.get("enum"):
        return EnumNode(values=list(schema["enum"]), description=description)

    for key in ("oneOf", "anyOf"):
        if schema.get(key):
            variants = [schema_from_json(item, defs, _resolving) for item in schema[key]]
            if len(variants) == 1:
                return variants[0]
            return UnionNode(variants=variants, description=description)

    if isinstance(schema.get("allOf"), list) and len(schema["allOf"]) == 1:
        node = schema_from_json(schema["allOf"][0], defs, _resolving)
        if description is not None:
            node = node.model_copy(update={"description": description})
        return node

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        variants = [
            schema_from_json({**schema, "type": item}, defs, _resolving) for item in schema_type
        ]
        if len(variants) == 1:
            return variants[0]
        return UnionNode(variants=variants, description=description)

    node = _from_typed(schema, schema_type, defs, _resolving, description)
    if schema.get("nullable") is True and not isinstance(node, NullNode):
        return UnionNode(variants=[node, NullNode()], description=description)
    return node


def _from_typed(schema: dict, schema_type: Any, defs: dict, resolving: tuple, description) -> SchemaNode:
    if schema_type == "string":
        return StringNode(
            format=schema.get("format"),
            pattern=schema.get("pattern"),
            min_length=schema.get("minLength"),
            max_length=schema.get("maxLength"),
            description=description,
        )
    if schema_type in ("number", "integer"):
        return NumberNode(
            is_integer=schema_type == "integer",
            minimum=schema.get("minimum"),
            maximum=schema.get("maximum"),
            exclusive_minimum=_number(schema.get("exclusiveMinimum")),
            exclusive_maximum=_number(schema.get("exclusiveMaximum")),
            description=description,
        )
    if schema_type == "boolean":
        return BooleanNode(description=description)
    if schema_type == "null":
        return NullNode(description=description)
    if schema_type == "array" or "items" in schema:
        return ArrayNode(
            items=schema_from_json(schema.get("items", {}), defs, resolving),
            min_items=schema.get("minItems"),
            max_items=schema.get("maxItems"),
            description=description,
        )
    if schema_type == "object" or "properties" in schema:
        properties = {
            name: schema_from_json(prop, defs, resolving)
            for name, prop in (schema.get("properties") or {}).items()
        }
        required = list(schema.get("required") or [])
        # required names without a declared shape still have to be present
        for name in required:
            properties.setdefault(name, UnknownNode())
        additional = schema.get("additionalProperties")
        return ObjectNode(
            properties=properties,
            required=required,
            additional_properties=additional if isinstance(additional, bool) else None,
            additional_schema=schema_from_json(additional, defs, resolving) if isinstance(additional, dict) else None,
            description=description,
        )
    return UnknownNode(description=description)


def _number(value: Any) -> int | float | None:
    # draft-04 documents use a boolean exclusiveMinimum next to minimum
    if isinstance(value, bool):
        return None
    return value
