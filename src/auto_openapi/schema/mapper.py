"""Map resolved ``TypeRef`` values to SchemaNode trees."""

import logging
from dataclasses import dataclass, field

from auto_openapi.analysis.types import TypeKind, TypeRef
from auto_openapi.schema.nodes import (
    ArrayNode,
    BooleanNode,
    EnumNode,
    NullNode,
    NumberNode,
    ObjectNode,
    ReferenceNode,
    SchemaNode,
    StringNode,
    UnionNode,
    UnknownNode,
)

logger = logging.getLogger(__name__)

COMPONENTS_PREFIX = "#/components/schemas/"


@dataclass(frozen=True)
class Diagnostic:
    location: str | None
    reason: str


@dataclass
class TypeToSchemaMapper:
    """Pure, total mapping from semantic types to schema nodes.

    Every fallback to a generic shape appends a ``Diagnostic`` so the caller
    can report what could not be resolved.
    """

    diagnostics: list[Diagnostic] = field(default_factory=list)

    def map(self, ref: TypeRef) -> SchemaNode:
        handler = self._handlers().get(ref.kind)
        if handler is None:
            self._note(ref, f"unsupported type kind {ref.kind.value}")
            return UnknownNode()
        return handler(ref)

    def _handlers(self) -> dict:
        return {
            TypeKind.STRING: lambda ref: StringNode(format=ref.format),
            TypeKind.NUMBER: lambda ref: NumberNode(),
            TypeKind.INTEGER: lambda ref: NumberNode(is_integer=True),
            TypeKind.BOOLEAN: lambda ref: BooleanNode(),
            TypeKind.NULL: lambda ref: NullNode(),
            TypeKind.LITERAL: lambda ref: EnumNode(values=[ref.value]),
            TypeKind.ARRAY: self._array,
            TypeKind.OBJECT: self._object,
            TypeKind.MAPPING: lambda ref: ObjectNode(),
            TypeKind.UNION: self._union,
            TypeKind.REFERENCE: lambda ref: ReferenceNode(target=f"{COMPONENTS_PREFIX}{ref.name}"),
            TypeKind.ANY: self._any,
            TypeKind.UNKNOWN: lambda ref: UnknownNode(),
        }

    def _array(self, ref: TypeRef) -> SchemaNode:
        items = self.map(ref.args[0]) if ref.args else UnknownNode()
        return ArrayNode(items=items)

    def _object(self, ref: TypeRef) -> SchemaNode:
        properties = {member.name: self.map(member.type) for member in ref.members}
        required = [member.name for member in ref.members if not member.optional]
        return ObjectNode(properties=properties, required=required)

    def _union(self, ref: TypeRef) -> SchemaNode:
        non_null = [arg for arg in ref.args if arg.kind is not TypeKind.NULL]
        has_null = len(non_null) != len(ref.args)

        if non_null and all(arg.kind is TypeKind.LITERAL for arg in non_null):
            values = [arg.value for arg in non_null]
            if _homogeneous(values):
                node: SchemaNode = EnumNode(values=values)
                return UnionNode(variants=[node, NullNode()]) if has_null else node

        variants = [self.map(arg) for arg in non_null]
        if has_null:
            variants.append(NullNode())
        if len(variants) == 1:
            return variants[0]
        return UnionNode(variants=variants)

    def _any(self, ref: TypeRef) -> SchemaNode:
        what = ref.name or "expression"
        self._note(ref, f"could not resolve {what}; using a generic object")
        return ObjectNode()

    def _note(self, ref: TypeRef, reason: str) -> None:
        logger.debug("%s: %s", ref.location or "<unknown>", reason)
        self.diagnostics.append(Diagnostic(location=ref.location, reason=reason))


def _homogeneous(values: list) -> bool:
    kinds = {"boolean" if isinstance(v, bool) else type(v).__name__ for v in values}
    return len(kinds) == 1
