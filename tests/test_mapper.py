import ast
import textwrap

from auto_openapi.analysis.context import AnalysisContext
from auto_openapi.analysis.types import Member, TypeKind, TypeRef, TypeResolver
from auto_openapi.schema.mapper import TypeToSchemaMapper
from auto_openapi.schema.nodes import (
    ArrayNode,
    EnumNode,
    NullNode,
    NumberNode,
    ObjectNode,
    ReferenceNode,
    StringNode,
    UnionNode,
    UnknownNode,
)


def _resolve(source: str, annotation: str) -> TypeRef:
    context = AnalysisContext()
    module = context.load_source(textwrap.dedent(source))
    expr = ast.parse(annotation, mode="eval").body
    return TypeResolver(context).resolve(expr, module)


def _map(source: str, annotation: str):
    mapper = TypeToSchemaMapper()
    return mapper.map(_resolve(source, annotation)), mapper


class TestPrimitives:
    def test_int_is_integer_number(self):
        node, _ = _map("", "int")
        assert node == NumberNode(is_integer=True)

    def test_datetime_has_format(self):
        node, _ = _map("from datetime import datetime", "datetime")
        assert node == StringNode(format="date-time")

    def test_optional_becomes_union_with_null(self):
        node, _ = _map("", "Optional[str]")
        assert node == UnionNode(variants=[StringNode(), NullNode()])

    def test_pipe_union(self):
        node, _ = _map("", "int | str")
        assert node == UnionNode(variants=[NumberNode(is_integer=True), StringNode()])


class TestLiterals:
    def test_homogeneous_literals_become_enum(self):
        node, _ = _map("", 'Literal["a", "b"]')
        assert node == EnumNode(values=["a", "b"])

    def test_mixed_literals_become_union(self):
        node, _ = _map("", 'Literal["a", 1]')
        assert node == UnionNode(variants=[EnumNode(values=["a"]), EnumNode(values=[1])])

    def test_optional_literal_keeps_enum(self):
        node, _ = _map("", 'Literal["x", "y"] | None')
        assert node == UnionNode(variants=[EnumNode(values=["x", "y"]), NullNode()])

    def test_enum_class(self):
        source = """
        class Color(str, Enum):
            RED = "red"
            BLUE = "blue"
        """
        node, _ = _map(source, "Color")
        assert node == EnumNode(values=["red", "blue"])


class TestCollections:
    def test_list_of_str(self):
        node, _ = _map("", "list[str]")
        assert node == ArrayNode(items=StringNode())

    def test_bare_list_has_unknown_items(self):
        node, _ = _map("", "list")
        assert node == ArrayNode(items=UnknownNode())

    def test_tuple_ellipsis(self):
        node, _ = _map("", "tuple[int, ...]")
        assert node == ArrayNode(items=NumberNode(is_integer=True))

    def test_dict_is_generic_object(self):
        node, mapper = _map("", "dict[str, int]")
        assert node == ObjectNode()
        assert mapper.diagnostics == []


class TestClasses:
    def test_typed_dict_optionality(self):
        source = """
        class Profile(TypedDict):
            name: str
            bio: NotRequired[str]
        """
        node, _ = _map(source, "Profile")
        assert node.required == ["name"]
        assert set(node.properties) == {"name", "bio"}

    def test_total_false_with_required(self):
        source = """
        class Patch(TypedDict, total=False):
            id: Required[int]
            name: str
        """
        node, _ = _map(source, "Patch")
        assert node.required == ["id"]

    def test_defaults_make_members_optional(self):
        source = """
        class Item(BaseModel):
            sku: str
            qty: int = 1
            note: str | None = None
            code: str = Field(...)
            label: str = Field(default="x")
        """
        node, _ = _map(source, "Item")
        assert node.required == ["sku", "code"]

    def test_inherited_members_and_exclusions(self):
        source = """
        class Base:
            id: int
            __secret: str
        class Child(Base):
            name: str
            registry: ClassVar[dict]
        """
        node, _ = _map(source, "Child")
        assert list(node.properties) == ["id", "name"]
        assert node.required == ["id", "name"]

    def test_self_reference_becomes_reference(self):
        source = """
        class Node:
            value: int
            children: list["Node"]
        """
        node, _ = _map(source, "Node")
        assert node.properties["children"] == ArrayNode(
            items=ReferenceNode(target="#/components/schemas/Node")
        )

    def test_alias(self):
        source = """
        Tags = list[str]
        """
        node, _ = _map(source, "Tags")
        assert node == ArrayNode(items=StringNode())


class TestFallbacks:
    def test_any_is_generic_object_with_diagnostic(self):
        node, mapper = _map("", "Any")
        assert node == ObjectNode()
        assert len(mapper.diagnostics) == 1

    def test_unresolved_name_records_location(self):
        node, mapper = _map("", "Missing")
        assert node == ObjectNode()
        assert "Missing" in mapper.diagnostics[0].reason

    def test_unknown_kind(self):
        assert TypeToSchemaMapper().map(TypeRef(TypeKind.UNKNOWN)) == UnknownNode()

    def test_object_required_from_members(self):
        ref = TypeRef(
            TypeKind.OBJECT,
            members=(
                Member("a", TypeRef(TypeKind.STRING)),
                Member("b", TypeRef(TypeKind.BOOLEAN), optional=True),
            ),
        )
        node = TypeToSchemaMapper().map(ref)
        assert node.required == ["a"]
