"""Semantic type descriptions resolved from Python annotations.

``TypeResolver`` turns annotation expressions (``list[User]``,
``Literal["a", "b"]``, ``Optional[int]``, a ``TypedDict`` class...) into
``TypeRef`` values. The schema mapper consumes ``TypeRef`` only; it never
sees the syntax tree.
"""

import ast
import logging
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Any

from auto_openapi.analysis.context import AnalysisContext, ModuleInfo

logger = logging.getLogger(__name__)


class TypeKind(Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    NULL = "null"
    LITERAL = "literal"
    ARRAY = "array"
    OBJECT = "object"
    MAPPING = "mapping"
    UNION = "union"
    REFERENCE = "reference"
    ANY = "any"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Member:
    name: str
    type: "TypeRef"
    optional: bool = False


@dataclass(frozen=True)
class TypeRef:
    """A resolved type.

    ``args`` holds the element type for ARRAY and the members of a UNION;
    ``members`` holds the fields of an OBJECT; ``value`` holds a LITERAL.
    """

    kind: TypeKind
    name: str | None = None
    value: Any = None
    format: str | None = None
    args: tuple["TypeRef", ...] = ()
    members: tuple[Member, ...] = ()
    location: str | None = None


UNKNOWN = TypeRef(TypeKind.UNKNOWN)

_SCALARS = {
    "str": TypeRef(TypeKind.STRING),
    "bytes": TypeRef(TypeKind.STRING),
    "int": TypeRef(TypeKind.INTEGER),
    "float": TypeRef(TypeKind.NUMBER),
    "Decimal": TypeRef(TypeKind.NUMBER),
    "bool": TypeRef(TypeKind.BOOLEAN),
    "None": TypeRef(TypeKind.NULL),
    "NoneType": TypeRef(TypeKind.NULL),
    "datetime": TypeRef(TypeKind.STRING, format="date-time"),
    "date": TypeRef(TypeKind.STRING, format="date"),
    "time": TypeRef(TypeKind.STRING, format="time"),
    "UUID": TypeRef(TypeKind.STRING, format="uuid"),
    "EmailStr": TypeRef(TypeKind.STRING, format="email"),
    "AnyUrl": TypeRef(TypeKind.STRING, format="uri"),
    "HttpUrl": TypeRef(TypeKind.STRING, format="uri"),
}

_SEQUENCES = {
    "list", "List", "Sequence", "MutableSequence", "Iterable", "Collection",
    "set", "Set", "frozenset", "FrozenSet", "AbstractSet", "tuple", "Tuple",
}
_MAPPINGS = {"dict", "Dict", "Mapping", "MutableMapping", "OrderedDict", "defaultdict"}
_ANY = {"Any", "object"}
_WRAPPERS = {"Annotated", "Required", "NotRequired", "ReadOnly", "Final"}
_ENUM_BASES = {"Enum", "StrEnum", "IntEnum"}
_TYPED_DICT_BASES = {"TypedDict"}


def terminal_name(node: ast.expr) -> str | None:
    """``typing.List`` -> ``List``; ``List`` -> ``List``."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def literal_value(node: ast.expr) -> tuple[bool, Any]:
    """Return ``(True, value)`` for constant expressions, including negative numbers."""
    if isinstance(node, ast.Constant):
        return True, node.value
    if (
        isinstance(node, ast.UnaryOp)
        and isinstance(node.op, ast.USub)
        and isinstance(node.operand, ast.Constant)
        and isinstance(node.operand.value, (int, float))
    ):
        return True, -node.operand.value
    return False, None


def make_union(members: list[TypeRef]) -> TypeRef:
    flat: list[TypeRef] = []
    for member in members:
        candidates = member.args if member.kind is TypeKind.UNION else (member,)
        for candidate in candidates:
            if candidate not in flat:
                flat.append(candidate)
    if len(flat) == 1:
        return flat[0]
    return TypeRef(TypeKind.UNION, args=tuple(flat))


def status_codes_from_ref(ref: TypeRef) -> list[str]:
    """Integer literal members of a type, as status code strings."""
    members = ref.args if ref.kind is TypeKind.UNION else (ref,)
    return [
        str(m.value)
        for m in members
        if m.kind is TypeKind.LITERAL and isinstance(m.value, int) and not isinstance(m.value, bool)
    ]


def status_from_attribute(node: ast.expr) -> str | None:
    """``HTTPStatus.CREATED`` / ``status.HTTP_201_CREATED`` -> ``"201"``."""
    if not isinstance(node, ast.Attribute):
        return None
    name = node.attr
    if name.startswith("HTTP_") and name[5:8].isdigit():
        return name[5:8]
    try:
        return str(HTTPStatus[name].value)
    except KeyError:
        return None


class TypeResolver:
    """Resolves annotation expressions to ``TypeRef`` values.

    Classes are resolved eagerly; a class reached again while it is still being
    resolved becomes a REFERENCE, which keeps recursive models finite.
    """

    def __init__(self, context: AnalysisContext):
        self.context = context
        self._resolving: list[tuple[str, str]] = []
        self._classes: dict[tuple[str, str], TypeRef] = {}

    def resolve(self, node: ast.expr | None, module: ModuleInfo) -> TypeRef:
        if node is None:
            return UNKNOWN
        try:
            return self._resolve(node, module)
        except RecursionError:
            logger.debug("Type too deep at %s", module.location(node))
            return TypeRef(TypeKind.ANY, location=module.location(node))

    def _resolve(self, node: ast.expr, module: ModuleInfo) -> TypeRef:
        if isinstance(node, ast.Constant):
            if node.value is None:
                return TypeRef(TypeKind.NULL)
            if isinstance(node.value, str):
                return self._forward_ref(node, module)
            return TypeRef(TypeKind.ANY, location=module.location(node))

        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
            return make_union([self._resolve(node.left, module), self._resolve(node.right, module)])

        if isinstance(node, ast.Subscript):
            return self._subscript(node, module)

        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            imported = self.context.resolve_module(module, node.value.id)
            if imported is not None:
                found = self.lookup(node.attr, imported)
                if found is not None:
                    return found

        name = terminal_name(node)
        if name is None:
            return TypeRef(TypeKind.ANY, location=module.location(node))
        return self._named(name, node, module)

    def _forward_ref(self, node: ast.Constant, module: ModuleInfo) -> TypeRef:
        try:
            parsed = ast.parse(node.value, mode="eval").body
        except SyntaxError:
            return TypeRef(TypeKind.ANY, name=node.value, location=module.location(node))
        ast.copy_location(parsed, node)
        return self._resolve(parsed, module)

    def _named(self, name: str, node: ast.expr, module: ModuleInfo) -> TypeRef:
        if name in _SCALARS:
            return _SCALARS[name]
        if name in _SEQUENCES:
            return TypeRef(TypeKind.ARRAY, args=(UNKNOWN,))
        if name in _MAPPINGS:
            return TypeRef(TypeKind.MAPPING)
        if name in _ANY:
            return TypeRef(TypeKind.ANY, name=name, location=module.location(node))
        found = self.lookup(name, module)
        if found is not None:
            return found
        return TypeRef(TypeKind.ANY, name=name, location=module.location(node))

    def lookup(self, name: str, module: ModuleInfo) -> TypeRef | None:
        """Resolve a module-level name: class, alias, or imported symbol."""
        if name in module.classes:
            return self.resolve_class(module.classes[name], module)
        if name in module.aliases:
            return self._resolve(module.aliases[name], module)
        imported = self.context.resolve_import(module, name)
        if imported is not None:
            target_module, target_name = imported
            if target_name in _SCALARS:
                return _SCALARS[target_name]
            if target_module is not module:
                return self.lookup(target_name, target_module)
        return None

    def _subscript(self, node: ast.Subscript, module: ModuleInfo) -> TypeRef:
        base = terminal_name(node.value)
        elements = list(node.slice.elts) if isinstance(node.slice, ast.Tuple) else [node.slice]

        if base == "Optional":
            return make_union([self._resolve(elements[0], module), TypeRef(TypeKind.NULL)])
        if base == "Union":
            return make_union([self._resolve(e, module) for e in elements])
        if base == "Literal":
            return make_union([self._literal(e, module) for e in elements])
        if base in _WRAPPERS or base == "ClassVar":
            return self._resolve(elements[0], module)
        if base in _SEQUENCES:
            items = [e for e in elements if not (isinstance(e, ast.Constant) and e.value is Ellipsis)]
            if not items:
                return TypeRef(TypeKind.ARRAY, args=(UNKNOWN,))
            return TypeRef(TypeKind.ARRAY, args=(make_union([self._resolve(e, module) for e in items]),))
        if base in _MAPPINGS:
            return TypeRef(TypeKind.MAPPING)
        # Generic user classes: Page[User] -> Page
        return self._resolve(node.value, module)

    def _literal(self, node: ast.expr, module: ModuleInfo) -> TypeRef:
        ok, value = literal_value(node)
        if ok:
            if value is None:
                return TypeRef(TypeKind.NULL)
            return TypeRef(TypeKind.LITERAL, value=value)
        # Literal[Color.RED] and similar
        return TypeRef(TypeKind.ANY, location=module.location(node))

    def resolve_class(self, cls: ast.ClassDef, module: ModuleInfo) -> TypeRef:
        key = (module.location(), cls.name)
        if key in self._classes:
            return self._classes[key]
        if key in self._resolving:
            return TypeRef(TypeKind.REFERENCE, name=cls.name, location=module.location(cls))

        base_names = {terminal_name(b) for b in cls.bases}
        if base_names & _ENUM_BASES:
            ref = self._enum_class(cls)
            self._classes[key] = ref
            return ref

        self._resolving.append(key)
        try:
            members: dict[str, Member] = {}
            for base in cls.bases:
                base_name = terminal_name(base)
                if base_name is None or base_name in _TYPED_DICT_BASES:
                    continue
                base_ref = self.lookup(base_name, module)
                if base_ref is not None and base_ref.kind is TypeKind.OBJECT:
                    for member in base_ref.members:
                        members[member.name] = member

            total = _typed_dict_total(cls)
            for stmt in cls.body:
                if not isinstance(stmt, ast.AnnAssign) or not isinstance(stmt.target, ast.Name):
                    continue
                name = stmt.target.id
                if name.startswith("__") or _is_class_var(stmt.annotation):
                    continue
                members[name] = Member(
                    name=name,
                    type=self._resolve(stmt.annotation, module),
                    optional=_member_optional(stmt, total),
                )
        finally:
            self._resolving.pop()

        ref = TypeRef(
            TypeKind.OBJECT,
            name=cls.name,
            members=tuple(members.values()),
            location=module.location(cls),
        )
        self._classes[key] = ref
        return ref

    def _enum_class(self, cls: ast.ClassDef) -> TypeRef:
        values = []
        for stmt in cls.body:
            if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1:
                target = stmt.targets[0]
                ok, value = literal_value(stmt.value)
                if ok and isinstance(target, ast.Name) and not target.id.startswith("_"):
                    values.append(TypeRef(TypeKind.LITERAL, value=value))
        if not values:
            return TypeRef(TypeKind.ANY, name=cls.name)
        return make_union(values)


def _typed_dict_total(cls: ast.ClassDef) -> bool:
    for keyword in cls.keywords:
        if keyword.arg == "total" and isinstance(keyword.value, ast.Constant):
            return bool(keyword.value.value)
    return True


def _is_class_var(annotation: ast.expr) -> bool:
    target = annotation.value if isinstance(annotation, ast.Subscript) else annotation
    return terminal_name(target) == "ClassVar"


def _member_optional(stmt: ast.AnnAssign, total: bool) -> bool:
    annotation = stmt.annotation
    if isinstance(annotation, ast.Subscript):
        wrapper = terminal_name(annotation.value)
        if wrapper == "NotRequired":
            return True
        if wrapper == "Required":
            return False
    if stmt.value is not None:
        return _has_default(stmt.value)
    return not total


def _has_default(value: ast.expr) -> bool:
    """``x: int = 3`` has a default; ``x: int = Field(...)`` does not."""
    if isinstance(value, ast.Call) and terminal_name(value.func) in {"Field", "field"}:
        for keyword in value.keywords:
            if keyword.arg in {"default", "default_factory"}:
                return True
        if value.args:
            first = value.args[0]
            return not (isinstance(first, ast.Constant) and first.value is Ellipsis)
        return False
    return True


@dataclass
class Scope:
    """Names visible inside a handler: parameters, annotated and assigned locals."""

    module: ModuleInfo
    annotations: dict[str, ast.expr] = field(default_factory=dict)
    values: dict[str, ast.expr] = field(default_factory=dict)

    @classmethod
    def for_function(cls, fn: ast.FunctionDef | ast.AsyncFunctionDef, module: ModuleInfo) -> "Scope":
        scope = cls(module=module, annotations=dict(module.annotations))
        args = fn.args
        for arg in [*args.posonlyargs, *args.args, *args.kwonlyargs]:
            if arg.annotation is not None:
                scope.annotations[arg.arg] = arg.annotation
        for node in ast.walk(fn):
            if isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
                scope.annotations[node.target.id] = node.annotation
            elif isinstance(node, ast.Assign) and len(node.targets) == 1:
                target = node.targets[0]
                if isinstance(target, ast.Name):
                    scope.values[target.id] = node.value
        return scope


class ExpressionTyper:
    """Best-effort static type of an expression inside a handler."""

    _CONSTANTS = {
        bool: TypeKind.BOOLEAN,
        int: TypeKind.INTEGER,
        float: TypeKind.NUMBER,
        str: TypeKind.STRING,
        bytes: TypeKind.STRING,
    }
    _BUILTIN_CALLS = {
        "str": TypeRef(TypeKind.STRING),
        "int": TypeRef(TypeKind.INTEGER),
        "len": TypeRef(TypeKind.INTEGER),
        "float": TypeRef(TypeKind.NUMBER),
        "bool": TypeRef(TypeKind.BOOLEAN),
        "dict": TypeRef(TypeKind.MAPPING),
        "list": TypeRef(TypeKind.ARRAY, args=(UNKNOWN,)),
    }
    MAX_DEPTH = 8

    def __init__(self, resolver: TypeResolver, scope: Scope):
        self.resolver = resolver
        self.scope = scope

    def type_of(self, node: ast.expr, depth: int = 0) -> TypeRef:
        if depth > self.MAX_DEPTH:
            return UNKNOWN
        module = self.scope.module

        if isinstance(node, ast.Await):
            return self.type_of(node.value, depth + 1)
        if isinstance(node, ast.Constant):
            if node.value is None:
                return TypeRef(TypeKind.NULL)
            kind = self._CONSTANTS.get(type(node.value))
            return TypeRef(kind) if kind else UNKNOWN
        if isinstance(node, ast.JoinedStr):
            return TypeRef(TypeKind.STRING)
        if isinstance(node, (ast.Compare, ast.BoolOp)) or (
            isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not)
        ):
            return TypeRef(TypeKind.BOOLEAN)
        if isinstance(node, ast.Dict):
            return self._dict_display(node, depth)
        if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            elements = [self.type_of(e, depth + 1) for e in node.elts]
            items = make_union(elements) if elements else UNKNOWN
            return TypeRef(TypeKind.ARRAY, args=(items,))
        if isinstance(node, (ast.ListComp, ast.SetComp)):
            return TypeRef(TypeKind.ARRAY, args=(UNKNOWN,))
        if isinstance(node, ast.DictComp):
            return TypeRef(TypeKind.MAPPING)
        if isinstance(node, ast.Name):
            return self._name(node, depth)
        if isinstance(node, ast.Attribute):
            owner = self.type_of(node.value, depth + 1)
            if owner.kind is TypeKind.OBJECT:
                for member in owner.members:
                    if member.name == node.attr:
                        return member.type
            return UNKNOWN
        if isinstance(node, ast.Call):
            return self._call(node, depth)
        return UNKNOWN

    def _dict_display(self, node: ast.Dict, depth: int) -> TypeRef:
        members = []
        for key, value in zip(node.keys, node.values):
            if key is None or not (isinstance(key, ast.Constant) and isinstance(key.value, str)):
                return TypeRef(TypeKind.MAPPING)
            members.append(Member(name=key.value, type=self.type_of(value, depth + 1)))
        return TypeRef(TypeKind.OBJECT, members=tuple(members))

    def _name(self, node: ast.Name, depth: int) -> TypeRef:
        if node.id in ("True", "False"):
            return TypeRef(TypeKind.BOOLEAN)
        annotation = self.scope.annotations.get(node.id)
        if annotation is not None:
            return self.resolver.resolve(annotation, self.scope.module)
        value = self.scope.values.get(node.id)
        if value is not None:
            return self.type_of(value, depth + 1)
        return UNKNOWN

    def _call(self, node: ast.Call, depth: int) -> TypeRef:
        func = node.func
        if isinstance(func, ast.Name):
            if func.id in self._BUILTIN_CALLS:
                return self._BUILTIN_CALLS[func.id]
            found = self.resolver.lookup(func.id, self.scope.module)
            if found is not None and found.kind is TypeKind.OBJECT:
                return found
            return UNKNOWN
        if isinstance(func, ast.Attribute):
            # User.model_validate(...) / User.model_construct(...)
            if func.attr in {"model_validate", "model_validate_json", "model_construct", "parse_obj"}:
                if isinstance(func.value, ast.Name):
                    return self.resolver.lookup(func.value.id, self.scope.module) or UNKNOWN
                return UNKNOWN
            # user.model_dump() keeps the model's shape
            if func.attr in {"model_dump", "dict"}:
                return self.type_of(func.value, depth + 1)
        return UNKNOWN
