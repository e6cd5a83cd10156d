"""Infer request and response schemas from a handler's call sites.

The handler body is walked in source order (nested functions and classes are
skipped). The first request-body pattern found wins:

1. a decoding call that names its type: ``msgspec.json.decode(raw, type=T)``,
   ``TypeAdapter(T).validate_json(...)``, ``T.model_validate_json(...)``,
   ``T.model_validate(await request.json())``
2. the receiving variable: ``body: T = await request.json()``, or an
   unannotated ``body = await request.json()`` whose keys are read with
   ``body["k"]`` / ``body.get("k")``, or a ``match`` mapping pattern
3. ``cast(T, await request.json())``

Every ``json(...)`` / ``JSONResponse(...)`` style call contributes a response.
"""

import ast
import logging
from dataclasses import dataclass, field

from auto_openapi.analysis.context import AnalysisContext, HandlerRef
from auto_openapi.analysis.types import (
    ExpressionTyper,
    Scope,
    TypeKind,
    TypeResolver,
    literal_value,
    status_codes_from_ref,
    status_from_attribute,
    terminal_name,
)
from auto_openapi.schema.mapper import Diagnostic, TypeToSchemaMapper
from auto_openapi.schema.nodes import (
    ObjectNode,
    SchemaNode,
    StringNode,
    UnionNode,
    UnknownNode,
)

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "200"

RESPONSE_HELPERS = {"json", "jsonify", "json_response", "JSONResponse", "ORJSONResponse"}
ERROR_HELPERS = {"error", "abort"}
ERROR_MODULES = {"flask", "werkzeug", "http"}
ERROR_EXCEPTIONS = {"HTTPError", "HTTPException"}
QUERY_ATTRIBUTES = {"query_params", "args", "query", "search_params", "searchParams"}
JSON_MODULES = {"json", "orjson", "ujson"}


@dataclass(frozen=True)
class QueryParam:
    name: str
    required: bool = False


@dataclass
class InferredOperation:
    """Everything inference could learn about one handler."""

    request_body: SchemaNode | None = None
    responses: dict[str, SchemaNode] = field(default_factory=dict)
    error_responses: dict[str, SchemaNode] = field(default_factory=dict)
    query_params: list[QueryParam] = field(default_factory=list)
    summary: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    deprecated: bool = False
    diagnostics: list[Diagnostic] = field(default_factory=list)


def iter_body(fn: ast.AST):
    """Pre-order walk of a function body in source order, skipping nested scopes."""
    for child in ast.iter_child_nodes(fn):
        if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)):
            continue
        yield child
        yield from iter_body(child)


def request_names(fn: ast.FunctionDef | ast.AsyncFunctionDef) -> set[str]:
    """Names bound to the incoming request: the first parameter and any ``*Request`` annotated one.

    A handler without parameters reads a framework global named ``request``.
    """
    args = fn.args
    positional = [*args.posonlyargs, *args.args]
    if positional and positional[0].arg in ("self", "cls"):
        positional = positional[1:]
    names = {positional[0].arg} if positional else {"request"}
    for arg in [*positional, *args.kwonlyargs]:
        if arg.annotation is not None and (terminal_name(arg.annotation) or "").endswith("Request"):
            names.add(arg.arg)
    return names


def is_request_value(node: ast.expr, names: set[str], values: dict[str, ast.expr], depth: int = 0) -> bool:
    """True when ``node`` is read off the request, e.g. ``request.body`` or ``await request.body()``."""
    while True:
        if isinstance(node, ast.Await):
            node = node.value
        elif isinstance(node, ast.Call):
            node = node.func
        elif isinstance(node, (ast.Attribute, ast.Subscript)):
            node = node.value
        else:
            break
    if not isinstance(node, ast.Name):
        return False
    if node.id in names:
        return True
    value = values.get(node.id)
    return value is not None and depth < 4 and is_request_value(value, names, values, depth + 1)


def is_decoded_json(node: ast.expr, names: set[str], values: dict[str, ast.expr]) -> bool:
    """True for an (optionally awaited) call that decodes the request's JSON payload."""
    if isinstance(node, ast.Await):
        node = node.value
    if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Attribute):
        return False
    func = node.func
    if func.attr in ("json", "get_json"):
        return is_request_value(func.value, names, values)
    if not node.args:
        return False
    if func.attr == "loads" and isinstance(func.value, ast.Name) and func.value.id in JSON_MODULES:
        return is_request_value(node.args[0], names, values)
    # msgspec.json.decode(...)
    if func.attr == "decode" and isinstance(func.value, ast.Attribute) and func.value.attr == "json":
        return is_request_value(node.args[0], names, values)
    return False


def _type_keyword(call: ast.Call) -> ast.expr | None:
    for keyword in call.keywords:
        if keyword.arg == "type":
            return keyword.value
    return None


class HandlerInference:
    """One inference pass over one handler."""

    def __init__(self, handler: HandlerRef, resolver: TypeResolver, mapper: TypeToSchemaMapper):
        self.handler = handler
        self.module = handler.module
        self.resolver = resolver
        self.mapper = mapper
        self.scope = Scope.for_function(handler.node, handler.module)
        self.typer = ExpressionTyper(resolver, self.scope)
        self.request_names = request_names(handler.node)

    def run(self) -> InferredOperation:
        result = InferredOperation()
        self._read_docstring(result)

        for node in iter_body(self.handler.node):
            if result.request_body is None:
                result.request_body = self._request_body(node)
            if isinstance(node, ast.Call):
                self._response(node, result)
                self._error_call(node, result)
                self._query_get(node, result)
            elif isinstance(node, ast.Raise) and isinstance(node.exc, ast.Call):
                self._raised_error(node.exc, result)
            elif isinstance(node, ast.Subscript):
                self._query_subscript(node, result)

        result.diagnostics = list(self.mapper.diagnostics)
        return result

    def _schema(self, annotation: ast.expr) -> SchemaNode:
        return self.mapper.map(self.resolver.resolve(annotation, self.module))

    # request body

    def _request_body(self, node: ast.AST) -> SchemaNode | None:
        if isinstance(node, ast.Call):
            annotation = self._explicit_type(node)
            if annotation is not None:
                return self._schema(annotation)
            if terminal_name(node.func) == "cast" and len(node.args) == 2 and self._decoded(node.args[1]):
                return self._schema(node.args[0])
        elif isinstance(node, ast.AnnAssign):
            if node.value is not None and self._decoded(node.value):
                return self._schema(node.annotation)
        elif isinstance(node, ast.Assign):
            target = node.targets[0] if len(node.targets) == 1 else None
            if isinstance(target, ast.Name) and self._decoded(node.value):
                return self._destructured(target.id)
        elif isinstance(node, ast.Match) and self._decoded(node.subject):
            return self._match_pattern(node)
        return None

    def _explicit_type(self, call: ast.Call) -> ast.expr | None:
        if self._decoded(call):
            return _type_keyword(call)
        func = call.func
        if not isinstance(func, ast.Attribute):
            return None
        # TypeAdapter(T).validate_json(...)
        if func.attr in ("validate_json", "validate_python") and self._from_request_argument(call):
            adapter = func.value
            if isinstance(adapter, ast.Call) and terminal_name(adapter.func) == "TypeAdapter" and adapter.args:
                return adapter.args[0]
        if func.attr == "model_validate_json" and self._from_request_argument(call):
            return func.value
        if func.attr == "model_validate" and call.args and self._decoded_argument(call.args[0]):
            return func.value
        return None

    def _decoded(self, node: ast.expr) -> bool:
        return is_decoded_json(node, self.request_names, self.scope.values)

    def _from_request_argument(self, call: ast.Call) -> bool:
        return bool(call.args) and is_request_value(call.args[0], self.request_names, self.scope.values)

    def _decoded_argument(self, node: ast.expr) -> bool:
        if self._decoded(node):
            return True
        if isinstance(node, ast.Name):
            value = self.scope.values.get(node.id)
            return value is not None and self._decoded(value)
        return False

    def _destructured(self, name: str) -> SchemaNode | None:
        keys: dict[str, bool] = {}
        for node in iter_body(self.handler.node):
            if (
                isinstance(node, ast.Subscript)
                and isinstance(node.value, ast.Name)
                and node.value.id == name
                and isinstance(node.ctx, ast.Load)
                and isinstance(node.slice, ast.Constant)
                and isinstance(node.slice.value, str)
            ):
                keys[node.slice.value] = True
            elif (
                isinstance(node, ast.Call)
                and isinstance(node.func, ast.Attribute)
                and node.func.attr == "get"
                and isinstance(node.func.value, ast.Name)
                and node.func.value.id == name
                and node.args
                and isinstance(node.args[0], ast.Constant)
                and isinstance(node.args[0].value, str)
            ):
                keys.setdefault(node.args[0].value, False)
        if not keys:
            return None
        return ObjectNode(
            properties={key: UnknownNode() for key in keys},
            required=[key for key, required in keys.items() if required],
        )

    def _match_pattern(self, node: ast.Match) -> SchemaNode | None:
        for case in node.cases:
            pattern = case.pattern
            if isinstance(pattern, ast.MatchAs) and pattern.pattern is not None:
                pattern = pattern.pattern
            if isinstance(pattern, ast.MatchMapping):
                keys = [k.value for k in pattern.keys if isinstance(k, ast.Constant) and isinstance(k.value, str)]
                if keys:
                    return ObjectNode(properties={k: UnknownNode() for k in keys}, required=keys)
        return None

    # responses

    def _response(self, call: ast.Call, result: InferredOperation) -> None:
        func = call.func
        if isinstance(func, ast.Name):
            if func.id not in RESPONSE_HELPERS:
                return
        elif isinstance(func, ast.Attribute):
            # request.json() decodes; only the response helpers count here
            if func.attr not in RESPONSE_HELPERS or func.attr == "json":
                return
        else:
            return

        payload = call.args[0] if call.args else _keyword(call, "content", "data", "body")
        schema = self.mapper.map(self.typer.type_of(payload)) if payload is not None else UnknownNode()
        for status in self._response_statuses(call):
            _add_response(result.responses, status, schema)

    def _response_statuses(self, call: ast.Call) -> list[str]:
        status_expr = None
        if len(call.args) > 1:
            second = call.args[1]
            if isinstance(second, ast.Dict):
                for key, value in zip(second.keys, second.values):
                    if isinstance(key, ast.Constant) and key.value in ("status", "status_code"):
                        status_expr = value
            else:
                status_expr = second
        if status_expr is None:
            status_expr = _keyword(call, "status", "status_code")
        if status_expr is None:
            return [DEFAULT_STATUS]
        return self._status_values(status_expr) or [DEFAULT_STATUS]

    def _status_values(self, node: ast.expr, depth: int = 0) -> list[str]:
        ok, value = literal_value(node)
        if ok and isinstance(value, int) and not isinstance(value, bool):
            return [str(value)]
        from_attribute = status_from_attribute(node)
        if from_attribute is not None:
            return [from_attribute]
        if isinstance(node, ast.Name):
            annotation = self.scope.annotations.get(node.id)
            if annotation is not None:
                return status_codes_from_ref(self.resolver.resolve(annotation, self.module))
            value_node = self.scope.values.get(node.id)
            if value_node is not None and depth < 4:
                return self._status_values(value_node, depth + 1)
        self.mapper.diagnostics.append(
            Diagnostic(location=self.module.location(node), reason="status code is not a literal; using 200")
        )
        return []

    # error responses

    def _error_call(self, call: ast.Call, result: InferredOperation) -> None:
        if terminal_name(call.func) not in ERROR_HELPERS or not call.args:
            return
        if isinstance(call.func, ast.Attribute) and terminal_name(call.func.value) not in ERROR_MODULES:
            # logger.error(...), self.abort(...)
            return
        statuses = self._status_values(call.args[0])
        body = call.args[1] if len(call.args) > 1 else _keyword(call, "body", "description")
        for status in statuses:
            _add_response(result.error_responses, status, self._error_body(body))

    def _raised_error(self, call: ast.Call, result: InferredOperation) -> None:
        if terminal_name(call.func) not in ERROR_EXCEPTIONS:
            return
        status_expr = call.args[0] if call.args else _keyword(call, "status", "status_code")
        if status_expr is None:
            return
        detail = _keyword(call, "detail")
        if detail is not None:
            schema = ObjectNode(
                properties={"detail": self.mapper.map(self.typer.type_of(detail))},
                required=["detail"],
            )
        else:
            body = call.args[1] if len(call.args) > 1 else _keyword(call, "body")
            schema = self._error_body(body)
        for status in self._status_values(status_expr):
            _add_response(result.error_responses, status, schema)

    def _error_body(self, body: ast.expr | None) -> SchemaNode:
        if body is not None:
            ref = self.typer.type_of(body)
            if ref.kind is TypeKind.OBJECT:
                return self.mapper.map(ref)
        return ObjectNode(properties={"message": StringNode()}, required=["message"])

    # query parameters

    def _query_get(self, call: ast.Call, result: InferredOperation) -> None:
        func = call.func
        if (
            isinstance(func, ast.Attribute)
            and func.attr == "get"
            and isinstance(func.value, ast.Attribute)
            and func.value.attr in QUERY_ATTRIBUTES
            and call.args
            and isinstance(call.args[0], ast.Constant)
            and isinstance(call.args[0].value, str)
        ):
            _add_query(result, QueryParam(call.args[0].value))

    def _query_subscript(self, node: ast.Subscript, result: InferredOperation) -> None:
        if (
            isinstance(node.value, ast.Attribute)
            and node.value.attr in QUERY_ATTRIBUTES
            and isinstance(node.slice, ast.Constant)
            and isinstance(node.slice.value, str)
        ):
            _add_query(result, QueryParam(node.slice.value, required=True))

    # docstring

    def _read_docstring(self, result: InferredOperation) -> None:
        doc = ast.get_docstring(self.handler.node)
        if not doc:
            return
        lines = doc.splitlines()
        result.summary = lines[0].strip() or None
        rest = []
        for line in lines[1:]:
            stripped = line.strip()
            if stripped.lower().startswith("tags:"):
                result.tags.extend(t.strip() for t in stripped[5:].split(",") if t.strip())
            elif stripped.lower() == "deprecated" or stripped.lower().startswith("deprecated:"):
                result.deprecated = True
            else:
                rest.append(line)
        result.description = "\n".join(rest).strip() or None


def _keyword(call: ast.Call, *names: str) -> ast.expr | None:
    for keyword in call.keywords:
        if keyword.arg in names:
            return keyword.value
    return None


def _add_response(responses: dict[str, SchemaNode], status: str, schema: SchemaNode) -> None:
    existing = responses.get(status)
    if existing is None or existing == schema:
        responses[status] = schema
        return
    variants = list(existing.variants) if isinstance(existing, UnionNode) else [existing]
    if schema not in variants:
        variants.append(schema)
    responses[status] = UnionNode(variants=variants)


def _add_query(result: InferredOperation, param: QueryParam) -> None:
    for index, existing in enumerate(result.query_params):
        if existing.name == param.name:
            if param.required and not existing.required:
                result.query_params[index] = param
            return
    result.query_params.append(param)


def infer_operation(
    handler: HandlerRef,
    context: AnalysisContext,
    resolver: TypeResolver | None = None,
) -> InferredOperation:
    """Run inference for one handler. Never raises; failures become diagnostics."""
    resolver = resolver or TypeResolver(context)
    mapper = TypeToSchemaMapper()
    try:
        return HandlerInference(handler, resolver, mapper).run()
    except (RecursionError, ValueError) as e:
        logger.warning("Inference failed for %s: %s", handler.location, e)
        return InferredOperation(diagnostics=[Diagnostic(location=handler.location, reason=str(e))])
