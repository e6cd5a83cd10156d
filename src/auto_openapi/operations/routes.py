"""Route templates and source units.

A source unit is one route module: its path template plus one declaration
per HTTP method. Handlers are read statically through the analysis context;
the module's ``route_config`` dict is read by importing it::

    route_config = {
        "openapi_override": {"POST": {"summary": "Create a user"}},
        "validation": {"POST": {"input": {"body": CreateUser}}},
    }
"""

import importlib.util
import logging
import re
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from auto_openapi.analysis.context import HTTP_METHODS, AnalysisContext, HandlerRef

logger = logging.getLogger(__name__)

ROUTE_CONFIG_NAME = "route_config"
HANDLER_FILE_STEMS = {"server", "+server", "route", "__init__", "index"}

_OPTIONAL_REST = re.compile(r"\[\[\.\.\.(\w+)\]\]")
_REST = re.compile(r"\[\.\.\.(\w+)\]")
_OPTIONAL = re.compile(r"\[\[(\w+)\]\]")
_MATCHED = re.compile(r"\[(\w+)=\w+\]")
_PARAM = re.compile(r"\[(\w+)\]")
_SEGMENT_PARAM = re.compile(r"\[{1,2}(?:\.\.\.)?(\w+)(?:=(\w+))?\]{1,2}")

STATUS_DESCRIPTIONS = {
    "200": "OK",
    "201": "Created",
    "202": "Accepted",
    "204": "No Content",
    "400": "Bad Request",
    "401": "Unauthorized",
    "403": "Forbidden",
    "404": "Not Found",
    "500": "Internal Server Error",
}


def format_path(route: str) -> str:
    """``/api/users/[id]`` -> ``/api/users/{id}``."""
    path = _OPTIONAL_REST.sub(r"{\1}", route)
    path = _REST.sub(r"{\1}", path)
    path = _OPTIONAL.sub(r"{\1}", path)
    path = _MATCHED.sub(r"{\1}", path)
    return _PARAM.sub(r"{\1}", path)


def extract_path_params(route: str) -> list[dict]:
    """Path parameter fragments for every ``[param]`` segment of a route."""
    params = []
    seen = set()
    for match in _SEGMENT_PARAM.finditer(route):
        name, matcher = match.group(1), match.group(2)
        if name in seen:
            continue
        seen.add(name)
        if matcher in ("int", "integer"):
            schema = {"type": "integer", "format": "int64"}
        elif matcher == "number":
            schema = {"type": "number"}
        else:
            schema = {"type": "string"}
        params.append({"name": name, "in": "path", "required": True, "schema": schema})
    return params


def status_description(status: str) -> str:
    return STATUS_DESCRIPTIONS.get(str(status), "Success")


def route_from_file(file_path: Path, root: Path) -> str:
    """``routes/api/users/[id]/server.py`` under ``routes`` -> ``/api/users/[id]``."""
    relative = Path(file_path).resolve().relative_to(Path(root).resolve())
    parts = list(relative.parts)
    if parts and Path(parts[-1]).stem in HANDLER_FILE_STEMS:
        parts.pop()
    elif parts:
        parts[-1] = Path(parts[-1]).stem
    return "/" + "/".join(parts)


@dataclass(frozen=True)
class OperationDeclaration:
    """What is known about one method of a route before merging."""

    static_type: HandlerRef | None = None
    explicit_schema: dict | None = None
    override_schema: dict | None = None


@dataclass
class SourceUnit:
    path: str
    operations: dict[str, OperationDeclaration] = field(default_factory=dict)
    file: Path | None = None


def load_source_unit(
    file_path: Path,
    context: AnalysisContext,
    route: str | None = None,
    root: Path | None = None,
    extra_overrides: dict | None = None,
) -> SourceUnit:
    """Build the source unit for one route module.

    Raises OSError / SyntaxError when the file cannot be read or parsed.
    """
    file_path = Path(file_path)
    root = Path(root) if root else (context.root or file_path.parent)
    if route is None:
        route = route_from_file(file_path, root)

    module = context.load_file(file_path)
    handlers = context.find_handlers(module)
    config = import_route_config(file_path, root)

    overrides = _by_method(config.get("openapi_override"))
    overrides.update(_by_method(extra_overrides))
    validation = _by_method(config.get("validation"))

    operations = {}
    for method in HTTP_METHODS:
        if method not in handlers and method not in overrides and method not in validation:
            continue
        operations[method] = OperationDeclaration(
            static_type=handlers.get(method),
            explicit_schema=validation.get(method),
            override_schema=overrides.get(method),
        )
    return SourceUnit(path=route, operations=operations, file=file_path)


def import_route_config(file_path: Path, root: Path | None = None) -> dict:
    """Import a route module and return its ``route_config`` dict.

    Import failures are logged; the unit is then built from inference alone.
    """
    module_name = f"_auto_openapi_route_{abs(hash(str(Path(file_path).resolve())))}"
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        return {}
    module = importlib.util.module_from_spec(spec)
    try:
        with _import_path(root):
            spec.loader.exec_module(module)
    except Exception as e:
        logger.warning(
            "Could not import %s for route config, using inference only: %s",
            file_path,
            e,
            extra={"file": str(file_path)},
        )
        return {}
    config = getattr(module, ROUTE_CONFIG_NAME, None)
    if config is None:
        return {}
    if not isinstance(config, dict):
        logger.warning("%s.%s is not a dict; ignoring it", file_path, ROUTE_CONFIG_NAME)
        return {}
    return config


@contextmanager
def _import_path(root: Path | None):
    if root is None or str(root) in sys.path:
        yield
        return
    sys.path.insert(0, str(root))
    try:
        yield
    finally:
        sys.path.remove(str(root))


def _by_method(mapping: Any) -> dict[str, Any]:
    if not isinstance(mapping, dict):
        return {}
    return {str(method).upper(): value for method, value in mapping.items() if str(method).upper() in HTTP_METHODS}
