"""Parsed-module cache used by static analysis.

The context owns every parsed module. Callers create one per build, pass it
to the analysis functions, and call ``invalidate`` when a source unit changes.
"""

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

FunctionNode = ast.FunctionDef | ast.AsyncFunctionDef


@dataclass
class ModuleInfo:
    """Top-level symbols of one parsed module."""

    name: str
    tree: ast.Module
    path: Path | None = None
    classes: dict[str, ast.ClassDef] = field(default_factory=dict)
    functions: dict[str, FunctionNode] = field(default_factory=dict)
    aliases: dict[str, ast.expr] = field(default_factory=dict)
    annotations: dict[str, ast.expr] = field(default_factory=dict)
    imports: dict[str, tuple[str, str | None, int]] = field(default_factory=dict)

    def location(self, node: ast.AST | None = None) -> str:
        where = str(self.path) if self.path else self.name
        lineno = getattr(node, "lineno", None)
        return f"{where}:{lineno}" if lineno else where


@dataclass(frozen=True)
class HandlerRef:
    """A route handler function together with the module it lives in."""

    module: ModuleInfo
    node: FunctionNode
    method: str

    @property
    def location(self) -> str:
        return self.module.location(self.node)


class AnalysisContext:
    """Owns parsed modules for one analysis session.

    ``root`` anchors absolute imports (``from app.models import User``); relative
    imports resolve against the importing file.
    """

    def __init__(self, root: Path | str | None = None):
        self.root = Path(root).resolve() if root else None
        self._modules: dict[str, ModuleInfo] = {}
        # imported module key -> keys of the modules importing it
        self._importers: dict[str, set[str]] = {}

    def load_file(self, path: Path | str) -> ModuleInfo:
        path = Path(path).resolve()
        key = str(path)
        if key not in self._modules:
            source = path.read_text(encoding="utf-8")
            self._modules[key] = self._index(ast.parse(source, filename=key), path.stem, path)
        return self._modules[key]

    def load_source(self, source: str, unit_id: str = "<memory>") -> ModuleInfo:
        if unit_id not in self._modules:
            self._modules[unit_id] = self._index(ast.parse(source, filename=unit_id), unit_id, None)
        return self._modules[unit_id]

    def invalidate(self, unit_id: Path | str) -> bool:
        """Drop a cached module. Returns True if something was cached."""
        key = str(unit_id)
        if key not in self._modules:
            key = str(Path(unit_id).resolve())
        removed = self._modules.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated analysis cache for %s", key)
        return removed

    def dependents(self, unit_id: Path | str) -> set[str]:
        """Keys of every module that imports ``unit_id``, directly or through other modules."""
        key = str(unit_id)
        if key not in self._modules and key not in self._importers:
            key = str(Path(unit_id).resolve())
        found: set[str] = set()
        pending = [key]
        while pending:
            for importer in self._importers.get(pending.pop(), ()):
                if importer not in found:
                    found.add(importer)
                    pending.append(importer)
        found.discard(key)
        return found

    def clear(self) -> None:
        self._modules.clear()
        self._importers.clear()

    def find_handlers(self, module: ModuleInfo) -> dict[str, HandlerRef]:
        """Find top-level handler functions named after HTTP methods."""
        handlers: dict[str, HandlerRef] = {}
        for name, node in module.functions.items():
            if name.upper() in HTTP_METHODS:
                handlers[name.upper()] = HandlerRef(module=module, node=node, method=name.upper())

        # POST = create_user
        for stmt in module.tree.body:
            if not isinstance(stmt, ast.Assign) or not isinstance(stmt.value, ast.Name):
                continue
            target_fn = module.functions.get(stmt.value.id)
            if target_fn is None:
                continue
            for target in stmt.targets:
                if isinstance(target, ast.Name) and target.id.upper() in HTTP_METHODS:
                    method = target.id.upper()
                    handlers[method] = HandlerRef(module=module, node=target_fn, method=method)
        return handlers

    def resolve_import(self, module: ModuleInfo, local_name: str) -> tuple[ModuleInfo, str] | None:
        """Follow ``local_name`` through an import to the module defining it."""
        entry = module.imports.get(local_name)
        if entry is None:
            return None
        module_name, attr, level = entry
        target = self._locate(module, module_name, level)
        if target is None:
            return None
        imported = self._load_import(module, target)
        if imported is None:
            return None
        return imported, attr or local_name

    def resolve_module(self, module: ModuleInfo, local_name: str) -> ModuleInfo | None:
        """Resolve a name bound to a module (``import app.models as m``, ``from . import models``)."""
        entry = module.imports.get(local_name)
        if entry is None:
            return None
        module_name, attr, level = entry
        dotted = f"{module_name}.{attr}" if attr else module_name
        target = self._locate(module, dotted, level)
        if target is None:
            return None
        return self._load_import(module, target)

    def _load_import(self, importer: ModuleInfo, target: Path) -> ModuleInfo | None:
        try:
            imported = self.load_file(target)
        except (OSError, SyntaxError) as e:
            logger.debug("Cannot analyse %s: %s", target, e)
            return None
        self._importers.setdefault(imported.location(), set()).add(importer.location())
        return imported

    def _locate(self, module: ModuleInfo, module_name: str, level: int) -> Path | None:
        if level:
            if module.path is None:
                return None
            base = module.path.parent
            for _ in range(level - 1):
                base = base.parent
        elif self.root is not None:
            base = self.root
        elif module.path is not None:
            base = module.path.parent
        else:
            return None

        parts = [p for p in module_name.split(".") if p]
        candidate = base.joinpath(*parts) if parts else base
        for path in (candidate.with_suffix(".py"), candidate / "__init__.py"):
            if path.is_file():
                return path
        return None

    def _index(self, tree: ast.Module, name: str, path: Path | None) -> ModuleInfo:
        info = ModuleInfo(name=name, tree=tree, path=path)
        for stmt in tree.body:
            if isinstance(stmt, ast.ClassDef):
                info.classes[stmt.name] = stmt
            elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                info.functions[stmt.name] = stmt
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                if _is_type_alias_annotation(stmt.annotation) and stmt.value is not None:
                    info.aliases[stmt.target.id] = stmt.value
                else:
                    info.annotations[stmt.target.id] = stmt.annotation
            elif isinstance(stmt, ast.Assign) and len(stmt.targets) == 1:
                target = stmt.targets[0]
                if isinstance(target, ast.Name) and _looks_like_type(stmt.value):
                    info.aliases[target.id] = stmt.value
            elif hasattr(ast, "TypeAlias") and isinstance(stmt, ast.TypeAlias):
                info.aliases[stmt.name.id] = stmt.value
            elif isinstance(stmt, ast.ImportFrom):
                for alias in stmt.names:
                    local = alias.asname or alias.name
                    info.imports[local] = (stmt.module or "", alias.name, stmt.level)
            elif isinstance(stmt, ast.Import):
                for alias in stmt.names:
                    local = alias.asname or alias.name.split(".")[0]
                    info.imports[local] = (alias.name, None, 0)
        return info


def _is_type_alias_annotation(annotation: ast.expr) -> bool:
    if isinstance(annotation, ast.Name):
        return annotation.id == "TypeAlias"
    if isinstance(annotation, ast.Attribute):
        return annotation.attr == "TypeAlias"
    return False


def _looks_like_type(value: ast.expr) -> bool:
    """Heuristic for ``UserId = str`` / ``Tags = list[str]`` style aliases."""
    if isinstance(value, ast.Subscript):
        return True
    if isinstance(value, ast.BinOp) and isinstance(value.op, ast.BitOr):
        return True
    if isinstance(value, ast.Name):
        return value.id in {"str", "int", "float", "bool", "bytes", "dict", "list", "Any"}
    return False
