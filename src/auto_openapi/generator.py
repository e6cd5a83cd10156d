"""Generate PathOperations from route source units."""

import logging
from pathlib import Path

from pydantic import ValidationError

from auto_openapi.analysis.context import AnalysisContext
from auto_openapi.operations.builder import OperationSchemaBuilder
from auto_openapi.operations.merge import merge
from auto_openapi.operations.models import OperationDescriptor, SchemaSource
from auto_openapi.operations.openapi import PathOperations
from auto_openapi.operations.routes import SourceUnit, format_path, load_source_unit

logger = logging.getLogger(__name__)


class SchemaGenerator:
    """Builds and caches path items per source unit.

    A unit is rebuilt only after ``invalidate`` is called for its file.
    """

    def __init__(self, context: AnalysisContext | None = None, builder: OperationSchemaBuilder | None = None):
        self.context = context or AnalysisContext()
        self.builder = builder or OperationSchemaBuilder(self.context)
        self._built: dict[str, tuple[str, dict[str, OperationDescriptor]]] = {}

    def generate(self, units: list[SourceUnit]) -> PathOperations:
        paths: PathOperations = {}
        for unit in units:
            try:
                path, operations = self._cached(unit)
            except Exception as e:
                logger.error("Skipping route %s: %s", unit.path, e, extra={"route": unit.path})
                continue
            if operations:
                paths.setdefault(path, {}).update(operations)
        return paths

    def generate_files(self, files: list[Path], root: Path | None = None) -> PathOperations:
        """Load each route file as a source unit and generate its operations."""
        units = []
        for file_path in files:
            try:
                units.append(load_source_unit(file_path, self.context, root=root))
            except (OSError, SyntaxError, ValueError) as e:
                logger.error("Skipping %s: %s", file_path, e, extra={"file": str(file_path)})
        return self.generate(units)

    def build_unit(self, unit: SourceUnit) -> dict[str, OperationDescriptor]:
        operations = {}
        for method, declaration in unit.operations.items():
            try:
                fragments = self.builder.fragments(unit.path, declaration)
                operations[method.lower()] = merge(
                    fragments[SchemaSource.OVERRIDE],
                    fragments[SchemaSource.EXPLICIT_VALIDATION],
                    fragments[SchemaSource.INFERRED],
                    fragments["base"],
                )
            except (ValidationError, ValueError, TypeError, KeyError) as e:
                logger.error(
                    "Skipping %s %s: %s",
                    method,
                    unit.path,
                    e,
                    extra={"route": unit.path, "method": method},
                )
        return operations

    def invalidate(self, unit_path: Path | str) -> None:
        """Forget a changed file's parsed source and every unit built from it.

        Route units importing the file, directly or transitively, are rebuilt too.
        """
        stale = {self._key_for(unit_path), *self.context.dependents(unit_path)}
        for key in stale:
            if self._built.pop(key, None) is not None:
                logger.debug("Dropped cached operations for %s", key)
        self.context.invalidate(unit_path)
        self.builder.reset()

    def _cached(self, unit: SourceUnit) -> tuple[str, dict[str, OperationDescriptor]]:
        key = self._key_for(unit.file) if unit.file else unit.path
        if key not in self._built:
            self._built[key] = (format_path(unit.path), self.build_unit(unit))
        return self._built[key]

    def _key_for(self, unit_path: Path | str) -> str:
        if isinstance(unit_path, Path) or Path(str(unit_path)).exists():
            return str(Path(unit_path).resolve())
        return str(unit_path)
