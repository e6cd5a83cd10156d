"""CLI entry point for auto-openapi."""

import json
import logging
from pathlib import Path

import click
import yaml

from auto_openapi.analysis.context import AnalysisContext
from auto_openapi.config import ProjectConfig
from auto_openapi.generator import SchemaGenerator
from auto_openapi.loggy import setup_logging
from auto_openapi.operations.openapi import openapi_document, validate_document
from auto_openapi.operations.routes import load_source_unit, route_from_file

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """auto-openapi: generate OpenAPI operations from Python route handlers."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


@main.command()
@click.argument("route_files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--routes-root", type=click.Path(exists=True, file_okay=False, path_type=Path), help="Directory route paths are relative to.")
@click.option("-o", "--output", required=True, type=click.Path(path_type=Path), help="Output file for the OpenAPI document.")
@click.option("--format", "fmt", default="yaml", type=click.Choice(["yaml", "json"]), help="Output format.")
@click.option("--title", default=None, help="API title.")
@click.option("--api-version", default=None, help="API version string.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="YAML/JSON project config.")
def generate(
    route_files: tuple[Path, ...],
    routes_root: Path | None,
    output: Path,
    fmt: str,
    title: str | None,
    api_version: str | None,
    config_path: Path | None,
):
    """Generate an OpenAPI document from route modules."""
    config = ProjectConfig.from_file(config_path) if config_path else ProjectConfig()
    root = routes_root or config.routes_root or Path.cwd()

    context = AnalysisContext(root)
    generator = SchemaGenerator(context)
    units = []
    for file_path in route_files:
        try:
            route = route_from_file(file_path, root)
        except ValueError:
            raise click.BadParameter(f"{file_path} is not under routes root {root}", param_hint="ROUTE_FILES")
        try:
            unit = load_source_unit(file_path, context, route=route, root=root, extra_overrides=config.overrides.get(route))
        except (OSError, SyntaxError) as e:
            click.echo(f"  Skipped {file_path}: {e}", err=True)
            continue
        click.echo(f"  {route}: {', '.join(unit.operations) or 'no operations'}")
        units.append(unit)

    paths = generator.generate(units)
    doc = openapi_document(paths, title=title or config.title, version=api_version or config.version)

    if generator.builder.diagnostics:
        click.echo(f"{len(generator.builder.diagnostics)} types fell back to generic schemas (use -v for details).")
        for diagnostic in generator.builder.diagnostics:
            logger.debug("%s: %s", diagnostic.location, diagnostic.reason)

    output.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "json":
        output.write_text(json.dumps(doc, indent=2) + "\n", encoding="utf-8")
    else:
        output.write_text(yaml.safe_dump(doc, sort_keys=False, allow_unicode=True), encoding="utf-8")
    operations = sum(len(methods) for methods in paths.values())
    click.echo(f"Wrote {operations} operations across {len(paths)} paths to {output}")


@main.command()
@click.argument("openapi_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def check(openapi_file: Path):
    """Check a generated OpenAPI document."""
    errors = validate_document(openapi_file)
    if errors:
        click.echo(f"{openapi_file} has {len(errors)} problem(s):")
        for where, message in errors.items():
            click.echo(f"  {where}: {message}")
        raise SystemExit(1)
    click.echo(f"{openapi_file} OK")


if __name__ == "__main__":
    main()
