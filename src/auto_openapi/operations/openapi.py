"""OpenAPI document rendering and parsing."""

import json
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import OperationDescriptor

OPENAPI_VERSION = "3.0.3"
METHODS = ("get", "post", "put", "delete", "patch")

PathOperations = dict[str, dict[str, OperationDescriptor]]


def openapi_document(paths: PathOperations, title: str = "API", version: str = "1.0.0") -> dict:
    """Render PathOperations as an OpenAPI 3.0.3 document."""
    return {
        "openapi": OPENAPI_VERSION,
        "info": {"title": title, "version": version},
        "paths": {
            path: {method: op.to_openapi() for method, op in operations.items()}
            for path, operations in sorted(paths.items())
        },
    }


def load_document(file_path: Path) -> dict:
    """Load an OpenAPI document from YAML or JSON."""
    text = file_path.read_text(encoding="utf-8")

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        # Not YAML; JSON with tabs or other YAML-hostile content
        data = json.loads(text)

    if not isinstance(data, dict):
        raise ValueError(f"{file_path.name}: expected a mapping at the top level")
    return data


def parse_openapi(file_path: Path) -> PathOperations:
    """Parse an OpenAPI file into PathOperations."""
    doc = load_document(file_path)
    paths: PathOperations = {}
    for path, methods in (doc.get("paths") or {}).items():
        for method, operation in (methods or {}).items():
            if method.lower() not in METHODS:
                continue
            paths.setdefault(path, {})[method.lower()] = OperationDescriptor.from_openapi(operation or {})
    return paths


def validate_document(file_path: Path) -> dict[str, str]:
    """Check a generated document.

    Returns:
        Dict mapping ``"METHOD path"`` (or the file name) to an error message.
        Empty dict means the document is valid.
    """
    errors = {}
    try:
        doc = load_document(file_path)
    except (OSError, ValueError) as e:
        return {file_path.name: str(e)}

    if "openapi" not in doc:
        errors[file_path.name] = "missing 'openapi' version field"
    paths = doc.get("paths")
    if not isinstance(paths, dict):
        errors[file_path.name] = "missing 'paths' mapping"
        return errors

    for path, methods in paths.items():
        if not path.startswith("/"):
            errors[path] = "path must start with '/'"
        for method, operation in (methods or {}).items():
            if method.lower() not in METHODS:
                continue
            key = f"{method.upper()} {path}"
            if not isinstance(operation, dict):
                errors[key] = "operation must be a mapping"
                continue
            if not operation.get("responses"):
                errors[key] = "operation has no responses"
                continue
            try:
                OperationDescriptor.from_openapi(operation)
            except (ValidationError, ValueError, TypeError) as e:
                errors[key] = str(e)
    return errors
