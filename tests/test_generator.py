import logging
from pathlib import Path
from unittest.mock import patch

from auto_openapi.analysis.context import AnalysisContext
from auto_openapi.generator import SchemaGenerator
from auto_openapi.operations.builder import OperationSchemaBuilder
from auto_openapi.operations.models import ParameterLocation
from auto_openapi.operations.openapi import openapi_document
from auto_openapi.operations.routes import OperationDeclaration, SourceUnit
from auto_openapi.schema import builder as s

ROUTES = Path(__file__).parent / "fixtures" / "routes"


def _generate(*relative: str):
    generator = SchemaGenerator(AnalysisContext(ROUTES))
    return generator.generate_files([ROUTES / r for r in relative], root=ROUTES), generator


class TestGenerateFixtures:
    def test_path_templating_and_methods(self):
        paths, _ = _generate("api/users/[id]/server.py")
        assert list(paths) == ["/api/users/{id}"]
        assert sorted(paths["/api/users/{id}"]) == ["get", "put"]

    def test_base_defaults_fill_in(self):
        paths, _ = _generate("api/users/[id]/server.py")
        put = paths["/api/users/{id}"]["put"]
        assert put.tags == ["Default"]
        assert [p.name for p in put.parameters] == ["id"]
        assert put.parameters[0].location == ParameterLocation.PATH
        assert sorted(put.responses) == ["200", "202"]
        assert put.responses["202"].description == "Accepted"

    def test_inferred_docstring_and_errors(self):
        paths, _ = _generate("api/users/[id]/server.py")
        get = paths["/api/users/{id}"]["get"]
        assert get.summary == "Fetch one user."
        assert get.tags == ["users"]
        assert get.responses["404"].description == "Not Found"
        assert get.request_body is None

    def test_destructured_body(self):
        paths, _ = _generate("api/users_basic/server.py")
        post = paths["/api/users_basic"]["post"]
        assert post.request_body.schema_node.required == ["name"]
        assert list(post.responses) == ["200"]

    def test_override_and_explicit_sources(self):
        paths, _ = _generate("api/users_override/server.py")
        post = paths["/api/users_override"]["post"]
        assert post.summary == "Create a user"
        assert post.tags == ["users"]
        header = post.parameters_in(ParameterLocation.HEADER)[0]
        assert header.name == "x-api-key"
        assert header.required is True
        assert post.request_body.schema_node.required == ["name", "age"]
        assert list(post.responses) == ["201"]
        assert post.responses["201"].body_schema.required == ["name", "age"]

    def test_document(self):
        paths, _ = _generate("api/users/[id]/server.py", "api/users_basic/server.py")
        doc = openapi_document(paths, title="Users", version="2.0.0")
        assert doc["openapi"] == "3.0.3"
        assert doc["info"] == {"title": "Users", "version": "2.0.0"}
        assert set(doc["paths"]) == {"/api/users/{id}", "/api/users_basic"}


class TestGeneratorBehaviour:
    def test_failing_operation_is_skipped(self, caplog):
        unit = SourceUnit(
            path="/things",
            operations={
                "GET": OperationDeclaration(override_schema={"summary": "ok"}),
                "POST": OperationDeclaration(override_schema={"parameters": [{"name": "x", "in": "body"}]}),
            },
        )
        with caplog.at_level(logging.ERROR):
            paths = SchemaGenerator().generate([unit])
        assert list(paths["/things"]) == ["get"]
        assert any(getattr(r, "method", None) == "POST" for r in caplog.records)

    def test_unreadable_file_is_skipped(self, tmp_path):
        (tmp_path / "server.py").write_text("def GET(:\n")
        generator = SchemaGenerator(AnalysisContext(tmp_path))
        assert generator.generate_files([tmp_path / "server.py"], root=tmp_path) == {}

    def test_units_are_cached_until_invalidated(self, tmp_path):
        route = tmp_path / "server.py"
        route.write_text("def GET(request):\n    return json({'a': 1})\n")
        generator = SchemaGenerator(AnalysisContext(tmp_path))

        with patch.object(generator, "build_unit", wraps=generator.build_unit) as build:
            generator.generate_files([route], root=tmp_path)
            generator.generate_files([route], root=tmp_path)
            assert build.call_count == 1

            route.write_text("def GET(request):\n    return json({'b': 1})\n")
            generator.invalidate(route)
            paths = generator.generate_files([route], root=tmp_path)
            assert build.call_count == 2

        schema = paths["/"]["get"].responses["200"].body_schema
        assert list(schema.properties) == ["b"]

    def test_explicit_output_without_entries_falls_back_to_inferred_statuses(self):
        context = AnalysisContext()
        module = context.load_source("def POST(request):\n    return json({'id': 1}, 201)\n", "inline")
        handler = context.find_handlers(module)["POST"]
        unit = SourceUnit(
            path="/inline",
            operations={"POST": OperationDeclaration(
                static_type=handler,
                explicit_schema={"input": {"query": s.object({"page": s.integer()})}, "output": {}},
            )},
        )
        post = SchemaGenerator(context).generate([unit])["/inline"]["post"]
        assert list(post.responses) == ["201"]
        assert post.responses["201"].body_schema.properties["id"].is_integer is True
        query = post.parameters_in(ParameterLocation.QUERY)[0]
        assert (query.name, query.required) == ("page", True)

    def test_override_group_keeps_path_params(self):
        override = {"$query": s.object({"q": s.string().optional()})}
        fragment = OperationSchemaBuilder(AnalysisContext()).override(override)
        assert fragment == {"$parameters": {"query": {"q": {"required": False, "schema": {"type": "string"}}}}}

        unit = SourceUnit(path="/users/[id]", operations={"GET": OperationDeclaration(override_schema=override)})
        get = SchemaGenerator().generate([unit])["/users/{id}"]["get"]
        assert {(p.name, p.location.value) for p in get.parameters} == {("id", "path"), ("q", "query")}

    def test_invalidating_an_imported_module_rebuilds_its_routes(self, tmp_path):
        catalog = tmp_path / "catalog.py"
        catalog.write_text("from typing import TypedDict\n\n\nclass Item(TypedDict):\n    name: str\n")
        route = tmp_path / "items" / "server.py"
        route.parent.mkdir()
        route.write_text("from catalog import Item\n\n\ndef GET(request, item: Item):\n    return json(item)\n")
        generator = SchemaGenerator(AnalysisContext(tmp_path))

        paths = generator.generate_files([route], root=tmp_path)
        assert list(paths["/items"]["get"].responses["200"].body_schema.properties) == ["name"]
        assert generator.context.dependents(catalog) == {str(route.resolve())}

        catalog.write_text("from typing import TypedDict\n\n\nclass Item(TypedDict):\n    name: str\n    price: float\n")
        generator.invalidate(catalog)
        paths = generator.generate_files([route], root=tmp_path)
        assert list(paths["/items"]["get"].responses["200"].body_schema.properties) == ["name", "price"]
