import logging
from pathlib import Path

from auto_openapi.analysis.context import AnalysisContext
from auto_openapi.operations.routes import (
    extract_path_params,
    format_path,
    import_route_config,
    load_source_unit,
    route_from_file,
    status_description,
)

ROUTES = Path(__file__).parent / "fixtures" / "routes"


class TestFormatPath:
    def test_simple_param(self):
        assert format_path("/api/users/[id]") == "/api/users/{id}"

    def test_rest_optional_and_matcher(self):
        assert format_path("/files/[...path]") == "/files/{path}"
        assert format_path("/docs/[[...slug]]") == "/docs/{slug}"
        assert format_path("/[[lang]]/about") == "/{lang}/about"
        assert format_path("/items/[id=int]") == "/items/{id}"

    def test_static_path_unchanged(self):
        assert format_path("/health") == "/health"


class TestExtractPathParams:
    def test_matchers_choose_types(self):
        params = extract_path_params("/shops/[shop=int]/items/[price=number]/[slug]")
        assert params == [
            {"name": "shop", "in": "path", "required": True, "schema": {"type": "integer", "format": "int64"}},
            {"name": "price", "in": "path", "required": True, "schema": {"type": "number"}},
            {"name": "slug", "in": "path", "required": True, "schema": {"type": "string"}},
        ]

    def test_no_params(self):
        assert extract_path_params("/health") == []


class TestStatusDescription:
    def test_known_and_fallback(self):
        assert status_description("201") == "Created"
        assert status_description("418") == "Success"


class TestRouteFromFile:
    def test_server_file_maps_to_directory(self):
        file_path = ROUTES / "api" / "users" / "[id]" / "server.py"
        assert route_from_file(file_path, ROUTES) == "/api/users/[id]"

    def test_plain_module_keeps_stem(self, tmp_path):
        (tmp_path / "health.py").write_text("def GET(request): ...\n")
        assert route_from_file(tmp_path / "health.py", tmp_path) == "/health"


class TestLoadSourceUnit:
    def test_handlers_only(self):
        context = AnalysisContext(ROUTES)
        unit = load_source_unit(ROUTES / "api" / "users" / "[id]" / "server.py", context)
        assert unit.path == "/api/users/[id]"
        assert list(unit.operations) == ["GET", "PUT"]
        assert unit.operations["GET"].static_type.node.name == "GET"
        assert unit.operations["GET"].override_schema is None

    def test_route_config_is_read(self):
        context = AnalysisContext(ROUTES)
        unit = load_source_unit(ROUTES / "api" / "users_override" / "server.py", context)
        post = unit.operations["POST"]
        assert post.override_schema["summary"] == "Create a user"
        assert "input" in post.explicit_schema

    def test_extra_overrides_by_method(self):
        context = AnalysisContext(ROUTES)
        unit = load_source_unit(
            ROUTES / "api" / "users_basic" / "server.py",
            context,
            extra_overrides={"post": {"summary": "From config"}, "delete": {"summary": "Config only"}},
        )
        assert unit.operations["POST"].override_schema == {"summary": "From config"}
        assert unit.operations["DELETE"].static_type is None

    def test_method_alias_assignment(self, tmp_path):
        (tmp_path / "server.py").write_text("def create(request):\n    pass\n\nPOST = create\n")
        unit = load_source_unit(tmp_path / "server.py", AnalysisContext(tmp_path))
        assert unit.operations["POST"].static_type.node.name == "create"


class TestImportRouteConfig:
    def test_import_failure_degrades(self, tmp_path, caplog):
        broken = tmp_path / "server.py"
        broken.write_text("import not_a_real_module_xyz\n\ndef GET(request):\n    pass\n")
        with caplog.at_level(logging.WARNING):
            assert import_route_config(broken, tmp_path) == {}
        assert "inference only" in caplog.text

        unit = load_source_unit(broken, AnalysisContext(tmp_path))
        assert list(unit.operations) == ["GET"]

    def test_non_dict_config_ignored(self, tmp_path):
        (tmp_path / "server.py").write_text("route_config = [1, 2]\n")
        assert import_route_config(tmp_path / "server.py", tmp_path) == {}
