import copy

from auto_openapi.operations.merge import (
    cleanup,
    destructive_merge,
    merge,
    merge_fragments,
    smart_merge,
)
from auto_openapi.schema.nodes import EnumNode

BASE = {"tags": ["Default"], "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}]}
INFERRED = {
    "summary": "Inferred summary",
    "requestBody": {
        "required": True,
        "content": {"application/json": {"schema": {"type": "object", "properties": {"name": {}}}}},
    },
    "responses": {"200": {"description": "OK"}},
}
EXPLICIT = {
    "requestBody": {
        "required": True,
        "content": {
            "application/json": {
                "schema": {
                    "type": "object",
                    "properties": {"name": {"type": "string"}},
                    "required": ["name"],
                }
            }
        },
    },
}


class TestSmartMerge:
    def test_priority_order(self):
        merged = smart_merge({"summary": "high"}, {"summary": "low", "description": "d"})
        assert merged == {"summary": "high", "description": "d"}

    def test_objects_merge_key_by_key(self):
        merged = smart_merge({"a": {"x": 1}}, {"a": {"y": 2}})
        assert merged == {"a": {"x": 1, "y": 2}}

    def test_arrays_replace(self):
        merged = smart_merge({"tags": ["b"]}, {"tags": ["a", "c"]})
        assert merged == {"tags": ["b"]}

    def test_none_falls_through(self):
        merged = smart_merge({"summary": None}, {"summary": "kept"})
        assert merged == {"summary": "kept"}


class TestDestructiveMerge:
    def test_none_deletes(self):
        assert destructive_merge({"a": 1, "b": 2}, {"a": None}) == {"b": 2}

    def test_nested_delete(self):
        target = {"responses": {"200": {"description": "OK"}, "404": {"description": "Not Found"}}}
        merged = destructive_merge(target, {"responses": {"404": None}})
        assert merged == {"responses": {"200": {"description": "OK"}}}


class TestCleanup:
    def test_dedupes_primitive_arrays_keeping_first(self):
        assert cleanup({"tags": ["b", "a", "b"], "required": ["x", "x"]}) == {"tags": ["b", "a"], "required": ["x"]}

    def test_bool_and_int_are_distinct(self):
        assert cleanup({"enum": [1, True, 1]}) == {"enum": [1, True]}

    def test_dedupes_parameters_by_name_and_location(self):
        params = [{"name": "id", "in": "path"}, {"name": "id", "in": "query"}, {"name": "id", "in": "path"}]
        assert cleanup({"parameters": params}) == {"parameters": params[:2]}

    def test_strips_none_fields_but_keeps_none_items(self):
        assert cleanup({"a": None, "b": [None, 1, None], "c": {"d": None}}) == {"b": [None, 1], "c": {}}


class TestMergeFragments:
    def test_explicit_beats_inferred(self):
        merged = merge_fragments(None, EXPLICIT, INFERRED, BASE)
        schema = merged["requestBody"]["content"]["application/json"]["schema"]
        assert schema["properties"]["name"] == {"type": "string"}
        assert schema["required"] == ["name"]
        assert merged["summary"] == "Inferred summary"
        assert merged["tags"] == ["Default"]

    def test_override_deletes_and_replaces(self):
        override = {"requestBody": None, "tags": ["users"]}
        merged = merge_fragments(override, EXPLICIT, INFERRED, BASE)
        assert "requestBody" not in merged
        assert merged["tags"] == ["users"]

    def test_override_array_replaces_wholesale(self):
        override = {"parameters": [{"name": "x", "in": "query"}]}
        merged = merge_fragments(override, None, None, BASE)
        assert merged["parameters"] == [{"name": "x", "in": "query"}]

    def test_idempotent(self):
        override = {"summary": "Override", "responses": {"200": None}}
        once = merge_fragments(override, EXPLICIT, INFERRED, BASE)
        twice = merge_fragments(override, EXPLICIT, INFERRED, once)
        assert once == twice

    def test_inputs_not_mutated(self):
        snapshot = [copy.deepcopy(x) for x in (EXPLICIT, INFERRED, BASE)]
        override = {"requestBody": {"required": False}}
        merge_fragments(override, EXPLICIT, INFERRED, BASE)
        assert [EXPLICIT, INFERRED, BASE] == snapshot
        assert override == {"requestBody": {"required": False}}

    def test_merge_returns_descriptor(self):
        descriptor = merge({"summary": "Get"}, None, INFERRED, BASE)
        assert descriptor.summary == "Get"
        assert descriptor.parameters[0].name == "id"
        assert descriptor.request_body.required is True

    def test_nullable_enum_keeps_null(self):
        explicit = {"requestBody": {"content": {"application/json": {"schema": {"enum": ["a", None]}}}}}
        descriptor = merge(None, explicit, None, None)
        assert descriptor.request_body.schema_node == EnumNode(values=["a", None])
        assert descriptor.to_openapi()["requestBody"]["content"]["application/json"]["schema"] == {"enum": ["a", None]}
