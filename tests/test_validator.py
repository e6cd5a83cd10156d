from auto_openapi.schema.nodes import (
    ArrayNode,
    BooleanNode,
    NumberNode,
    ObjectNode,
    ReferenceNode,
    StringNode,
)
from auto_openapi.validation.validator import (
    coerce_scalar,
    compile_validator,
    error_path,
    validate_instance,
    validate_values,
)

USER = ObjectNode(
    properties={
        "name": StringNode(),
        "age": NumberNode(is_integer=True),
        "tags": ArrayNode(items=StringNode()),
    },
    required=["name", "age"],
)


class TestValidateInstance:
    def test_valid(self):
        assert validate_instance({"name": "Ada", "age": 36}, USER) == []

    def test_missing_required_property_path(self):
        issues = validate_instance({"name": "Ada"}, USER)
        assert issues == [{"path": "age", "keyword": "required", "message": "'age' is a required property"}]

    def test_nested_path(self):
        issues = validate_instance({"name": "Ada", "age": 1, "tags": ["ok", 3]}, USER)
        assert issues[0]["path"] == "tags.1"
        assert issues[0]["keyword"] == "type"

    def test_root_path(self):
        issues = validate_instance("nope", USER)
        assert issues[0]["path"] == "root"

    def test_format_is_checked(self):
        issues = validate_instance("not-an-email", StringNode(format="email"))
        assert issues and issues[0]["keyword"] == "format"

    def test_external_refs_accept_anything(self):
        node = ArrayNode(items=ReferenceNode(target="#/components/schemas/Tree"))
        assert validate_instance([{"any": "thing"}], node) == []

    def test_precompiled_validator(self):
        validator = compile_validator(USER)
        assert validate_instance({"name": "x", "age": 2}, validator) == []


class TestValidateValues:
    def test_missing_required(self):
        issues = validate_values({}, {"page": StringNode()}, {"page"})
        assert issues == [{"path": "page", "keyword": "required", "message": "'page' is a required property"}]

    def test_coerces_numbers_and_booleans(self):
        schemas = {"id": NumberNode(is_integer=True), "dry": BooleanNode()}
        assert validate_values({"id": "42", "dry": "true"}, schemas, set()) == []

    def test_invalid_number(self):
        issues = validate_values({"id": "abc"}, {"id": NumberNode(is_integer=True)}, set())
        assert issues[0]["path"] == "id"

    def test_undeclared_values_ignored(self):
        assert validate_values({"extra": "x"}, {}, set()) == []


class TestHelpers:
    def test_error_path(self):
        assert error_path([]) == "root"
        assert error_path(["user", 0, "name"]) == "user.0.name"

    def test_coerce_scalar(self):
        assert coerce_scalar("1.5", NumberNode()) == 1.5
        assert coerce_scalar("x", NumberNode()) == "x"
        assert coerce_scalar("7", StringNode()) == "7"
