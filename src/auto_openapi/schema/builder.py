"""Lightweight schema builder for route validation configs.

Each builder object exposes a ``kind`` discriminator that the external schema
adapter walks directly:

    from auto_openapi.schema import builder as s

    CreateUser = s.object({
        "email": s.string(format="email"),
        "nickname": s.string(max_length=32).optional(),
    })
"""

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class SchemaField:
    """A single builder node (string / number / integer / boolean / array / object / optional)."""

    kind: str
    description: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    format: str | None = None
    pattern: str | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    min_items: int | None = None
    max_items: int | None = None
    additional_properties: bool | None = None
    items: "SchemaField | None" = None
    shape: dict[str, "SchemaField"] | None = None
    inner: "SchemaField | None" = None

    def describe(self, text: str) -> "SchemaField":
        return replace(self, description=text)

    def optional(self) -> "SchemaField":
        return SchemaField(kind="optional", inner=self)


def string(
    *,
    min_length: int | None = None,
    max_length: int | None = None,
    format: str | None = None,
    pattern: str | None = None,
    description: str | None = None,
) -> SchemaField:
    return SchemaField(
        kind="string",
        min_length=min_length,
        max_length=max_length,
        format=format,
        pattern=pattern,
        description=description,
    )


def number(
    *,
    minimum: int | float | None = None,
    maximum: int | float | None = None,
    description: str | None = None,
) -> SchemaField:
    return SchemaField(kind="number", minimum=minimum, maximum=maximum, description=description)


def integer(
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    description: str | None = None,
) -> SchemaField:
    return SchemaField(kind="integer", minimum=minimum, maximum=maximum, description=description)


def boolean(*, description: str | None = None) -> SchemaField:
    return SchemaField(kind="boolean", description=description)


def array(
    items: SchemaField,
    *,
    min_items: int | None = None,
    max_items: int | None = None,
    description: str | None = None,
) -> SchemaField:
    return SchemaField(kind="array", items=items, min_items=min_items, max_items=max_items, description=description)


def object(
    shape: dict[str, SchemaField],
    *,
    strict: bool = False,
    description: str | None = None,
) -> SchemaField:
    """``strict=True`` rejects keys that are not in ``shape``."""
    return SchemaField(
        kind="object",
        shape=dict(shape),
        additional_properties=False if strict else None,
        description=description,
    )


def optional(inner: SchemaField) -> SchemaField:
    return SchemaField(kind="optional", inner=inner)
