"""Declarative parameter schemas for tool contracts.

A ParameterSchema lists named fields (in declaration order), which of them are
required, and whether unknown fields are tolerated. Each FieldSpec declares a
primitive type plus optional range, length, pattern and enum constraints.

Schemas convert to and from the JSON-Schema subset MCP clients expect:

    >>> schema = ParameterSchema.from_json_schema({
    ...     "type": "object",
    ...     "properties": {"text": {"type": "string", "maxLength": 200}},
    ...     "required": ["text"],
    ... })
    >>> schema.to_json_schema()["required"]
    ['text']
"""

from __future__ import annotations

import re
from enum import StrEnum
from functools import lru_cache
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, model_validator

from toolgate.foundation.errors import JsonDict


class FieldType(StrEnum):
    """Primitive argument types. No coercion between them is ever performed."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"
    ANY = "any"


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile and cache a field pattern."""
    return re.compile(pattern)


class FieldSpec(BaseModel):
    """Constraints for one argument.

    `min_length`/`max_length` apply to strings and arrays. `items` describes
    array elements; `properties` describes a nested object.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: FieldType = FieldType.ANY
    description: str = ""
    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: float | None = None
    exclusive_maximum: float | None = None
    min_length: NonNegativeInt | None = None
    max_length: NonNegativeInt | None = None
    pattern: str | None = None
    enum: tuple[Any, ...] | None = None
    items: FieldSpec | None = None
    properties: ParameterSchema | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> Self:
        if self.minimum is not None and self.maximum is not None and self.minimum > self.maximum:
            raise ValueError(f"minimum {self.minimum} exceeds maximum {self.maximum}")
        if self.min_length is not None and self.max_length is not None and self.min_length > self.max_length:
            raise ValueError(f"min_length {self.min_length} exceeds max_length {self.max_length}")
        if self.pattern is not None:
            try:
                compile_pattern(self.pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern {self.pattern!r}: {e}") from None
        if self.enum is not None and not self.enum:
            raise ValueError("enum must list at least one value")
        return self

    # ─────────────────────────────────────────────────────────────────
    # JSON Schema interop
    # ─────────────────────────────────────────────────────────────────

    @classmethod
    def from_json_schema(cls, data: JsonDict) -> FieldSpec:
        kind = data.get("type", FieldType.ANY.value)
        return cls(
            type=FieldType(kind),
            description=data.get("description", ""),
            minimum=data.get("minimum"),
            maximum=data.get("maximum"),
            exclusive_minimum=data.get("exclusiveMinimum"),
            exclusive_maximum=data.get("exclusiveMaximum"),
            min_length=data.get("minLength", data.get("minItems")),
            max_length=data.get("maxLength", data.get("maxItems")),
            pattern=data.get("pattern"),
            enum=tuple(data["enum"]) if "enum" in data else None,
            items=cls.from_json_schema(data["items"]) if "items" in data else None,
            properties=ParameterSchema.from_json_schema(data) if kind == "object" and "properties" in data else None,
        )

    def to_json_schema(self) -> JsonDict:
        out: JsonDict = {} if self.type is FieldType.ANY else {"type": self.type.value}
        if self.description:
            out["description"] = self.description
        is_array = self.type is FieldType.ARRAY
        for key, value in (
            ("minimum", self.minimum),
            ("maximum", self.maximum),
            ("exclusiveMinimum", self.exclusive_minimum),
            ("exclusiveMaximum", self.exclusive_maximum),
            ("minItems" if is_array else "minLength", self.min_length),
            ("maxItems" if is_array else "maxLength", self.max_length),
            ("pattern", self.pattern),
        ):
            if value is not None:
                out[key] = value
        if self.enum is not None:
            out["enum"] = list(self.enum)
        if self.items is not None:
            out["items"] = self.items.to_json_schema()
        if self.properties is not None:
            out.update(self.properties.to_json_schema())
        return out


class ParameterSchema(BaseModel):
    """Structural description of a tool's accepted arguments.

    Attributes:
        fields: Field name -> constraints, in declaration order
        required: Names that must be present
        additional_fields: Accept names not listed in `fields` (default closed)
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid",
        json_schema_extra={"title": "Parameter Schema"},
    )

    fields: dict[str, FieldSpec] = Field(default_factory=dict)
    required: tuple[str, ...] = ()
    additional_fields: bool = False

    @model_validator(mode="after")
    def _check_required(self) -> Self:
        if unknown := [r for r in self.required if r not in self.fields]:
            raise ValueError(f"required names not declared in fields: {', '.join(unknown)}")
        if len(set(self.required)) != len(self.required):
            raise ValueError("required names must be unique")
        return self

    @classmethod
    def empty(cls) -> ParameterSchema:
        """Schema accepting no arguments at all."""
        return _EMPTY

    @classmethod
    def of(cls, *, additional_fields: bool = False, **fields: FieldSpec | _Required) -> ParameterSchema:
        """Shorthand: `ParameterSchema.of(text=required(FieldSpec(type="string")))`."""
        specs: dict[str, FieldSpec] = {}
        req: list[str] = []
        for name, spec in fields.items():
            if isinstance(spec, _Required):
                req.append(name)
                spec = spec.spec
            specs[name] = spec  # type: ignore[assignment]
        return cls(fields=specs, required=tuple(req), additional_fields=additional_fields)

    @classmethod
    def from_json_schema(cls, data: JsonDict) -> ParameterSchema:
        """Build from a JSON-Schema object description.

        An absent `additionalProperties` means closed, matching the core default.
        """
        if data.get("type", "object") != "object":
            raise ValueError(f"tool input schema must describe an object, got {data.get('type')!r}")
        return cls(
            fields={k: FieldSpec.from_json_schema(v) for k, v in data.get("properties", {}).items()},
            required=tuple(data.get("required", ())),
            additional_fields=bool(data.get("additionalProperties", False)),
        )

    def to_json_schema(self) -> JsonDict:
        out: JsonDict = {
            "type": "object",
            "properties": {k: v.to_json_schema() for k, v in self.fields.items()},
            "additionalProperties": self.additional_fields,
        }
        if self.required:
            out["required"] = list(self.required)
        return out


class _Required:
    """Marker wrapper used by ParameterSchema.of()."""

    __slots__ = ("spec",)

    def __init__(self, spec: FieldSpec) -> None:
        self.spec = spec


def required(spec: FieldSpec) -> _Required:
    """Mark a field as required inside ParameterSchema.of()."""
    return _Required(spec)


FieldSpec.model_rebuild()
ParameterSchema.model_rebuild()

_EMPTY = ParameterSchema()
