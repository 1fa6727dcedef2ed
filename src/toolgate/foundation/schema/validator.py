"""Fail-fast argument validation against a ParameterSchema.

The first violated constraint ends validation and is reported. Errors are not
collected. Evaluation order is fixed:

    1. presence     required fields, in declaration order
    2. closed       unknown fields when the schema is closed
    3. per field    type, then range, length, pattern, enum

No coercion is ever attempted: `True` is not an integer, `1.0` is not an
integer, and `"1"` is not a number.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar

from toolgate.foundation.errors import JsonDict

from .schema import FieldSpec, FieldType, ParameterSchema, compile_pattern


@dataclass(slots=True, frozen=True)
class ValidationResult:
    """Outcome of validating one argument mapping.

    On failure `field` holds a path ("filter.tags[2]", "$" for the root) and
    `constraint` names the violated check ("required", "type", "minimum", ...).
    """

    ok: bool
    field: str | None = None
    constraint: str | None = None
    message: str = ""

    PASSED: ClassVar[ValidationResult]

    @classmethod
    def fail(cls, field: str, constraint: str, message: str) -> ValidationResult:
        return cls(False, field, constraint, message)

    def __bool__(self) -> bool:
        return self.ok

    def to_details(self) -> JsonDict:
        return {"field": self.field, "constraint": self.constraint}


ValidationResult.PASSED = ValidationResult(True)


def _type_matches(kind: FieldType, value: object) -> bool:
    match kind:
        case FieldType.ANY:
            return True
        case FieldType.STRING:
            return isinstance(value, str)
        case FieldType.BOOLEAN:
            return isinstance(value, bool)
        case FieldType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        case FieldType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        case FieldType.ARRAY:
            return isinstance(value, (list, tuple))
        case FieldType.OBJECT:
            return isinstance(value, Mapping)
        case FieldType.NULL:
            return value is None
    return False


def _type_name(value: object) -> str:
    match value:
        case None: return "null"
        case bool(): return "boolean"
        case int(): return "integer"
        case float(): return "number"
        case str(): return "string"
        case list() | tuple(): return "array"
        case Mapping(): return "object"
        case _: return type(value).__name__


def _same_value(a: object, b: object) -> bool:
    """Equality without bool/int conflation (True != 1 here)."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    return a == b


class SchemaValidator:
    """Validates argument mappings against parameter schemas.

    Stateless apart from the shared compiled-pattern cache, so one instance
    may be shared by every concurrent caller.

    Example:
        >>> schema = ParameterSchema.of(text=required(FieldSpec(type="string")))
        >>> SchemaValidator().validate(schema, {}).constraint
        'required'
    """

    __slots__ = ()

    def validate(self, schema: ParameterSchema, arguments: object) -> ValidationResult:
        if not isinstance(arguments, Mapping):
            return ValidationResult.fail("$", "type", f"arguments must be an object, got {_type_name(arguments)}")
        return self._validate_object(schema, arguments, "")

    def _validate_object(self, schema: ParameterSchema, arguments: Mapping[str, object], prefix: str) -> ValidationResult:
        for name in schema.required:
            if name not in arguments:
                return ValidationResult.fail(f"{prefix}{name}", "required", f"missing required field '{prefix}{name}'")

        if not schema.additional_fields:
            for name in arguments:
                if name not in schema.fields:
                    return ValidationResult.fail(f"{prefix}{name}", "additional_fields", f"unknown field '{prefix}{name}'")

        for name, spec in schema.fields.items():
            if name in arguments:
                if not (result := self._validate_value(spec, arguments[name], f"{prefix}{name}")):
                    return result
        return ValidationResult.PASSED

    def _validate_value(self, spec: FieldSpec, value: object, path: str) -> ValidationResult:
        if not _type_matches(spec.type, value):
            return ValidationResult.fail(path, "type", f"'{path}' must be {spec.type}, got {_type_name(value)}")

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if isinstance(value, float) and math.isnan(value) and spec.type is FieldType.NUMBER:
                return ValidationResult.fail(path, "type", f"'{path}' must be a number, got NaN")
            if spec.minimum is not None and value < spec.minimum:
                return ValidationResult.fail(path, "minimum", f"'{path}' must be >= {spec.minimum}, got {value}")
            if spec.maximum is not None and value > spec.maximum:
                return ValidationResult.fail(path, "maximum", f"'{path}' must be <= {spec.maximum}, got {value}")
            if spec.exclusive_minimum is not None and value <= spec.exclusive_minimum:
                return ValidationResult.fail(path, "exclusive_minimum", f"'{path}' must be > {spec.exclusive_minimum}, got {value}")
            if spec.exclusive_maximum is not None and value >= spec.exclusive_maximum:
                return ValidationResult.fail(path, "exclusive_maximum", f"'{path}' must be < {spec.exclusive_maximum}, got {value}")

        if isinstance(value, (str, list, tuple)):
            if spec.min_length is not None and len(value) < spec.min_length:
                return ValidationResult.fail(path, "min_length", f"'{path}' length must be >= {spec.min_length}, got {len(value)}")
            if spec.max_length is not None and len(value) > spec.max_length:
                return ValidationResult.fail(path, "max_length", f"'{path}' length must be <= {spec.max_length}, got {len(value)}")

        if spec.pattern is not None and isinstance(value, str) and not compile_pattern(spec.pattern).search(value):
            return ValidationResult.fail(path, "pattern", f"'{path}' does not match pattern {spec.pattern!r}")

        if spec.enum is not None and not any(_same_value(value, allowed) for allowed in spec.enum):
            allowed = ", ".join(repr(a) for a in spec.enum)
            return ValidationResult.fail(path, "enum", f"'{path}' must be one of {allowed}, got {value!r}")

        if spec.items is not None and isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if not (result := self._validate_value(spec.items, item, f"{path}[{i}]")):
                    return result

        if spec.properties is not None and isinstance(value, Mapping):
            return self._validate_object(spec.properties, value, f"{path}.")

        return ValidationResult.PASSED


_default = SchemaValidator()


def validate(schema: ParameterSchema, arguments: object) -> ValidationResult:
    """Validate with the shared default validator."""
    return _default.validate(schema, arguments)
