"""Parameter schemas and fail-fast argument validation."""

from .schema import FieldSpec, FieldType, ParameterSchema, compile_pattern, required
from .validator import SchemaValidator, ValidationResult, validate

__all__ = [
    "FieldSpec", "FieldType", "ParameterSchema", "required", "compile_pattern",
    "SchemaValidator", "ValidationResult", "validate",
]
