"""
Settings Schema System.

This module provides typed field declarations for cesto's tunables.

Key features:
- Type-safe field definitions with range and choice constraints
- Coercion of environment variable strings into typed values
- Validation of settings tables read from TOML
"""

from dataclasses import dataclass
from typing import Any


class SchemaError(Exception):
    """Base exception for schema-related errors."""

    pass


class ValidationError(SchemaError):
    """Raised when value validation fails."""

    pass


_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off")


@dataclass
class ConfigField:
    """
    A settings field with type and constraints.

    Attributes:
        type_: The expected type of the field value (int, str or bool)
        default: Default value for the field
        description: Human-readable description
        min: Minimum value (ints only)
        max: Maximum value (ints only)
        choices: List of allowed values (optional)
    """

    type_: type
    default: Any
    description: str = ""
    min: int | None = None
    max: int | None = None
    choices: list[Any] | None = None

    def __post_init__(self):
        if self.type_ not in (int, str, bool):
            raise SchemaError(f"Unsupported field type {self.type_.__name__}")

        if (self.min is not None or self.max is not None) and self.type_ is not int:
            raise SchemaError("min/max constraints are only supported for int fields")

        # Surface a bad declaration at import time rather than on first use.
        try:
            self.validate(self.default)
        except ValidationError as e:
            raise SchemaError(f"Invalid default {self.default!r}: {e}") from e

    def validate(self, value: Any) -> None:
        """
        Validate a value against this field's constraints.

        Raises:
            ValidationError: If validation fails
        """
        # bool is a subclass of int, so it needs an explicit exclusion
        if not isinstance(value, self.type_) or (
            self.type_ is int and isinstance(value, bool)
        ):
            raise ValidationError(
                f"Expected type {self.type_.__name__}, got {type(value).__name__}"
            )

        if self.choices is not None and value not in self.choices:
            raise ValidationError(f"Value {value!r} not in allowed choices {self.choices}")

        if self.min is not None and value < self.min:
            raise ValidationError(f"Value {value} is less than minimum {self.min}")
        if self.max is not None and value > self.max:
            raise ValidationError(f"Value {value} is greater than maximum {self.max}")

    def coerce(self, raw: str) -> Any:
        """
        Convert a string (e.g. from an environment variable) to this field's type.

        Raises:
            ValidationError: If the string cannot be converted or is out of range
        """
        raw = raw.strip()

        if self.type_ is bool:
            lowered = raw.lower()
            if lowered in _TRUE_STRINGS:
                value: Any = True
            elif lowered in _FALSE_STRINGS:
                value = False
            else:
                raise ValidationError(f"Expected a boolean, got {raw!r}")
        elif self.type_ is int:
            try:
                value = int(raw)
            except ValueError as e:
                raise ValidationError(f"Expected an integer, got {raw!r}") from e
        else:
            value = raw

        self.validate(value)
        return value


def validate_config(config: dict[str, Any], schema: dict[str, ConfigField]) -> None:
    """
    Validate a (possibly partial) settings table against a schema.

    Fields absent from the table keep their defaults, so only present
    fields are checked.

    Raises:
        ValidationError: If a field is unknown or has an invalid value
    """
    for key in config:
        if key not in schema:
            raise ValidationError(f"Unknown setting: {key}")

    for field_name, value in config.items():
        try:
            schema[field_name].validate(value)
        except ValidationError as e:
            raise ValidationError(f"Setting '{field_name}': {e}") from e


def generate_default_config(schema: dict[str, ConfigField]) -> dict[str, Any]:
    """Generate a settings table holding every field's default value."""
    return {field_name: field.default for field_name, field in schema.items()}
