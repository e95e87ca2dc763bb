"""Custom field type registry.

Validates raw values against a field's declared type and coerces them into
the closed :data:`~taskboard_engine.task_engine.model.FieldValue` variant.
Anything that does not type-check is rejected with a
:class:`~taskboard_engine.task_engine.errors.ValidationError` whose message
says what was expected.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Optional

from ..utils import _parse_day
from .errors import ValidationError
from .model import (
    CustomField,
    CustomFieldType,
    DateValue,
    DropdownValue,
    FieldValue,
    NumberValue,
    TextValue,
)


def _coerce_text(value: Any, field: CustomField) -> FieldValue:
    if not isinstance(value, str):
        raise ValidationError("Value must be a string for text custom field")
    return TextValue(value)


def _coerce_number(value: Any, field: CustomField) -> FieldValue:
    # bool is an int subclass; a checkbox-ish True is not a number.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("Value must be a number for number custom field")
    if value != value or value in (float("inf"), float("-inf")):
        raise ValidationError("Value must be a finite number for number custom field")
    return NumberValue(value)


def _coerce_date(value: Any, field: CustomField) -> FieldValue:
    if not isinstance(value, (str, date, datetime)):
        raise ValidationError(
            "Value must be an ISO-8601 date string or a date for date custom field"
        )
    day = _parse_day(value)
    if day is None:
        raise ValidationError(f"Value {value!r} is not a valid ISO-8601 date")
    return DateValue(day)


def _coerce_dropdown(value: Any, field: CustomField) -> FieldValue:
    options = field.options
    if not options:
        raise ValidationError("Dropdown custom field must have options in config")
    if value not in options:
        allowed = ", ".join(str(o) for o in options)
        raise ValidationError(f"Value must be one of: {allowed}")
    return DropdownValue(str(value))


_COERCERS: dict[CustomFieldType, Callable[[Any, CustomField], FieldValue]] = {
    CustomFieldType.TEXT: _coerce_text,
    CustomFieldType.NUMBER: _coerce_number,
    CustomFieldType.DATE: _coerce_date,
    CustomFieldType.DROPDOWN: _coerce_dropdown,
}


def validate(value: Any, field: CustomField) -> FieldValue:
    """Check *value* against *field*'s declared type and return the typed value."""
    coerce = _COERCERS.get(field.type)
    if coerce is None:
        raise ValidationError(f"Unknown custom field type: {field.type}")
    return coerce(value, field)


def parse_field_type(raw: Any) -> CustomFieldType:
    try:
        return CustomFieldType(str(raw))
    except ValueError:
        valid = sorted(t.value for t in CustomFieldType)
        raise ValidationError(f"Custom field type must be one of {valid}, got '{raw}'") from None


def validate_config(field_type: CustomFieldType, config: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Validate type-specific configuration for a field definition.

    Dropdown fields need a non-empty list of distinct string options; other
    types accept any mapping (or none).
    """
    if config is not None and not isinstance(config, dict):
        raise ValidationError("Custom field config must be an object")
    if field_type != CustomFieldType.DROPDOWN:
        return dict(config) if config else None
    options = (config or {}).get("options")
    if not isinstance(options, list) or not options:
        raise ValidationError("Dropdown custom field must have a non-empty 'options' list in config")
    if not all(isinstance(o, str) and o for o in options):
        raise ValidationError("Dropdown options must be non-empty strings")
    if len(set(options)) != len(options):
        raise ValidationError("Dropdown options must be unique")
    return dict(config or {})


def revalidate_stored(field: CustomField, values: list[FieldValue]) -> None:
    """Ensure stored values still type-check after a definition change."""
    for value in values:
        validate(value.to_raw(), field)
