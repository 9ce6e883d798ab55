"""Field type registry for FormForge.

Every field type is served by one ``FieldTypeHandler`` with a fixed set of
capabilities:

- ``is_empty``: the type's emptiness rule, used for required checks
- ``check``: validate a non-empty wire value (a string) against the field's
  configuration and rules
- ``coerce`` / ``serialize``: convert between the wire string and the typed
  value stored on a response
- ``describe_shape``: a small descriptor of the value shape for clients
- ``config_schema`` / ``rules_schema``: JSON Schemas that a field definition's
  ``fieldConfig`` and ``validationRules`` must satisfy

The ``FieldRegistry`` is a stateless lookup from ``FieldType`` to handler.
Adding a field type means registering one more handler; the submission
validator never branches on the type itself.

Usage:
    >>> registry = default_registry()
    >>> registry.validate(FieldType.EMAIL, "a@b.co").ok
    True
    >>> registry.validate(FieldType.EMAIL, "not-an-email").code
    <FieldErrorCode.INVALID_FORMAT: 'invalid_format'>
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
import re
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparser
from jsonschema import Draft7Validator

from formforge.errors import InvalidFieldConfigError
from formforge.fields import option_values
from formforge.types import FieldErrorCode, FieldType

EMAIL_PATTERN = re.compile(
    r"^[A-Za-z0-9._%+\-]+@"
    r"[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?)+$"
)
NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
DATE_PATTERN = re.compile(r"^\d{4}-?\d{2}-?\d{2}$")
CHECKBOX_TRUE = "true"

_date_parser = isoparser()

FREE_FORM_SCHEMA: Dict[str, Any] = {"type": "object"}

NO_RULES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
}

TEXT_RULES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "minLength": {"type": "integer", "minimum": 0},
        "maxLength": {"type": "integer", "minimum": 1},
        "pattern": {"type": "string", "minLength": 1},
    },
    "additionalProperties": False,
}

NUMBER_RULES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "min": {"type": "number"},
        "max": {"type": "number"},
    },
    "additionalProperties": False,
}

OPTIONS_CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["options"],
    "properties": {
        "options": {
            "type": "array",
            "minItems": 1,
            "items": {
                "anyOf": [
                    {"type": "string", "minLength": 1},
                    {
                        "type": "object",
                        "required": ["value"],
                        "properties": {
                            "value": {"type": "string", "minLength": 1},
                            "label": {"type": "string"},
                        },
                    },
                ]
            },
        }
    },
}


@dataclass(frozen=True)
class FieldCheck:
    """Outcome of validating one wire value.

    Attributes:
        ok: Whether the value passed
        value: The coerced value (only when ok)
        code: Error code (only when not ok)
        message: Human-readable error (only when not ok)
        expected: Optional description of what would have passed
    """
    ok: bool
    value: Any = None
    code: Optional[FieldErrorCode] = None
    message: Optional[str] = None
    expected: Optional[Any] = None

    @classmethod
    def success(cls, value: Any) -> "FieldCheck":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls, code: FieldErrorCode, message: str, expected: Optional[Any] = None
    ) -> "FieldCheck":
        return cls(ok=False, code=code, message=message, expected=expected)


class FieldTypeHandler:
    """Base handler: a free-form string field with no type-specific checks.

    Subclasses override the capabilities they need. ``check`` returns an
    error ``FieldCheck`` or None; it is only called for non-empty values.
    """

    field_type: FieldType
    value_type = "string"
    config_schema: Dict[str, Any] = FREE_FORM_SCHEMA
    rules_schema: Dict[str, Any] = NO_RULES_SCHEMA

    def is_empty(self, raw: Optional[str]) -> bool:
        return raw is None or raw.strip() == ""

    def empty_value(self) -> Any:
        """Canonical value stored when an optional field is left empty."""
        return None

    def check(
        self,
        raw: str,
        field_config: Dict[str, Any],
        rules: Dict[str, Any],
    ) -> Optional[FieldCheck]:
        return None

    def coerce(self, raw: str) -> Any:
        return raw

    def serialize(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    def describe_shape(self) -> Dict[str, Any]:
        return {
            "fieldType": self.field_type.value,
            "valueType": self.value_type,
            "hasOptions": "options" in self.config_schema.get("required", []),
        }

    def definition_errors(
        self,
        field_config: Dict[str, Any],
        rules: Dict[str, Any],
    ) -> List[str]:
        """Return problems with a field definition, empty if it is sound."""
        problems = [
            _format_schema_error("fieldConfig", error)
            for error in Draft7Validator(self.config_schema).iter_errors(field_config)
        ]
        problems.extend(
            _format_schema_error("validationRules", error)
            for error in Draft7Validator(self.rules_schema).iter_errors(rules)
        )
        return problems


class TextHandler(FieldTypeHandler):
    """TEXT and TEXTAREA: any string, with optional length/pattern rules."""

    rules_schema = TEXT_RULES_SCHEMA

    def __init__(self, field_type: FieldType = FieldType.TEXT):
        self.field_type = field_type

    def check(self, raw, field_config, rules):
        min_length = rules.get("minLength")
        max_length = rules.get("maxLength")
        if min_length is not None and len(raw) < min_length:
            return FieldCheck.failure(
                FieldErrorCode.TOO_SHORT,
                f"Must be at least {min_length} characters",
                expected=f"minimum {min_length} characters",
            )
        if max_length is not None and len(raw) > max_length:
            return FieldCheck.failure(
                FieldErrorCode.TOO_LONG,
                f"Must be at most {max_length} characters",
                expected=f"maximum {max_length} characters",
            )
        pattern = rules.get("pattern")
        if pattern and re.fullmatch(pattern, raw) is None:
            return FieldCheck.failure(
                FieldErrorCode.INVALID_FORMAT,
                "Does not match the required format",
                expected=f"pattern: {pattern}",
            )
        return None

    def definition_errors(self, field_config, rules):
        problems = super().definition_errors(field_config, rules)
        pattern = rules.get("pattern") if isinstance(rules, dict) else None
        if isinstance(pattern, str):
            try:
                re.compile(pattern)
            except re.error as exc:
                problems.append(f"validationRules.pattern: invalid regular expression ({exc})")
        if isinstance(rules, dict):
            min_length, max_length = rules.get("minLength"), rules.get("maxLength")
            if isinstance(min_length, int) and isinstance(max_length, int) and min_length > max_length:
                problems.append("validationRules: minLength is greater than maxLength")
        return problems


class EmailHandler(FieldTypeHandler):
    field_type = FieldType.EMAIL

    def check(self, raw, field_config, rules):
        if EMAIL_PATTERN.match(raw.strip()) is None:
            return FieldCheck.failure(
                FieldErrorCode.INVALID_FORMAT,
                "Invalid email format",
                expected="valid email address",
            )
        return None

    def coerce(self, raw):
        return raw.strip()


class NumberHandler(FieldTypeHandler):
    """NUMBER: a finite decimal, coerced to ``Decimal`` to avoid float drift."""

    field_type = FieldType.NUMBER
    value_type = "decimal"
    rules_schema = NUMBER_RULES_SCHEMA

    def check(self, raw, field_config, rules):
        text = raw.strip()
        if NUMBER_PATTERN.match(text) is None:
            return FieldCheck.failure(
                FieldErrorCode.INVALID_FORMAT,
                "Must be a valid number",
                expected="decimal number",
            )
        try:
            number = Decimal(text)
        except InvalidOperation:
            return FieldCheck.failure(
                FieldErrorCode.INVALID_FORMAT,
                "Must be a valid number",
                expected="decimal number",
            )
        minimum, maximum = rules.get("min"), rules.get("max")
        if minimum is not None and number < Decimal(str(minimum)):
            return FieldCheck.failure(
                FieldErrorCode.OUT_OF_RANGE,
                f"Must be at least {minimum}",
                expected=f"min: {minimum}",
            )
        if maximum is not None and number > Decimal(str(maximum)):
            return FieldCheck.failure(
                FieldErrorCode.OUT_OF_RANGE,
                f"Must be at most {maximum}",
                expected=f"max: {maximum}",
            )
        return None

    def coerce(self, raw):
        return Decimal(raw.strip())

    def definition_errors(self, field_config, rules):
        problems = super().definition_errors(field_config, rules)
        if isinstance(rules, dict):
            minimum, maximum = rules.get("min"), rules.get("max")
            if isinstance(minimum, (int, float)) and isinstance(maximum, (int, float)) and minimum > maximum:
                problems.append("validationRules: min is greater than max")
        return problems


class DateHandler(FieldTypeHandler):
    """DATE: an ISO calendar date (``YYYY-MM-DD`` or ``YYYYMMDD``)."""

    field_type = FieldType.DATE
    value_type = "date"

    def check(self, raw, field_config, rules):
        text = raw.strip()
        if DATE_PATTERN.match(text) is None:
            return _invalid_date()
        try:
            _date_parser.parse_isodate(text)
        except ValueError:
            return _invalid_date()
        return None

    def coerce(self, raw):
        return _date_parser.parse_isodate(raw.strip())

    def serialize(self, value):
        if value is None:
            return None
        if isinstance(value, date):
            return value.isoformat()
        return str(value)


class ChoiceHandler(FieldTypeHandler):
    """DROPDOWN and RADIO: the value must exactly equal a configured option."""

    value_type = "option"
    config_schema = OPTIONS_CONFIG_SCHEMA

    def __init__(self, field_type: FieldType):
        self.field_type = field_type

    def check(self, raw, field_config, rules):
        allowed = option_values(field_config)
        if raw not in allowed:
            return FieldCheck.failure(
                FieldErrorCode.INVALID_OPTION,
                f"Must be one of: {', '.join(allowed)}",
                expected=allowed,
            )
        return None

    def definition_errors(self, field_config, rules):
        problems = super().definition_errors(field_config, rules)
        if not problems:
            values = option_values(field_config)
            if len(values) != len(set(values)):
                problems.append("fieldConfig.options: option values must be unique")
        return problems


class CheckboxHandler(FieldTypeHandler):
    """CHECKBOX: ``"true"`` means checked, anything else means unchecked.

    An unchecked box counts as empty, so a required checkbox must be checked.
    An optional unchecked box is a valid "no" and is stored as False.
    """

    field_type = FieldType.CHECKBOX
    value_type = "boolean"

    def is_empty(self, raw):
        return not self.coerce(raw)

    def empty_value(self):
        return False

    def coerce(self, raw):
        return raw is not None and raw.strip().lower() == CHECKBOX_TRUE

    def serialize(self, value):
        return "true" if value else "false"


class FieldRegistry:
    """Lookup table from field type to handler.

    Examples:
        >>> registry = FieldRegistry()
        >>> registry.register(EmailHandler())
        >>> registry.get(FieldType.EMAIL).value_type
        'string'
    """

    def __init__(self) -> None:
        self._handlers: Dict[FieldType, FieldTypeHandler] = {}

    def register(self, handler: FieldTypeHandler, replace: bool = False) -> None:
        """Register a handler for its field type.

        Raises:
            ValueError: If the type already has a handler and replace is False
        """
        if handler.field_type in self._handlers and not replace:
            raise ValueError(f"Handler already registered for {handler.field_type.value}")
        self._handlers[handler.field_type] = handler

    def get(self, field_type: FieldType) -> FieldTypeHandler:
        """Return the handler for a field type.

        Raises:
            ValueError: If no handler is registered for the type
        """
        try:
            return self._handlers[FieldType(field_type)]
        except KeyError:
            raise ValueError(f"No handler registered for field type: {field_type}") from None

    def __contains__(self, field_type: object) -> bool:
        return field_type in self._handlers

    def field_types(self) -> List[FieldType]:
        return list(self._handlers)

    def validate(
        self,
        field_type: FieldType,
        raw_value: str,
        field_config: Optional[Dict[str, Any]] = None,
        validation_rules: Optional[Dict[str, Any]] = None,
    ) -> FieldCheck:
        """Validate and coerce one non-empty wire value.

        Returns:
            FieldCheck with the coerced value, or with an error code
        """
        handler = self.get(field_type)
        failure = handler.check(raw_value, field_config or {}, validation_rules or {})
        if failure is not None:
            return failure
        return FieldCheck.success(handler.coerce(raw_value))

    def validate_definition(
        self,
        field_type: FieldType,
        field_config: Optional[Dict[str, Any]] = None,
        validation_rules: Optional[Dict[str, Any]] = None,
        default_value: Optional[str] = None,
    ) -> None:
        """Check a field definition before it is stored on a form.

        Raises:
            InvalidFieldConfigError: If the config, rules or default are unusable
        """
        handler = self.get(field_type)
        field_config = field_config if field_config is not None else {}
        validation_rules = validation_rules if validation_rules is not None else {}
        problems = handler.definition_errors(field_config, validation_rules)
        if not problems and default_value is not None and not handler.is_empty(default_value):
            failure = handler.check(default_value, field_config, validation_rules)
            if failure is not None:
                problems.append(f"defaultValue: {failure.message}")
        if problems:
            raise InvalidFieldConfigError(
                f"Invalid definition for {FieldType(field_type).value} field",
                details=problems,
            )

    def describe(self) -> List[Dict[str, Any]]:
        return [handler.describe_shape() for handler in self._handlers.values()]


def _invalid_date() -> FieldCheck:
    return FieldCheck.failure(
        FieldErrorCode.INVALID_FORMAT,
        "Must be a valid date (YYYY-MM-DD)",
        expected="ISO date",
    )


def _format_schema_error(prefix: str, error) -> str:
    location = ".".join(str(p) for p in error.absolute_path)
    path = f"{prefix}.{location}" if location else prefix
    return f"{path}: {error.message}"


def default_registry() -> FieldRegistry:
    """Build a registry with handlers for every built-in field type."""
    registry = FieldRegistry()
    registry.register(TextHandler(FieldType.TEXT))
    registry.register(TextHandler(FieldType.TEXTAREA))
    registry.register(EmailHandler())
    registry.register(NumberHandler())
    registry.register(DateHandler())
    registry.register(ChoiceHandler(FieldType.DROPDOWN))
    registry.register(ChoiceHandler(FieldType.RADIO))
    registry.register(CheckboxHandler())
    return registry


__all__ = [
    "FieldCheck",
    "FieldTypeHandler",
    "TextHandler",
    "EmailHandler",
    "NumberHandler",
    "DateHandler",
    "ChoiceHandler",
    "CheckboxHandler",
    "FieldRegistry",
    "default_registry",
]
