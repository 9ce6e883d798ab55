"""Field schema definitions for FormForge forms.

A ``FieldSchema`` describes one field of one form version: its machine key,
type, display hints, required-ness, position and type-specific configuration.
Field schemas are immutable values; edits produce a new instance via
``dataclasses.replace`` so that a published form's fields can be shared
safely with anyone reading it.
"""

from dataclasses import dataclass, field
import re
from typing import Any, Dict, Iterable, List, Optional
import uuid

from formforge.types import FieldType

FIELD_KEY_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")
FIELD_KEY_MAX_LENGTH = 100
LABEL_MAX_LENGTH = 255
GENERATED_KEY_PREFIX = "field_"


def new_field_id() -> str:
    """Generate an opaque field identifier."""
    return f"fld_{uuid.uuid4().hex[:16]}"


def is_valid_field_key(field_key: str) -> bool:
    """Check that a field key is a legal machine name.

    Examples:
        >>> is_valid_field_key("first_name")
        True
        >>> is_valid_field_key("1st")
        False
    """
    return (
        isinstance(field_key, str)
        and len(field_key) <= FIELD_KEY_MAX_LENGTH
        and FIELD_KEY_PATTERN.match(field_key) is not None
    )


def generate_field_key(existing_keys: Iterable[str]) -> str:
    """Pick the first free ``field_<n>`` key.

    Examples:
        >>> generate_field_key([])
        'field_1'
        >>> generate_field_key(["field_1", "field_3"])
        'field_2'
    """
    taken = set(existing_keys)
    n = 1
    while f"{GENERATED_KEY_PREFIX}{n}" in taken:
        n += 1
    return f"{GENERATED_KEY_PREFIX}{n}"


def option_values(field_config: Optional[Dict[str, Any]]) -> List[str]:
    """Return the submittable values of a choice field's options.

    Options may be plain strings or ``{"value": ..., "label": ...}`` objects.

    Examples:
        >>> option_values({"options": ["Red", {"value": "g", "label": "Green"}]})
        ['Red', 'g']
    """
    if not field_config:
        return []
    values = []
    for option in field_config.get("options") or []:
        if isinstance(option, dict):
            values.append(option.get("value"))
        else:
            values.append(option)
    return values


@dataclass(frozen=True)
class FieldSchema:
    """One field of a form version.

    Attributes:
        id: Opaque identifier, stable across edits and draft clones
        field_key: Machine name, unique within the form
        field_type: Type tag resolved through the field registry
        label: Human-readable label
        order: Zero-based position within the form
        placeholder: Optional input placeholder
        help_text: Optional help text shown under the field
        is_required: Whether an empty value is refused
        field_config: Type-specific configuration (e.g. options)
        validation_rules: Optional type-specific constraints (e.g. maxLength)
        default_value: Optional pre-filled value
    """
    id: str
    field_key: str
    field_type: FieldType
    label: str
    order: int = 0
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    is_required: bool = False
    field_config: Dict[str, Any] = field(default_factory=dict)
    validation_rules: Dict[str, Any] = field(default_factory=dict)
    default_value: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.field_type, str) and not isinstance(self.field_type, FieldType):
            object.__setattr__(self, "field_type", FieldType(self.field_type))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "fieldKey": self.field_key,
            "fieldType": self.field_type.value,
            "label": self.label,
            "placeholder": self.placeholder,
            "helpText": self.help_text,
            "isRequired": self.is_required,
            "order": self.order,
            "fieldConfig": dict(self.field_config),
            "validationRules": dict(self.validation_rules),
            "defaultValue": self.default_value,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Projection safe to hand to anonymous visitors.

        Carries only what rendering and submission correlation need; the
        field id stays internal.
        """
        result: Dict[str, Any] = {
            "fieldKey": self.field_key,
            "fieldType": self.field_type.value,
            "label": self.label,
            "placeholder": self.placeholder,
            "helpText": self.help_text,
            "isRequired": self.is_required,
            "order": self.order,
            "defaultValue": self.default_value,
        }
        options = self.field_config.get("options")
        if options is not None:
            result["options"] = list(options)
        return result

    def to_snapshot(self) -> Dict[str, Any]:
        """Definition stored alongside each response."""
        return {
            "fieldKey": self.field_key,
            "fieldType": self.field_type.value,
            "label": self.label,
            "isRequired": self.is_required,
            "fieldConfig": dict(self.field_config),
            "validationRules": dict(self.validation_rules),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldSchema":
        """Create FieldSchema from dict."""
        return cls(
            id=data["id"],
            field_key=data["fieldKey"],
            field_type=FieldType(data["fieldType"]),
            label=data["label"],
            order=data.get("order", 0),
            placeholder=data.get("placeholder"),
            help_text=data.get("helpText"),
            is_required=bool(data.get("isRequired", False)),
            field_config=dict(data.get("fieldConfig") or {}),
            validation_rules=dict(data.get("validationRules") or {}),
            default_value=data.get("defaultValue"),
        )


__all__ = [
    "FieldSchema",
    "FIELD_KEY_PATTERN",
    "new_field_id",
    "is_valid_field_key",
    "generate_field_key",
    "option_values",
]
