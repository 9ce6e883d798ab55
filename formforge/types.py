"""Core type definitions for FormForge.

This module defines the fundamental types shared by the form core:
- FieldType: Tags for the supported field kinds
- FormStatus: Lifecycle states of a form version
- ResponseStatus: Status of an accepted submission
- FieldErrorCode: Per-field validation error codes
- EventType: Audit event types
- Actor: Identity of whoever performs an operation

Operator identity and the submitter's IP are always passed explicitly into
runtime operations; nothing in the core reads ambient session state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class FieldType(str, Enum):
    """Supported field types.

    Each type is backed by exactly one handler in the field registry.
    """
    TEXT = "TEXT"
    EMAIL = "EMAIL"
    NUMBER = "NUMBER"
    DATE = "DATE"
    TEXTAREA = "TEXTAREA"
    DROPDOWN = "DROPDOWN"
    CHECKBOX = "CHECKBOX"
    RADIO = "RADIO"


class FormStatus(str, Enum):
    """Form version lifecycle states.

    DRAFT: being edited, not publicly reachable
    PUBLISHED: live and accepting submissions
    ARCHIVED: closed, kept for records (terminal)
    """
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class ResponseStatus(str, Enum):
    """Status of a stored response."""
    ACCEPTED = "accepted"
    FLAGGED = "flagged"


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures."""
    REQUIRED = "required"
    INVALID_FORMAT = "invalid_format"
    INVALID_OPTION = "invalid_option"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    OUT_OF_RANGE = "out_of_range"


class EventType(str, Enum):
    """Audit event types for the event stream."""
    FORM_CREATED = "form.created"
    FORM_UPDATED = "form.updated"
    FORM_PUBLISHED = "form.published"
    FORM_ARCHIVED = "form.archived"
    DRAFT_CREATED = "draft.created"
    FIELD_ADDED = "field.added"
    FIELD_UPDATED = "field.updated"
    FIELD_DELETED = "field.deleted"
    FIELDS_REORDERED = "fields.reordered"
    RESPONSE_ACCEPTED = "response.accepted"
    RESPONSE_FLAGGED = "response.flagged"
    RESPONSE_DELETED = "response.deleted"
    SUBMISSION_REJECTED = "submission.rejected"
    VALIDATION_FAILED = "validation.failed"


class ActorKind(str, Enum):
    """Actor type classification.

    Operators edit and publish forms, the public submits responses, and the
    system performs automatic changes such as superseding an old version.
    """
    OPERATOR = "operator"
    PUBLIC = "public"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Identity of an actor performing an operation.

    Attributes:
        kind: Type of actor (operator, public or system)
        id: Identifier for this actor (user id, client IP, service name)
        name: Optional display name
        metadata: Optional arbitrary data

    Examples:
        >>> operator = Actor(kind=ActorKind.OPERATOR, id="user_42", name="Dana")
        >>> visitor = Actor(kind=ActorKind.PUBLIC, id="203.0.113.7")
    """
    kind: ActorKind
    id: str
    name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "kind": self.kind.value if isinstance(self.kind, ActorKind) else self.kind,
            "id": self.id,
        }
        if self.name is not None:
            result["name"] = self.name
        if self.metadata:
            result["metadata"] = self.metadata
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        """Create Actor from dict."""
        kind = data["kind"]
        if isinstance(kind, str):
            kind = ActorKind(kind)
        return cls(
            kind=kind,
            id=data["id"],
            name=data.get("name"),
            metadata=data.get("metadata", {}),
        )


SYSTEM_ACTOR = Actor(kind=ActorKind.SYSTEM, id="formforge")


__all__ = [
    "FieldType",
    "FormStatus",
    "ResponseStatus",
    "FieldErrorCode",
    "EventType",
    "ActorKind",
    "Actor",
    "SYSTEM_ACTOR",
]
