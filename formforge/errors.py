"""Structured error types for FormForge.

Two families of errors live here:

- ``FieldError`` values describe one user-correctable problem with one
  submitted field. They are collected in full and returned inside a
  ``SubmissionResult``; they are never raised.
- ``FormForgeError`` exceptions describe operations that cannot proceed
  (unknown ids, edits to frozen forms, illegal lifecycle transitions). Each
  carries a stable ``code`` and an ``http_status`` hint so a transport layer
  can map it without inspecting the message.

Storage failures are not wrapped: they propagate to the caller untouched.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from formforge.types import FieldErrorCode, FormStatus


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Attributes:
        field_key: Key of the field that failed
        code: Specific validation error code
        message: Human-readable error description
        expected: Optional - what was expected (format, options, bounds)
        received: Optional - what was actually received

    Examples:
        >>> err = FieldError(
        ...     field_key="email",
        ...     code=FieldErrorCode.INVALID_FORMAT,
        ...     message="Invalid email format",
        ...     received="not-an-email"
        ... )
        >>> err.field_key
        'email'
    """
    field_key: str
    code: FieldErrorCode
    message: str
    expected: Optional[Any] = None
    received: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "fieldKey": self.field_key,
            "code": self.code.value if isinstance(self.code, FieldErrorCode) else self.code,
            "message": self.message,
        }
        if self.expected is not None:
            result["expected"] = self.expected
        if self.received is not None:
            result["received"] = self.received
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        code = data["code"]
        if isinstance(code, str):
            code = FieldErrorCode(code)
        return cls(
            field_key=data["fieldKey"],
            code=code,
            message=data["message"],
            expected=data.get("expected"),
            received=data.get("received"),
        )


def errors_by_field(errors: List[FieldError]) -> Dict[str, str]:
    """Collapse a list of field errors into the ``{fieldKey: message}`` payload.

    The validator records at most one error per field, so no message is lost.
    """
    return {error.field_key: error.message for error in errors}


class FormForgeError(Exception):
    """Base class for all errors raised by the FormForge core.

    Attributes:
        code: Stable machine-readable error code
        http_status: Suggested status code for a transport layer
        message: Human-readable error message
    """

    code = "formforge_error"
    http_status = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"ok": False, "error": {"code": self.code, "message": self.message}}


class NotFoundError(FormForgeError):
    """Raised when a form, field, response or slug does not exist."""

    code = "not_found"
    http_status = 404

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class FormNotEditableError(FormForgeError):
    """Raised when a mutation targets a form that is not in DRAFT status."""

    code = "form_not_editable"
    http_status = 409

    def __init__(self, form_id: str, status: FormStatus):
        self.form_id = form_id
        self.status = status
        super().__init__(
            f"Cannot edit a {status.value} form ({form_id}). Create a draft first."
        )


class EmptyFormError(FormForgeError):
    """Raised when publishing a form that has no fields."""

    code = "empty_form"
    http_status = 422

    def __init__(self, form_id: str):
        self.form_id = form_id
        super().__init__(f"Form {form_id} has no fields and cannot be published")


class InvalidStateTransitionError(FormForgeError):
    """Raised when attempting a lifecycle transition the state machine forbids.

    Attributes:
        current_state: The state before the attempted transition
        target_state: The state that was attempted
    """

    code = "invalid_transition"
    http_status = 409

    def __init__(self, current_state: FormStatus, target_state: FormStatus, message: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(message)


class DuplicateFieldKeyError(FormForgeError):
    """Raised when a field key collides with another field on the same form."""

    code = "duplicate_field_key"
    http_status = 409

    def __init__(self, field_key: str):
        self.field_key = field_key
        super().__init__(f"Field key already exists on this form: {field_key}")


class FieldKeyLockedError(FormForgeError):
    """Raised when renaming a field key that responses already refer to."""

    code = "field_key_locked"
    http_status = 409

    def __init__(self, field_key: str):
        self.field_key = field_key
        super().__init__(
            f"Field key '{field_key}' cannot be changed once responses exist"
        )


class InvalidFieldConfigError(FormForgeError):
    """Raised when a field definition fails its type's config schema."""

    code = "invalid_field_config"
    http_status = 422

    def __init__(self, message: str, details: Optional[List[str]] = None):
        self.details = details or []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.details:
            result["error"]["details"] = self.details
        return result


class InvalidReorderError(FormForgeError):
    """Raised when a reorder request is not a permutation of the form's fields."""

    code = "invalid_reorder"
    http_status = 422


class InvalidPayloadError(FormForgeError):
    """Raised when a submission envelope is structurally malformed."""

    code = "invalid_payload"
    http_status = 400

    def __init__(self, message: str, details: Optional[List[str]] = None):
        self.details = details or []
        super().__init__(message)


__all__ = [
    "FieldError",
    "errors_by_field",
    "FormForgeError",
    "NotFoundError",
    "FormNotEditableError",
    "EmptyFormError",
    "InvalidStateTransitionError",
    "DuplicateFieldKeyError",
    "FieldKeyLockedError",
    "InvalidFieldConfigError",
    "InvalidReorderError",
    "InvalidPayloadError",
]
