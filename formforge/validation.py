"""Submission validation for FormForge.

The ``SubmissionValidator`` turns a raw public submission into either an
accepted ``ResponseAggregate`` or a structured refusal:

1. The anti-automation guard runs first. A tripped check ends the request as
   a generic rejection, before any field is inspected, so bots learn nothing
   about the schema.
2. Every field of the published form is checked in order. Required fields
   are tested with their type's emptiness rule; non-empty values go through
   the field registry. All problems are collected, never just the first.
3. With no errors, values are coerced to their canonical types and a
   response is built. Persisting it is the caller's job.

The submission envelope itself (``values`` / ``loadTimestamp`` /
``honeypot``) is checked against a JSON Schema before any of this happens.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft7Validator

from formforge.errors import FieldError, InvalidPayloadError, NotFoundError, errors_by_field
from formforge.form import FormAggregate
from formforge.guard import AntiAutomationGuard, GuardVerdict
from formforge.registry import FieldRegistry, default_registry
from formforge.responses import ResponseAggregate, new_response_id
from formforge.types import FieldErrorCode, FormStatus

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Response submitted successfully"
REJECTED_MESSAGE = "Invalid submission"
VALIDATION_MESSAGE = "Validation failed"

SUBMISSION_PAYLOAD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["values"],
    "properties": {
        "values": {
            "type": "object",
            "additionalProperties": {"type": ["string", "null"]},
        },
        "loadTimestamp": {"type": ["integer", "null"]},
        "honeypot": {"type": ["string", "null"]},
    },
}

_payload_validator = Draft7Validator(SUBMISSION_PAYLOAD_SCHEMA)


@dataclass(frozen=True)
class SubmissionPayload:
    """The decoded submission envelope.

    Attributes:
        values: Raw wire values keyed by field key
        load_timestamp: Epoch millis at which the form was rendered
        honeypot: Content of the hidden trap field
    """
    values: Dict[str, Optional[str]]
    load_timestamp: Optional[int] = None
    honeypot: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "SubmissionPayload":
        """Decode and structurally check a submission envelope.

        Raises:
            InvalidPayloadError: If the envelope does not match the schema
        """
        problems = [
            f"{'.'.join(str(p) for p in error.absolute_path) or 'payload'}: {error.message}"
            for error in _payload_validator.iter_errors(data)
        ]
        if problems:
            raise InvalidPayloadError("Malformed submission payload", details=problems)
        return cls(
            values=dict(data["values"]),
            load_timestamp=data.get("loadTimestamp"),
            honeypot=data.get("honeypot"),
        )


@dataclass(frozen=True)
class ValidationResult:
    """Result of checking raw values against a form's fields.

    Attributes:
        is_valid: Whether every field passed
        errors: Field-level errors, in field order (empty if valid)
        data: Canonical typed values for the submitted known fields (only if valid)
        missing_fields: Keys of required fields that were empty
        invalid_fields: Keys of fields whose value failed its type check
    """
    is_valid: bool
    errors: List[FieldError]
    data: Optional[Dict[str, Any]] = None
    missing_fields: List[str] = field(default_factory=list)
    invalid_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "missingFields": list(self.missing_fields),
            "invalidFields": list(self.invalid_fields),
        }


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a submission: accepted, invalid, or rejected.

    Exactly one of these holds:
    - ``ok`` and ``response`` is set
    - ``errors`` is non-empty (user-correctable)
    - ``rejected`` (anti-automation; no detail is exposed)

    ``reason`` records which anti-automation check tripped. It is for
    operator logs and audit events only and is never serialized.
    """
    ok: bool
    response: Optional[ResponseAggregate] = None
    errors: List[FieldError] = field(default_factory=list)
    rejected: bool = False
    reason: Optional[str] = None

    @classmethod
    def accepted(cls, response: ResponseAggregate) -> "SubmissionResult":
        return cls(ok=True, response=response)

    @classmethod
    def invalid(cls, errors: List[FieldError]) -> "SubmissionResult":
        return cls(ok=False, errors=list(errors))

    @classmethod
    def rejection(cls, reason: Optional[str] = None) -> "SubmissionResult":
        return cls(ok=False, rejected=True, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        """Payload for the submission path.

        Validation failures map each field key to its message; rejections
        carry only a generic message.
        """
        if self.ok and self.response is not None:
            return {
                "ok": True,
                "message": SUCCESS_MESSAGE,
                "responseId": self.response.id,
            }
        if self.rejected:
            return {
                "ok": False,
                "error": {"type": "rejected", "message": REJECTED_MESSAGE},
            }
        return {
            "ok": False,
            "error": {
                "type": "validation",
                "message": VALIDATION_MESSAGE,
                "fields": errors_by_field(self.errors),
            },
        }


class SubmissionValidator:
    """Validates submissions against a published form version.

    Attributes:
        registry: Field registry used for per-type checks and coercion
        guard: Anti-automation guard consulted before any field work

    Examples:
        >>> from formforge.config import Settings
        >>> validator = SubmissionValidator(
        ...     guard=AntiAutomationGuard(Settings(rate_limit_per_window=0)))
        >>> validator.registry is not None
        True
    """

    def __init__(
        self,
        registry: Optional[FieldRegistry] = None,
        guard: Optional[AntiAutomationGuard] = None,
    ) -> None:
        self.registry = registry or default_registry()
        self.guard = guard or AntiAutomationGuard()

    def validate(self, form: FormAggregate, raw_values: Mapping[str, Optional[str]]) -> ValidationResult:
        """Check raw values against every field of the form.

        Args:
            form: The form version whose fields define the contract
            raw_values: Wire values keyed by field key; unknown keys are ignored

        Returns:
            ValidationResult with every field error, or the coerced data
        """
        errors: List[FieldError] = []
        missing_fields: List[str] = []
        invalid_fields: List[str] = []
        data: Dict[str, Any] = {}

        for schema_field in sorted(form.fields, key=lambda f: f.order):
            key = schema_field.field_key
            handler = self.registry.get(schema_field.field_type)
            raw = raw_values.get(key)

            if handler.is_empty(raw):
                if schema_field.is_required:
                    errors.append(FieldError(
                        field_key=key,
                        code=FieldErrorCode.REQUIRED,
                        message=f"{schema_field.label} is required",
                        expected="required field",
                    ))
                    missing_fields.append(key)
                elif key in raw_values:
                    data[key] = handler.empty_value()
                continue

            check = self.registry.validate(
                schema_field.field_type,
                raw,
                schema_field.field_config,
                schema_field.validation_rules,
            )
            if not check.ok:
                errors.append(FieldError(
                    field_key=key,
                    code=check.code,
                    message=check.message,
                    expected=check.expected,
                    received=raw,
                ))
                invalid_fields.append(key)
                continue
            data[key] = check.value

        if errors:
            return ValidationResult(
                is_valid=False,
                errors=errors,
                missing_fields=missing_fields,
                invalid_fields=invalid_fields,
            )
        return ValidationResult(is_valid=True, errors=[], data=data)

    def screen(
        self,
        honeypot: Optional[str] = None,
        load_timestamp: Optional[int] = None,
        received_at: Optional[datetime] = None,
        client_ip: Optional[str] = None,
    ) -> GuardVerdict:
        """Run only the anti-automation checks."""
        return self.guard.check(
            honeypot=honeypot,
            load_timestamp=load_timestamp,
            received_at=received_at,
            client_ip=client_ip,
        )

    def submit(
        self,
        form: FormAggregate,
        raw_values: Mapping[str, Optional[str]],
        honeypot: Optional[str] = None,
        load_timestamp: Optional[int] = None,
        submission_ip: Optional[str] = None,
        received_at: Optional[datetime] = None,
    ) -> SubmissionResult:
        """Screen, validate and, on success, build a response.

        Raises:
            NotFoundError: If the form version is not PUBLISHED
        """
        if form.status != FormStatus.PUBLISHED:
            raise NotFoundError("Published form", form.id)

        received_at = received_at or datetime.now(timezone.utc)
        verdict = self.screen(honeypot, load_timestamp, received_at, submission_ip)
        if not verdict.passed:
            return SubmissionResult.rejection(verdict.reason)

        result = self.validate(form, raw_values)
        if not result.is_valid:
            logger.debug(
                "Submission to %s failed validation: %s",
                form.id, ", ".join(result.missing_fields + result.invalid_fields),
            )
            return SubmissionResult.invalid(result.errors)

        response = ResponseAggregate(
            id=new_response_id(),
            form_id=form.id,
            form_version=form.version,
            lineage_id=form.lineage_id,
            values=result.data or {},
            submitted_at=received_at,
            submission_ip=submission_ip,
            schema_snapshot=[f.to_snapshot() for f in form.fields],
        )
        return SubmissionResult.accepted(response)


__all__ = [
    "SubmissionPayload",
    "SubmissionResult",
    "SubmissionValidator",
    "ValidationResult",
    "SUBMISSION_PAYLOAD_SCHEMA",
]
