"""FormRuntime orchestrator for FormForge.

The runtime ties the pieces together behind the three paths a transport
layer exposes:

- Operator edit path: create forms, edit fields on DRAFTs, and drive the
  lifecycle (publish, create draft, archive).
- Public read path: resolve a slug to the PUBLISHED version's public
  projection.
- Submission path: screen, validate and store a response.

Every operation takes the acting identity (operator ``Actor``, or the client
IP on the public paths) as an explicit argument. State lives in the
``FormStore``; the runtime itself only holds the event log.

Usage:
    >>> from formforge.config import Settings
    >>> from formforge.types import Actor, ActorKind, FieldType
    >>> runtime = FormRuntime(settings=Settings(min_dwell_ms=0, rate_limit_per_window=0))
    >>> operator = Actor(kind=ActorKind.OPERATOR, id="user_1")
    >>> form = runtime.create_form(operator, title="Contact")
    >>> _ = runtime.add_field(form.id, operator, FieldType.EMAIL, "Email", is_required=True)
    >>> runtime.publish_form(form.id, operator).status
    <FormStatus.PUBLISHED: 'PUBLISHED'>
"""

from collections import deque
from dataclasses import replace
import logging
import time
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Sequence, Union

from formforge.config import Settings, get_settings
from formforge.errors import (
    FieldKeyLockedError,
    InvalidFieldConfigError,
    NotFoundError,
)
from formforge.events import EventEmitter, FormEvent
from formforge.fields import (
    LABEL_MAX_LENGTH,
    FieldSchema,
    generate_field_key,
    is_valid_field_key,
    new_field_id,
)
from formforge.form import FormAggregate
from formforge.guard import AntiAutomationGuard
from formforge.registry import FieldRegistry, default_registry
from formforge.responses import ResponseAggregate
from formforge.slugs import generate_slug
from formforge.state_machine import FormStateMachine
from formforge.storage import FormStore, InMemoryFormStore
from formforge.types import SYSTEM_ACTOR, Actor, ActorKind, EventType, FieldType, FormStatus
from formforge.validation import SubmissionPayload, SubmissionResult, SubmissionValidator

logger = logging.getLogger(__name__)

UPDATABLE_FIELD_ATTRIBUTES = frozenset({
    "field_key",
    "field_type",
    "label",
    "placeholder",
    "help_text",
    "is_required",
    "field_config",
    "validation_rules",
    "default_value",
})

ActorLike = Union[Actor, Dict[str, Any]]


class FormRuntime:
    """Orchestrator for form editing, publishing and public submission.

    Attributes:
        store: Storage collaborator
        registry: Field type registry
        settings: Policy configuration
        validator: Submission validator (owns the anti-automation guard)
        events: Emitter that receives every recorded event
    """

    def __init__(
        self,
        store: Optional[FormStore] = None,
        registry: Optional[FieldRegistry] = None,
        settings: Optional[Settings] = None,
        guard: Optional[AntiAutomationGuard] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else InMemoryFormStore()
        self.registry = registry or default_registry()
        self.validator = SubmissionValidator(
            self.registry, guard or AntiAutomationGuard(self.settings)
        )
        self.events = emitter or EventEmitter()
        self._event_log: Deque[FormEvent] = deque(maxlen=self.settings.event_log_max_events)

    # Forms

    def create_form(
        self,
        actor: ActorLike,
        title: str,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> FormAggregate:
        """Create version 1 of a new form, in DRAFT."""
        actor = _normalize_actor(actor)
        _require_title(title)
        form = self.store.save_form(FormAggregate.new(title, description, settings))
        self._record(EventType.FORM_CREATED, form, actor, {"lineage_id": form.lineage_id})
        logger.info("Form created: %s (lineage %s) by %s", form.id, form.lineage_id, actor.id)
        return form

    def get_form(self, form_id: str) -> FormAggregate:
        """Load a form version.

        Raises:
            NotFoundError: If no such form exists
        """
        form = self.store.load_form(form_id)
        if form is None:
            raise NotFoundError("Form", form_id)
        return form

    def list_versions(self, form_id: str) -> List[FormAggregate]:
        """All versions in the lineage of ``form_id``, oldest first."""
        return self.store.find_lineage(self.get_form(form_id).lineage_id)

    def update_form(
        self,
        form_id: str,
        actor: ActorLike,
        title: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> FormAggregate:
        """Change a DRAFT's title, description or settings.

        Arguments left as None are not changed.

        Raises:
            FormNotEditableError: If the form is not a DRAFT
        """
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        form.require_editable()
        changed = []
        if title is not None:
            _require_title(title)
            form.title = title
            changed.append("title")
        if description is not None:
            form.description = description
            changed.append("description")
        if settings is not None:
            form.settings = dict(settings)
            changed.append("settings")
        form.touch()
        form = self.store.save_form(form)
        self._record(EventType.FORM_UPDATED, form, actor, {"changed": changed})
        logger.info("Form updated: %s (%s)", form.id, ", ".join(changed) or "no changes")
        return form

    # Fields

    def add_field(
        self,
        form_id: str,
        actor: ActorLike,
        field_type: FieldType,
        label: str,
        field_key: Optional[str] = None,
        placeholder: Optional[str] = None,
        help_text: Optional[str] = None,
        is_required: bool = False,
        field_config: Optional[Dict[str, Any]] = None,
        validation_rules: Optional[Dict[str, Any]] = None,
        default_value: Optional[str] = None,
    ) -> FieldSchema:
        """Append a field to a DRAFT.

        A missing ``field_key`` is generated as the first free ``field_<n>``.

        Raises:
            FormNotEditableError: If the form is not a DRAFT
            DuplicateFieldKeyError: If the key is already used on this form
            InvalidFieldConfigError: If the definition is unusable
        """
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        form.require_editable()
        if field_key is None:
            field_key = generate_field_key(form.field_keys())
        new_field = FieldSchema(
            id=new_field_id(),
            field_key=field_key,
            field_type=_field_type(field_type),
            label=label,
            placeholder=placeholder,
            help_text=help_text,
            is_required=bool(is_required),
            field_config=dict(field_config or {}),
            validation_rules=dict(validation_rules or {}),
            default_value=default_value,
        )
        self._check_definition(new_field)
        placed = form.add_field(new_field)
        form = self.store.save_form(form)
        self._record(
            EventType.FIELD_ADDED, form, actor,
            {"field_id": placed.id, "field_key": placed.field_key},
        )
        logger.info("Field created: %s for form %s", placed.field_key, form.id)
        return placed

    def update_field(
        self,
        form_id: str,
        field_id: str,
        actor: ActorLike,
        **changes: Any,
    ) -> FieldSchema:
        """Change attributes of one field on a DRAFT.

        Accepted keyword arguments are the names in
        ``UPDATABLE_FIELD_ATTRIBUTES``. A field key can only be renamed while
        no version of the form has any responses.

        Raises:
            TypeError: On an unknown attribute name
            FormNotEditableError: If the form is not a DRAFT
            FieldKeyLockedError: If renaming a key that responses refer to
            DuplicateFieldKeyError: If the new key is already used
            InvalidFieldConfigError: If the resulting definition is unusable
        """
        unknown = set(changes) - UPDATABLE_FIELD_ATTRIBUTES
        if unknown:
            raise TypeError(f"Unknown field attributes: {', '.join(sorted(unknown))}")
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        form.require_editable()
        current = form.get_field(field_id)

        new_key = changes.get("field_key", current.field_key)
        if new_key != current.field_key and self.store.count_lineage_responses(form.lineage_id) > 0:
            raise FieldKeyLockedError(current.field_key)
        if "field_type" in changes:
            changes["field_type"] = _field_type(changes["field_type"])
        for name in ("field_config", "validation_rules"):
            if name in changes:
                changes[name] = dict(changes[name] or {})
        if "is_required" in changes:
            changes["is_required"] = bool(changes["is_required"])

        updated = replace(current, **changes)
        self._check_definition(updated)
        placed = form.replace_field(updated)
        form = self.store.save_form(form)
        self._record(
            EventType.FIELD_UPDATED, form, actor,
            {"field_id": placed.id, "field_key": placed.field_key, "changed": sorted(changes)},
        )
        logger.info("Field updated: %s on form %s", placed.field_key, form.id)
        return placed

    def delete_field(self, form_id: str, field_id: str, actor: ActorLike) -> None:
        """Remove a field from a DRAFT; the remaining fields close ranks."""
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        removed = form.remove_field(field_id)
        form = self.store.save_form(form)
        self._record(
            EventType.FIELD_DELETED, form, actor,
            {"field_id": removed.id, "field_key": removed.field_key},
        )
        logger.info("Field deleted: %s from form %s", removed.field_key, form.id)

    def reorder_fields(
        self, form_id: str, field_ids: Sequence[str], actor: ActorLike
    ) -> List[FieldSchema]:
        """Put a DRAFT's fields in the given order, saved as one update.

        Raises:
            FormNotEditableError: If the form is not a DRAFT
            InvalidReorderError: If ``field_ids`` is not a permutation of the fields
        """
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        form.reorder_fields(list(field_ids))
        form = self.store.save_form(form)
        self._record(
            EventType.FIELDS_REORDERED, form, actor,
            {"field_ids": [f.id for f in form.fields]},
        )
        logger.info("Fields reordered for form %s", form.id)
        return self.store.load_fields_ordered(form.id)

    # Lifecycle

    def publish_form(self, form_id: str, actor: ActorLike) -> FormAggregate:
        """Publish a DRAFT, superseding the lineage's current PUBLISHED version.

        Publishing an already PUBLISHED form returns it unchanged.

        Raises:
            EmptyFormError: If the form has no fields
            InvalidStateTransitionError: If the form is ARCHIVED
        """
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        if form.status == FormStatus.PUBLISHED:
            return form

        machine = FormStateMachine(form)
        slug = None
        if form.slug is None:
            slug = generate_slug(
                form.title,
                max_length=self.settings.slug_max_length,
                suffix_length=self.settings.slug_suffix_length,
                is_taken=lambda candidate: self.store.slug_taken(candidate, form.lineage_id),
            )
        machine.publish(actor, slug)

        # Archive the superseded version first so two versions are never live at once.
        for other in self.store.find_lineage(form.lineage_id):
            if other.id != form.id and other.status == FormStatus.PUBLISHED:
                superseded = FormStateMachine(other)
                superseded.archive(SYSTEM_ACTOR, reason=f"superseded by v{form.version}")
                self.store.save_form(other)
                self._publish(superseded.get_events())
                logger.info("Form archived: %s (v%d) superseded", other.slug, other.version)

        form = self.store.save_form(form)
        self._publish(machine.get_events())
        logger.info("Form published: %s (v%d)", form.slug, form.version)
        return form

    def create_draft(self, form_id: str, actor: ActorLike) -> FormAggregate:
        """Get an editable DRAFT for the lineage of ``form_id``.

        A DRAFT is returned as is. For a PUBLISHED form the lineage's open
        DRAFT is returned if there is one; otherwise the published version is
        cloned into a new DRAFT and left untouched.

        Raises:
            InvalidStateTransitionError: If the form is ARCHIVED
        """
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        if form.status == FormStatus.DRAFT:
            return form

        lineage = self.store.find_lineage(form.lineage_id)
        if form.status == FormStatus.PUBLISHED:
            for version in lineage:
                if version.status == FormStatus.DRAFT:
                    return version

        machine = FormStateMachine(form)
        next_version = max([v.version for v in lineage] + [form.version]) + 1
        draft = machine.fork_draft(actor, version=next_version)
        draft = self.store.save_form(draft)
        self._publish(machine.get_events())
        logger.info("Draft created: %s (v%d) from form %s", draft.id, draft.version, form.id)
        return draft

    def archive_form(
        self, form_id: str, actor: ActorLike, reason: Optional[str] = None
    ) -> FormAggregate:
        """Archive a DRAFT or PUBLISHED version permanently.

        Raises:
            InvalidStateTransitionError: If the form is already ARCHIVED
        """
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        machine = FormStateMachine(form)
        machine.archive(actor, reason)
        form = self.store.save_form(form)
        self._publish(machine.get_events())
        logger.info("Form archived: %s (v%d)", form.slug or form.id, form.version)
        return form

    # Public paths

    def get_public_form(self, slug: str) -> Dict[str, Any]:
        """Public projection of the PUBLISHED version behind ``slug``.

        Includes a server ``loadTimestamp`` (epoch millis) a client may echo
        back on submit.

        Raises:
            NotFoundError: If no PUBLISHED form has this slug
        """
        form = self._published(slug)
        projection = form.to_public_dict()
        projection["loadTimestamp"] = int(time.time() * 1000)
        return projection

    def submit(
        self,
        slug: str,
        payload: Dict[str, Any],
        client_ip: Optional[str] = None,
        received_at: Optional[datetime] = None,
    ) -> SubmissionResult:
        """Accept a public submission.

        Args:
            slug: Public slug of the form
            payload: ``{"values": {...}, "loadTimestamp": ms, "honeypot": str}``
            client_ip: Caller-supplied client address
            received_at: Receive time; defaults to now

        Returns:
            SubmissionResult; on success the response has been stored

        Raises:
            InvalidPayloadError: If the envelope is malformed
            NotFoundError: If no PUBLISHED form has this slug
        """
        submission = SubmissionPayload.from_dict(payload)
        form = self._published(slug)
        visitor = Actor(kind=ActorKind.PUBLIC, id=client_ip or "unknown")

        result = self.validator.submit(
            form,
            submission.values,
            honeypot=submission.honeypot,
            load_timestamp=submission.load_timestamp,
            submission_ip=client_ip,
            received_at=received_at,
        )
        if result.rejected:
            self._record(EventType.SUBMISSION_REJECTED, form, visitor, {"reason": result.reason})
            return result
        if not result.ok:
            self._record(
                EventType.VALIDATION_FAILED, form, visitor,
                {"fields": [e.to_dict() for e in result.errors]},
            )
            return result

        response = self.store.save_response(result.response)
        self._record(EventType.RESPONSE_ACCEPTED, form, visitor, {"response_id": response.id})
        logger.info("Response submitted: %s for form %s", response.id, slug)
        return result

    # Responses

    def list_responses(self, form_id: str) -> List[ResponseAggregate]:
        """Responses of one form version, newest first."""
        self.get_form(form_id)
        return self.store.list_responses(form_id)

    def get_response(self, form_id: str, response_id: str) -> ResponseAggregate:
        response = self.store.load_response(response_id)
        if response is None or response.form_id != form_id:
            raise NotFoundError("Response", response_id)
        return response

    def flag_response(
        self,
        form_id: str,
        response_id: str,
        actor: ActorLike,
        reason: Optional[str] = None,
    ) -> ResponseAggregate:
        """Mark a stored response as suspicious."""
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        flagged = self.store.save_response(self.get_response(form_id, response_id).flagged())
        self._record(
            EventType.RESPONSE_FLAGGED, form, actor,
            {"response_id": response_id, "reason": reason},
        )
        logger.info("Response flagged: %s on form %s", response_id, form_id)
        return flagged

    def delete_response(self, form_id: str, response_id: str, actor: ActorLike) -> None:
        actor = _normalize_actor(actor)
        form = self.get_form(form_id)
        self.get_response(form_id, response_id)
        self.store.delete_response(response_id)
        self._record(EventType.RESPONSE_DELETED, form, actor, {"response_id": response_id})
        logger.info("Response deleted: %s from form %s", response_id, form_id)

    # Events

    def get_events(self, form_id: Optional[str] = None) -> List[FormEvent]:
        """Retained events, oldest first, optionally for one form version.

        Only the newest ``event_log_max_events`` are kept; subscribe to
        ``events`` for the full stream.
        """
        if form_id is None:
            return list(self._event_log)
        return [e for e in self._event_log if e.form_id == form_id]

    def _record(
        self,
        event_type: EventType,
        form: FormAggregate,
        actor: Actor,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._publish([FormEvent.create(event_type, form.id, actor, form.status, payload)])

    def _publish(self, events: List[FormEvent]) -> None:
        for event in events:
            self._event_log.append(event)
            self.events.emit(event)

    def _published(self, slug: str) -> FormAggregate:
        form = self.store.find_published_by_slug(slug)
        if form is None:
            raise NotFoundError("Form", slug)
        return form

    def _check_definition(self, candidate: FieldSchema) -> None:
        problems = []
        if not is_valid_field_key(candidate.field_key):
            problems.append(
                "fieldKey: must start with a letter and contain only letters, "
                "digits and underscores (max 100 characters)"
            )
        if not isinstance(candidate.label, str) or not candidate.label.strip():
            problems.append("label: is required")
        elif len(candidate.label) > LABEL_MAX_LENGTH:
            problems.append(f"label: must be at most {LABEL_MAX_LENGTH} characters")
        if problems:
            raise InvalidFieldConfigError("Invalid field definition", details=problems)
        self.registry.validate_definition(
            candidate.field_type,
            candidate.field_config,
            candidate.validation_rules,
            candidate.default_value,
        )


def _normalize_actor(actor: ActorLike) -> Actor:
    if isinstance(actor, dict):
        return Actor.from_dict(actor)
    return actor


def _field_type(value: Any) -> FieldType:
    try:
        return FieldType(value)
    except ValueError:
        raise InvalidFieldConfigError(f"Unknown field type: {value}") from None


def _require_title(title: str) -> None:
    if not isinstance(title, str) or not title.strip():
        raise InvalidFieldConfigError("Form title is required")


__all__ = [
    "FormRuntime",
    "UPDATABLE_FIELD_ATTRIBUTES",
]
