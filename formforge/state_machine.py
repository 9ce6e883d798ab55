"""Form lifecycle state machine for FormForge.

States and transitions:

    DRAFT ----publish----> PUBLISHED ----archive----> ARCHIVED
      |                        |
      +-------archive----------+---> ARCHIVED (terminal)
                               |
                               +--create-draft--> new DRAFT (version + 1)

Publishing freezes a version: its slug and fields stay exactly as they were
for anyone holding the public link. Editing a published form therefore never
changes it in place; ``fork_draft`` clones it into a new DRAFT version of the
same lineage and leaves the original untouched.

Usage:
    >>> from formforge.form import FormAggregate
    >>> from formforge.types import Actor, ActorKind
    >>> sm = FormStateMachine(FormAggregate.new(title="Survey"))
    >>> sm.can_transition_to(FormStatus.PUBLISHED)
    True
    >>> sm.can_transition_to(FormStatus.DRAFT)
    False
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, List, Optional, Set

from formforge.errors import EmptyFormError, InvalidStateTransitionError
from formforge.events import FormEvent
from formforge.form import FormAggregate, utcnow
from formforge.types import Actor, EventType, FormStatus

logger = logging.getLogger(__name__)


# Event emitted when a form enters each status
STATUS_TO_EVENT_TYPE: Dict[FormStatus, EventType] = {
    FormStatus.DRAFT: EventType.DRAFT_CREATED,
    FormStatus.PUBLISHED: EventType.FORM_PUBLISHED,
    FormStatus.ARCHIVED: EventType.FORM_ARCHIVED,
}


# Status changes of a single version. Forking a draft is not a status change
# of the source version, so it does not appear here.
VALID_TRANSITIONS: Dict[FormStatus, Set[FormStatus]] = {
    FormStatus.DRAFT: {
        FormStatus.PUBLISHED,
        FormStatus.ARCHIVED,
    },
    FormStatus.PUBLISHED: {
        FormStatus.ARCHIVED,
    },
    # Terminal
    FormStatus.ARCHIVED: set(),
}


@dataclass
class FormStateMachine:
    """Lifecycle controller for one form version.

    Attributes:
        form: The form version being driven through its lifecycle

    Examples:
        >>> from formforge.form import FormAggregate
        >>> from formforge.types import Actor, ActorKind
        >>> operator = Actor(kind=ActorKind.OPERATOR, id="user_1")
        >>> sm = FormStateMachine(FormAggregate.new(title="Survey"))
        >>> sm.archive(operator)
        >>> sm.is_terminal()
        True
    """

    form: FormAggregate
    _events: List[FormEvent] = field(default_factory=list, init=False, repr=False)

    @property
    def state(self) -> FormStatus:
        return self.form.status

    def can_transition_to(self, target_state: FormStatus) -> bool:
        """Check if transition to target state is valid."""
        return target_state in VALID_TRANSITIONS.get(self.state, set())

    def transition_to(
        self,
        target_state: FormStatus,
        actor: Actor,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Move the form to a new status and record an event.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        self._require_transition(target_state)

        old_state = self.state
        now = utcnow()
        self.form.status = target_state
        self.form.updated_at = now
        if target_state == FormStatus.PUBLISHED:
            self.form.published_at = now
        elif target_state == FormStatus.ARCHIVED:
            self.form.archived_at = now

        event_payload = {"from_state": old_state.value, "to_state": target_state.value}
        if payload:
            event_payload.update(payload)
        self._record(STATUS_TO_EVENT_TYPE[target_state], self.form, actor, event_payload)
        logger.debug(
            "Form %s (v%d): %s -> %s",
            self.form.id, self.form.version, old_state.value, target_state.value,
        )

    def publish(self, actor: Actor, slug: Optional[str] = None) -> None:
        """Publish a DRAFT.

        The slug is only used when the lineage has none yet; an inherited slug
        is never replaced.

        Raises:
            InvalidStateTransitionError: If the form is not a DRAFT
            EmptyFormError: If the form has no fields
        """
        self._require_transition(FormStatus.PUBLISHED)
        if self.form.field_count == 0:
            raise EmptyFormError(self.form.id)
        if self.form.slug is None:
            if slug is None:
                raise ValueError("A slug is required to publish a form that has none")
            self.form.slug = slug
        self.transition_to(
            FormStatus.PUBLISHED,
            actor,
            {"slug": self.form.slug, "version": self.form.version},
        )

    def archive(self, actor: Actor, reason: Optional[str] = None) -> None:
        """Archive this version permanently."""
        self.transition_to(
            FormStatus.ARCHIVED, actor, {"reason": reason} if reason else None
        )

    def fork_draft(self, actor: Actor, version: Optional[int] = None) -> FormAggregate:
        """Clone a PUBLISHED version into a new DRAFT.

        The draft is one version higher than the source unless ``version`` is
        given. The source version is not modified.

        Raises:
            InvalidStateTransitionError: If the form is not PUBLISHED
        """
        if self.state != FormStatus.PUBLISHED:
            raise InvalidStateTransitionError(
                current_state=self.state,
                target_state=FormStatus.DRAFT,
                message=(
                    f"Invalid state transition: drafts can only be created from a "
                    f"'{FormStatus.PUBLISHED.value}' form, not '{self.state.value}'."
                ),
            )
        draft = self.form.clone_as_draft(version)
        self._record(
            EventType.DRAFT_CREATED,
            draft,
            actor,
            {"source_form_id": self.form.id, "version": draft.version},
        )
        return draft

    def is_terminal(self) -> bool:
        """Check if the current state has no outgoing transitions."""
        return len(VALID_TRANSITIONS[self.state]) == 0

    def _require_transition(self, target_state: FormStatus) -> None:
        if self.can_transition_to(target_state):
            return
        valid = VALID_TRANSITIONS[self.state]
        raise InvalidStateTransitionError(
            current_state=self.state,
            target_state=target_state,
            message=(
                f"Invalid state transition: cannot transition from "
                f"'{self.state.value}' to '{target_state.value}'. "
                f"Valid transitions from '{self.state.value}' are: "
                f"{', '.join(sorted(s.value for s in valid))}"
                if valid
                else f"Invalid state transition: '{self.state.value}' is a terminal state, "
                f"no transitions are allowed."
            ),
        )

    def _record(
        self,
        event_type: EventType,
        form: FormAggregate,
        actor: Actor,
        payload: Dict[str, Any],
    ) -> None:
        self._events.append(
            FormEvent.create(
                type=event_type,
                form_id=form.id,
                actor=actor,
                status=form.status,
                payload=payload,
            )
        )

    def get_events(self) -> List[FormEvent]:
        """Events recorded by this state machine, oldest first."""
        return list(self._events)


__all__ = [
    "FormStateMachine",
    "VALID_TRANSITIONS",
    "STATUS_TO_EVENT_TYPE",
]
