"""Unit tests for the form lifecycle state machine.

Tests cover:
- Valid transitions (DRAFT -> PUBLISHED -> ARCHIVED, DRAFT -> ARCHIVED)
- Invalid transitions and terminal state
- Publish preconditions (fields present, slug handling)
- Forking a PUBLISHED version into a new DRAFT
- Events recorded for each transition
"""

import pytest

from formforge.errors import EmptyFormError, InvalidStateTransitionError
from formforge.fields import FieldSchema, new_field_id
from formforge.form import FormAggregate
from formforge.state_machine import VALID_TRANSITIONS, FormStateMachine
from formforge.types import Actor, ActorKind, EventType, FieldType, FormStatus

OPERATOR = Actor(kind=ActorKind.OPERATOR, id="user_1")


def draft_with_field():
    form = FormAggregate.new(title="Survey")
    form.add_field(FieldSchema(
        id=new_field_id(), field_key="name", field_type=FieldType.TEXT, label="Name"
    ))
    return form


class TestTransitionTable:
    """Test the transition table itself."""

    def test_archived_is_terminal(self):
        """Should allow nothing out of ARCHIVED."""
        assert VALID_TRANSITIONS[FormStatus.ARCHIVED] == set()

    @pytest.mark.parametrize("status", list(FormStatus))
    def test_never_back_to_draft(self, status):
        """Should never move a version back to DRAFT."""
        form = draft_with_field()
        form.status = status
        assert not FormStateMachine(form).can_transition_to(FormStatus.DRAFT)


class TestPublish:
    """Test publishing a DRAFT."""

    def test_publish_sets_status_slug_and_timestamp(self):
        """Should publish, assign the slug and stamp published_at."""
        form = draft_with_field()
        sm = FormStateMachine(form)

        sm.publish(OPERATOR, slug="survey-abc123")

        assert form.status == FormStatus.PUBLISHED
        assert form.slug == "survey-abc123"
        assert form.published_at is not None

    def test_publish_records_event(self):
        """Should record form.published with the transition and slug."""
        form = draft_with_field()
        sm = FormStateMachine(form)
        sm.publish(OPERATOR, slug="survey-abc123")

        events = sm.get_events()
        assert len(events) == 1
        assert events[0].type == EventType.FORM_PUBLISHED
        assert events[0].actor == OPERATOR
        assert events[0].payload == {
            "from_state": "DRAFT",
            "to_state": "PUBLISHED",
            "slug": "survey-abc123",
            "version": 1,
        }

    def test_empty_form_cannot_publish(self):
        """Should raise EmptyFormError and leave the form a DRAFT."""
        form = FormAggregate.new(title="Empty")
        sm = FormStateMachine(form)

        with pytest.raises(EmptyFormError):
            sm.publish(OPERATOR, slug="empty-abc123")
        assert form.status == FormStatus.DRAFT
        assert sm.get_events() == []

    def test_inherited_slug_is_kept(self):
        """Should never replace a slug the lineage already has."""
        form = draft_with_field()
        form.slug = "survey-original"
        FormStateMachine(form).publish(OPERATOR, slug="survey-other")
        assert form.slug == "survey-original"

    def test_slug_required_when_missing(self):
        """Should refuse to publish without any slug."""
        with pytest.raises(ValueError):
            FormStateMachine(draft_with_field()).publish(OPERATOR)

    def test_publish_twice_is_invalid(self):
        """Should refuse PUBLISHED -> PUBLISHED at the machine level."""
        form = draft_with_field()
        sm = FormStateMachine(form)
        sm.publish(OPERATOR, slug="survey-abc123")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            sm.publish(OPERATOR)
        assert exc_info.value.current_state == FormStatus.PUBLISHED
        assert exc_info.value.target_state == FormStatus.PUBLISHED


class TestArchive:
    """Test archiving."""

    @pytest.mark.parametrize("publish_first", [False, True])
    def test_archive_from_draft_or_published(self, publish_first):
        """Should archive DRAFT and PUBLISHED versions."""
        form = draft_with_field()
        sm = FormStateMachine(form)
        if publish_first:
            sm.publish(OPERATOR, slug="survey-abc123")

        sm.archive(OPERATOR, reason="closed")

        assert form.status == FormStatus.ARCHIVED
        assert form.archived_at is not None
        assert sm.is_terminal()
        assert sm.get_events()[-1].type == EventType.FORM_ARCHIVED
        assert sm.get_events()[-1].payload["reason"] == "closed"

    def test_archived_rejects_everything(self):
        """Should raise with a terminal-state message."""
        form = draft_with_field()
        sm = FormStateMachine(form)
        sm.archive(OPERATOR)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            sm.archive(OPERATOR)
        assert "terminal" in str(exc_info.value)
        with pytest.raises(InvalidStateTransitionError):
            sm.publish(OPERATOR, slug="survey-abc123")


class TestForkDraft:
    """Test fork-on-edit."""

    def test_fork_creates_new_version(self):
        """Should clone a PUBLISHED version into a DRAFT one version up."""
        form = draft_with_field()
        sm = FormStateMachine(form)
        sm.publish(OPERATOR, slug="survey-abc123")

        draft = sm.fork_draft(OPERATOR)

        assert draft.status == FormStatus.DRAFT
        assert draft.version == 2
        assert draft.lineage_id == form.lineage_id
        assert draft.slug == form.slug
        assert form.status == FormStatus.PUBLISHED

    def test_fork_records_event_on_draft(self):
        """Should record draft.created against the new draft."""
        form = draft_with_field()
        sm = FormStateMachine(form)
        sm.publish(OPERATOR, slug="survey-abc123")

        draft = sm.fork_draft(OPERATOR, version=5)
        event = sm.get_events()[-1]

        assert draft.version == 5
        assert event.type == EventType.DRAFT_CREATED
        assert event.form_id == draft.id
        assert event.payload == {"source_form_id": form.id, "version": 5}

    @pytest.mark.parametrize("status", [FormStatus.DRAFT, FormStatus.ARCHIVED])
    def test_fork_requires_published(self, status):
        """Should refuse to fork anything but a PUBLISHED version."""
        form = draft_with_field()
        form.status = status
        with pytest.raises(InvalidStateTransitionError):
            FormStateMachine(form).fork_draft(OPERATOR)
