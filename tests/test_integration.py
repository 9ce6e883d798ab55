"""Integration tests for the form lifecycle through FormRuntime.

Tests cover end-to-end scenarios combining:
- FormRuntime orchestration over the in-memory store
- Field editing on DRAFTs and refusal on other statuses
- Publishing, fork-on-edit drafts and superseded versions
- The public read path and the submission path
- Response management and the audit event stream
"""

from datetime import datetime, timezone

import pytest

from formforge import FormRuntime
from formforge.config import Settings
from formforge.errors import (
    DuplicateFieldKeyError,
    EmptyFormError,
    FieldKeyLockedError,
    FormNotEditableError,
    InvalidFieldConfigError,
    InvalidPayloadError,
    InvalidReorderError,
    InvalidStateTransitionError,
    NotFoundError,
)
from formforge.types import (
    SYSTEM_ACTOR,
    Actor,
    ActorKind,
    EventType,
    FieldType,
    FormStatus,
    ResponseStatus,
)

OPERATOR = Actor(kind=ActorKind.OPERATOR, id="user_1")
RECEIVED_AT = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
RECEIVED_MS = int(RECEIVED_AT.timestamp() * 1000)


def make_runtime(**settings):
    settings.setdefault("min_dwell_ms", 0)
    settings.setdefault("rate_limit_per_window", 0)
    return FormRuntime(settings=Settings(**settings))


def published_contact_form(runtime):
    form = runtime.create_form(OPERATOR, title="Contact Us", description="Say hello")
    runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "Name", field_key="name", is_required=True)
    runtime.add_field(form.id, OPERATOR, FieldType.EMAIL, "Email", field_key="email", is_required=True)
    runtime.add_field(
        form.id, OPERATOR, FieldType.NUMBER, "Age", field_key="age",
        validation_rules={"min": 18},
    )
    return runtime.publish_form(form.id, OPERATOR)


def submit(runtime, slug, values, **kwargs):
    payload = {"values": values}
    payload.update(kwargs.pop("payload", {}))
    return runtime.submit(slug, payload, received_at=RECEIVED_AT, **kwargs)


class TestFormEditing:
    """Test operator editing of DRAFT forms."""

    def test_create_form(self):
        """Should create version 1 of a new lineage in DRAFT."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")

        assert form.status == FormStatus.DRAFT
        assert form.version == 1
        assert form.slug is None
        assert form.id.startswith("frm_")
        assert form.lineage_id.startswith("lin_")
        assert runtime.get_events(form.id)[0].type == EventType.FORM_CREATED

    def test_actor_dict_accepted(self):
        """Should accept an actor given as a dict."""
        runtime = make_runtime()
        form = runtime.create_form({"kind": "operator", "id": "user_2"}, title="Survey")
        assert runtime.get_events(form.id)[0].actor.id == "user_2"

    def test_blank_title_refused(self):
        """Should refuse a form without a title."""
        with pytest.raises(InvalidFieldConfigError):
            make_runtime().create_form(OPERATOR, title="  ")

    def test_update_form(self):
        """Should change title and settings of a DRAFT."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")
        updated = runtime.update_form(form.id, OPERATOR, title="Survey 2024", settings={"theme": "dark"})

        assert updated.title == "Survey 2024"
        assert runtime.get_form(form.id).settings == {"theme": "dark"}

    def test_add_fields_generates_keys_and_orders(self):
        """Should generate field_<n> keys and dense orders."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")
        first = runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "First")
        second = runtime.add_field(form.id, OPERATOR, "TEXTAREA", "Second")

        assert (first.field_key, first.order) == ("field_1", 0)
        assert (second.field_key, second.order) == ("field_2", 1)
        assert second.field_type == FieldType.TEXTAREA
        assert runtime.get_form(form.id).field_count == 2

    @pytest.mark.parametrize("kwargs", [
        {"field_type": FieldType.TEXT, "label": "Name", "field_key": "1st"},
        {"field_type": FieldType.TEXT, "label": ""},
        {"field_type": FieldType.TEXT, "label": "x" * 256},
        {"field_type": FieldType.DROPDOWN, "label": "Color"},
        {"field_type": "SLIDER", "label": "Volume"},
        {"field_type": FieldType.EMAIL, "label": "Email", "default_value": "nope"},
    ])
    def test_invalid_definitions_refused(self, kwargs):
        """Should refuse unusable field definitions and leave the form unchanged."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")

        with pytest.raises(InvalidFieldConfigError):
            runtime.add_field(form.id, OPERATOR, **kwargs)
        assert runtime.get_form(form.id).field_count == 0

    def test_duplicate_key_refused(self):
        """Should refuse a key already used on the form."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")
        runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "Name", field_key="name")

        with pytest.raises(DuplicateFieldKeyError):
            runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "Name again", field_key="name")

    def test_update_field(self):
        """Should change attributes and keep the field's position."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")
        runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "A", field_key="a")
        target = runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "B", field_key="b")

        updated = runtime.update_field(
            form.id, target.id, OPERATOR,
            label="Favourite color", field_type=FieldType.RADIO,
            field_config={"options": ["red", "blue"]}, is_required=True,
        )

        assert updated.order == 1
        assert updated.field_type == FieldType.RADIO
        assert runtime.get_form(form.id).get_field(target.id).label == "Favourite color"

    def test_update_field_unknown_attribute(self):
        """Should raise TypeError for attributes that cannot be changed."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")
        field = runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "A")

        with pytest.raises(TypeError):
            runtime.update_field(form.id, field.id, OPERATOR, order=5)

    def test_update_field_validates_result(self):
        """Should refuse an update that breaks the definition."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")
        field = runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "A")

        with pytest.raises(InvalidFieldConfigError):
            runtime.update_field(form.id, field.id, OPERATOR, field_type=FieldType.DROPDOWN)
        assert runtime.get_form(form.id).get_field(field.id).field_type == FieldType.TEXT

    def test_delete_and_reorder(self):
        """Should keep orders dense through delete and reorder."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Survey")
        a = runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "A", field_key="a")
        b = runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "B", field_key="b")
        c = runtime.add_field(form.id, OPERATOR, FieldType.TEXT, "C", field_key="c")

        runtime.delete_field(form.id, b.id, OPERATOR)
        ordered = runtime.reorder_fields(form.id, [c.id, a.id], OPERATOR)

        assert [(f.field_key, f.order) for f in ordered] == [("c", 0), ("a", 1)]
        with pytest.raises(InvalidReorderError):
            runtime.reorder_fields(form.id, [c.id], OPERATOR)

    def test_unknown_form(self):
        """Should raise NotFoundError for an unknown form id."""
        with pytest.raises(NotFoundError):
            make_runtime().get_form("frm_missing")


class TestPublishing:
    """Test the publish lifecycle."""

    def test_empty_form_cannot_publish(self):
        """Should raise EmptyFormError and keep the form a DRAFT."""
        runtime = make_runtime()
        form = runtime.create_form(OPERATOR, title="Empty")

        with pytest.raises(EmptyFormError):
            runtime.publish_form(form.id, OPERATOR)
        assert runtime.get_form(form.id).status == FormStatus.DRAFT

    def test_publish_assigns_slug(self):
        """Should publish and give the lineage a slug from its title."""
        runtime = make_runtime()
        form = published_contact_form(runtime)

        assert form.status == FormStatus.PUBLISHED
        assert form.slug.startswith("contact-us-")
        assert form.published_at is not None

    def test_publish_is_idempotent(self):
        """Should return an already PUBLISHED form unchanged."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        again = runtime.publish_form(form.id, OPERATOR)

        assert again.slug == form.slug
        assert again.published_at == form.published_at
        published_events = [
            e for e in runtime.get_events(form.id) if e.type == EventType.FORM_PUBLISHED
        ]
        assert len(published_events) == 1

    @pytest.mark.parametrize("operation", [
        lambda rt, form: rt.add_field(form.id, OPERATOR, FieldType.TEXT, "Extra"),
        lambda rt, form: rt.update_field(form.id, form.fields[0].id, OPERATOR, label="New"),
        lambda rt, form: rt.delete_field(form.id, form.fields[0].id, OPERATOR),
        lambda rt, form: rt.reorder_fields(form.id, [f.id for f in reversed(form.fields)], OPERATOR),
        lambda rt, form: rt.update_form(form.id, OPERATOR, title="New"),
    ])
    @pytest.mark.parametrize("archive", [False, True])
    def test_non_draft_not_editable(self, operation, archive):
        """Should refuse every edit on PUBLISHED and ARCHIVED versions."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        if archive:
            form = runtime.archive_form(form.id, OPERATOR)

        with pytest.raises(FormNotEditableError):
            operation(runtime, form)
        assert runtime.get_form(form.id).field_keys() == ["name", "email", "age"]

    def test_public_projection(self):
        """Should serve fields without ids plus a load timestamp."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        public = runtime.get_public_form(form.slug)

        assert public["slug"] == form.slug
        assert public["title"] == "Contact Us"
        assert [f["fieldKey"] for f in public["fields"]] == ["name", "email", "age"]
        assert all("id" not in f for f in public["fields"])
        assert isinstance(public["loadTimestamp"], int)

    def test_draft_not_public(self):
        """Should not resolve slugs of DRAFT or unknown forms."""
        runtime = make_runtime()
        with pytest.raises(NotFoundError):
            runtime.get_public_form("contact-us-abc123")


class TestForkOnEdit:
    """Test drafts forked from PUBLISHED versions."""

    def test_create_draft_leaves_published_untouched(self):
        """Should clone into version 2 and keep version 1 live and unchanged."""
        runtime = make_runtime()
        published = published_contact_form(runtime)

        draft = runtime.create_draft(published.id, OPERATOR)
        runtime.add_field(draft.id, OPERATOR, FieldType.TEXT, "Company", field_key="company")
        runtime.update_field(draft.id, draft.fields[0].id, OPERATOR, label="Full name")

        original = runtime.get_form(published.id)
        assert draft.id != published.id
        assert draft.version == 2
        assert draft.lineage_id == published.lineage_id
        assert draft.slug == published.slug
        assert original.status == FormStatus.PUBLISHED
        assert original.field_keys() == ["name", "email", "age"]
        assert original.fields[0].label == "Name"
        assert runtime.get_public_form(published.slug)["version"] == 1

    def test_create_draft_reuses_open_draft(self):
        """Should return the lineage's existing DRAFT instead of a second one."""
        runtime = make_runtime()
        published = published_contact_form(runtime)

        first = runtime.create_draft(published.id, OPERATOR)
        second = runtime.create_draft(published.id, OPERATOR)

        assert second.id == first.id
        assert runtime.create_draft(first.id, OPERATOR).id == first.id

    def test_publishing_draft_supersedes_old_version(self):
        """Should archive the old version and serve the new one on the same slug."""
        runtime = make_runtime()
        published = published_contact_form(runtime)
        draft = runtime.create_draft(published.id, OPERATOR)
        runtime.add_field(draft.id, OPERATOR, FieldType.TEXT, "Company", field_key="company")

        republished = runtime.publish_form(draft.id, OPERATOR)

        assert republished.slug == published.slug
        assert runtime.get_form(published.id).status == FormStatus.ARCHIVED
        public = runtime.get_public_form(published.slug)
        assert public["version"] == 2
        assert [f["fieldKey"] for f in public["fields"]][-1] == "company"

        archived_events = [
            e for e in runtime.get_events(published.id) if e.type == EventType.FORM_ARCHIVED
        ]
        assert archived_events[0].actor == SYSTEM_ACTOR

    def test_lineage_has_one_published_version(self):
        """Should never have two PUBLISHED versions at once."""
        runtime = make_runtime()
        published = published_contact_form(runtime)
        current = published
        for _ in range(3):
            draft = runtime.create_draft(current.id, OPERATOR)
            current = runtime.publish_form(draft.id, OPERATOR)

        versions = runtime.list_versions(published.id)
        assert [v.version for v in versions] == [1, 2, 3, 4]
        assert [v.status for v in versions].count(FormStatus.PUBLISHED) == 1
        assert versions[-1].status == FormStatus.PUBLISHED

    def test_abandoned_draft_does_not_block_versions(self):
        """Should number a new draft after an archived, never-published one."""
        runtime = make_runtime()
        published = published_contact_form(runtime)
        abandoned = runtime.create_draft(published.id, OPERATOR)
        runtime.archive_form(abandoned.id, OPERATOR)

        fresh = runtime.create_draft(published.id, OPERATOR)

        assert fresh.version == 3
        assert fresh.id != abandoned.id

    def test_archived_is_terminal(self):
        """Should refuse to publish or fork an ARCHIVED version."""
        runtime = make_runtime()
        published = published_contact_form(runtime)
        runtime.archive_form(published.id, OPERATOR)

        with pytest.raises(InvalidStateTransitionError):
            runtime.publish_form(published.id, OPERATOR)
        with pytest.raises(InvalidStateTransitionError):
            runtime.create_draft(published.id, OPERATOR)
        with pytest.raises(InvalidStateTransitionError):
            runtime.archive_form(published.id, OPERATOR)
        with pytest.raises(NotFoundError):
            runtime.get_public_form(published.slug)

    def test_slugs_unique_across_lineages(self):
        """Should give identically titled forms different slugs."""
        runtime = make_runtime()
        first = published_contact_form(runtime)
        second = published_contact_form(runtime)
        assert first.slug != second.slug


class TestSubmission:
    """Test the public submission path."""

    def test_accepted_submission_stored(self):
        """Should store a response and return the success payload."""
        runtime = make_runtime()
        form = published_contact_form(runtime)

        result = submit(
            runtime, form.slug,
            {"name": "Ada", "email": "ada@example.com", "age": "36"},
            client_ip="203.0.113.7",
        )

        assert result.ok
        payload = result.to_dict()
        assert payload["ok"] is True
        stored = runtime.get_response(form.id, payload["responseId"])
        assert stored.form_version == 1
        assert stored.submission_ip == "203.0.113.7"
        assert stored.to_dict()["values"] == {"name": "Ada", "email": "ada@example.com", "age": "36"}
        assert runtime.get_form(form.id).response_count == 1
        assert runtime.get_events(form.id)[-1].type == EventType.RESPONSE_ACCEPTED

    def test_validation_errors_batched(self):
        """Should return every field error and store nothing."""
        runtime = make_runtime()
        form = published_contact_form(runtime)

        result = submit(runtime, form.slug, {"email": "not-an-email", "age": "12"})

        assert result.to_dict()["error"]["fields"] == {
            "name": "Name is required",
            "email": "Invalid email format",
            "age": "Must be at least 18",
        }
        assert runtime.list_responses(form.id) == []
        event = runtime.get_events(form.id)[-1]
        assert event.type == EventType.VALIDATION_FAILED
        assert event.actor.kind == ActorKind.PUBLIC

    def test_honeypot_rejected(self):
        """Should reject generically and record the reason internally."""
        runtime = make_runtime()
        form = published_contact_form(runtime)

        result = submit(
            runtime, form.slug, {"name": "Bot", "email": "bot@example.com"},
            payload={"honeypot": "http://spam.example"}, client_ip="198.51.100.1",
        )

        assert result.to_dict() == {
            "ok": False,
            "error": {"type": "rejected", "message": "Invalid submission"},
        }
        assert runtime.list_responses(form.id) == []
        event = runtime.get_events(form.id)[-1]
        assert event.type == EventType.SUBMISSION_REJECTED
        assert event.payload == {"reason": "honeypot"}

    @pytest.mark.parametrize("elapsed_ms,accepted", [(500, False), (1999, False), (2000, True)])
    def test_dwell_time(self, elapsed_ms, accepted):
        """Should reject submissions faster than the configured dwell time."""
        runtime = make_runtime(min_dwell_ms=2000)
        form = published_contact_form(runtime)

        result = submit(
            runtime, form.slug, {"name": "Ada", "email": "ada@example.com"},
            payload={"loadTimestamp": RECEIVED_MS - elapsed_ms},
        )
        assert result.ok is accepted
        assert result.rejected is not accepted

    def test_rate_limited_per_ip(self):
        """Should reject submissions over the per-IP limit."""
        runtime = make_runtime(rate_limit_per_window=2)
        form = published_contact_form(runtime)
        values = {"name": "Ada", "email": "ada@example.com"}

        assert submit(runtime, form.slug, values, client_ip="203.0.113.7").ok
        assert submit(runtime, form.slug, values, client_ip="203.0.113.7").ok
        assert submit(runtime, form.slug, values, client_ip="203.0.113.7").rejected
        assert submit(runtime, form.slug, values, client_ip="203.0.113.8").ok

    @pytest.mark.parametrize("load_timestamp", [10**20, -(10**15)])
    def test_out_of_range_load_timestamp_rejected(self, load_timestamp):
        """Should reject a load timestamp no clock could produce."""
        runtime = make_runtime(min_dwell_ms=2000)
        form = published_contact_form(runtime)

        result = submit(
            runtime, form.slug, {"name": "Ada", "email": "ada@example.com"},
            payload={"loadTimestamp": load_timestamp},
        )

        assert result.rejected
        assert runtime.list_responses(form.id) == []
        event = runtime.get_events(form.id)[-1]
        assert event.type == EventType.SUBMISSION_REJECTED
        assert event.payload == {"reason": "invalid_load_timestamp"}

    def test_unknown_slug(self):
        """Should raise NotFoundError for a slug with no PUBLISHED form."""
        with pytest.raises(NotFoundError):
            submit(make_runtime(), "missing-abc123", {})

    def test_malformed_payload(self):
        """Should raise InvalidPayloadError for a bad envelope."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        with pytest.raises(InvalidPayloadError):
            runtime.submit(form.slug, {"values": {"age": 36}})

    def test_submission_validated_against_served_version(self):
        """Should validate against the PUBLISHED version, not an open draft."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        draft = runtime.create_draft(form.id, OPERATOR)
        runtime.add_field(
            draft.id, OPERATOR, FieldType.TEXT, "Company", field_key="company", is_required=True
        )

        result = submit(runtime, form.slug, {"name": "Ada", "email": "ada@example.com"})
        assert result.ok
        assert result.response.form_id == form.id


class TestResponses:
    """Test operator response management."""

    def test_flag_and_delete(self):
        """Should flag a response, then delete it."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        response = submit(runtime, form.slug, {"name": "Ada", "email": "ada@example.com"}).response

        flagged = runtime.flag_response(form.id, response.id, OPERATOR, reason="spam")
        assert flagged.status == ResponseStatus.FLAGGED
        assert runtime.get_response(form.id, response.id).status == ResponseStatus.FLAGGED

        runtime.delete_response(form.id, response.id, OPERATOR)
        assert runtime.list_responses(form.id) == []
        with pytest.raises(NotFoundError):
            runtime.get_response(form.id, response.id)

        types = [e.type for e in runtime.get_events(form.id)]
        assert EventType.RESPONSE_FLAGGED in types
        assert types[-1] == EventType.RESPONSE_DELETED

    def test_response_scoped_to_form(self):
        """Should not resolve a response through another form's id."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        other = published_contact_form(runtime)
        response = submit(runtime, form.slug, {"name": "Ada", "email": "ada@example.com"}).response

        with pytest.raises(NotFoundError):
            runtime.get_response(other.id, response.id)

    def test_field_key_locked_once_responses_exist(self):
        """Should refuse renaming a key responses refer to, but allow label edits."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        submit(runtime, form.slug, {"name": "Ada", "email": "ada@example.com"})
        draft = runtime.create_draft(form.id, OPERATOR)
        name_field = draft.get_field_by_key("name")

        with pytest.raises(FieldKeyLockedError):
            runtime.update_field(draft.id, name_field.id, OPERATOR, field_key="full_name")
        updated = runtime.update_field(draft.id, name_field.id, OPERATOR, label="Full name")
        assert updated.field_key == "name"

    def test_field_key_rename_allowed_without_responses(self):
        """Should allow renaming keys while the lineage has no responses."""
        runtime = make_runtime()
        form = published_contact_form(runtime)
        draft = runtime.create_draft(form.id, OPERATOR)
        name_field = draft.get_field_by_key("name")

        updated = runtime.update_field(draft.id, name_field.id, OPERATOR, field_key="full_name")
        assert updated.field_key == "full_name"


class TestEventStream:
    """Test that runtime events reach the emitter."""

    def test_listeners_receive_events(self):
        """Should dispatch every recorded event to listeners."""
        runtime = make_runtime()
        seen = []
        runtime.events.on_any(seen.append)

        form = published_contact_form(runtime)

        assert [e.type for e in seen] == [
            EventType.FORM_CREATED,
            EventType.FIELD_ADDED,
            EventType.FIELD_ADDED,
            EventType.FIELD_ADDED,
            EventType.FORM_PUBLISHED,
        ]
        assert seen == runtime.get_events(form.id)
        assert all(e.actor == OPERATOR for e in seen)

    def test_event_log_is_bounded(self):
        """Should keep only the newest events while listeners see them all."""
        runtime = make_runtime(event_log_max_events=5)
        form = published_contact_form(runtime)
        seen = []
        runtime.events.on_any(seen.append)

        for _ in range(20):
            submit(runtime, form.slug, {"name": "Bot"}, payload={"honeypot": "x"})

        retained = runtime.get_events()
        assert len(retained) == 5
        assert all(e.type == EventType.SUBMISSION_REJECTED for e in retained)
        assert retained == seen[-5:]
        assert len(seen) == 20

    def test_event_log_can_be_disabled(self):
        """Should retain nothing when the bound is 0."""
        runtime = make_runtime(event_log_max_events=0)
        published_contact_form(runtime)
        assert runtime.get_events() == []
