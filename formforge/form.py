"""Form aggregate for FormForge.

A ``FormAggregate`` is one version of a form: its metadata, lifecycle status
and ordered fields. All versions that descend from one original form share a
``lineage_id``; storage keys versions on (lineage_id, version) rather than
overwriting a single record.

The aggregate enforces the field-level invariants itself:
- field keys are unique within the form
- ``order`` values are always exactly 0..n-1 after any add, delete or reorder
- no field mutation is possible unless the form is a DRAFT

Lifecycle transitions live in ``formforge.state_machine``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
import uuid

from formforge.errors import (
    DuplicateFieldKeyError,
    FormNotEditableError,
    InvalidReorderError,
    NotFoundError,
)
from formforge.fields import FieldSchema
from formforge.types import FormStatus


def new_form_id() -> str:
    return f"frm_{uuid.uuid4().hex[:16]}"


def new_lineage_id() -> str:
    return f"lin_{uuid.uuid4().hex[:16]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class FormAggregate:
    """One version of a form.

    Attributes:
        id: Identifier of this exact version
        lineage_id: Identifier shared by every version of the same form
        title: Form title
        description: Optional description
        slug: Public identifier, assigned on first publish of the lineage
        status: Lifecycle status of this version
        version: Positive version number within the lineage
        fields: Fields sorted by ``order``
        settings: Free-form presentation settings
        response_count: Number of responses stored against this version

    Examples:
        >>> form = FormAggregate.new(title="Feedback")
        >>> form.status
        <FormStatus.DRAFT: 'DRAFT'>
        >>> form.version, form.field_count
        (1, 0)
    """

    id: str
    lineage_id: str
    title: str
    description: Optional[str] = None
    slug: Optional[str] = None
    status: FormStatus = FormStatus.DRAFT
    version: int = 1
    fields: List[FieldSchema] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    response_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        title: str,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> "FormAggregate":
        """Create version 1 of a brand-new lineage, in DRAFT."""
        return cls(
            id=new_form_id(),
            lineage_id=new_lineage_id(),
            title=title,
            description=description,
            settings=dict(settings or {}),
        )

    @property
    def field_count(self) -> int:
        return len(self.fields)

    @property
    def is_editable(self) -> bool:
        return self.status == FormStatus.DRAFT

    def field_keys(self) -> List[str]:
        return [f.field_key for f in self.fields]

    def get_field(self, field_id: str) -> FieldSchema:
        for f in self.fields:
            if f.id == field_id:
                return f
        raise NotFoundError("Field", field_id)

    def get_field_by_key(self, field_key: str) -> Optional[FieldSchema]:
        for f in self.fields:
            if f.field_key == field_key:
                return f
        return None

    def require_editable(self) -> None:
        """Raise FormNotEditableError unless this version is a DRAFT."""
        if not self.is_editable:
            raise FormNotEditableError(self.id, self.status)

    # Field edits

    def add_field(self, new_field: FieldSchema) -> FieldSchema:
        """Append a field at the end of the form."""
        self.require_editable()
        if self.get_field_by_key(new_field.field_key) is not None:
            raise DuplicateFieldKeyError(new_field.field_key)
        placed = replace(new_field, order=len(self.fields))
        self.fields.append(placed)
        self.touch()
        return placed

    def replace_field(self, updated: FieldSchema) -> FieldSchema:
        """Swap in a new definition for an existing field, keeping its position."""
        self.require_editable()
        current = self.get_field(updated.id)
        clash = self.get_field_by_key(updated.field_key)
        if clash is not None and clash.id != updated.id:
            raise DuplicateFieldKeyError(updated.field_key)
        index = self.fields.index(current)
        placed = replace(updated, order=index)
        self.fields[index] = placed
        self.touch()
        return placed

    def remove_field(self, field_id: str) -> FieldSchema:
        """Delete a field and close the gap in the ordering."""
        self.require_editable()
        removed = self.get_field(field_id)
        remaining = [f for f in self.fields if f.id != field_id]
        self.fields = _renumber(remaining)
        self.touch()
        return removed

    def reorder_fields(self, field_ids: Sequence[str]) -> List[FieldSchema]:
        """Put the fields in the given order.

        ``field_ids`` must list every field of the form exactly once.
        """
        self.require_editable()
        current = {f.id: f for f in self.fields}
        if len(field_ids) != len(current) or set(field_ids) != set(current):
            raise InvalidReorderError(
                "Reorder must list every field of the form exactly once"
            )
        self.fields = _renumber([current[field_id] for field_id in field_ids])
        self.touch()
        return list(self.fields)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def clone_as_draft(self, version: Optional[int] = None) -> "FormAggregate":
        """Copy this version into a new DRAFT, by default one version higher.

        Field ids, keys and order are kept so operators can follow a field
        across versions. The slug is kept because the lineage's public
        identity does not change between versions.
        """
        return FormAggregate(
            id=new_form_id(),
            lineage_id=self.lineage_id,
            title=self.title,
            description=self.description,
            slug=self.slug,
            status=FormStatus.DRAFT,
            version=version if version is not None else self.version + 1,
            fields=list(self.fields),
            settings=dict(self.settings),
        )

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization (operator view)."""
        return {
            "id": self.id,
            "lineageId": self.lineage_id,
            "title": self.title,
            "description": self.description,
            "slug": self.slug,
            "status": self.status.value,
            "version": self.version,
            "fields": [f.to_dict() for f in self.fields],
            "settings": dict(self.settings),
            "responseCount": self.response_count,
            "fieldCount": self.field_count,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "publishedAt": _iso(self.published_at),
            "archivedAt": _iso(self.archived_at),
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Projection served on the public read path."""
        return {
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "version": self.version,
            "settings": dict(self.settings),
            "fields": [f.to_public_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormAggregate":
        """Create FormAggregate from dict."""
        fields = sorted(
            (FieldSchema.from_dict(f) for f in data.get("fields", [])),
            key=lambda f: f.order,
        )
        return cls(
            id=data["id"],
            lineage_id=data["lineageId"],
            title=data["title"],
            description=data.get("description"),
            slug=data.get("slug"),
            status=FormStatus(data["status"]),
            version=data["version"],
            fields=fields,
            settings=dict(data.get("settings") or {}),
            response_count=data.get("responseCount", 0),
            created_at=_parse_ts(data.get("createdAt")) or utcnow(),
            updated_at=_parse_ts(data.get("updatedAt")) or utcnow(),
            published_at=_parse_ts(data.get("publishedAt")),
            archived_at=_parse_ts(data.get("archivedAt")),
        )


def _renumber(fields: List[FieldSchema]) -> List[FieldSchema]:
    return [replace(f, order=index) for index, f in enumerate(fields)]


__all__ = [
    "FormAggregate",
    "new_form_id",
    "new_lineage_id",
    "utcnow",
]
