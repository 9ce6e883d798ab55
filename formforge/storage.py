"""Storage collaborator contract for FormForge.

The core never talks to a database directly. It calls a ``FormStore``; each
call is assumed atomic on its own, and nothing more. Errors raised by a
store (timeouts, connection failures) propagate to the caller untouched and
are never retried here.

``InMemoryFormStore`` is the reference implementation used by tests and
small deployments. It serializes each call behind a lock and hands out
copies, so no caller can change stored state without going through
``save_form`` / ``save_response``.
"""

import copy
import threading
from typing import Dict, List, Optional

from typing_extensions import Protocol, runtime_checkable

from formforge.fields import FieldSchema
from formforge.form import FormAggregate
from formforge.responses import ResponseAggregate
from formforge.types import FormStatus


@runtime_checkable
class FormStore(Protocol):
    """Operations the core needs from persistent storage."""

    def load_form(self, form_id: str) -> Optional[FormAggregate]:
        ...

    def save_form(self, form: FormAggregate) -> FormAggregate:
        ...

    def load_fields_ordered(self, form_id: str) -> List[FieldSchema]:
        ...

    def save_response(self, response: ResponseAggregate) -> ResponseAggregate:
        ...

    def count_responses(self, form_id: str) -> int:
        ...

    def count_lineage_responses(self, lineage_id: str) -> int:
        ...

    def find_published_by_slug(self, slug: str) -> Optional[FormAggregate]:
        ...

    def find_lineage(self, lineage_id: str) -> List[FormAggregate]:
        ...

    def slug_taken(self, slug: str, exclude_lineage_id: Optional[str] = None) -> bool:
        ...

    def load_response(self, response_id: str) -> Optional[ResponseAggregate]:
        ...

    def list_responses(self, form_id: str) -> List[ResponseAggregate]:
        ...

    def delete_response(self, response_id: str) -> bool:
        ...


class InMemoryFormStore:
    """Dictionary-backed ``FormStore``.

    Forms are keyed by id; a secondary index keys them by
    (lineage_id, version) so each version of a lineage is a separate record.
    """

    def __init__(self) -> None:
        self._forms: Dict[str, FormAggregate] = {}
        self._versions: Dict[tuple, str] = {}
        self._responses: Dict[str, ResponseAggregate] = {}
        self._lock = threading.RLock()

    def load_form(self, form_id: str) -> Optional[FormAggregate]:
        with self._lock:
            form = self._forms.get(form_id)
            if form is None:
                return None
            loaded = copy.deepcopy(form)
            loaded.response_count = self._count(form_id)
            return loaded

    def save_form(self, form: FormAggregate) -> FormAggregate:
        with self._lock:
            key = (form.lineage_id, form.version)
            owner = self._versions.get(key)
            if owner is not None and owner != form.id:
                raise ValueError(
                    f"Version {form.version} of lineage {form.lineage_id} already exists"
                )
            stored = copy.deepcopy(form)
            stored.response_count = self._count(form.id)
            self._forms[form.id] = stored
            self._versions[key] = form.id
            return copy.deepcopy(stored)

    def load_fields_ordered(self, form_id: str) -> List[FieldSchema]:
        with self._lock:
            form = self._forms.get(form_id)
            if form is None:
                return []
            return sorted(form.fields, key=lambda f: f.order)

    def save_response(self, response: ResponseAggregate) -> ResponseAggregate:
        with self._lock:
            self._responses[response.id] = response
            return response

    def count_responses(self, form_id: str) -> int:
        with self._lock:
            return self._count(form_id)

    def count_lineage_responses(self, lineage_id: str) -> int:
        with self._lock:
            return sum(1 for r in self._responses.values() if r.lineage_id == lineage_id)

    def find_published_by_slug(self, slug: str) -> Optional[FormAggregate]:
        with self._lock:
            for form in self._forms.values():
                if form.slug == slug and form.status == FormStatus.PUBLISHED:
                    return self.load_form(form.id)
            return None

    def find_lineage(self, lineage_id: str) -> List[FormAggregate]:
        with self._lock:
            versions = [
                self.load_form(form_id)
                for (lineage, _), form_id in self._versions.items()
                if lineage == lineage_id
            ]
            return sorted(versions, key=lambda f: f.version)

    def slug_taken(self, slug: str, exclude_lineage_id: Optional[str] = None) -> bool:
        with self._lock:
            return any(
                form.slug == slug and form.lineage_id != exclude_lineage_id
                for form in self._forms.values()
            )

    def load_response(self, response_id: str) -> Optional[ResponseAggregate]:
        with self._lock:
            return self._responses.get(response_id)

    def list_responses(self, form_id: str) -> List[ResponseAggregate]:
        with self._lock:
            responses = [r for r in self._responses.values() if r.form_id == form_id]
            return sorted(responses, key=lambda r: r.submitted_at, reverse=True)

    def delete_response(self, response_id: str) -> bool:
        with self._lock:
            return self._responses.pop(response_id, None) is not None

    def _count(self, form_id: str) -> int:
        return sum(1 for r in self._responses.values() if r.form_id == form_id)


__all__ = [
    "FormStore",
    "InMemoryFormStore",
]
