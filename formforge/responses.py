"""Response aggregate for FormForge.

A ``ResponseAggregate`` is the accepted, validated record of one submission.
It references the exact form version it was validated against and carries a
snapshot of that version's field definitions, so the response stays readable
after later versions rename labels or drop fields.

Responses are immutable. The only change allowed after creation is flagging
one as suspicious, which produces a new instance.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from formforge.registry import FieldRegistry, default_registry
from formforge.types import FieldType, ResponseStatus


def new_response_id() -> str:
    return f"rsp_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class ResponseAggregate:
    """One accepted submission.

    Attributes:
        id: Response identifier
        form_id: Id of the exact form version submitted against
        form_version: Version number of that form
        lineage_id: Lineage of that form
        values: Typed values keyed by field key
        submitted_at: UTC time the submission was accepted
        submission_ip: Caller-supplied client IP
        status: accepted, or flagged after review
        schema_snapshot: Field definitions that validated this response
    """
    id: str
    form_id: str
    form_version: int
    lineage_id: str
    values: Dict[str, Any]
    submitted_at: datetime
    submission_ip: Optional[str] = None
    status: ResponseStatus = ResponseStatus.ACCEPTED
    schema_snapshot: List[Dict[str, Any]] = field(default_factory=list)

    def flagged(self) -> "ResponseAggregate":
        """Return a copy of this response marked as flagged."""
        return replace(self, status=ResponseStatus.FLAGGED)

    def wire_values(self, registry: Optional[FieldRegistry] = None) -> Dict[str, Optional[str]]:
        """Values converted back to their string wire format."""
        registry = registry or default_registry()
        types = {f["fieldKey"]: FieldType(f["fieldType"]) for f in self.schema_snapshot}
        result: Dict[str, Optional[str]] = {}
        for key, value in self.values.items():
            field_type = types.get(key)
            if field_type is None:
                result[key] = None if value is None else str(value)
            else:
                result[key] = registry.get(field_type).serialize(value)
        return result

    def to_dict(self, registry: Optional[FieldRegistry] = None) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "formId": self.form_id,
            "formVersion": self.form_version,
            "lineageId": self.lineage_id,
            "values": self.wire_values(registry),
            "submittedAt": self.submitted_at.isoformat(),
            "submissionIp": self.submission_ip,
            "status": self.status.value,
            "schemaSnapshot": list(self.schema_snapshot),
        }


__all__ = [
    "ResponseAggregate",
    "new_response_id",
]
