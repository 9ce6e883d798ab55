"""FormForge form builder core.

FormForge is the domain core of a form builder. It provides:
- Versioned forms with a DRAFT / PUBLISHED / ARCHIVED lifecycle
- Fork-on-edit drafts that never disturb a live published version
- A pluggable field type registry with per-type validation and coercion
- Public submission handling with batched, per-field validation errors
- Anti-automation screening (honeypot, dwell time, per-IP rate limit)
- An audit event stream for every operator and public action

Transport, authentication and persistence engines live outside this package;
storage is reached through the ``FormStore`` protocol.

Basic usage:
    >>> from formforge import FormRuntime
    >>> from formforge.config import Settings
    >>> runtime = FormRuntime(settings=Settings(min_dwell_ms=0, rate_limit_per_window=0))
    >>> form = runtime.create_form({"kind": "operator", "id": "user_1"}, title="Contact us")
    >>> print(form.status.value)
    DRAFT
"""

__version__ = "0.1.0"
__author__ = "FormForge Team"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formforge.runtime import FormRuntime

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "FormRuntime",
]
