"""Slug generation for published forms.

A slug is the URL-safe public identifier of a form lineage:
``"Customer Feedback"`` becomes ``"customer-feedback-a1b2c3"``. The random
suffix keeps slugs of identically titled forms apart.
"""

import re
import secrets
import string
import unicodedata
from typing import Callable, Optional

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
MAX_ATTEMPTS = 10

_NON_WORD = re.compile(r"[^\w-]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")


def slugify(title: str, max_length: int = 50) -> str:
    """Normalize a title into the readable part of a slug.

    Examples:
        >>> slugify("Customer   Feedback!")
        'customer-feedback'
        >>> slugify("Café Résumé")
        'cafe-resume'
    """
    normalized = unicodedata.normalize("NFKD", title)
    slug = _WHITESPACE.sub("-", normalized)
    slug = _NON_WORD.sub("", slug).lower()
    slug = _DASHES.sub("-", slug).strip("-_")
    return slug[:max_length].rstrip("-")


def random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def generate_slug(
    title: str,
    max_length: int = 50,
    suffix_length: int = 6,
    is_taken: Optional[Callable[[str], bool]] = None,
) -> str:
    """Build a slug for ``title`` that ``is_taken`` does not reject.

    Raises:
        RuntimeError: If no free slug was found after several attempts
    """
    base = slugify(title, max_length) or "form"
    for _ in range(MAX_ATTEMPTS):
        candidate = f"{base}-{random_suffix(suffix_length)}"
        if is_taken is None or not is_taken(candidate):
            return candidate
    raise RuntimeError(f"Could not find a free slug for {title!r}")


__all__ = [
    "slugify",
    "random_suffix",
    "generate_slug",
]
