"""Test suite for the FormForge form builder core.

This package contains tests for:
- Field registry (per-type validation, coercion, definition checks)
- Form aggregate (field ordering, key uniqueness, editability)
- State machine transitions (valid and invalid, draft forking)
- Submission validation and anti-automation screening
- Event system (emission, serialization)
- Storage and slug generation
- Integration scenarios through FormRuntime
"""
