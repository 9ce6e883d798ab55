"""Unit tests for settings and error payloads."""

import pytest
from pydantic import ValidationError

from formforge.config import Settings
from formforge.errors import (
    FieldError,
    FormNotEditableError,
    NotFoundError,
    errors_by_field,
)
from formforge.types import FieldErrorCode, FormStatus


class TestSettings:
    """Test environment-driven configuration."""

    def test_defaults(self):
        """Should ship the documented defaults."""
        settings = Settings(_env_file=None)
        assert settings.min_dwell_ms == 2000
        assert settings.honeypot_enabled is True
        assert settings.require_load_timestamp is False
        assert settings.rate_limit_per_window == 20
        assert settings.rate_limit_window_seconds == 3600
        assert settings.event_log_max_events == 1000

    def test_environment_override(self, monkeypatch):
        """Should read FORMFORGE_ prefixed variables."""
        monkeypatch.setenv("FORMFORGE_MIN_DWELL_MS", "1500")
        monkeypatch.setenv("FORMFORGE_HONEYPOT_ENABLED", "false")
        settings = Settings(_env_file=None)
        assert settings.min_dwell_ms == 1500
        assert settings.honeypot_enabled is False

    def test_negative_dwell_refused(self):
        """Should refuse a negative dwell threshold."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, min_dwell_ms=-1)


class TestErrorPayloads:
    """Test error serialization."""

    def test_not_found(self):
        """Should carry code, status hint and message."""
        error = NotFoundError("Form", "frm_1")
        assert error.http_status == 404
        assert error.to_dict() == {
            "ok": False,
            "error": {"code": "not_found", "message": "Form not found: frm_1"},
        }

    def test_not_editable(self):
        """Should name the blocking status."""
        error = FormNotEditableError("frm_1", FormStatus.PUBLISHED)
        assert error.http_status == 409
        assert "PUBLISHED" in error.message

    def test_field_error_round_trip(self):
        """Should restore a field error from its dict."""
        error = FieldError("email", FieldErrorCode.INVALID_FORMAT, "Invalid email format", received="x")
        assert FieldError.from_dict(error.to_dict()) == error
        assert errors_by_field([error]) == {"email": "Invalid email format"}
