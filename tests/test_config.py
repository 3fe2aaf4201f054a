import json
import logging

import pytest
from pydantic import ValidationError

from bulk_import.core.config import Settings
from bulk_import.core.errors import (
    ERROR_CODES,
    FetchTimeoutError,
    SessionNotFoundError,
    StagingError,
    create_http_exception,
    handle_staging_error,
)
from bulk_import.core.logging_config import CorrelationFilter, StructuredFormatter


class TestSettings:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        settings = Settings(environment="testing")

        assert settings.max_archive_size_bytes == 500 * 1024 * 1024
        assert settings.crawl_session_ttl_seconds == 3600
        assert settings.max_images_per_page == 500
        assert settings.max_redirects == 3

    def test_environment_is_normalized(self):
        assert Settings(environment="PRODUCTION").environment == "production"

    @pytest.mark.parametrize("field,value", [
        ("environment", "qa"),
        ("log_level", "verbose"),
        ("max_archive_size_mb", 0),
        ("crawl_session_ttl_seconds", 0),
        ("fetch_timeout_seconds", 0),
        ("max_redirects", 11),
        ("thumbnail_quality", 100),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("MAX_ARCHIVE_SIZE_MB", "5")
        monkeypatch.setenv("RESOLVE_HOSTNAMES", "false")

        settings = Settings()

        assert settings.max_archive_size_mb == 5
        assert settings.resolve_hostnames is False


class TestErrors:
    """Test error codes and their HTTP mapping."""

    def test_default_codes(self):
        assert SessionNotFoundError("gone").error_code == "SESSION_NOT_FOUND"
        assert FetchTimeoutError("slow").error_code == "TIMEOUT"
        assert StagingError("boom", error_code="CUSTOM").error_code == "CUSTOM"

    def test_staging_error_mapping(self):
        exc = handle_staging_error(SessionNotFoundError("Session abc not found", details={"id": "abc"}))

        assert exc.status_code == 404
        assert exc.detail["error_code"] == "SESSION_NOT_FOUND"
        assert exc.detail["message"] == "Session abc not found"
        assert exc.detail["category"] == "not_found"

    def test_unknown_code_maps_to_500(self):
        exc = handle_staging_error(StagingError("boom", error_code="SOMETHING_ELSE"))

        assert exc.status_code == 500
        assert exc.detail["category"] == "system"

    def test_create_http_exception(self):
        exc = create_http_exception("FILE_TOO_LARGE", {"max_bytes": 10})

        assert exc.status_code == ERROR_CODES["FILE_TOO_LARGE"]["http_status"] == 413
        assert exc.detail["details"] == {"max_bytes": 10}


class TestStructuredFormatter:
    """Test JSON log formatting."""

    def test_session_context_and_extras(self):
        record = logging.LogRecord("bulk_import.test", logging.INFO, __file__, 1,
                                   "Session %s created", ("abc",), None)
        record.session_id = "abc"
        record.source_kind = "archive"
        record.image_count = 3

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "Session abc created"
        assert entry["level"] == "INFO"
        assert entry["session_id"] == "abc"
        assert entry["source_kind"] == "archive"
        assert entry["image_count"] == 3

    def test_correlation_filter_defaults(self):
        record = logging.LogRecord("bulk_import.test", logging.INFO, __file__, 1, "hello", (), None)

        assert CorrelationFilter().filter(record) is True
        entry = json.loads(StructuredFormatter().format(record))

        assert "session_id" not in entry
        assert entry["message"] == "hello"
