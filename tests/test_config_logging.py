"""
Configuration validation and log redaction tests.
"""

import logging

from viphash.core.config import Settings, load_settings, validate_config
from viphash.util.logging import StructuredLogger, sanitize_payload


class TestConfig:

    def test_defaults_are_valid(self, tmp_path):
        assert validate_config(Settings(home=tmp_path)) == []

    def test_invalid_values_are_reported(self, tmp_path):
        settings = Settings(home=tmp_path, store_backend="redis", sync_timeout=0, request_timeout=-1)
        issues = validate_config(settings)
        assert len(issues) == 3
        assert any("VIPHASH_STORE_BACKEND" in issue for issue in issues)

    def test_home_override(self, tmp_path):
        settings = load_settings(str(tmp_path / "elsewhere"))
        assert settings.home == tmp_path / "elsewhere"
        assert settings.db_path == tmp_path / "elsewhere" / "viphash.db"
        assert settings.records_dir == tmp_path / "elsewhere" / "records"


class TestRedaction:

    def test_auth_material_is_redacted(self):
        payload = {"remote": "origin", "auth_material": {"token": "s3cr3t"}, "nested": {"token": "abc"}}
        assert sanitize_payload(payload) == {
            "remote": "origin",
            "auth_material": "[REDACTED]",
            "nested": {"token": "[REDACTED]"}
        }

    def test_long_strings_are_truncated(self):
        assert sanitize_payload("x" * 150) == "x" * 100 + "..."

    def test_failed_operations_log_as_warnings(self, caplog):
        log = StructuredLogger("viphash.test")
        with caplog.at_level(logging.INFO, logger="viphash.test"):
            log.log_sync_phase("push", "origin", 0.0, 0.5, "failed", {"error": "boom", "token": "s3cr3t"})

        assert caplog.records[-1].levelno == logging.WARNING
        assert "sync.push" in caplog.text
        assert "s3cr3t" not in caplog.text
