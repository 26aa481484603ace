"""
Configuration, wiring, notifications, logging helpers and the sweep script.
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mutualstate.core import config, services as services_module
from mutualstate.core.notifications import LoggingNotificationSink, NotificationDispatcher
from mutualstate.core.services import build_services, get_services, reset_services
from mutualstate.util.logging import sanitize_payload

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))
import sweep_stories  # noqa: E402


class TestConfig:
    """Environment-driven settings and their validation."""

    def test_defaults_are_valid(self):
        assert config.validate_config() == []

    def test_invalid_offset_reported(self):
        with patch.object(config, "DAY_RESET_UTC_OFFSET_HOURS", 20):
            issues = config.validate_config()
        assert any("DAY_RESET_UTC_OFFSET_HOURS" in issue for issue in issues)

    def test_invalid_attempts_reported(self):
        with patch.object(config, "TRANSACTION_MAX_ATTEMPTS", 0):
            assert "TRANSACTION_MAX_ATTEMPTS must be >= 1" in config.validate_config()

    def test_debug_enabled_reads_environment(self):
        with patch.dict("os.environ", {"DEBUG": "true"}):
            assert config.debug_enabled()
        with patch.dict("os.environ", {"DEBUG": "false"}):
            assert not config.debug_enabled()

    def test_debug_constant_is_fixed_at_import(self):
        initial = config.DEBUG
        with patch.dict("os.environ", {"DEBUG": "false" if initial else "true"}):
            assert config.debug_enabled() is not initial
            assert config.DEBUG is initial

    def test_ensure_db_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "store.db"
        config.ensure_db_directory(str(path))
        assert path.parent.is_dir()


class TestWiring:
    """build_services assembles a working bundle; get_services caches it."""

    def test_build_rejects_invalid_config(self, db_path):
        with patch.object(services_module, "validate_config", return_value=["broken"]):
            with pytest.raises(ValueError):
                build_services(db_path=db_path)

    def test_singleton(self, db_path):
        reset_services()
        with patch.object(services_module, "DB_PATH", db_path):
            first = get_services()
            second = get_services()
        assert first is second
        assert first.store.db_path == db_path
        reset_services()

    def test_notifications_can_be_disabled(self, db_path):
        bundle = build_services(db_path=db_path, notifications_enabled=False)
        assert bundle.dispatcher.dispatch("conv", "hello") is None
        bundle.close()


class TestDispatcher:
    """Fire-and-forget delivery."""

    def test_delivers_to_sink(self, sink):
        dispatcher = NotificationDispatcher(sink, enabled=True, max_workers=1)

        future = dispatcher.dispatch("conv", "hello")
        assert future.result(timeout=5) is True
        dispatcher.shutdown()

        assert sink.posted == [("conv", "hello")]

    def test_sink_failure_is_logged_not_raised(self):
        sink = MagicMock()
        sink.post.side_effect = ConnectionError("down")
        dispatcher = NotificationDispatcher(sink, enabled=True, max_workers=1)

        with patch("mutualstate.core.notifications.logger") as mock_logger:
            assert dispatcher.dispatch("conv", "hello").result(timeout=5) is False
            dispatcher.shutdown()

        mock_logger.log_notification.assert_called_once_with("conv", status="failed", error="down")

    def test_dispatch_after_shutdown_is_dropped(self):
        dispatcher = NotificationDispatcher(LoggingNotificationSink(), enabled=True, max_workers=1)
        dispatcher.shutdown()

        assert dispatcher.dispatch("conv", "hello") is None

    def test_default_sink_only_logs(self):
        dispatcher = NotificationDispatcher(enabled=True, max_workers=1)
        assert isinstance(dispatcher.sink, LoggingNotificationSink)

        with patch("mutualstate.core.notifications.logger") as mock_logger:
            for n in range(3):
                dispatcher.dispatch("conv", f"message {n}").result(timeout=5)
            dispatcher.shutdown()

        mock_logger.info.assert_any_call("System message to conv: message 2")
        assert vars(dispatcher.sink) == {}


class TestLoggingHelpers:
    """Audit payload sanitisation."""

    def test_sensitive_fields_redacted(self):
        payload = {"text": "private words", "story_id": "conv1_msg1", "nested": {"token": "abc"}}
        assert sanitize_payload(payload) == {
            "text": "[REDACTED]",
            "story_id": "conv1_msg1",
            "nested": {"token": "[REDACTED]"},
        }

    def test_long_strings_truncated(self):
        assert sanitize_payload("x" * 150) == "x" * 100 + "..."


class TestSweepScript:
    """scripts/sweep_stories.py reports on the story tables."""

    def test_json_report(self, db_path, capsys):
        assert sweep_stories.main(["--db-path", db_path, "--json"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["expired_removed"] == 0
        assert report["pending_review"] == 0
        assert report["dry_run"] is False

    def test_text_report_dry_run(self, db_path, capsys):
        assert sweep_stories.main(["--db-path", db_path, "--dry-run"]) == 0
        assert "Would remove 0 expired stories" in capsys.readouterr().out
