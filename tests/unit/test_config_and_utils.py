"""
Unit tests for settings, datetime helpers and update-source selection.
"""

import logging
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from chatsync.core.config import Settings
from chatsync.core.logger import setup_logger
from chatsync.infrastructure.realtime.polling_source import PollingUpdateSource
from chatsync.infrastructure.realtime.sse_source import SseUpdateSource
from chatsync.services.factory import build_update_source
from chatsync.utils.datetime_utils import ensure_utc, format_date_label, local_date


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.uses_push
        assert not settings.uses_polling
        assert settings.DEGRADED_AFTER_FAILURES == 3
        assert settings.KEEPALIVE_TIMEOUT_SECONDS > 15

    def test_transport_from_environment(self, monkeypatch):
        monkeypatch.setenv("UPDATE_TRANSPORT", "poll")
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "1.5")

        settings = Settings(_env_file=None)

        assert settings.uses_polling
        assert settings.POLL_INTERVAL_SECONDS == 1.5


class TestLogger:
    """Tests for module logger setup."""

    def test_record_is_written_once(self, capsys):
        log = setup_logger("chatsync.services.emission_check")
        try:
            log.warning("written once")

            assert capsys.readouterr().out.count("written once") == 1
            assert not logging.getLogger("chatsync").handlers
        finally:
            for handler in list(log.handlers):
                log.removeHandler(handler)


class TestBuildUpdateSource:
    """Tests for picking the transport implementation."""

    def test_push(self, settings, credentials):
        source = build_update_source(settings, credentials, api=None, client=httpx.AsyncClient())
        assert isinstance(source, SseUpdateSource)

    def test_poll(self, settings, credentials):
        settings.UPDATE_TRANSPORT = "poll"
        source = build_update_source(settings, credentials, api=None)
        assert isinstance(source, PollingUpdateSource)


class TestDatetimeUtils:
    """Tests for timestamp normalization and date labels."""

    def test_ensure_utc_naive_assumed_utc(self):
        assert ensure_utc(datetime(2025, 1, 24, 9, 0)).tzinfo == timezone.utc
        assert ensure_utc(None) is None

    def test_local_date_uses_display_timezone(self):
        late = datetime(2025, 1, 24, 23, 30, tzinfo=timezone.utc)
        assert local_date(late, "UTC") == date(2025, 1, 24)
        assert local_date(late, "Asia/Tokyo") == date(2025, 1, 25)

    def test_date_labels(self):
        today = date(2025, 1, 24)
        assert format_date_label(today, today) == "Today"
        assert format_date_label(today - timedelta(days=1), today) == "Yesterday"
        assert format_date_label(date(2025, 1, 2), today) == "2025-01-02"
