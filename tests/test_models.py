"""Tests for shared models and settings."""

from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from visibility_insights.config import Settings, get_settings
from visibility_insights.core.errors import FailureClass, classify_status
from visibility_insights.core.models import (
    DateKey,
    days_in_range,
    location_id_from_name,
    parse_metric_value,
    split_location_name,
)


@pytest.mark.parametrize("name,expected", [
    ("accounts/1/locations/2", "2"),
    ("locations/2", "2"),
    ("2", "2"),
    ("/accounts/1/locations/2/", "2"),
])
def test_location_id_from_name(name, expected):
    assert location_id_from_name(name) == expected


@pytest.mark.parametrize("name", ["", "accounts/1", "accounts/1/stores/2", "a/b/c"])
def test_location_id_rejects_malformed(name):
    with pytest.raises(ValueError):
        location_id_from_name(name)


def test_split_location_name():
    assert split_location_name("accounts/1/locations/2") == ("1", "2")
    with pytest.raises(ValueError):
        split_location_name("locations/2")


def test_days_in_range_is_inclusive():
    assert len(days_in_range(date(2024, 1, 1), date(2024, 1, 31))) == 31
    assert days_in_range(date(2024, 1, 2), date(2024, 1, 1)) == []


def test_parse_metric_value_bounds():
    assert parse_metric_value("1000000") == 1_000_000
    assert parse_metric_value("1000001") is None
    assert parse_metric_value(" 7 ") == 7


@pytest.mark.parametrize("status,failure", [
    (200, None),
    (400, FailureClass.MALFORMED_REQUEST),
    (401, FailureClass.AUTH_FAILURE),
    (403, FailureClass.PERMISSION_DENIED),
    (404, FailureClass.UNAVAILABLE),
    (408, FailureClass.TIMEOUT),
    (429, FailureClass.RATE_LIMITED),
    (502, FailureClass.SERVER_ERROR),
    (418, FailureClass.OTHER),
])
def test_classify_status(status, failure):
    assert classify_status(status) is failure


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.max_attempts == 3
        assert settings.backoff_cap == 5.0
        assert settings.access_token == ""

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("VISIBILITY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("VISIBILITY_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("VISIBILITY_LOG_LEVEL", "DEBUG")
        settings = get_settings()

        assert settings.max_attempts == 5
        assert settings.access_token == "env-token"
        assert settings.log_level == "DEBUG"

    def test_ignores_unprefixed_variables(self, monkeypatch):
        monkeypatch.setenv("MAX_ATTEMPTS", "9")
        assert Settings().max_attempts == 3

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()


class TestDateKey:
    def test_valid_date(self):
        assert DateKey(year=2024, month=2, day=29).to_date() == date(2024, 2, 29)

    @pytest.mark.parametrize("year,month,day", [(2024, 13, 1), (2024, 0, 1), (2023, 2, 29), (2024, 4, 31)])
    def test_rejects_impossible_dates(self, year, month, day):
        with pytest.raises(ValidationError):
            DateKey(year=year, month=month, day=day)
