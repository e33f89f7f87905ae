"""Tests for timestamp, formatting and settings helpers."""

from datetime import datetime, timezone

import pytest

from scripts.lib.errors import ConfigError
from scripts.lib.settings import load_policy_config
from scripts.lib.utils import (
    calc_change,
    format_local_datetime,
    format_phone,
    local_day_start,
    normalize_city,
    parse_timestamp,
    percent_of,
    relative_time_label,
)

UTC = timezone.utc


class TestParseTimestamp:
    def test_z_suffix(self):
        assert parse_timestamp("2026-10-14T15:00:00Z") == datetime(2026, 10, 14, 15, tzinfo=UTC)

    def test_offset_converted_to_utc(self):
        parsed = parse_timestamp("2026-10-14T12:00:00-03:00")
        assert parsed == datetime(2026, 10, 14, 15, tzinfo=UTC)
        assert parsed.tzinfo == UTC

    def test_naive_taken_as_utc(self):
        assert parse_timestamp(datetime(2026, 1, 1)) == datetime(2026, 1, 1, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "not a date", 12345])
    def test_unusable_values(self, value):
        assert parse_timestamp(value) is None


class TestLocalTime:
    def test_local_day_start_before_utc_midnight(self):
        now = datetime(2026, 10, 14, 2, 0, tzinfo=UTC)  # 23:00 on the 13th
        start = local_day_start(now, -3)
        assert (start.day, start.hour) == (13, 0)
        assert start.astimezone(UTC) == datetime(2026, 10, 13, 3, tzinfo=UTC)

    def test_format_local_datetime(self):
        assert format_local_datetime("2026-10-14T15:05:00Z", -3) == "14/10/2026, 12:05"
        assert format_local_datetime(None, -3) == ""


class TestFormatPhone:
    @pytest.mark.parametrize("raw,expected", [
        ("5581981846070", "(81) 98184-6070"),
        ("558132221111", "(81) 3222-1111"),
        ("81981846070", "(81) 98184-6070"),
        ("8132221111", "(81) 3222-1111"),
        ("+55 (81) 98184-6070", "(81) 98184-6070"),
        ("12345", "12345"),
        ("", ""),
        (None, ""),
    ])
    def test_formats(self, raw, expected):
        assert format_phone(raw) == expected


class TestCalcChange:
    def test_from_zero(self):
        assert calc_change(5, 0) == 100
        assert calc_change(0, 0) == 0

    def test_rounded_percent(self):
        assert calc_change(15, 10) == 50
        assert calc_change(1, 3) == -67


class TestRelativeTimeLabel:
    NOW = datetime(2026, 10, 14, 15, 0, tzinfo=UTC)

    @pytest.mark.parametrize("value,expected", [
        ("2026-10-12T15:00:00Z", "há 2d"),
        ("2026-10-14T12:00:00Z", "há 3h"),
        ("2026-10-14T14:45:00Z", "há 15min"),
        ("2026-10-14T14:59:30Z", "agora"),
    ])
    def test_labels(self, value, expected):
        assert relative_time_label(value, self.NOW) == expected


class TestPolicyConfig:
    def test_default_file_has_all_sections(self):
        config = load_policy_config()
        assert config["sessions"]["gap_minutes"] == 30
        assert config["sessions"]["power_user_min_sessions"] == 2
        assert "PB" in config["focus_region"]["tokens"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_policy_config(tmp_path / "nope.yaml")

    def test_missing_sections(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("version: 1\nsessions: {gap_minutes: 30}\n", encoding="utf-8")
        with pytest.raises(ConfigError) as exc:
            load_policy_config(path)
        assert "funnel" in str(exc.value)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("sessions: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_policy_config(path)


class TestNormalizeCity:
    @pytest.mark.parametrize("raw, expected", [
        ("São Paulo - SP", "São Paulo"),
        ("são paulo", "São Paulo"),
        ("JOÃO PESSOA-pb", "João Pessoa"),
        ("  Recife  ", "Recife"),
        (None, ""),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_city(raw) == expected


class TestPercentOf:
    def test_halves_round_up(self):
        assert percent_of(1, 8) == 13
        assert percent_of(1, 3) == 33

    def test_empty_total(self):
        assert percent_of(0, 0) == 0
