"""Tests for Settings, SessionConfig, and the extraction backend enum."""

from __future__ import annotations

import dataclasses

import pytest

from src.config import Settings, get_settings
from src.pipeline_config import DEFAULT_TOPIC_CHECKLIST, ExtractionBackend, SessionConfig

# ---------------------------------------------------------------------------
# Enum tests
# ---------------------------------------------------------------------------


class TestExtractionBackend:
    def test_values(self) -> None:
        assert ExtractionBackend.RULES.value == "rules"
        assert ExtractionBackend.CLAUDE.value == "claude"

    def test_from_string(self) -> None:
        assert ExtractionBackend("rules") is ExtractionBackend.RULES
        assert ExtractionBackend("claude") is ExtractionBackend.CLAUDE

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            ExtractionBackend("invalid")

    def test_is_str_subclass(self) -> None:
        """Enum values behave as plain strings for JSON serialization."""
        assert isinstance(ExtractionBackend.RULES, str)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.gap_timeout_ms == 5000
        assert settings.extraction_backend == "rules"
        assert settings.visibility_threshold == 0.5
        assert settings.scheduled_duration_min == 45
        assert settings.planner_gateway_url == ""

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GAP_TIMEOUT_MS", "2500")
        monkeypatch.setenv("DISPATCH_MAX_ATTEMPTS", "7")
        settings = Settings(_env_file=None)
        assert settings.gap_timeout_ms == 2500
        assert settings.dispatch_max_attempts == 7

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


# ---------------------------------------------------------------------------
# SessionConfig
# ---------------------------------------------------------------------------


class TestSessionConfig:
    def test_defaults_match_settings(self) -> None:
        assert SessionConfig() == SessionConfig.from_settings(Settings(_env_file=None))

    def test_from_settings_converts_units(self) -> None:
        settings = Settings(_env_file=None, scheduled_duration_min=30, extraction_backend="claude")
        config = SessionConfig.from_settings(settings)
        assert config.scheduled_duration_ms == 30 * 60_000
        assert config.extraction_backend is ExtractionBackend.CLAUDE

    def test_overrides_win(self) -> None:
        config = SessionConfig.from_settings(
            Settings(_env_file=None), gap_timeout_ms=1000, visibility_threshold=0.8
        )
        assert config.gap_timeout_ms == 1000
        assert config.visibility_threshold == 0.8

    def test_frozen(self) -> None:
        config = SessionConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.gap_timeout_ms = 10  # type: ignore[misc]

    def test_checklist_is_per_instance(self) -> None:
        first, second = SessionConfig(), SessionConfig()
        first.topic_checklist["pensions"] = ("pension",)
        assert "pensions" not in second.topic_checklist
        assert "pensions" not in DEFAULT_TOPIC_CHECKLIST

    def test_default_checklist_topics(self) -> None:
        assert list(DEFAULT_TOPIC_CHECKLIST) == [
            "portfolio performance",
            "risk tolerance",
            "tax planning",
            "estate planning",
            "ESG investments",
        ]
