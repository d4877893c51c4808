"""Tests for SkillSwapConfig."""

from __future__ import annotations

from skillswap.infra.config import SkillSwapConfig


class TestDefaults:
    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "MAX_MESSAGE_LENGTH", "DEFAULT_REVIEW_MODERATION"):
            monkeypatch.delenv(f"SKILLSWAP_{name}", raising=False)
        config = SkillSwapConfig()

        assert config.database_url == ""
        assert config.max_message_length == 1000
        assert config.min_estimated_hours == 0.5
        assert config.max_estimated_hours == 100.0
        assert config.default_review_moderation == "approved"
        assert config.suggestion_limit == 10
        assert config.log_level == "INFO"


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SKILLSWAP_DATABASE_URL", "sqlite:///tmp/skillswap.db")
        monkeypatch.setenv("SKILLSWAP_MAX_MESSAGE_LENGTH", "280")
        monkeypatch.setenv("SKILLSWAP_MAX_ESTIMATED_HOURS", "40")

        config = SkillSwapConfig()
        assert config.database_url == "sqlite:///tmp/skillswap.db"
        assert config.max_message_length == 280
        assert config.max_estimated_hours == 40.0

    def test_unprefixed_ignored(self, monkeypatch):
        monkeypatch.delenv("SKILLSWAP_SUGGESTION_LIMIT", raising=False)
        monkeypatch.setenv("SUGGESTION_LIMIT", "3")
        assert SkillSwapConfig().suggestion_limit == 10


class TestResolverIds:
    def test_empty(self):
        assert SkillSwapConfig(dispute_resolver_ids="").get_resolver_ids() == []

    def test_parses_and_strips(self):
        config = SkillSwapConfig(dispute_resolver_ids=" usr_ops1, ,usr_ops2 ")
        assert config.get_resolver_ids() == ["usr_ops1", "usr_ops2"]
