"""
Configuration management using pydantic-settings.

All SkillSwap settings are loaded from environment variables
with the SKILLSWAP_ prefix.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class SkillSwapConfig(BaseSettings):
    """
    SkillSwap engine configuration.

    Environment variables are prefixed with SKILLSWAP_, e.g.:
    - SKILLSWAP_DATABASE_URL=sqlite:///data/skillswap.db
    - SKILLSWAP_DISPUTE_RESOLVER_IDS=usr_ops1,usr_ops2
    """

    model_config = {"env_prefix": "SKILLSWAP_"}

    # Storage: empty -> in-memory store
    database_url: str = ""

    # Exchange validation
    max_message_length: int = 1000
    min_estimated_hours: float = 0.5
    max_estimated_hours: float = 100.0

    # Reviews
    default_review_moderation: str = "approved"

    # Disputes
    dispute_resolver_ids: str = ""  # Comma-separated profile ids

    def get_resolver_ids(self) -> list[str]:
        """Return the explicitly configured resolver ids."""
        return [r.strip() for r in self.dispute_resolver_ids.split(",") if r.strip()]

    # Matching
    suggestion_limit: int = 10

    # Logging
    log_level: str = "INFO"
