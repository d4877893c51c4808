"""HTTP surface for the SkillSwap engine."""

from .app import create_app

__all__ = ["create_app"]
