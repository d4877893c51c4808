"""
Unified exception hierarchy for the SkillSwap engine.

All exceptions inherit from SkillSwapError. Each carries a stable ``kind``
string so callers (and the HTTP layer) can tell rejections apart without
matching on message text.
"""


class SkillSwapError(Exception):
    """Base exception for all SkillSwap errors."""

    kind = "error"
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class InvalidArgument(SkillSwapError):
    """Malformed or out-of-range input (rating bounds, hours, deadline)."""

    kind = "invalid_argument"
    http_status = 400


class Forbidden(SkillSwapError):
    """Actor is not allowed to perform the operation."""

    kind = "forbidden"
    http_status = 403


class NotFound(SkillSwapError):
    """Missing exchange, profile, task or review."""

    kind = "not_found"
    http_status = 404


class InvalidTransition(SkillSwapError):
    """Status edge not permitted, or exchange is terminal/disputed."""

    kind = "invalid_transition"
    http_status = 409


class AlreadyExists(SkillSwapError):
    """Duplicate review or response."""

    kind = "already_exists"
    http_status = 409


class Unavailable(SkillSwapError):
    """Transient storage failure. Safe for the caller to retry."""

    kind = "unavailable"
    http_status = 503


class ConfigError(SkillSwapError):
    """Configuration error (invalid database URL, etc.)."""

    kind = "config_error"
    http_status = 500
