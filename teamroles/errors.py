"""
Error taxonomy for the assignment pipeline.

Validation errors are never retried. Transient oracle errors (network, timeout,
429, 5xx) are retried by the executor. Everything carries a human-readable
message and an error_type tag used by orchestrator outcomes and the API.
"""
from __future__ import annotations

import asyncio


class TeamRolesError(Exception):
    """Base class for every error raised by this package."""

    error_type = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------- Validation ----------


class ValidationError(TeamRolesError):
    """Bad input: wrong roster size, wrong role count, malformed request."""

    error_type = "validation"


class OracleResponseError(ValidationError):
    """Oracle replied, but the reply does not have the documented shape or range."""


class RosterIncompleteError(ValidationError):
    """Roster does not have exactly N members."""


class AssignmentError(TeamRolesError):
    """Matching solver produced a degenerate or incomplete assignment."""

    error_type = "validation"


# ---------- Lookup / state ----------


class NotFoundError(TeamRolesError):
    error_type = "not_found"


class ConflictError(TeamRolesError):
    """Operation is not allowed in the current state."""

    error_type = "conflict"


class GroupInactiveError(ConflictError):
    """Group is ended or archived; its rosters are frozen."""


class PipelineBusyError(ConflictError):
    """A pipeline run for this roster is already in flight."""


class InvalidTransitionError(ConflictError):
    """Session or group status change not allowed by the state machine."""


class RosterFullError(ConflictError):
    pass


class DuplicateMemberError(ConflictError):
    pass


# ---------- Oracle transport ----------


class OracleError(TeamRolesError):
    """Terminal oracle failure (4xx other than 429, unusable response envelope)."""

    error_type = "oracle"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OracleConfigurationError(OracleError):
    """Oracle cannot be called at all (no API key)."""


class TransientOracleError(TeamRolesError):
    """Network/timeout error, rate limit (429) or server error (5xx). Retryable."""

    error_type = "transient"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_retryable(exc: BaseException) -> bool:
    """True if the executor should back off and try the unit again."""
    if isinstance(exc, TransientOracleError):
        return True
    return isinstance(exc, asyncio.TimeoutError)


def error_type_of(exc: BaseException) -> str:
    if isinstance(exc, TeamRolesError):
        return exc.error_type
    if isinstance(exc, asyncio.TimeoutError):
        return "transient"
    return "internal"


def error_message_of(exc: BaseException) -> str:
    if isinstance(exc, TeamRolesError):
        return exc.message
    return str(exc) or type(exc).__name__
