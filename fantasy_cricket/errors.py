"""
Error taxonomy shared by services, scoring and the HTTP layer.
ValidationError: bad input, never partially applied.
PreconditionError: caller must change state before retrying.
NotFoundError: unknown id (404).
ConflictError: concurrent write lost a race; re-read status instead of retrying.
"""
from __future__ import annotations


class FantasyError(Exception):
    """Base class for all domain errors."""


class ValidationError(FantasyError, ValueError):
    """Bad input shape or size."""


class PreconditionError(FantasyError):
    """Operation not allowed in the current state."""


class NotFoundError(FantasyError, LookupError):
    """Unknown match, player, team or user."""


class ConflictError(FantasyError):
    """Concurrent modification detected."""


# ---------- Squad composition ----------


class InvalidSizeError(ValidationError):
    """Squad does not resolve to exactly the required number of distinct players."""


class CreditsExceededError(ValidationError):
    def __init__(self, total_credits: float, max_credits: float) -> None:
        self.total_credits = total_credits
        self.max_credits = max_credits
        super().__init__(f"Total credits ({total_credits:g}) exceeds maximum ({max_credits:g})")


class RoleViolationError(ValidationError):
    """Role count outside its [min, max] band. bound is 'min' or 'max'."""

    def __init__(self, role: str, bound: str, limit: int, count: int) -> None:
        self.role = role
        self.bound = bound
        self.limit = limit
        self.count = count
        if bound == "min":
            msg = f"Team must have at least {limit} {role}(s) (has {count})"
        else:
            msg = f"Team cannot have more than {limit} {role}(s) (has {count})"
        super().__init__(msg)


class TeamCapExceededError(ValidationError):
    def __init__(self, team: str, count: int, limit: int) -> None:
        self.team = team
        self.count = count
        self.limit = limit
        super().__init__(f"Cannot select more than {limit} players from {team} (selected {count})")


# ---------- Lifecycle gates ----------


class SelectionClosedError(PreconditionError):
    """Team selection window is closed for the match."""


class DeadlinePassedError(PreconditionError):
    """Lock time has passed."""


class LockedError(PreconditionError):
    """Entity is locked by a scoring run and cannot be modified."""


# ---------- Queue ----------


class PrerequisiteMissingError(PreconditionError):
    """No saved fantasy team for this user and match."""


class NotInQueueError(PreconditionError):
    """No waiting queue entry for this user and match."""


# ---------- Scoring ----------


class ScoringInputError(ValidationError):
    """Missing or malformed stats for a single player or prediction."""
