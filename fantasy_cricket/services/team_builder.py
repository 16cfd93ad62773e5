"""
Team-builder workflow: dry-run validation, save (create or replace), get, delete.
Composition rules live in fantasy_cricket.validation; this module adds the
match gates (selection open, before lock time) and captain/vice-captain rules.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from fantasy_cricket import config
from fantasy_cricket.errors import (
    DeadlinePassedError,
    InvalidSizeError,
    LockedError,
    NotFoundError,
    PreconditionError,
    SelectionClosedError,
    ValidationError,
)
from fantasy_cricket.models import FantasyTeam, FantasyTeamPlayer, Match, QueueStatus
from fantasy_cricket.persistence.db import transaction
from fantasy_cricket.persistence.repositories import (
    FantasyTeamRepository,
    MatchRepository,
    PlayerRepository,
    QueueRepository,
)
from fantasy_cricket.validation import validate_squad

logger = logging.getLogger(__name__)


@dataclass
class SquadCheck:
    """Dry-run outcome. error is the human-readable reason when not valid."""
    valid: bool
    total_credits: float | None = None
    remaining_credits: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.valid:
            return {"valid": False, "error": self.error}
        return {
            "valid": True,
            "total_credits": self.total_credits,
            "remaining_credits": self.remaining_credits,
        }


class TeamBuilderService:
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._match_repo = MatchRepository()
        self._player_repo = PlayerRepository()
        self._team_repo = FantasyTeamRepository()
        self._queue_repo = QueueRepository()

    def validate_squad(self, conn: sqlite3.Connection, match_id: str, player_ids: list[str]) -> SquadCheck:
        """Validate without saving. Composition failures are returned, not raised."""
        self._get_match(conn, match_id)
        try:
            total = self._check_composition(conn, player_ids)
        except ValidationError as e:
            return SquadCheck(valid=False, error=str(e))
        return SquadCheck(
            valid=True,
            total_credits=total,
            remaining_credits=round(config.MAX_CREDITS - total, 1),
        )

    def save_squad(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        match_id: str,
        player_ids: list[str],
        captain_id: str,
        vice_captain_id: str,
    ) -> tuple[FantasyTeam, bool]:
        """
        Create or replace the user's squad. Returns (team, created).
        Raises NotFoundError, SelectionClosedError, DeadlinePassedError,
        ValidationError subclasses, or LockedError.
        """
        with transaction(conn):
            match = self._get_match(conn, match_id)
            self._assert_editable(match)
            if len(player_ids) != config.TOTAL_PLAYERS:
                raise InvalidSizeError(f"Please select exactly {config.TOTAL_PLAYERS} players")
            if not captain_id or not vice_captain_id:
                raise ValidationError("Please select a captain and vice-captain")
            if captain_id == vice_captain_id:
                raise ValidationError("Captain and vice-captain must be different")
            if captain_id not in player_ids or vice_captain_id not in player_ids:
                raise ValidationError("Captain and vice-captain must be from selected players")
            total = self._check_composition(conn, player_ids)

            existing = self._team_repo.get_for_user(conn, user_id, match_id)
            if existing is not None and existing.is_locked:
                raise LockedError("Your team is locked and cannot be modified")
            players = [
                FantasyTeamPlayer(
                    player_id=pid,
                    is_captain=pid == captain_id,
                    is_vice_captain=pid == vice_captain_id,
                )
                for pid in player_ids
            ]
            team, created = self._team_repo.upsert(conn, user_id, match_id, players, total)
        logger.info(f"{'Created' if created else 'Updated'} squad {team.id} for user {user_id} in match {match_id}")
        return team, created

    def get_squad(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> FantasyTeam | None:
        return self._team_repo.get_for_user(conn, user_id, match_id)

    def delete_squad(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> None:
        """Delete before lock. Refused while the squad is queued or matched."""
        with transaction(conn):
            team = self._team_repo.get_for_user(conn, user_id, match_id)
            if team is None:
                raise NotFoundError("Fantasy team not found")
            if team.is_locked:
                raise LockedError("Cannot delete locked team")
            entry = self._queue_repo.get(conn, user_id, match_id)
            if entry is not None and entry.status in (QueueStatus.WAITING.value, QueueStatus.MATCHED.value):
                raise PreconditionError(f"Cannot delete a team that is {entry.status} in the auto-match queue")
            self._team_repo.delete(conn, team.id)
        logger.info(f"Deleted squad {team.id} for user {user_id} in match {match_id}")

    # ---------- Helpers ----------

    def _get_match(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise NotFoundError(f"Match not found: {match_id}")
        return match

    def _assert_editable(self, match: Match) -> None:
        if not match.is_team_selection_open:
            raise SelectionClosedError("Team selection is closed for this match")
        if self.clock() >= match.lock_time:
            raise DeadlinePassedError("Team selection deadline has passed")

    def _check_composition(self, conn: sqlite3.Connection, player_ids: list[str]) -> float:
        known = self._player_repo.get_many(conn, player_ids)
        return validate_squad(player_ids, known.get)
