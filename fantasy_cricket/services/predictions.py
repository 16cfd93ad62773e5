"""
Pre-match predictions: submit (create or replace before lock), get, and the
player options for the identity categories.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from fantasy_cricket.errors import (
    DeadlinePassedError,
    LockedError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from fantasy_cricket.models import Match, MatchStatus, Player, Prediction
from fantasy_cricket.persistence.db import transaction
from fantasy_cricket.persistence.repositories import (
    MatchRepository,
    PlayerRepository,
    PredictionRepository,
)
from fantasy_cricket.scoring import PLAYER_CATEGORIES, PREDICTION_CATEGORIES

logger = logging.getLogger(__name__)


def _unwrap(value: Any) -> Any:
    # Accept either a bare value or {"answer": value}
    if isinstance(value, Mapping):
        return value.get("answer")
    return value


class PredictionService:
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._match_repo = MatchRepository()
        self._player_repo = PlayerRepository()
        self._prediction_repo = PredictionRepository()

    def submit_predictions(
        self, conn: sqlite3.Connection, user_id: str, match_id: str, answers: Mapping[str, Any]
    ) -> tuple[Prediction, bool]:
        """Create or replace the user's six answers. Returns (prediction, created)."""
        with transaction(conn):
            match = self._get_match(conn, match_id)
            if match.status != MatchStatus.UPCOMING.value:
                raise PreconditionError("Predictions are closed for this match")
            if self.clock() >= match.lock_time:
                raise DeadlinePassedError("Prediction deadline has passed")
            cleaned = self._clean_answers(conn, match, answers)
            existing = self._prediction_repo.get_for_user(conn, user_id, match_id)
            if existing is not None and existing.is_locked:
                raise LockedError("Your predictions are locked")
            prediction, created = self._prediction_repo.upsert(conn, user_id, match_id, cleaned)
        logger.info(f"{'Created' if created else 'Updated'} predictions for user {user_id} in match {match_id}")
        return prediction, created

    def get_predictions(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> Prediction | None:
        return self._prediction_repo.get_for_user(conn, user_id, match_id)

    def prediction_options(self, conn: sqlite3.Connection, match_id: str) -> dict[str, list[Player]]:
        """Players selectable for the identity categories, grouped by team."""
        match = self._get_match(conn, match_id)
        players = self._player_repo.list(conn, teams=[match.team1, match.team2])
        by_name = sorted(players, key=lambda p: p.name)
        return {
            match.team1: [p for p in by_name if p.team == match.team1],
            match.team2: [p for p in by_name if p.team == match.team2],
        }

    def _get_match(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise NotFoundError(f"Match not found: {match_id}")
        return match

    def _clean_answers(
        self, conn: sqlite3.Connection, match: Match, answers: Mapping[str, Any]
    ) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for category in PREDICTION_CATEGORIES:
            value = _unwrap(answers.get(category))
            if value is None:
                raise ValidationError(f"Missing prediction for {category}")
            if category in PLAYER_CATEGORIES:
                player = self._player_repo.get(conn, str(value))
                if player is None or player.team not in (match.team1, match.team2):
                    raise ValidationError(f"Unknown player for {category}: {value}")
                cleaned[category] = player.id
            else:
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise ValidationError(f"{category} must be a non-negative integer, got {value!r}")
                cleaned[category] = value
        return cleaned
