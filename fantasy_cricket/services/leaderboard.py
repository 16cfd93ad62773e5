"""
Leaderboards: per-match individual (fantasy + prediction points), per-match
matched teams, overall individual across matches, and a user's rank in a match.
Ties share a rank (1, 1, 3).
"""
from __future__ import annotations

import math
import sqlite3
from typing import Any

from fantasy_cricket import config
from fantasy_cricket.errors import NotFoundError, ValidationError
from fantasy_cricket.persistence.repositories import (
    FantasyTeamRepository,
    MatchedTeamRepository,
    MatchRepository,
    PredictionRepository,
    UserRepository,
)


def competition_ranks(totals: list[float]) -> list[int]:
    """Ranks for totals already sorted descending; equal totals share a rank."""
    ranks: list[int] = []
    for i, total in enumerate(totals):
        if i > 0 and total == totals[i - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(i + 1)
    return ranks


def _check_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > config.MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {config.MAX_PAGE_SIZE}")


def _paginate(entries: list[dict[str, Any]], page: int, limit: int) -> dict[str, Any]:
    total = len(entries)
    start = (page - 1) * limit
    return {
        "entries": entries[start:start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


class LeaderboardService:
    def __init__(self) -> None:
        self._match_repo = MatchRepository()
        self._user_repo = UserRepository()
        self._fantasy_repo = FantasyTeamRepository()
        self._prediction_repo = PredictionRepository()
        self._matched_repo = MatchedTeamRepository()

    def _require_match(self, conn: sqlite3.Connection, match_id: str) -> None:
        if self._match_repo.get(conn, match_id) is None:
            raise NotFoundError(f"Match not found: {match_id}")

    def _individual_entries(self, conn: sqlite3.Connection, match_id: str) -> list[dict[str, Any]]:
        fantasy = self._fantasy_repo.points_by_user(conn, match_id)
        predictions = self._prediction_repo.points_by_user(conn, match_id)
        names = self._user_repo.get_names(conn, fantasy)
        entries = [
            {
                "user_id": uid,
                "name": names.get(uid, ""),
                "fantasy_points": points,
                "prediction_points": predictions.get(uid, 0),
                "total_points": points + predictions.get(uid, 0),
            }
            for uid, points in fantasy.items()
        ]
        entries.sort(key=lambda e: (-e["total_points"], -e["fantasy_points"], e["name"], e["user_id"]))
        for entry, rank in zip(entries, competition_ranks([e["total_points"] for e in entries])):
            entry["rank"] = rank
        return entries

    def individual_leaderboard(
        self, conn: sqlite3.Connection, match_id: str, page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE
    ) -> dict[str, Any]:
        _check_page(page, limit)
        self._require_match(conn, match_id)
        return _paginate(self._individual_entries(conn, match_id), page, limit)

    def team_leaderboard(
        self, conn: sqlite3.Connection, match_id: str, page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE
    ) -> dict[str, Any]:
        _check_page(page, limit)
        self._require_match(conn, match_id)
        teams = self._matched_repo.list_by_match(conn, match_id)
        names = self._user_repo.get_names(conn, {uid for t in teams for uid in t.user_ids})
        entries = []
        for team, rank in zip(teams, competition_ranks([t.total_points for t in teams])):
            entries.append({
                "rank": rank,
                "team_id": team.id,
                "team_name": team.team_name,
                "status": team.status,
                "total_points": team.total_points,
                "members": [
                    {**m.to_dict(), "name": names.get(m.user_id, "")}
                    for m in team.members
                ],
            })
        return _paginate(entries, page, limit)

    def overall_leaderboard(
        self, conn: sqlite3.Connection, page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE
    ) -> dict[str, Any]:
        _check_page(page, limit)
        totals = self._fantasy_repo.totals_by_user(conn)
        names = self._user_repo.get_names(conn, [uid for uid, _, _ in totals])
        entries = [
            {"user_id": uid, "name": names.get(uid, ""), "total_points": total, "matches_played": played}
            for uid, total, played in totals
        ]
        entries.sort(key=lambda e: (-e["total_points"], e["name"], e["user_id"]))
        for entry, rank in zip(entries, competition_ranks([e["total_points"] for e in entries])):
            entry["rank"] = rank
        return _paginate(entries, page, limit)

    def my_rank(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> dict[str, Any]:
        """Rank on the individual match leaderboard; rank is None without a squad."""
        self._require_match(conn, match_id)
        entries = self._individual_entries(conn, match_id)
        mine = next((e for e in entries if e["user_id"] == user_id), None)
        if mine is None:
            return {"rank": None, "message": "No team for this match"}
        return {
            "rank": mine["rank"],
            "total_participants": len(entries),
            "fantasy_points": mine["fantasy_points"],
            "prediction_points": mine["prediction_points"],
            "total_points": mine["total_points"],
        }
