"""
Data models for the fantasy cricket backend.
Domain objects only; no persistence or API logic.

Match-centric: users build one squad and one prediction set per match, then
queue to be auto-matched into small teams that compete on summed squad points.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


# ---------- Match status ----------
class MatchStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETED = "completed"


# ---------- Queue entry status (state machine) ----------
class QueueStatus(str, Enum):
    """waiting → matched | expired. No transition out of matched or expired."""
    WAITING = "waiting"
    MATCHED = "matched"
    EXPIRED = "expired"


# ---------- Matched team status ----------
class MatchedTeamStatus(str, Enum):
    FORMING = "forming"
    LOCKED = "locked"      # Members fixed, awaiting scoring
    COMPLETED = "completed"  # Final scoring run done


# ---------- Player role ----------
class PlayerRole(str, Enum):
    BATSMAN = "Batsman"
    BOWLER = "Bowler"
    ALL_ROUNDER = "All-Rounder"
    WICKET_KEEPER = "Wicket-Keeper"


# ---------- User ----------
@dataclass
class User:
    """A fantasy app user. password_hash is never serialized."""
    id: str
    name: str
    created_at: datetime
    username: str | None = None
    password_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
        }
        if self.username is not None:
            d["username"] = self.username
        return d


# ---------- Player ----------
@dataclass
class Player:
    """Read-mostly reference data. team is the real-world short code (e.g. IND)."""
    id: str
    name: str
    team: str
    role: str  # PlayerRole value
    credit_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "team": self.team,
            "role": self.role,
            "credit_value": self.credit_value,
        }


# ---------- Match ----------
@dataclass
class Match:
    """
    A real-world fixture. is_team_selection_open and lock_time gate squad, prediction
    and queue changes. stats_snapshot holds the actual answers for prediction scoring.
    """
    id: str
    team1: str
    team2: str
    venue: str
    start_time: datetime
    lock_time: datetime
    status: str  # MatchStatus value
    is_team_selection_open: bool
    created_at: datetime
    stats_snapshot: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "team1": self.team1,
            "team2": self.team2,
            "venue": self.venue,
            "start_time": self.start_time.isoformat(),
            "lock_time": self.lock_time.isoformat(),
            "status": self.status,
            "is_team_selection_open": self.is_team_selection_open,
            "created_at": self.created_at.isoformat(),
        }
        if self.stats_snapshot is not None:
            d["stats_snapshot"] = self.stats_snapshot
        return d


# ---------- PlayerMatchStats ----------
@dataclass
class PlayerMatchStats:
    """
    Raw per-match performance for one player. Sections are None when the player
    did not bat / bowl / field. is_manual_points: fantasy_points set by an admin
    and not recomputed by the scoring run.
    """
    match_id: str
    player_id: str
    batting: dict[str, Any] | None = None
    bowling: dict[str, Any] | None = None
    fielding: dict[str, Any] | None = None
    fantasy_points: float = 0.0
    is_manual_points: bool = False

    def raw_stats(self) -> dict[str, Any]:
        return {"batting": self.batting, "bowling": self.bowling, "fielding": self.fielding}

    def to_dict(self) -> dict[str, Any]:
        return {
            "match_id": self.match_id,
            "player_id": self.player_id,
            **self.raw_stats(),
            "fantasy_points": self.fantasy_points,
            "is_manual_points": self.is_manual_points,
        }


# ---------- FantasyTeam ----------
@dataclass
class FantasyTeamPlayer:
    player_id: str
    is_captain: bool = False
    is_vice_captain: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "is_captain": self.is_captain,
            "is_vice_captain": self.is_vice_captain,
        }


@dataclass
class FantasyTeam:
    """
    A user's 11-player squad for one match. One per user per match.
    Immutable once is_locked (set by the scoring run).
    """
    id: str
    user_id: str
    match_id: str
    players: list[FantasyTeamPlayer]
    total_credits: float
    created_at: datetime
    is_locked: bool = False
    fantasy_points: float = 0.0
    locked_at: datetime | None = None

    @property
    def captain_id(self) -> str | None:
        return next((p.player_id for p in self.players if p.is_captain), None)

    @property
    def vice_captain_id(self) -> str | None:
        return next((p.player_id for p in self.players if p.is_vice_captain), None)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "match_id": self.match_id,
            "players": [p.to_dict() for p in self.players],
            "captain_id": self.captain_id,
            "vice_captain_id": self.vice_captain_id,
            "total_credits": self.total_credits,
            "is_locked": self.is_locked,
            "fantasy_points": self.fantasy_points,
            "created_at": self.created_at.isoformat(),
        }
        if self.locked_at is not None:
            d["locked_at"] = self.locked_at.isoformat()
        return d


# ---------- Prediction ----------
@dataclass
class PredictionAnswer:
    """One answer slot: numeric for score categories, player id for identity categories."""
    answer: Any
    points_earned: int = 0
    is_correct: bool | None = None  # None until scored
    is_close: bool = False
    actual_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "points_earned": self.points_earned,
            "is_correct": self.is_correct,
            "is_close": self.is_close,
            "actual_value": self.actual_value,
        }


@dataclass
class Prediction:
    """Six pre-match answers. Same lock pattern as FantasyTeam."""
    id: str
    user_id: str
    match_id: str
    predictions: dict[str, PredictionAnswer]
    created_at: datetime
    total_prediction_points: int = 0
    is_locked: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "match_id": self.match_id,
            "predictions": {k: v.to_dict() for k, v in self.predictions.items()},
            "total_prediction_points": self.total_prediction_points,
            "is_locked": self.is_locked,
            "created_at": self.created_at.isoformat(),
        }


# ---------- QueueEntry ----------
@dataclass
class QueueEntry:
    """
    One user's place in a match's auto-match queue. Unique per (user_id, match_id).
    seq is the insertion sequence; (joined_at, seq) is the FIFO order.
    """
    id: str
    user_id: str
    match_id: str
    fantasy_team_id: str
    joined_at: datetime
    status: str  # QueueStatus value
    seq: int = 0
    assigned_team_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "match_id": self.match_id,
            "fantasy_team_id": self.fantasy_team_id,
            "joined_at": self.joined_at.isoformat(),
            "status": self.status,
            "assigned_team_id": self.assigned_team_id,
        }


# ---------- MatchedTeam ----------
@dataclass
class MatchedTeamMember:
    user_id: str
    fantasy_team_id: str
    contributed_points: float = 0.0
    position: int = 0  # order within the team (queue order)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "fantasy_team_id": self.fantasy_team_id,
            "contributed_points": self.contributed_points,
        }


@dataclass
class MatchedTeam:
    """
    Auto-matched competitive team. Member list is fixed at creation
    (TEAM_SIZE members, or 2-3 from the endgame sweep); never 0 or 1.
    """
    id: str
    match_id: str
    team_name: str
    members: list[MatchedTeamMember]
    status: str  # MatchedTeamStatus value
    created_at: datetime
    total_points: float = 0.0
    rank: int | None = None

    @property
    def user_ids(self) -> list[str]:
        return [m.user_id for m in self.members]

    def summary(self) -> dict[str, Any]:
        """Payload pushed to members when the team forms."""
        return {
            "team_id": self.id,
            "team_name": self.team_name,
            "members": [m.to_dict() for m in self.members],
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "match_id": self.match_id,
            "team_name": self.team_name,
            "members": [m.to_dict() for m in self.members],
            "total_points": self.total_points,
            "rank": self.rank,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }
