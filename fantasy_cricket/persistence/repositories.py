"""
Repository interfaces for fantasy cricket data.
No business logic: only read/write operations. Reads return fully resolved
aggregates (squad with its players, matched team with its members).
Write methods do not commit; the calling service owns the transaction.
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from fantasy_cricket.models import (
    FantasyTeam,
    FantasyTeamPlayer,
    Match,
    MatchedTeam,
    MatchedTeamMember,
    MatchStatus,
    Player,
    PlayerMatchStats,
    Prediction,
    PredictionAnswer,
    QueueEntry,
    QueueStatus,
    User,
)


def _parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO string so lexical order equals time order."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def _placeholders(n: int) -> str:
    return ", ".join("?" for _ in range(n))


# ---------- UserRepository ----------


class UserRepository:
    """CRUD for users. username/password_hash for auth."""

    def create(self, conn: sqlite3.Connection, name: str, id: str | None = None) -> User:
        uid = id or str(uuid.uuid4())
        now = _now_iso()
        conn.execute(
            "INSERT INTO users (id, name, created_at) VALUES (?, ?, ?)",
            (uid, name, now),
        )
        return User(id=uid, name=name, created_at=_parse_datetime(now))

    def create_with_password(
        self, conn: sqlite3.Connection, username: str, password_hash: str, name: str | None = None
    ) -> User:
        uid = str(uuid.uuid4())
        now = _now_iso()
        display_name = name or username
        conn.execute(
            "INSERT INTO users (id, username, password_hash, name, created_at) VALUES (?, ?, ?, ?, ?)",
            (uid, username, password_hash, display_name, now),
        )
        return User(
            id=uid, name=display_name, created_at=_parse_datetime(now),
            username=username, password_hash=password_hash,
        )

    def get(self, conn: sqlite3.Connection, user_id: str) -> User | None:
        row = conn.execute(
            "SELECT id, name, username, password_hash, created_at FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        return self._from_row(row) if row else None

    def get_by_username(self, conn: sqlite3.Connection, username: str) -> User | None:
        row = conn.execute(
            "SELECT id, name, username, password_hash, created_at FROM users WHERE username = ?",
            (username,),
        ).fetchone()
        return self._from_row(row) if row else None

    def get_names(self, conn: sqlite3.Connection, user_ids: Iterable[str]) -> dict[str, str]:
        ids = list(user_ids)
        if not ids:
            return {}
        rows = conn.execute(
            f"SELECT id, name FROM users WHERE id IN ({_placeholders(len(ids))})", ids
        ).fetchall()
        return {r["id"]: r["name"] for r in rows}

    @staticmethod
    def _from_row(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            created_at=_parse_datetime(row["created_at"]),
            username=row["username"],
            password_hash=row["password_hash"],
        )


# ---------- PlayerRepository ----------


class PlayerRepository:
    """Reference data: team, role, credit value."""

    def upsert(self, conn: sqlite3.Connection, player: Player) -> Player:
        conn.execute(
            """
            INSERT INTO players (id, name, team, role, credit_value) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name, team = excluded.team,
                role = excluded.role, credit_value = excluded.credit_value
            """,
            (player.id, player.name, player.team, player.role, player.credit_value),
        )
        return player

    def get(self, conn: sqlite3.Connection, player_id: str) -> Player | None:
        row = conn.execute(
            "SELECT id, name, team, role, credit_value FROM players WHERE id = ?", (player_id,)
        ).fetchone()
        return self._from_row(row) if row else None

    def get_many(self, conn: sqlite3.Connection, player_ids: Iterable[str]) -> dict[str, Player]:
        ids = list(dict.fromkeys(player_ids))
        if not ids:
            return {}
        rows = conn.execute(
            f"SELECT id, name, team, role, credit_value FROM players WHERE id IN ({_placeholders(len(ids))})",
            ids,
        ).fetchall()
        return {r["id"]: self._from_row(r) for r in rows}

    def list(
        self, conn: sqlite3.Connection, teams: Iterable[str] | None = None, role: str | None = None
    ) -> list[Player]:
        sql = "SELECT id, name, team, role, credit_value FROM players"
        clauses: list[str] = []
        args: list[Any] = []
        if teams is not None:
            team_list = list(teams)
            clauses.append(f"team IN ({_placeholders(len(team_list))})")
            args.extend(team_list)
        if role is not None:
            clauses.append("role = ?")
            args.append(role)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY credit_value DESC, name"
        return [self._from_row(r) for r in conn.execute(sql, args).fetchall()]

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Player:
        return Player(
            id=row["id"],
            name=row["name"],
            team=row["team"],
            role=row["role"],
            credit_value=float(row["credit_value"]),
        )


# ---------- MatchRepository ----------


class MatchRepository:
    """Fixtures and their lifecycle gates."""

    _COLS = "id, team1, team2, venue, start_time, lock_time, status, is_team_selection_open, stats_snapshot, created_at"

    def create(
        self,
        conn: sqlite3.Connection,
        team1: str,
        team2: str,
        start_time: datetime,
        lock_time: datetime,
        venue: str = "",
        id: str | None = None,
        status: str = MatchStatus.UPCOMING.value,
        is_team_selection_open: bool = True,
    ) -> Match:
        mid = id or str(uuid.uuid4())
        now = _now_iso()
        conn.execute(
            f"INSERT INTO matches ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)",
            (
                mid, team1, team2, venue, to_iso(start_time), to_iso(lock_time),
                status, int(is_team_selection_open), now,
            ),
        )
        return Match(
            id=mid, team1=team1, team2=team2, venue=venue,
            start_time=_parse_datetime(to_iso(start_time)),
            lock_time=_parse_datetime(to_iso(lock_time)),
            status=status, is_team_selection_open=is_team_selection_open,
            created_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, match_id: str) -> Match | None:
        row = conn.execute(f"SELECT {self._COLS} FROM matches WHERE id = ?", (match_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_all(self, conn: sqlite3.Connection, status: str | None = None) -> list[Match]:
        if status:
            rows = conn.execute(
                f"SELECT {self._COLS} FROM matches WHERE status = ? ORDER BY start_time", (status,)
            ).fetchall()
        else:
            rows = conn.execute(f"SELECT {self._COLS} FROM matches ORDER BY start_time").fetchall()
        return [self._from_row(r) for r in rows]

    def update_status(self, conn: sqlite3.Connection, match_id: str, status: str) -> None:
        conn.execute("UPDATE matches SET status = ? WHERE id = ?", (status, match_id))

    def set_team_selection_open(self, conn: sqlite3.Connection, match_id: str, is_open: bool) -> None:
        conn.execute(
            "UPDATE matches SET is_team_selection_open = ? WHERE id = ?", (int(is_open), match_id)
        )

    def set_stats_snapshot(self, conn: sqlite3.Connection, match_id: str, snapshot: dict[str, Any]) -> None:
        conn.execute(
            "UPDATE matches SET stats_snapshot = ? WHERE id = ?", (json.dumps(snapshot), match_id)
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Match:
        snapshot = json.loads(row["stats_snapshot"]) if row["stats_snapshot"] else None
        return Match(
            id=row["id"],
            team1=row["team1"],
            team2=row["team2"],
            venue=row["venue"],
            start_time=_parse_datetime(row["start_time"]),
            lock_time=_parse_datetime(row["lock_time"]),
            status=row["status"],
            is_team_selection_open=bool(row["is_team_selection_open"]),
            created_at=_parse_datetime(row["created_at"]),
            stats_snapshot=snapshot,
        )


# ---------- PlayerMatchStatsRepository ----------


class PlayerMatchStatsRepository:
    """Raw per-match stats. stats_json holds {batting, bowling, fielding}."""

    def upsert(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        player_id: str,
        raw_stats: dict[str, Any],
        manual_points: float | None = None,
    ) -> PlayerMatchStats:
        is_manual = manual_points is not None
        conn.execute(
            """
            INSERT INTO player_match_stats (match_id, player_id, stats_json, fantasy_points, is_manual_points, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(match_id, player_id) DO UPDATE SET
                stats_json = excluded.stats_json,
                fantasy_points = CASE WHEN excluded.is_manual_points = 1
                    THEN excluded.fantasy_points ELSE player_match_stats.fantasy_points END,
                is_manual_points = excluded.is_manual_points,
                updated_at = excluded.updated_at
            """,
            (
                match_id, player_id, json.dumps(raw_stats),
                float(manual_points) if is_manual else 0.0, int(is_manual), _now_iso(),
            ),
        )
        return self.get(conn, match_id, player_id)  # type: ignore[return-value]

    def get(self, conn: sqlite3.Connection, match_id: str, player_id: str) -> PlayerMatchStats | None:
        row = conn.execute(
            "SELECT match_id, player_id, stats_json, fantasy_points, is_manual_points "
            "FROM player_match_stats WHERE match_id = ? AND player_id = ?",
            (match_id, player_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_by_match(self, conn: sqlite3.Connection, match_id: str) -> list[PlayerMatchStats]:
        rows = conn.execute(
            "SELECT match_id, player_id, stats_json, fantasy_points, is_manual_points "
            "FROM player_match_stats WHERE match_id = ? ORDER BY player_id",
            (match_id,),
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def update_points(self, conn: sqlite3.Connection, match_id: str, player_id: str, points: float) -> None:
        conn.execute(
            "UPDATE player_match_stats SET fantasy_points = ?, updated_at = ? WHERE match_id = ? AND player_id = ?",
            (points, _now_iso(), match_id, player_id),
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> PlayerMatchStats:
        raw = json.loads(row["stats_json"])
        return PlayerMatchStats(
            match_id=row["match_id"],
            player_id=row["player_id"],
            batting=raw.get("batting"),
            bowling=raw.get("bowling"),
            fielding=raw.get("fielding"),
            fantasy_points=float(row["fantasy_points"]),
            is_manual_points=bool(row["is_manual_points"]),
        )


# ---------- FantasyTeamRepository ----------


class FantasyTeamRepository:
    """Squads with their 11 players. One per user per match."""

    _COLS = "id, user_id, match_id, total_credits, is_locked, fantasy_points, created_at, locked_at"

    def upsert(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        match_id: str,
        players: list[FantasyTeamPlayer],
        total_credits: float,
    ) -> tuple[FantasyTeam, bool]:
        """Create or replace the user's squad for the match. Returns (team, created)."""
        now = _now_iso()
        existing = conn.execute(
            "SELECT id FROM fantasy_teams WHERE user_id = ? AND match_id = ?", (user_id, match_id)
        ).fetchone()
        created = existing is None
        if created:
            tid = str(uuid.uuid4())
            conn.execute(
                "INSERT INTO fantasy_teams (id, user_id, match_id, total_credits, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (tid, user_id, match_id, total_credits, now, now),
            )
        else:
            tid = existing["id"]
            conn.execute(
                "UPDATE fantasy_teams SET total_credits = ?, updated_at = ? WHERE id = ?",
                (total_credits, now, tid),
            )
            conn.execute("DELETE FROM fantasy_team_players WHERE fantasy_team_id = ?", (tid,))
        conn.executemany(
            "INSERT INTO fantasy_team_players (fantasy_team_id, player_id, position, is_captain, is_vice_captain) "
            "VALUES (?, ?, ?, ?, ?)",
            [
                (tid, p.player_id, i, int(p.is_captain), int(p.is_vice_captain))
                for i, p in enumerate(players, start=1)
            ],
        )
        return self.get(conn, tid), created  # type: ignore[return-value]

    def get(self, conn: sqlite3.Connection, team_id: str) -> FantasyTeam | None:
        row = conn.execute(f"SELECT {self._COLS} FROM fantasy_teams WHERE id = ?", (team_id,)).fetchone()
        return self._load(conn, row) if row else None

    def get_for_user(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> FantasyTeam | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM fantasy_teams WHERE user_id = ? AND match_id = ?",
            (user_id, match_id),
        ).fetchone()
        return self._load(conn, row) if row else None

    def list_by_match(self, conn: sqlite3.Connection, match_id: str) -> list[FantasyTeam]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM fantasy_teams WHERE match_id = ? ORDER BY created_at, id",
            (match_id,),
        ).fetchall()
        return [self._load(conn, r) for r in rows]

    def points_by_user(self, conn: sqlite3.Connection, match_id: str) -> dict[str, float]:
        rows = conn.execute(
            "SELECT user_id, fantasy_points FROM fantasy_teams WHERE match_id = ?", (match_id,)
        ).fetchall()
        return {r["user_id"]: float(r["fantasy_points"]) for r in rows}

    def totals_by_user(self, conn: sqlite3.Connection) -> list[tuple[str, float, int]]:
        """(user_id, summed fantasy points, matches played) across all matches."""
        rows = conn.execute(
            "SELECT user_id, SUM(fantasy_points) AS total, COUNT(*) AS played "
            "FROM fantasy_teams GROUP BY user_id"
        ).fetchall()
        return [(r["user_id"], float(r["total"]), int(r["played"])) for r in rows]

    def delete(self, conn: sqlite3.Connection, team_id: str) -> None:
        conn.execute("DELETE FROM fantasy_team_players WHERE fantasy_team_id = ?", (team_id,))
        conn.execute("DELETE FROM fantasy_teams WHERE id = ?", (team_id,))

    def lock(self, conn: sqlite3.Connection, team_id: str) -> None:
        """Set is_locked; locked_at keeps the first lock time across re-runs."""
        conn.execute(
            "UPDATE fantasy_teams SET is_locked = 1, locked_at = COALESCE(locked_at, ?) WHERE id = ?",
            (_now_iso(), team_id),
        )

    def update_points(self, conn: sqlite3.Connection, team_id: str, points: float) -> None:
        conn.execute(
            "UPDATE fantasy_teams SET fantasy_points = ?, updated_at = ? WHERE id = ?",
            (points, _now_iso(), team_id),
        )

    def _load(self, conn: sqlite3.Connection, row: sqlite3.Row) -> FantasyTeam:
        player_rows = conn.execute(
            "SELECT player_id, is_captain, is_vice_captain FROM fantasy_team_players "
            "WHERE fantasy_team_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        return FantasyTeam(
            id=row["id"],
            user_id=row["user_id"],
            match_id=row["match_id"],
            players=[
                FantasyTeamPlayer(
                    player_id=p["player_id"],
                    is_captain=bool(p["is_captain"]),
                    is_vice_captain=bool(p["is_vice_captain"]),
                )
                for p in player_rows
            ],
            total_credits=float(row["total_credits"]),
            created_at=_parse_datetime(row["created_at"]),
            is_locked=bool(row["is_locked"]),
            fantasy_points=float(row["fantasy_points"]),
            locked_at=_parse_datetime(row["locked_at"]) if row["locked_at"] else None,
        )


# ---------- PredictionRepository ----------


class PredictionRepository:
    """Six-slot predictions. One per user per match."""

    _COLS = "id, user_id, match_id, predictions_json, total_prediction_points, is_locked, created_at"

    def upsert(
        self, conn: sqlite3.Connection, user_id: str, match_id: str, answers: dict[str, Any]
    ) -> tuple[Prediction, bool]:
        now = _now_iso()
        payload = json.dumps({k: PredictionAnswer(answer=v).to_dict() for k, v in answers.items()})
        existing = conn.execute(
            "SELECT id FROM predictions WHERE user_id = ? AND match_id = ?", (user_id, match_id)
        ).fetchone()
        created = existing is None
        if created:
            pid = str(uuid.uuid4())
            conn.execute(
                "INSERT INTO predictions (id, user_id, match_id, predictions_json, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (pid, user_id, match_id, payload, now, now),
            )
        else:
            pid = existing["id"]
            conn.execute(
                "UPDATE predictions SET predictions_json = ?, total_prediction_points = 0, updated_at = ? WHERE id = ?",
                (payload, now, pid),
            )
        return self.get(conn, pid), created  # type: ignore[return-value]

    def get(self, conn: sqlite3.Connection, prediction_id: str) -> Prediction | None:
        row = conn.execute(f"SELECT {self._COLS} FROM predictions WHERE id = ?", (prediction_id,)).fetchone()
        return self._from_row(row) if row else None

    def get_for_user(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> Prediction | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM predictions WHERE user_id = ? AND match_id = ?",
            (user_id, match_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_by_match(self, conn: sqlite3.Connection, match_id: str) -> list[Prediction]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM predictions WHERE match_id = ? ORDER BY created_at, id", (match_id,)
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def points_by_user(self, conn: sqlite3.Connection, match_id: str) -> dict[str, int]:
        rows = conn.execute(
            "SELECT user_id, total_prediction_points FROM predictions WHERE match_id = ?", (match_id,)
        ).fetchall()
        return {r["user_id"]: int(r["total_prediction_points"]) for r in rows}

    def lock(self, conn: sqlite3.Connection, prediction_id: str) -> None:
        conn.execute("UPDATE predictions SET is_locked = 1 WHERE id = ?", (prediction_id,))

    def update_scores(
        self,
        conn: sqlite3.Connection,
        prediction_id: str,
        predictions: dict[str, PredictionAnswer],
        total_points: int,
    ) -> None:
        conn.execute(
            "UPDATE predictions SET predictions_json = ?, total_prediction_points = ?, updated_at = ? WHERE id = ?",
            (
                json.dumps({k: v.to_dict() for k, v in predictions.items()}),
                total_points, _now_iso(), prediction_id,
            ),
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Prediction:
        raw = json.loads(row["predictions_json"])
        return Prediction(
            id=row["id"],
            user_id=row["user_id"],
            match_id=row["match_id"],
            predictions={k: PredictionAnswer(**v) for k, v in raw.items()},
            created_at=_parse_datetime(row["created_at"]),
            total_prediction_points=int(row["total_prediction_points"]),
            is_locked=bool(row["is_locked"]),
        )


# ---------- QueueRepository ----------


class QueueRepository:
    """
    Auto-match queue entries. FIFO order is (joined_at, seq).
    Status updates are guarded on status = 'waiting' and return affected row counts
    so callers can detect concurrent changes.
    """

    _COLS = "seq, id, user_id, match_id, fantasy_team_id, joined_at, status, assigned_team_id"
    _FIFO = "ORDER BY joined_at, seq"

    def insert(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        match_id: str,
        fantasy_team_id: str,
        joined_at: datetime,
    ) -> QueueEntry:
        eid = str(uuid.uuid4())
        cur = conn.execute(
            "INSERT INTO queue_entries (id, user_id, match_id, fantasy_team_id, joined_at, status) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (eid, user_id, match_id, fantasy_team_id, to_iso(joined_at), QueueStatus.WAITING.value),
        )
        return QueueEntry(
            id=eid, user_id=user_id, match_id=match_id, fantasy_team_id=fantasy_team_id,
            joined_at=_parse_datetime(to_iso(joined_at)), status=QueueStatus.WAITING.value,
            seq=cur.lastrowid or 0,
        )

    def get(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> QueueEntry | None:
        """The user's entry for the match in any status (unique per user/match)."""
        row = conn.execute(
            f"SELECT {self._COLS} FROM queue_entries WHERE user_id = ? AND match_id = ?",
            (user_id, match_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_waiting(self, conn: sqlite3.Connection, match_id: str, limit: int | None = None) -> list[QueueEntry]:
        sql = f"SELECT {self._COLS} FROM queue_entries WHERE match_id = ? AND status = ? {self._FIFO}"
        args: list[Any] = [match_id, QueueStatus.WAITING.value]
        if limit is not None:
            sql += " LIMIT ?"
            args.append(limit)
        return [self._from_row(r) for r in conn.execute(sql, args).fetchall()]

    def count_waiting(self, conn: sqlite3.Connection, match_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM queue_entries WHERE match_id = ? AND status = ?",
            (match_id, QueueStatus.WAITING.value),
        ).fetchone()
        return int(row[0])

    def position(self, conn: sqlite3.Connection, entry: QueueEntry) -> int:
        """1-based rank of a waiting entry among the match's waiting entries."""
        row = conn.execute(
            "SELECT COUNT(*) FROM queue_entries WHERE match_id = ? AND status = ? "
            "AND (joined_at < ? OR (joined_at = ? AND seq < ?))",
            (
                entry.match_id, QueueStatus.WAITING.value,
                to_iso(entry.joined_at), to_iso(entry.joined_at), entry.seq,
            ),
        ).fetchone()
        return int(row[0]) + 1

    def delete_waiting(self, conn: sqlite3.Connection, entry_id: str) -> int:
        cur = conn.execute(
            "DELETE FROM queue_entries WHERE id = ? AND status = ?", (entry_id, QueueStatus.WAITING.value)
        )
        return cur.rowcount

    def mark_matched(self, conn: sqlite3.Connection, entry_ids: list[str], team_id: str) -> int:
        cur = conn.execute(
            f"UPDATE queue_entries SET status = ?, assigned_team_id = ? "
            f"WHERE id IN ({_placeholders(len(entry_ids))}) AND status = ?",
            [QueueStatus.MATCHED.value, team_id, *entry_ids, QueueStatus.WAITING.value],
        )
        return cur.rowcount

    def mark_expired(self, conn: sqlite3.Connection, entry_ids: list[str]) -> int:
        cur = conn.execute(
            f"UPDATE queue_entries SET status = ? WHERE id IN ({_placeholders(len(entry_ids))}) AND status = ?",
            [QueueStatus.EXPIRED.value, *entry_ids, QueueStatus.WAITING.value],
        )
        return cur.rowcount

    def count_by_status(self, conn: sqlite3.Connection, match_id: str) -> dict[str, int]:
        rows = conn.execute(
            "SELECT status, COUNT(*) AS n FROM queue_entries WHERE match_id = ? GROUP BY status", (match_id,)
        ).fetchall()
        return {r["status"]: int(r["n"]) for r in rows}

    @staticmethod
    def _from_row(row: sqlite3.Row) -> QueueEntry:
        return QueueEntry(
            id=row["id"],
            user_id=row["user_id"],
            match_id=row["match_id"],
            fantasy_team_id=row["fantasy_team_id"],
            joined_at=_parse_datetime(row["joined_at"]),
            status=row["status"],
            seq=int(row["seq"]),
            assigned_team_id=row["assigned_team_id"],
        )


# ---------- MatchedTeamRepository ----------


class MatchedTeamRepository:
    """Auto-matched teams with their members (in queue order)."""

    _COLS = "id, match_id, team_name, total_points, rank, status, created_at"

    def create(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        team_name: str,
        members: list[tuple[str, str]],
        status: str,
        id: str | None = None,
    ) -> MatchedTeam:
        """members: (user_id, fantasy_team_id) in queue order."""
        tid = id or str(uuid.uuid4())
        now = _now_iso()
        conn.execute(
            f"INSERT INTO matched_teams ({self._COLS}) VALUES (?, ?, ?, 0, NULL, ?, ?)",
            (tid, match_id, team_name, status, now),
        )
        conn.executemany(
            "INSERT INTO matched_team_members (team_id, user_id, fantasy_team_id, position) VALUES (?, ?, ?, ?)",
            [(tid, uid, ftid, i) for i, (uid, ftid) in enumerate(members, start=1)],
        )
        return MatchedTeam(
            id=tid,
            match_id=match_id,
            team_name=team_name,
            members=[
                MatchedTeamMember(user_id=uid, fantasy_team_id=ftid, position=i)
                for i, (uid, ftid) in enumerate(members, start=1)
            ],
            status=status,
            created_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, team_id: str) -> MatchedTeam | None:
        row = conn.execute(f"SELECT {self._COLS} FROM matched_teams WHERE id = ?", (team_id,)).fetchone()
        return self._load(conn, row) if row else None

    def list_by_match(self, conn: sqlite3.Connection, match_id: str) -> list[MatchedTeam]:
        """Ordered by total_points desc, then creation order."""
        rows = conn.execute(
            f"SELECT {self._COLS} FROM matched_teams WHERE match_id = ? "
            "ORDER BY total_points DESC, created_at, id",
            (match_id,),
        ).fetchall()
        return [self._load(conn, r) for r in rows]

    def count_by_match(self, conn: sqlite3.Connection, match_id: str) -> int:
        row = conn.execute("SELECT COUNT(*) FROM matched_teams WHERE match_id = ?", (match_id,)).fetchone()
        return int(row[0])

    def update_member_points(self, conn: sqlite3.Connection, team_id: str, user_id: str, points: float) -> None:
        conn.execute(
            "UPDATE matched_team_members SET contributed_points = ? WHERE team_id = ? AND user_id = ?",
            (points, team_id, user_id),
        )

    def update_total(self, conn: sqlite3.Connection, team_id: str, total_points: float) -> None:
        conn.execute("UPDATE matched_teams SET total_points = ? WHERE id = ?", (total_points, team_id))

    def update_rank(self, conn: sqlite3.Connection, team_id: str, rank: int | None) -> None:
        conn.execute("UPDATE matched_teams SET rank = ? WHERE id = ?", (rank, team_id))

    def update_status(self, conn: sqlite3.Connection, team_id: str, status: str) -> None:
        conn.execute("UPDATE matched_teams SET status = ? WHERE id = ?", (status, team_id))

    def _load(self, conn: sqlite3.Connection, row: sqlite3.Row) -> MatchedTeam:
        member_rows = conn.execute(
            "SELECT user_id, fantasy_team_id, position, contributed_points FROM matched_team_members "
            "WHERE team_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        return MatchedTeam(
            id=row["id"],
            match_id=row["match_id"],
            team_name=row["team_name"],
            members=[
                MatchedTeamMember(
                    user_id=m["user_id"],
                    fantasy_team_id=m["fantasy_team_id"],
                    contributed_points=float(m["contributed_points"]),
                    position=int(m["position"]),
                )
                for m in member_rows
            ],
            status=row["status"],
            created_at=_parse_datetime(row["created_at"]),
            total_points=float(row["total_points"]),
            rank=row["rank"],
        )
