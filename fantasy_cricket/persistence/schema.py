"""
SQLite schema for fantasy cricket entities.
Migration-friendly: each table created with IF NOT EXISTS.
"""
from __future__ import annotations


def users_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        username TEXT,
        password_hash TEXT,
        created_at TEXT NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_users_username ON users(username) WHERE username IS NOT NULL;
    """


def players_schema() -> str:
    """Reference data. role: Batsman | Bowler | All-Rounder | Wicket-Keeper. credit_value 7.0-11.0."""
    return """
    CREATE TABLE IF NOT EXISTS players (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        team TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('Batsman', 'Bowler', 'All-Rounder', 'Wicket-Keeper')),
        credit_value REAL NOT NULL CHECK (credit_value >= 7.0 AND credit_value <= 11.0)
    );
    CREATE INDEX IF NOT EXISTS ix_players_team ON players(team);
    CREATE INDEX IF NOT EXISTS ix_players_role ON players(role);
    """


def matches_schema() -> str:
    """Fixture and lifecycle gates. stats_snapshot: JSON of actual prediction answers."""
    return """
    CREATE TABLE IF NOT EXISTS matches (
        id TEXT PRIMARY KEY,
        team1 TEXT NOT NULL,
        team2 TEXT NOT NULL,
        venue TEXT NOT NULL DEFAULT '',
        start_time TEXT NOT NULL,
        lock_time TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'upcoming',
        is_team_selection_open INTEGER NOT NULL DEFAULT 1,
        stats_snapshot TEXT,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS ix_matches_status ON matches(status);
    CREATE INDEX IF NOT EXISTS ix_matches_start_time ON matches(start_time);
    """


def player_match_stats_schema() -> str:
    """Raw per-match stats (JSON: batting/bowling/fielding) and computed or manual points."""
    return """
    CREATE TABLE IF NOT EXISTS player_match_stats (
        match_id TEXT NOT NULL,
        player_id TEXT NOT NULL,
        stats_json TEXT NOT NULL,
        fantasy_points REAL NOT NULL DEFAULT 0,
        is_manual_points INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (match_id, player_id),
        FOREIGN KEY (match_id) REFERENCES matches(id),
        FOREIGN KEY (player_id) REFERENCES players(id)
    );
    """


def fantasy_teams_schema() -> str:
    """One squad per user per match."""
    return """
    CREATE TABLE IF NOT EXISTS fantasy_teams (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        match_id TEXT NOT NULL,
        total_credits REAL NOT NULL CHECK (total_credits <= 100),
        is_locked INTEGER NOT NULL DEFAULT 0,
        fantasy_points REAL NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        locked_at TEXT,
        FOREIGN KEY (match_id) REFERENCES matches(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_fantasy_teams_user_match ON fantasy_teams(user_id, match_id);
    CREATE INDEX IF NOT EXISTS ix_fantasy_teams_match ON fantasy_teams(match_id);

    CREATE TABLE IF NOT EXISTS fantasy_team_players (
        fantasy_team_id TEXT NOT NULL,
        player_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        is_captain INTEGER NOT NULL DEFAULT 0,
        is_vice_captain INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (fantasy_team_id, player_id),
        FOREIGN KEY (fantasy_team_id) REFERENCES fantasy_teams(id),
        FOREIGN KEY (player_id) REFERENCES players(id)
    );
    """


def predictions_schema() -> str:
    """predictions_json: {category: {answer, points_earned, is_correct, is_close, actual_value}}."""
    return """
    CREATE TABLE IF NOT EXISTS predictions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        match_id TEXT NOT NULL,
        predictions_json TEXT NOT NULL,
        total_prediction_points INTEGER NOT NULL DEFAULT 0,
        is_locked INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (match_id) REFERENCES matches(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_predictions_user_match ON predictions(user_id, match_id);
    CREATE INDEX IF NOT EXISTS ix_predictions_match ON predictions(match_id);
    """


def queue_entries_schema() -> str:
    """
    Auto-match queue. seq is the insertion sequence used to break joined_at ties.
    status: waiting | matched | expired.
    """
    return """
    CREATE TABLE IF NOT EXISTS queue_entries (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        user_id TEXT NOT NULL,
        match_id TEXT NOT NULL,
        fantasy_team_id TEXT NOT NULL,
        joined_at TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'waiting',
        assigned_team_id TEXT,
        FOREIGN KEY (match_id) REFERENCES matches(id),
        FOREIGN KEY (fantasy_team_id) REFERENCES fantasy_teams(id),
        FOREIGN KEY (assigned_team_id) REFERENCES matched_teams(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_queue_entries_user_match ON queue_entries(user_id, match_id);
    CREATE INDEX IF NOT EXISTS ix_queue_entries_match_status ON queue_entries(match_id, status, joined_at, seq);
    """


def matched_teams_schema() -> str:
    """status: forming | locked | completed. Members fixed at creation."""
    return """
    CREATE TABLE IF NOT EXISTS matched_teams (
        id TEXT PRIMARY KEY,
        match_id TEXT NOT NULL,
        team_name TEXT NOT NULL,
        total_points REAL NOT NULL DEFAULT 0,
        rank INTEGER,
        status TEXT NOT NULL DEFAULT 'forming',
        created_at TEXT NOT NULL,
        FOREIGN KEY (match_id) REFERENCES matches(id)
    );
    CREATE INDEX IF NOT EXISTS ix_matched_teams_match ON matched_teams(match_id);

    CREATE TABLE IF NOT EXISTS matched_team_members (
        team_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        fantasy_team_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        contributed_points REAL NOT NULL DEFAULT 0,
        PRIMARY KEY (team_id, user_id),
        FOREIGN KEY (team_id) REFERENCES matched_teams(id)
    );
    CREATE INDEX IF NOT EXISTS ix_matched_team_members_user ON matched_team_members(user_id);
    """


def all_schema_sql() -> str:
    """Combine all schema DDL for a single execution."""
    return "\n".join([
        users_schema(),
        players_schema(),
        matches_schema(),
        player_match_stats_schema(),
        fantasy_teams_schema(),
        predictions_schema(),
        matched_teams_schema(),
        queue_entries_schema(),
    ])
