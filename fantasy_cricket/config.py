"""
Configuration: squad rules, queue sizing, environment-driven settings.
"""
from __future__ import annotations

import logging
import os
import sys

# ---------- Squad composition ----------
TOTAL_PLAYERS = 11
MAX_CREDITS = 100
MIN_CREDIT_VALUE = 7.0
MAX_CREDIT_VALUE = 11.0
MAX_PLAYERS_PER_TEAM = 7  # per real-world team

# Checked in this order; (min, max) inclusive.
ROLE_REQUIREMENTS: dict[str, tuple[int, int]] = {
    "Wicket-Keeper": (1, 4),
    "Batsman": (3, 6),
    "All-Rounder": (1, 4),
    "Bowler": (3, 6),
}

# ---------- Auto-match queue ----------
TEAM_SIZE = 4
ENDGAME_MIN_MEMBERS = 2

TEAM_NAME_ADJECTIVES = ["Mighty", "Swift", "Royal", "Thunder", "Golden", "Storm", "Brave", "Fierce"]
TEAM_NAME_NOUNS = ["Warriors", "Strikers", "Challengers", "Titans", "Lions", "Eagles", "Panthers", "Kings"]

# ---------- Leaderboards ----------
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# ---------- Admin ----------
# Usernames allowed to run lifecycle and scoring endpoints (comma-separated).
ADMIN_USERNAMES = frozenset(
    u.strip() for u in os.environ.get("FANTASY_ADMIN_USERNAMES", "admin").split(",") if u.strip()
)

# ---------- Environment ----------
DB_PATH = os.environ.get("FANTASY_DB_PATH")
LOG_LEVEL = os.environ.get("FANTASY_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | int | None = None) -> None:
    """Configure root logging once for CLI and API entry points."""
    if level is None:
        level = LOG_LEVEL
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
