"""
Admin command line: initialize the database, load reference data, close team
selection and run scoring.

    python -m fantasy_cricket.admin_cli init-db
    python -m fantasy_cricket.admin_cli load-players players.json
    python -m fantasy_cricket.admin_cli load-matches matches.json
    python -m fantasy_cricket.admin_cli close-selection <match_id>
    python -m fantasy_cricket.admin_cli score <match_id> --finalize
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from fantasy_cricket import config
from fantasy_cricket.errors import FantasyError, ValidationError
from fantasy_cricket.models import MatchStatus, Player, PlayerRole
from fantasy_cricket.persistence import (
    MatchRepository,
    PlayerRepository,
    get_connection,
    get_db_path,
    init_db,
    set_db_path,
    transaction,
)
from fantasy_cricket.services import MatchLifecycleService, ScoringRunService

logger = logging.getLogger(__name__)

_ROLES = {r.value for r in PlayerRole}
_STATUSES = {s.value for s in MatchStatus}


def _read_json_list(path: str) -> list[dict[str, Any]]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValidationError(f"{path}: expected a JSON list")
    return data


def _player_from_dict(d: dict[str, Any]) -> Player:
    try:
        player = Player(
            id=str(d["id"]),
            name=d["name"],
            team=d["team"],
            role=d["role"],
            credit_value=float(d["credit_value"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid player record {d!r}: {e}") from e
    if player.role not in _ROLES:
        raise ValidationError(f"Player {player.id}: unknown role {player.role!r}")
    if not config.MIN_CREDIT_VALUE <= player.credit_value <= config.MAX_CREDIT_VALUE:
        raise ValidationError(f"Player {player.id}: credit_value {player.credit_value} out of range")
    return player


def cmd_init_db(args: argparse.Namespace) -> dict[str, Any]:
    init_db(get_db_path())
    return {"db_path": str(get_db_path())}


def cmd_load_players(args: argparse.Namespace) -> dict[str, Any]:
    players = [_player_from_dict(d) for d in _read_json_list(args.path)]
    repo = PlayerRepository()
    conn = get_connection()
    try:
        with transaction(conn):
            for p in players:
                repo.upsert(conn, p)
    finally:
        conn.close()
    logger.info(f"Loaded {len(players)} players from {args.path}")
    return {"loaded": len(players)}


def cmd_load_matches(args: argparse.Namespace) -> dict[str, Any]:
    records = _read_json_list(args.path)
    repo = MatchRepository()
    conn = get_connection()
    ids: list[str] = []
    try:
        with transaction(conn):
            for d in records:
                try:
                    start = datetime.fromisoformat(d["start_time"])
                    lock = datetime.fromisoformat(d.get("lock_time", d["start_time"]))
                    status = d.get("status", MatchStatus.UPCOMING.value)
                    if status not in _STATUSES:
                        raise ValueError(f"unknown status {status!r}")
                    match = repo.create(
                        conn, d["team1"], d["team2"], start, lock,
                        venue=d.get("venue", ""), id=d.get("id"), status=status,
                        is_team_selection_open=bool(d.get("is_team_selection_open", True)),
                    )
                except (KeyError, TypeError, ValueError) as e:
                    raise ValidationError(f"Invalid match record {d!r}: {e}") from e
                ids.append(match.id)
    finally:
        conn.close()
    logger.info(f"Loaded {len(ids)} matches from {args.path}")
    return {"loaded": len(ids), "match_ids": ids}


def cmd_close_selection(args: argparse.Namespace) -> dict[str, Any]:
    conn = get_connection()
    try:
        return MatchLifecycleService().close_team_selection(conn, args.match_id).to_dict()
    finally:
        conn.close()


def cmd_score(args: argparse.Namespace) -> dict[str, Any]:
    conn = get_connection()
    try:
        return ScoringRunService().run_scoring(conn, args.match_id, finalize=args.finalize).to_dict()
    finally:
        conn.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fantasy cricket admin tasks.")
    parser.add_argument("--db", default=None, help="SQLite path (default: FANTASY_DB_PATH or data/fantasy.db)")
    parser.add_argument("--log-level", default=None, help="Logging level (default: FANTASY_LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("load-players", help="Upsert players from a JSON list")
    p.add_argument("path")
    p.set_defaults(func=cmd_load_players)

    p = sub.add_parser("load-matches", help="Create matches from a JSON list")
    p.add_argument("path")
    p.set_defaults(func=cmd_load_matches)

    p = sub.add_parser("close-selection", help="Close team selection and sweep the queue")
    p.add_argument("match_id")
    p.set_defaults(func=cmd_close_selection)

    p = sub.add_parser("score", help="Run scoring for a match")
    p.add_argument("match_id")
    p.add_argument("--finalize", action="store_true", help="Mark teams and match completed")
    p.set_defaults(func=cmd_score)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config.setup_logging(args.log_level)
    if args.db:
        set_db_path(args.db)
    if args.func is not cmd_init_db:
        init_db(get_db_path())
    try:
        result = args.func(args)
    except FantasyError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
