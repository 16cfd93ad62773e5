"""
Squad composition rules. Pure: no persistence, no side effects.
Used for save-time validation and for the dry-run validate endpoint.
"""
from __future__ import annotations

from collections import Counter
from typing import Callable, Iterable, Mapping

from fantasy_cricket import config
from fantasy_cricket.errors import (
    CreditsExceededError,
    InvalidSizeError,
    RoleViolationError,
    TeamCapExceededError,
)
from fantasy_cricket.models import Player

PlayerLookup = Callable[[str], "Player | None"]


def resolve_players(player_ids: Iterable[str], lookup: PlayerLookup) -> list[Player]:
    """Resolve distinct ids to players; unknown ids are dropped (caught by the size check)."""
    resolved: list[Player] = []
    for pid in dict.fromkeys(player_ids):
        p = lookup(pid)
        if p is not None:
            resolved.append(p)
    return resolved


def check_size(players: list[Player], total_players: int = config.TOTAL_PLAYERS) -> None:
    if len(players) != total_players:
        raise InvalidSizeError(
            f"Team must have exactly {total_players} players (resolved {len(players)})"
        )


def check_credits(players: list[Player], max_credits: float = config.MAX_CREDITS) -> float:
    total = round(sum(p.credit_value for p in players), 1)
    if total > max_credits:
        raise CreditsExceededError(total, max_credits)
    return total


def check_roles(
    players: list[Player],
    requirements: Mapping[str, tuple[int, int]] = config.ROLE_REQUIREMENTS,
) -> None:
    counts = Counter(p.role for p in players)
    for role, (lo, hi) in requirements.items():
        count = counts.get(role, 0)
        if count < lo:
            raise RoleViolationError(role, "min", lo, count)
        if count > hi:
            raise RoleViolationError(role, "max", hi, count)


def check_team_cap(players: list[Player], limit: int = config.MAX_PLAYERS_PER_TEAM) -> None:
    for team, count in sorted(Counter(p.team for p in players).items()):
        if count > limit:
            raise TeamCapExceededError(team, count, limit)


def validate_squad(player_ids: Iterable[str], lookup: PlayerLookup) -> float:
    """
    Validate a candidate squad and return its total credits.
    Checks in order: size, credits, role counts, per-team cap.
    Raises the specific ValidationError subclass for the first violation.
    """
    ids = list(player_ids)
    if len(ids) != len(set(ids)):
        raise InvalidSizeError("Team contains duplicate players")
    players = resolve_players(ids, lookup)
    check_size(players)
    total = check_credits(players)
    check_roles(players)
    check_team_cap(players)
    return total

