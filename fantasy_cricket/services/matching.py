"""
Auto-match queue: groups waiting users of a match into fixed-size teams, FIFO.
Queue entry states: waiting -> matched | expired, or deleted on leave while waiting.

All mutations for one match run under a per-match lock and a single
BEGIN IMMEDIATE transaction, so a batch (team created + entries marked matched)
is applied as one unit. Notifications go out only after the commit and
never roll back matching state.
"""
from __future__ import annotations

import logging
import random
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generator

from fantasy_cricket import config
from fantasy_cricket.errors import (
    ConflictError,
    NotFoundError,
    NotInQueueError,
    PreconditionError,
    PrerequisiteMissingError,
    SelectionClosedError,
)
from fantasy_cricket.models import MatchedTeam, MatchedTeamStatus, MatchStatus, QueueEntry, QueueStatus
from fantasy_cricket.notifications import QUEUE_EXPIRED_EVENT, NotificationPort, NullNotifier
from fantasy_cricket.persistence.db import transaction
from fantasy_cricket.persistence.repositories import (
    FantasyTeamRepository,
    MatchedTeamRepository,
    MatchRepository,
    QueueRepository,
)

logger = logging.getLogger(__name__)

NameGenerator = Callable[[], str]
Clock = Callable[[], datetime]


def random_team_name() -> str:
    """Random adjective + noun, e.g. 'Mighty Titans'."""
    return f"{random.choice(config.TEAM_NAME_ADJECTIVES)} {random.choice(config.TEAM_NAME_NOUNS)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Per-match serialization ----------

@dataclass
class _MatchLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0  # threads holding or waiting on lock


_registry_lock = threading.Lock()
_match_locks: dict[str, _MatchLock] = {}


@contextmanager
def match_lock(match_id: str) -> Generator[None, None, None]:
    """
    Serialize queue mutations for one match within this process. The registry
    entry is dropped when the last holder leaves, so finished matches keep no lock.
    """
    with _registry_lock:
        entry = _match_locks.setdefault(match_id, _MatchLock())
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _registry_lock:
            entry.holders -= 1
            if entry.holders == 0:
                del _match_locks[match_id]


# ---------- Results ----------

JOIN_MATCHED = "matched"
JOIN_ALREADY_MATCHED = "already_matched"
JOIN_ALREADY_IN_QUEUE = "already_in_queue"
JOIN_IN_QUEUE = "in_queue"


@dataclass
class JoinResult:
    """outcome: matched | already_matched | already_in_queue | in_queue."""
    outcome: str
    team: MatchedTeam | None = None
    position: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"outcome": self.outcome}
        if self.team is not None:
            d["team"] = self.team.to_dict()
        if self.position is not None:
            d["position"] = self.position
        return d


@dataclass
class QueueStatusResult:
    """status: not_joined | waiting | matched | expired."""
    status: str
    position: int | None = None
    total_waiting: int | None = None
    need_more: int | None = None
    team: MatchedTeam | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"status": self.status}
        if self.status == QueueStatus.WAITING.value:
            d.update(position=self.position, total_waiting=self.total_waiting, need_more=self.need_more)
        if self.team is not None:
            d["team"] = self.team.to_dict()
        return d


@dataclass
class EndgameResult:
    team: MatchedTeam | None = None
    expired_user_ids: list[str] = field(default_factory=list)
    teams_formed: list[MatchedTeam] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "team": self.team.to_dict() if self.team else None,
            "expired_user_ids": self.expired_user_ids,
            "teams_formed": len(self.teams_formed),
        }


# ---------- MatchingService ----------


class MatchingService:
    """
    join / batch / leave / endgame_sweep / status for the auto-match queue.
    notifier, name_generator and clock are injectable for tests.
    """

    def __init__(
        self,
        notifier: NotificationPort | None = None,
        name_generator: NameGenerator | None = None,
        clock: Clock | None = None,
        team_size: int = config.TEAM_SIZE,
    ) -> None:
        self.notifier = notifier or NullNotifier()
        self.name_generator = name_generator or random_team_name
        self.clock = clock or _utcnow
        self.team_size = team_size
        self._match_repo = MatchRepository()
        self._queue_repo = QueueRepository()
        self._team_repo = MatchedTeamRepository()
        self._fantasy_repo = FantasyTeamRepository()

    # ---------- Operations ----------

    def join(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        match_id: str,
        fantasy_team_id: str | None = None,
    ) -> JoinResult:
        """
        Enqueue the user's saved squad and attempt one batching pass.
        Idempotent for users already waiting or matched.
        """
        formed: list[MatchedTeam] = []
        with match_lock(match_id):
            with transaction(conn):
                self._require_match(conn, match_id)
                existing = self._queue_repo.get(conn, user_id, match_id)
                if existing is not None:
                    return self._existing_join_result(conn, existing)

                match = self._match_repo.get(conn, match_id)
                if not match.is_team_selection_open or match.status != MatchStatus.UPCOMING.value:
                    raise SelectionClosedError("Team selection is closed for this match")
                squad = self._fantasy_repo.get_for_user(conn, user_id, match_id)
                if squad is None or (fantasy_team_id is not None and squad.id != fantasy_team_id):
                    raise PrerequisiteMissingError("Fantasy team not found. Create your team first.")

                try:
                    entry = self._queue_repo.insert(conn, user_id, match_id, squad.id, self.clock())
                except sqlite3.IntegrityError as e:
                    raise ConflictError(f"Concurrent join for user {user_id}; re-read queue status") from e
                logger.debug(f"User {user_id} joined queue for match {match_id}")

                formed = self._form_batches(conn, match_id)
                refreshed = self._queue_repo.get(conn, user_id, match_id)
                if refreshed.status == QueueStatus.MATCHED.value:
                    result = JoinResult(JOIN_MATCHED, team=self._team_repo.get(conn, refreshed.assigned_team_id))
                else:
                    position = self._queue_repo.position(conn, entry)
                    logger.debug(f"User {user_id} waiting at position {position} for match {match_id}")
                    result = JoinResult(JOIN_IN_QUEUE, position=position)
        self._notify_formed(formed)
        return result

    def batch(self, conn: sqlite3.Connection, match_id: str) -> list[MatchedTeam]:
        """Drain full batches of team_size from the waiting queue. No-op below team_size."""
        with match_lock(match_id):
            with transaction(conn):
                self._require_match(conn, match_id)
                formed = self._form_batches(conn, match_id)
        self._notify_formed(formed)
        return formed

    def leave(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> None:
        """Remove the user's entry; only allowed while waiting."""
        with match_lock(match_id):
            with transaction(conn):
                self._require_match(conn, match_id)
                entry = self._queue_repo.get(conn, user_id, match_id)
                if entry is None or entry.status != QueueStatus.WAITING.value:
                    raise NotInQueueError("Not in queue")
                if self._queue_repo.delete_waiting(conn, entry.id) != 1:
                    raise ConflictError("Queue entry changed while leaving; re-read queue status")
        logger.info(f"User {user_id} left queue for match {match_id}")

    def endgame_sweep(self, conn: sqlite3.Connection, match_id: str) -> EndgameResult:
        """
        Run when team selection closes. Any full batches are formed first; then
        2..team_size-1 leftovers become one undersized team, and a single leftover expires.
        """
        result = EndgameResult()
        with match_lock(match_id):
            with transaction(conn):
                self._require_match(conn, match_id)
                result.teams_formed = self._form_batches(conn, match_id)
                remaining = self._queue_repo.list_waiting(conn, match_id)
                if len(remaining) >= config.ENDGAME_MIN_MEMBERS:
                    result.team = self._create_team(conn, match_id, remaining)
                    result.teams_formed.append(result.team)
                elif len(remaining) == 1:
                    leftover = remaining[0]
                    if self._queue_repo.mark_expired(conn, [leftover.id]) != 1:
                        raise ConflictError("Queue entry changed during endgame sweep")
                    result.expired_user_ids.append(leftover.user_id)
                    logger.info(f"Queue entry for user {leftover.user_id} expired unmatched in match {match_id}")
        self._notify_formed(result.teams_formed)
        for uid in result.expired_user_ids:
            self._safe_notify(uid, QUEUE_EXPIRED_EVENT, {"match_id": match_id})
        return result

    def status(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> QueueStatusResult:
        self._require_match(conn, match_id)
        entry = self._queue_repo.get(conn, user_id, match_id)
        if entry is None:
            return QueueStatusResult(status="not_joined")
        if entry.status == QueueStatus.MATCHED.value:
            return QueueStatusResult(
                status=QueueStatus.MATCHED.value,
                team=self._team_repo.get(conn, entry.assigned_team_id),
            )
        if entry.status == QueueStatus.EXPIRED.value:
            return QueueStatusResult(status=QueueStatus.EXPIRED.value)
        total_waiting = self._queue_repo.count_waiting(conn, match_id)
        return QueueStatusResult(
            status=QueueStatus.WAITING.value,
            position=self._queue_repo.position(conn, entry),
            total_waiting=total_waiting,
            need_more=max(self.team_size - total_waiting, 0),
        )

    def get_user_team(self, conn: sqlite3.Connection, user_id: str, match_id: str) -> MatchedTeam | None:
        entry = self._queue_repo.get(conn, user_id, match_id)
        if entry is None or entry.status != QueueStatus.MATCHED.value or not entry.assigned_team_id:
            return None
        return self._team_repo.get(conn, entry.assigned_team_id)

    # ---------- Internals (caller holds lock and transaction) ----------

    def _require_match(self, conn: sqlite3.Connection, match_id: str) -> None:
        if self._match_repo.get(conn, match_id) is None:
            raise NotFoundError(f"Match not found: {match_id}")

    def _existing_join_result(self, conn: sqlite3.Connection, entry: QueueEntry) -> JoinResult:
        if entry.status == QueueStatus.MATCHED.value:
            return JoinResult(JOIN_ALREADY_MATCHED, team=self._team_repo.get(conn, entry.assigned_team_id))
        if entry.status == QueueStatus.WAITING.value:
            return JoinResult(JOIN_ALREADY_IN_QUEUE, position=self._queue_repo.position(conn, entry))
        raise PreconditionError("Queue entry for this match has expired")

    def _form_batches(self, conn: sqlite3.Connection, match_id: str) -> list[MatchedTeam]:
        formed: list[MatchedTeam] = []
        while True:
            group = self._queue_repo.list_waiting(conn, match_id, limit=self.team_size)
            if len(group) < self.team_size:
                return formed
            formed.append(self._create_team(conn, match_id, group))

    def _create_team(self, conn: sqlite3.Connection, match_id: str, entries: list[QueueEntry]) -> MatchedTeam:
        if len(entries) < config.ENDGAME_MIN_MEMBERS:
            raise ValueError(f"A matched team needs at least {config.ENDGAME_MIN_MEMBERS} members")
        team = self._team_repo.create(
            conn,
            match_id=match_id,
            team_name=self.name_generator(),
            members=[(e.user_id, e.fantasy_team_id) for e in entries],
            status=MatchedTeamStatus.LOCKED.value,
        )
        updated = self._queue_repo.mark_matched(conn, [e.id for e in entries], team.id)
        if updated != len(entries):
            raise ConflictError(
                f"Expected to match {len(entries)} queue entries, updated {updated}; batch rolled back"
            )
        logger.info(f"Formed team '{team.team_name}' ({len(entries)} members) for match {match_id}")
        return team

    # ---------- Notifications (after commit, best-effort) ----------

    def _notify_formed(self, teams: list[MatchedTeam]) -> None:
        for team in teams:
            try:
                self.notifier.notify_team_formed(team.user_ids, team.match_id, team.summary())
            except Exception:
                logger.warning(f"Team-formed notification failed for team {team.id}", exc_info=True)

    def _safe_notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        try:
            self.notifier.notify(user_id, event, payload)
        except Exception:
            logger.warning(f"Notification {event} to user {user_id} failed", exc_info=True)
