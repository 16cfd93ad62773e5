"""
Tests for the auto-match queue: FIFO batching, idempotent join, leave,
endgame sweep, status, atomic batches and best-effort notifications.
"""
from __future__ import annotations

import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from fantasy_cricket.errors import (
    ConflictError,
    NotFoundError,
    NotInQueueError,
    PreconditionError,
    PrerequisiteMissingError,
    SelectionClosedError,
)
from fantasy_cricket.models import MatchedTeamStatus, QueueStatus
from fantasy_cricket.notifications import QUEUE_EXPIRED_EVENT, TEAM_MATCHED_EVENT, RecordingNotifier
from fantasy_cricket.persistence.db import get_connection, transaction
from fantasy_cricket.persistence.repositories import MatchedTeamRepository, MatchRepository, QueueRepository
from fantasy_cricket.services import matching as matching_module
from fantasy_cricket.services.matching import (
    JOIN_ALREADY_IN_QUEUE,
    JOIN_ALREADY_MATCHED,
    JOIN_IN_QUEUE,
    JOIN_MATCHED,
    MatchingService,
    random_team_name,
)


class StepClock:
    """Each call is one second after the previous one."""

    def __init__(self, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now


class FailingNotifier(RecordingNotifier):
    def notify(self, user_id, event, payload):
        raise ConnectionError("socket closed")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(notifier):
    return MatchingService(notifier=notifier, name_generator=lambda: "Test Titans", clock=StepClock())


@pytest.fixture
def queued_users(make_users, make_squad, match):
    """Factory: n users with saved squads for the match."""
    def _make(n: int, prefix: str = "user") -> list[str]:
        users = make_users(n, prefix)
        for uid in users:
            make_squad(uid, match.id)
        return users
    return _make


def _matched_teams(db_conn, match_id):
    return MatchedTeamRepository().list_by_match(db_conn, match_id)


# ---------- Batching ----------


def test_nine_joins_form_two_teams_and_leave_one_waiting(db_conn, service, notifier, match, queued_users):
    users = queued_users(9)
    results = [service.join(db_conn, uid, match.id) for uid in users]

    assert [r.outcome for r in results[:3]] == [JOIN_IN_QUEUE] * 3
    assert [r.position for r in results[:3]] == [1, 2, 3]
    assert results[3].outcome == JOIN_MATCHED
    assert results[7].outcome == JOIN_MATCHED
    assert results[8].outcome == JOIN_IN_QUEUE
    assert results[8].position == 1

    teams = _matched_teams(db_conn, match.id)
    assert len(teams) == 2
    member_sets = sorted(t.user_ids for t in teams)
    assert member_sets == [users[0:4], users[4:8]]
    assert all(t.status == MatchedTeamStatus.LOCKED.value for t in teams)
    assert all(t.team_name == "Test Titans" for t in teams)

    status = service.status(db_conn, users[8], match.id)
    assert status.status == QueueStatus.WAITING.value
    assert status.position == 1
    assert status.total_waiting == 1
    assert status.need_more == 3

    sent = notifier.events(TEAM_MATCHED_EVENT)
    assert sorted(n.target for n in sent) == sorted(users[:8])


def test_fifo_with_identical_timestamps(db_conn, notifier, match, queued_users):
    service = MatchingService(notifier=notifier, clock=StepClock(step=timedelta(0)))
    users = queued_users(6)
    for uid in users:
        service.join(db_conn, uid, match.id)

    teams = _matched_teams(db_conn, match.id)
    assert len(teams) == 1
    assert teams[0].user_ids == users[:4]
    assert [service.status(db_conn, uid, match.id).position for uid in users[4:]] == [1, 2]


def test_matched_entries_point_at_their_team(db_conn, service, match, queued_users):
    users = queued_users(4)
    for uid in users:
        service.join(db_conn, uid, match.id)
    team = _matched_teams(db_conn, match.id)[0]
    repo = QueueRepository()
    for uid in users:
        entry = repo.get(db_conn, uid, match.id)
        assert entry.status == QueueStatus.MATCHED.value
        assert entry.assigned_team_id == team.id
    assert [m.position for m in team.members] == [1, 2, 3, 4]


def test_batch_below_team_size_is_noop(db_conn, service, match, queued_users):
    for uid in queued_users(3):
        service.join(db_conn, uid, match.id)
    assert service.batch(db_conn, match.id) == []
    assert service.batch(db_conn, match.id) == []
    assert _matched_teams(db_conn, match.id) == []
    assert QueueRepository().count_waiting(db_conn, match.id) == 3


def test_default_name_generator_uses_word_lists():
    name = random_team_name()
    adjective, noun = name.split(" ")
    assert adjective and noun


# ---------- Join preconditions and idempotence ----------


def test_join_requires_saved_squad(db_conn, service, match, make_users):
    (uid,) = make_users(1)
    with pytest.raises(PrerequisiteMissingError):
        service.join(db_conn, uid, match.id)


def test_join_rejects_other_fantasy_team_id(db_conn, service, match, queued_users):
    (uid,) = queued_users(1)
    with pytest.raises(PrerequisiteMissingError):
        service.join(db_conn, uid, match.id, fantasy_team_id="someone-elses-team")


def test_join_unknown_match(db_conn, service, make_users):
    (uid,) = make_users(1)
    with pytest.raises(NotFoundError):
        service.join(db_conn, uid, "no-such-match")


def test_join_after_selection_closed(db_conn, service, match, queued_users):
    (uid,) = queued_users(1)
    with transaction(db_conn):
        MatchRepository().set_team_selection_open(db_conn, match.id, False)
    with pytest.raises(SelectionClosedError):
        service.join(db_conn, uid, match.id)


@pytest.mark.parametrize("status", ["live", "completed"])
def test_join_refused_once_match_has_started(db_conn, service, match, queued_users, status):
    (uid,) = queued_users(1)
    # selection flag left open; the status alone must refuse the join
    with transaction(db_conn):
        MatchRepository().update_status(db_conn, match.id, status)
    with pytest.raises(SelectionClosedError):
        service.join(db_conn, uid, match.id)
    assert service.status(db_conn, uid, match.id).status == "not_joined"


def test_second_join_while_waiting_is_idempotent(db_conn, service, match, queued_users):
    a, b = queued_users(2)
    service.join(db_conn, a, match.id)
    service.join(db_conn, b, match.id)
    again = service.join(db_conn, b, match.id)
    assert again.outcome == JOIN_ALREADY_IN_QUEUE
    assert again.position == 2
    assert QueueRepository().count_waiting(db_conn, match.id) == 2


def test_join_after_matched_returns_team(db_conn, service, match, queued_users):
    users = queued_users(4)
    for uid in users:
        service.join(db_conn, uid, match.id)
    again = service.join(db_conn, users[0], match.id)
    assert again.outcome == JOIN_ALREADY_MATCHED
    assert again.team.user_ids == users
    assert len(_matched_teams(db_conn, match.id)) == 1


def test_join_after_expired_is_refused(db_conn, service, match, queued_users):
    (uid,) = queued_users(1)
    service.join(db_conn, uid, match.id)
    service.endgame_sweep(db_conn, match.id)
    with pytest.raises(PreconditionError):
        service.join(db_conn, uid, match.id)


# ---------- Leave ----------


def test_leave_while_waiting(db_conn, service, match, queued_users):
    a, b = queued_users(2)
    service.join(db_conn, a, match.id)
    service.join(db_conn, b, match.id)
    service.leave(db_conn, a, match.id)
    assert service.status(db_conn, a, match.id).status == "not_joined"
    assert service.status(db_conn, b, match.id).position == 1


def test_leave_never_joined(db_conn, service, match, make_users):
    (uid,) = make_users(1)
    with pytest.raises(NotInQueueError):
        service.leave(db_conn, uid, match.id)


def test_leave_unknown_match(db_conn, service, make_users):
    (uid,) = make_users(1)
    with pytest.raises(NotFoundError):
        service.leave(db_conn, uid, "no-such-match")


def test_leave_after_matched(db_conn, service, match, queued_users):
    users = queued_users(4)
    for uid in users:
        service.join(db_conn, uid, match.id)
    with pytest.raises(NotInQueueError):
        service.leave(db_conn, users[0], match.id)


def test_rejoin_after_leave_goes_to_back(db_conn, service, match, queued_users):
    a, b = queued_users(2)
    service.join(db_conn, a, match.id)
    service.join(db_conn, b, match.id)
    service.leave(db_conn, a, match.id)
    result = service.join(db_conn, a, match.id)
    assert result.outcome == JOIN_IN_QUEUE
    assert result.position == 2


# ---------- Endgame sweep ----------


def test_endgame_three_waiting_forms_reduced_team(db_conn, service, notifier, match, queued_users):
    users = queued_users(3)
    for uid in users:
        service.join(db_conn, uid, match.id)
    result = service.endgame_sweep(db_conn, match.id)
    assert result.team is not None
    assert result.team.user_ids == users
    assert result.team.status == MatchedTeamStatus.LOCKED.value
    assert result.expired_user_ids == []
    assert QueueRepository().count_waiting(db_conn, match.id) == 0
    assert len(notifier.events(TEAM_MATCHED_EVENT)) == 3


def test_endgame_two_waiting_forms_pair(db_conn, service, match, queued_users):
    users = queued_users(2)
    for uid in users:
        service.join(db_conn, uid, match.id)
    result = service.endgame_sweep(db_conn, match.id)
    assert len(result.team.members) == 2


def test_endgame_single_waiting_expires(db_conn, service, notifier, match, queued_users):
    (uid,) = queued_users(1)
    service.join(db_conn, uid, match.id)
    result = service.endgame_sweep(db_conn, match.id)
    assert result.team is None
    assert result.expired_user_ids == [uid]
    assert _matched_teams(db_conn, match.id) == []
    assert service.status(db_conn, uid, match.id).status == QueueStatus.EXPIRED.value
    assert [n.target for n in notifier.events(QUEUE_EXPIRED_EVENT)] == [uid]


def test_endgame_empty_queue(db_conn, service, match):
    result = service.endgame_sweep(db_conn, match.id)
    assert result.team is None
    assert result.expired_user_ids == []


def test_endgame_forms_full_batches_first(db_conn, match, queued_users):
    # team_size 4 but joins accumulate with batching disabled by a larger size
    users = queued_users(6)
    wide = MatchingService(clock=StepClock(), team_size=10)
    for uid in users:
        wide.join(db_conn, uid, match.id)
    narrow = MatchingService(clock=StepClock())
    result = narrow.endgame_sweep(db_conn, match.id)
    sizes = sorted(len(t.members) for t in _matched_teams(db_conn, match.id))
    assert sizes == [2, 4]
    assert len(result.teams_formed) == 2


# ---------- Status ----------


def test_status_is_repeatable(db_conn, service, match, queued_users):
    users = queued_users(2)
    for uid in users:
        service.join(db_conn, uid, match.id)
    first = service.status(db_conn, users[1], match.id).to_dict()
    second = service.status(db_conn, users[1], match.id).to_dict()
    assert first == second == {"status": "waiting", "position": 2, "total_waiting": 2, "need_more": 2}


def test_status_matched_includes_team(db_conn, service, match, queued_users):
    users = queued_users(4)
    for uid in users:
        service.join(db_conn, uid, match.id)
    status = service.status(db_conn, users[2], match.id)
    assert status.status == QueueStatus.MATCHED.value
    assert status.team.user_ids == users
    assert service.get_user_team(db_conn, users[2], match.id).id == status.team.id


def test_status_not_joined(db_conn, service, match, make_users):
    (uid,) = make_users(1)
    assert service.status(db_conn, uid, match.id).to_dict() == {"status": "not_joined"}
    assert service.get_user_team(db_conn, uid, match.id) is None


def test_status_unknown_match(db_conn, service, make_users):
    (uid,) = make_users(1)
    with pytest.raises(NotFoundError):
        service.status(db_conn, uid, "no-such-match")


# ---------- Concurrency ----------


def test_concurrent_joins_form_full_teams(db_conn, match, queued_users):
    users = queued_users(13)
    service = MatchingService()
    barrier = threading.Barrier(len(users))
    errors: list[Exception] = []

    def _join(user_id: str) -> None:
        conn = get_connection()
        try:
            barrier.wait()
            service.join(conn, user_id, match.id)
        except Exception as e:
            errors.append(e)
        finally:
            conn.close()

    threads = [threading.Thread(target=_join, args=(uid,)) for uid in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    teams = _matched_teams(db_conn, match.id)
    assert [len(t.members) for t in teams] == [4, 4, 4]
    matched = [uid for t in teams for uid in t.user_ids]
    assert len(set(matched)) == 12
    assert QueueRepository().count_waiting(db_conn, match.id) == 1
    (waiting,) = set(users) - set(matched)
    assert service.status(db_conn, waiting, match.id).position == 1
    assert matching_module._match_locks == {}


def test_match_lock_entry_dropped_after_use(db_conn, service, match, queued_users):
    users = queued_users(5)
    for uid in users:
        service.join(db_conn, uid, match.id)
    service.endgame_sweep(db_conn, match.id)
    assert match.id not in matching_module._match_locks

    with matching_module.match_lock(match.id):
        assert match.id in matching_module._match_locks
    assert matching_module._match_locks == {}


# ---------- Atomicity and notifications ----------


def test_notification_failure_does_not_undo_matching(db_conn, match, queued_users):
    service = MatchingService(notifier=FailingNotifier(), clock=StepClock())
    users = queued_users(4)
    results = [service.join(db_conn, uid, match.id) for uid in users]
    assert results[-1].outcome == JOIN_MATCHED
    assert len(_matched_teams(db_conn, match.id)) == 1
    assert QueueRepository().get(db_conn, users[0], match.id).status == QueueStatus.MATCHED.value


def test_batch_rolls_back_when_entries_change(db_conn, service, match, queued_users, monkeypatch):
    users = queued_users(4)
    for uid in users[:3]:
        service.join(db_conn, uid, match.id)
    monkeypatch.setattr(QueueRepository, "mark_matched", lambda self, conn, ids, team_id: len(ids) - 1)
    with pytest.raises(ConflictError):
        service.join(db_conn, users[3], match.id)
    assert _matched_teams(db_conn, match.id) == []
    assert QueueRepository().count_waiting(db_conn, match.id) == 3
    assert service.status(db_conn, users[3], match.id).status == "not_joined"
