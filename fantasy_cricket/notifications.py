"""
Notification port: real-time push to connected users, abstracted from transport.
The queue and scoring services depend only on NotificationPort; the API provides
a WebSocket-backed implementation. Delivery is best-effort.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

TEAM_MATCHED_EVENT = "team-matched"
QUEUE_EXPIRED_EVENT = "queue-expired"
LEADERBOARD_UPDATE_EVENT = "leaderboard-update"


def match_room(match_id: str) -> str:
    return f"match:{match_id}"


class NotificationPort:
    """
    notify: push to one user's sessions; no-op when the user is not connected.
    broadcast: push to every session subscribed to a room.
    """

    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def broadcast(self, room: str, event: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def notify_team_formed(self, user_ids: list[str], match_id: str, team_summary: dict[str, Any]) -> None:
        payload = {"match_id": match_id, **team_summary}
        for uid in user_ids:
            self.notify(uid, TEAM_MATCHED_EVENT, payload)


class NullNotifier(NotificationPort):
    """Drops everything. Default when no transport is wired."""

    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        return None

    def broadcast(self, room: str, event: str, payload: dict[str, Any]) -> None:
        return None


@dataclass
class SentNotification:
    target: str  # user id or room
    event: str
    payload: dict[str, Any]
    is_broadcast: bool = False


@dataclass
class RecordingNotifier(NotificationPort):
    """Keeps every notification in memory (tests, admin CLI dry runs)."""
    sent: list[SentNotification] = field(default_factory=list)

    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        self.sent.append(SentNotification(user_id, event, payload))

    def broadcast(self, room: str, event: str, payload: dict[str, Any]) -> None:
        self.sent.append(SentNotification(room, event, payload, is_broadcast=True))

    def for_user(self, user_id: str) -> list[SentNotification]:
        return [n for n in self.sent if not n.is_broadcast and n.target == user_id]

    def events(self, event: str) -> list[SentNotification]:
        return [n for n in self.sent if n.event == event]
