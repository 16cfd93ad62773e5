"""
REST API for the fantasy cricket backend.
Thin wrappers around the services; domain errors map to HTTP status codes.
Real-time pushes (team-matched, queue-expired, leaderboard-update) go over /ws.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Generator

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from fantasy_cricket import config
from fantasy_cricket.auth import create_access_token, decode_token, hash_password, verify_password
from fantasy_cricket.errors import ConflictError, FantasyError, NotFoundError
from fantasy_cricket.models import Player, PlayerRole
from fantasy_cricket.notifications import NotificationPort, match_room
from fantasy_cricket.persistence import (
    MatchRepository,
    PlayerRepository,
    UserRepository,
    get_connection,
    get_db_path,
    init_db,
    transaction,
)
from fantasy_cricket.services import (
    LeaderboardService,
    MatchingService,
    MatchLifecycleService,
    PredictionService,
    ScoringRunService,
    TeamBuilderService,
)

logger = logging.getLogger(__name__)


@contextmanager
def db_conn() -> Generator:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


# ---------- WebSocket hub (NotificationPort over live sockets) ----------


def _log_send_failure(fut: Future) -> None:
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        logger.debug(f"WebSocket send failed: {exc}")


class WebSocketHub(NotificationPort):
    """
    user_id -> sockets and room -> sockets. Services call notify/broadcast from
    worker threads; sends are scheduled on the server's event loop and never awaited.
    Users with no open socket are skipped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, list[WebSocket]] = {}
        self._rooms: dict[str, list[WebSocket]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def connect(self, websocket: WebSocket, user_id: str) -> None:
        self._loop = asyncio.get_running_loop()
        with self._lock:
            self._users.setdefault(user_id, []).append(websocket)

    def join_room(self, websocket: WebSocket, room: str) -> None:
        with self._lock:
            sockets = self._rooms.setdefault(room, [])
            if websocket not in sockets:
                sockets.append(websocket)

    def leave_room(self, websocket: WebSocket, room: str) -> None:
        with self._lock:
            self._discard(self._rooms, room, websocket)

    def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        with self._lock:
            self._discard(self._users, user_id, websocket)
            for room in list(self._rooms):
                self._discard(self._rooms, room, websocket)

    @staticmethod
    def _discard(index: dict[str, list[WebSocket]], key: str, websocket: WebSocket) -> None:
        sockets = [w for w in index.get(key, []) if w is not websocket]
        if sockets:
            index[key] = sockets
        else:
            index.pop(key, None)

    def connected_users(self) -> set[str]:
        with self._lock:
            return set(self._users)

    def _send(self, sockets: list[WebSocket], event: str, payload: dict[str, Any]) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        message = {"event": event, "data": payload}
        for ws in sockets:
            fut = asyncio.run_coroutine_threadsafe(ws.send_json(message), self._loop)
            fut.add_done_callback(_log_send_failure)

    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            sockets = list(self._users.get(user_id, []))
        self._send(sockets, event, payload)

    def broadcast(self, room: str, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            sockets = list(self._rooms.get(room, []))
        self._send(sockets, event, payload)


hub = WebSocketHub()
matching_service = MatchingService(notifier=hub)
team_builder = TeamBuilderService()
prediction_service = PredictionService()
leaderboard_service = LeaderboardService()
lifecycle_service = MatchLifecycleService(matching=matching_service)
scoring_run_service = ScoringRunService(notifier=hub, lifecycle=lifecycle_service)


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config.setup_logging()
    init_db(db_path=get_db_path())
    yield


# ---------- FastAPI app ----------
app = FastAPI(
    title="Fantasy Cricket API",
    description="Squads, predictions, auto-matched teams and leaderboards",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FantasyError)
async def fantasy_error_handler(request: Request, exc: FantasyError) -> JSONResponse:
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, ConflictError):
        status = 409
    else:
        status = 400
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ---------- Request models ----------

security = HTTPBearer(auto_error=False)


class SignupRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=6)
    name: str | None = Field(None, max_length=200)


class LoginRequest(BaseModel):
    username: str
    password: str


class SquadRequest(BaseModel):
    player_ids: list[str]
    captain_id: str
    vice_captain_id: str


class PredictionsRequest(BaseModel):
    predictions: dict[str, Any] = Field(..., description="category -> answer or {answer}")


class PlayerStatsRequest(BaseModel):
    batting: dict[str, Any] | None = None
    bowling: dict[str, Any] | None = None
    fielding: dict[str, Any] | None = None
    manual_points: float | None = Field(None, description="Pin fantasy points; skips computation")


class CreatePlayerRequest(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    team: str = Field(..., min_length=1, max_length=10)
    role: PlayerRole
    credit_value: float = Field(..., ge=config.MIN_CREDIT_VALUE, le=config.MAX_CREDIT_VALUE)


class CreateMatchRequest(BaseModel):
    id: str | None = None
    team1: str = Field(..., min_length=1)
    team2: str = Field(..., min_length=1)
    venue: str = ""
    start_time: datetime
    lock_time: datetime


class MatchStatusRequest(BaseModel):
    status: str


# ---------- Auth ----------


def _get_current_user_id(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str:
    user_id = decode_token(credentials.credentials) if credentials else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


def _require_admin(user_id: str = Depends(_get_current_user_id)) -> str:
    with db_conn() as conn:
        user = UserRepository().get(conn, user_id)
    if user is None or user.username not in config.ADMIN_USERNAMES:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id


@app.post("/signup")
def signup(req: SignupRequest) -> dict[str, Any]:
    with db_conn() as conn:
        user_repo = UserRepository()
        with transaction(conn):
            if user_repo.get_by_username(conn, req.username):
                raise HTTPException(status_code=400, detail="Username already taken")
            user = user_repo.create_with_password(conn, req.username, hash_password(req.password), name=req.name)
    return {"user_id": user.id, "username": user.username, "token": create_access_token(user.id)}


@app.post("/login")
def login(req: LoginRequest) -> dict[str, Any]:
    with db_conn() as conn:
        user = UserRepository().get_by_username(conn, req.username)
    if user is None or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return {"user_id": user.id, "username": user.username, "token": create_access_token(user.id)}


# ---------- Reference data ----------


@app.get("/players")
def list_players(team: str | None = None, role: str | None = None) -> dict[str, Any]:
    with db_conn() as conn:
        players = PlayerRepository().list(conn, teams=[team] if team else None, role=role)
    return {"players": [p.to_dict() for p in players]}


@app.get("/matches")
def list_matches(status: str | None = None) -> dict[str, Any]:
    with db_conn() as conn:
        matches = MatchRepository().list_all(conn, status=status)
    return {"matches": [m.to_dict() for m in matches]}


@app.get("/matches/{match_id}")
def get_match(match_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        match = MatchRepository().get(conn, match_id)
    if match is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return match.to_dict()


# ---------- Squads ----------


@app.get("/matches/{match_id}/squad/validate")
def validate_squad(match_id: str, players: str = Query(..., description="Comma-separated player ids")) -> dict[str, Any]:
    player_ids = [p for p in players.split(",") if p]
    with db_conn() as conn:
        return team_builder.validate_squad(conn, match_id, player_ids).to_dict()


@app.post("/matches/{match_id}/squad")
def save_squad(
    match_id: str,
    req: SquadRequest,
    response: Response,
    user_id: str = Depends(_get_current_user_id),
) -> dict[str, Any]:
    with db_conn() as conn:
        team, created = team_builder.save_squad(
            conn, user_id, match_id, req.player_ids, req.captain_id, req.vice_captain_id
        )
    response.status_code = 201 if created else 200
    return team.to_dict()


@app.get("/matches/{match_id}/squad")
def get_squad(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        team = team_builder.get_squad(conn, user_id, match_id)
    return {"squad": team.to_dict() if team else None}


@app.delete("/matches/{match_id}/squad")
def delete_squad(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        team_builder.delete_squad(conn, user_id, match_id)
    return {"deleted": True}


# ---------- Predictions ----------


@app.get("/matches/{match_id}/predictions/options")
def prediction_options(match_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        options = prediction_service.prediction_options(conn, match_id)
    return {team: [p.to_dict() for p in players] for team, players in options.items()}


@app.post("/matches/{match_id}/predictions")
def submit_predictions(
    match_id: str,
    req: PredictionsRequest,
    response: Response,
    user_id: str = Depends(_get_current_user_id),
) -> dict[str, Any]:
    with db_conn() as conn:
        prediction, created = prediction_service.submit_predictions(conn, user_id, match_id, req.predictions)
    response.status_code = 201 if created else 200
    return prediction.to_dict()


@app.get("/matches/{match_id}/predictions")
def get_predictions(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        prediction = prediction_service.get_predictions(conn, user_id, match_id)
    return {"predictions": prediction.to_dict() if prediction else None}


# ---------- Auto-match queue ----------


@app.post("/matches/{match_id}/queue")
def join_queue(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        return matching_service.join(conn, user_id, match_id).to_dict()


@app.delete("/matches/{match_id}/queue")
def leave_queue(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        matching_service.leave(conn, user_id, match_id)
    return {"left": True}


@app.get("/matches/{match_id}/queue/status")
def queue_status(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        return matching_service.status(conn, user_id, match_id).to_dict()


@app.get("/matches/{match_id}/queue/team")
def my_matched_team(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        team = matching_service.get_user_team(conn, user_id, match_id)
    return {"team": team.to_dict() if team else None}


# ---------- Leaderboards ----------


@app.get("/leaderboards/individual/overall")
def overall_leaderboard(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
) -> dict[str, Any]:
    with db_conn() as conn:
        return leaderboard_service.overall_leaderboard(conn, page, limit)


@app.get("/leaderboards/individual/{match_id}")
def individual_leaderboard(
    match_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
) -> dict[str, Any]:
    with db_conn() as conn:
        return leaderboard_service.individual_leaderboard(conn, match_id, page, limit)


@app.get("/leaderboards/team/{match_id}")
def team_leaderboard(
    match_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
) -> dict[str, Any]:
    with db_conn() as conn:
        return leaderboard_service.team_leaderboard(conn, match_id, page, limit)


@app.get("/leaderboards/my-rank/{match_id}")
def my_rank(match_id: str, user_id: str = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        return leaderboard_service.my_rank(conn, user_id, match_id)


# ---------- Admin ----------


@app.post("/admin/players", status_code=201)
def create_player(req: CreatePlayerRequest, _: str = Depends(_require_admin)) -> dict[str, Any]:
    player = Player(id=req.id, name=req.name, team=req.team, role=req.role.value, credit_value=req.credit_value)
    with db_conn() as conn:
        with transaction(conn):
            PlayerRepository().upsert(conn, player)
    return player.to_dict()


@app.post("/admin/matches", status_code=201)
def create_match(req: CreateMatchRequest, _: str = Depends(_require_admin)) -> dict[str, Any]:
    if req.lock_time > req.start_time:
        raise HTTPException(status_code=400, detail="lock_time must not be after start_time")
    with db_conn() as conn:
        with transaction(conn):
            match = MatchRepository().create(
                conn, req.team1, req.team2, req.start_time, req.lock_time, venue=req.venue, id=req.id
            )
    return match.to_dict()


@app.post("/admin/matches/{match_id}/status")
def set_match_status(match_id: str, req: MatchStatusRequest, _: str = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        lifecycle_service.transition_status(conn, match_id, req.status)
    return {"match_id": match_id, "status": req.status}


@app.post("/admin/matches/{match_id}/close-selection")
def close_selection(match_id: str, _: str = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return lifecycle_service.close_team_selection(conn, match_id).to_dict()


@app.put("/admin/matches/{match_id}/stats-snapshot")
def set_stats_snapshot(
    match_id: str, snapshot: dict[str, Any] = Body(...), _: str = Depends(_require_admin)
) -> dict[str, Any]:
    with db_conn() as conn:
        lifecycle_service.set_stats_snapshot(conn, match_id, snapshot)
    return {"match_id": match_id, "stats_snapshot": snapshot}


@app.put("/admin/matches/{match_id}/players/{player_id}/stats")
def record_player_stats(
    match_id: str, player_id: str, req: PlayerStatsRequest, _: str = Depends(_require_admin)
) -> dict[str, Any]:
    stats = {"batting": req.batting, "bowling": req.bowling, "fielding": req.fielding}
    with db_conn() as conn:
        row = lifecycle_service.record_player_stats(conn, match_id, player_id, stats, req.manual_points)
    return row.to_dict()


@app.post("/admin/matches/{match_id}/score")
def run_scoring(match_id: str, finalize: bool = False, _: str = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return scoring_run_service.run_scoring(conn, match_id, finalize=finalize).to_dict()


# ---------- WebSocket ----------


@app.websocket("/ws")
async def websocket_events(websocket: WebSocket, token: str | None = None, match_id: str | None = None):
    """
    Personal events (team-matched, queue-expired) for the token's user, plus
    room events (leaderboard-update) for subscribed matches.
    Client messages: {"action": "subscribe" | "unsubscribe", "match_id": ...}.
    """
    user_id = decode_token(token) if token else None
    if user_id is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    hub.connect(websocket, user_id)
    if match_id:
        hub.join_room(websocket, match_room(match_id))
    try:
        while True:
            message = await websocket.receive_json()
            room_id = message.get("match_id") if isinstance(message, dict) else None
            if not room_id:
                continue
            if message.get("action") == "subscribe":
                hub.join_room(websocket, match_room(room_id))
            elif message.get("action") == "unsubscribe":
                hub.leave_room(websocket, match_room(room_id))
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket, user_id)


# ---------- Run with: uvicorn fantasy_cricket.api:app --reload ----------
