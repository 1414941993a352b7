from contextlib import asynccontextmanager
from typing import Callable, Optional
import asyncio
import logging
import time

from fastapi import FastAPI, Header, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

import views
from broadcast import WebSocketHub
from coordinator import GameCoordinator
from errors import Forbidden, GameError
from export import report_to_csv
from logger import setup_logging, get_logger, log_game_event, set_request_id
from models import (
    AnswerResult, Choice, Participant, Session, SessionSnapshot,
    ViolationOutcome, ViolationType, generate_participant_id,
)
from quiz_provider import InMemoryQuizProvider, JsonDirectoryQuizProvider, QuizProvider
from settings import Settings
from store import InMemorySessionStore, SessionStore

logger = get_logger("QuizRoom")


# --- Request/Response Models ---

class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class CreateSessionRequest(_Request):
    quizId: str = Field(min_length=1)
    hostId: Optional[str] = None
    timerEnabled: Optional[bool] = None
    timerSeconds: Optional[int] = None
    basePoints: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    maxBonus: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    maxViolations: Optional[int] = Field(default=None, ge=1)


class CreateSessionResponse(BaseModel):
    code: str
    hostToken: str
    sessionId: str


class JoinRequest(_Request):
    name: str = Field(min_length=1, max_length=80)
    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")


class JoinResponse(BaseModel):
    participantId: str
    rejoined: bool
    participant: Participant


class ParticipantRequest(_Request):
    participantId: str


class KickRequest(ParticipantRequest):
    reason: str = "Removed by host"


class ViolationRequest(ParticipantRequest):
    violationType: ViolationType
    timestamp: Optional[float] = None  # client clock; events are ordered by arrival


class AnswerRequest(ParticipantRequest):
    questionIndex: int = Field(ge=0)
    choice: Choice
    # negative values are clamped by scoring, non-finite ones are rejected here
    timeTakenMs: Optional[float] = Field(default=None, allow_inf_nan=False)


class SessionSummary(BaseModel):
    id: str
    roomCode: str
    hostId: Optional[str] = None
    status: str
    createdAt: float
    endedAt: Optional[float] = None
    participantCount: int


def _summary(session: Session) -> SessionSummary:
    return SessionSummary(
        id=session.id,
        roomCode=session.room_code,
        hostId=session.host_id,
        status=session.status.value,
        createdAt=session.created_at,
        endedAt=session.ended_at,
        participantCount=len(session.participants),
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None,
    quizzes: Optional[QuizProvider] = None,
    hub: Optional[WebSocketHub] = None,
    clock: Callable[[], float] = time.time,
    rng=None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings)

    if quizzes is None:
        quizzes = JsonDirectoryQuizProvider(settings.quiz_dir) if settings.quiz_dir else InMemoryQuizProvider()
    hub = hub or WebSocketHub()
    coordinator = GameCoordinator(
        store=store or InMemorySessionStore(),
        quizzes=quizzes,
        broadcaster=hub,
        settings=settings,
        clock=clock,
        rng=rng,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🎮 QuizRoom API starting")
        yield
        await coordinator.shutdown()
        logger.info("🛑 QuizRoom API stopped")

    app = FastAPI(title="QuizRoom API", lifespan=lifespan)
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,  # Must be False when using allow_origins=["*"]
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    # --- Error envelope ---

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        level = logging.WARNING if exc.retryable else logging.INFO
        logger.log(level, f"↩️  {request.method} {request.url.path} -> {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # errors() may carry non-JSON values in "ctx"
        errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
        return JSONResponse(
            status_code=422,
            content={
                "error": "ValidationError",
                "detail": "Invalid request",
                "retryable": False,
                "terminal": False,
                "errors": errors,
            },
        )

    async def require_host(code: str, token: Optional[str]) -> Session:
        return await coordinator.authorize_host(code, token)

    def host_snapshot(session: Session) -> SessionSnapshot:
        return views.snapshot(session, include_answer_key=True)

    # --- Session lifecycle (host) ---

    @app.post("/api/session", response_model=CreateSessionResponse)
    async def create_session(request: CreateSessionRequest):
        """Create a new live session for a quiz"""
        session = await coordinator.create_session(
            request.quizId,
            host_id=request.hostId,
            timer_enabled=request.timerEnabled,
            timer_seconds=request.timerSeconds,
            base_points=request.basePoints,
            max_bonus=request.maxBonus,
            max_violations=request.maxViolations,
        )
        return CreateSessionResponse(code=session.room_code, hostToken=session.host_token, sessionId=session.id)

    @app.get("/api/session/{code}", response_model=SessionSnapshot)
    async def get_session(code: str):
        """Public view of a session (no answer key while a question is open)"""
        return views.snapshot(await coordinator.get_session(code))

    @app.post("/api/session/{code}/start", response_model=SessionSnapshot)
    async def start_game(code: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
        await require_host(code, x_host_token)
        return host_snapshot(await coordinator.start(code))

    @app.post("/api/session/{code}/reveal", response_model=SessionSnapshot)
    async def reveal_results(code: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
        await require_host(code, x_host_token)
        return host_snapshot(await coordinator.reveal(code))

    @app.post("/api/session/{code}/next", response_model=SessionSnapshot)
    async def next_question(code: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
        await require_host(code, x_host_token)
        return host_snapshot(await coordinator.next_question(code))

    @app.post("/api/session/{code}/end", response_model=SessionSnapshot)
    async def end_game(code: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
        await require_host(code, x_host_token)
        return host_snapshot(await coordinator.end(code))

    @app.post("/api/session/{code}/kick", response_model=SessionSnapshot)
    async def kick_participant(
        code: str,
        request: KickRequest,
        x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token"),
    ):
        await require_host(code, x_host_token)
        return host_snapshot(await coordinator.kick(code, request.participantId, request.reason))

    @app.delete("/api/session/{code}")
    async def teardown_session(code: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
        """Destroy the session, its participants and its answers"""
        await require_host(code, x_host_token)
        await coordinator.teardown(code)
        return {"status": "deleted"}

    # --- Participants ---

    @app.post("/api/session/{code}/join", response_model=JoinResponse)
    async def join_session(code: str, request: JoinRequest):
        """Join (or rejoin with the same email) as a participant"""
        participant, created = await coordinator.join(code, request.name, request.email)
        return JoinResponse(participantId=participant.id, rejoined=not created, participant=participant)

    @app.post("/api/session/{code}/leave")
    async def leave_session(code: str, request: ParticipantRequest):
        await coordinator.leave(code, request.participantId)
        return {"status": "left"}

    @app.post("/api/session/{code}/answer", response_model=AnswerResult)
    async def submit_answer(code: str, request: AnswerRequest):
        return await coordinator.submit_answer(
            code,
            request.participantId,
            request.questionIndex,
            request.choice,
            request.timeTakenMs,
        )

    @app.post("/api/session/{code}/violation", response_model=ViolationOutcome)
    async def report_violation(code: str, request: ViolationRequest):
        return await coordinator.report_violation(code, request.participantId, request.violationType)

    # --- Views ---

    @app.get("/api/session/{code}/leaderboard")
    async def get_leaderboard(code: str, limit: Optional[int] = None):
        """Get the current live leaderboard"""
        session = await coordinator.get_session(code)
        return views.leaderboard(session, limit=limit)

    @app.get("/api/session/{code}/stats/{question_index}")
    async def get_question_stats(code: str, question_index: int):
        """Get answer statistics for a specific question"""
        session = await coordinator.get_session(code)
        return {"stats": views.question_stats(session, question_index)}

    @app.get("/api/session/{code}/answer-status")
    async def get_answer_status(
        code: str,
        limit: Optional[int] = None,
        x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token"),
    ):
        """Get which participants have/haven't answered (host only)"""
        await require_host(code, x_host_token)
        session = await coordinator.get_session(code)
        status = views.answer_status(session, session.current_question_index, limit=limit)

        def named(ids: list[str]) -> list[dict]:
            return [{"id": pid, "name": session.participants[pid].name} for pid in ids]

        return {
            "questionIndex": session.current_question_index,
            "answered": named(status.answered),
            "waiting": named(status.waiting),
        }

    @app.get("/api/session/{code}/participants/{participant_id}/answers")
    async def get_participant_answers(
        code: str,
        participant_id: str,
        player_id: Optional[str] = None,
        x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token"),
    ):
        """A participant's own answer history, or anyone's for the host"""
        if x_host_token:
            await require_host(code, x_host_token)
        elif player_id != participant_id:
            raise Forbidden("Only the host or the participant can read these answers")
        return {"answers": await coordinator.answers_for(code, participant_id)}

    @app.get("/api/session/{code}/export")
    async def export_results(code: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
        """Final results as CSV (host only)"""
        await require_host(code, x_host_token)
        session = await coordinator.get_session(code)
        rows = await coordinator.export_report(code)
        log_game_event("results_exported", session_code=session.room_code, data={"rows": len(rows)})
        return Response(
            content=report_to_csv(rows, session.total_questions),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{session.room_code}_results.csv"'},
        )

    @app.get("/api/quizzes/{quiz_id}/sessions")
    async def list_quiz_sessions(quiz_id: str, host_id: Optional[str] = None):
        """Past and running sessions of a quiz, newest first"""
        sessions = await coordinator.sessions_for_quiz(quiz_id)
        if host_id:
            sessions = [s for s in sessions if s.host_id == host_id]
        return {"sessions": [_summary(s) for s in sessions]}

    # --- WebSocket Endpoint ---

    @app.websocket("/ws/session/{code}")
    async def websocket_session(websocket: WebSocket, code: str):
        """WebSocket connection for real-time session updates"""
        try:
            session = await coordinator.get_session(code)
        except GameError:
            await websocket.close(code=4004, reason="Session not found")
            return
        room = session.room_code

        await websocket.accept()

        conn_id = generate_participant_id()
        role = None
        identifier = None

        try:
            # Wait for identification message
            data = await asyncio.wait_for(websocket.receive_json(), timeout=10.0)
            session = await coordinator.get_session(room)

            if data.get('type') == 'identify_host':
                if session.host_token != data.get('hostToken'):
                    await websocket.send_json({'type': 'error', 'message': 'Invalid host token'})
                    await websocket.close()
                    return
                role = 'host'
                identifier = 'host'

            elif data.get('type') == 'identify_player':
                participant = session.participants.get(data.get('playerId'))
                if participant is None or not participant.is_active:
                    await websocket.send_json({'type': 'error', 'message': 'Player not found'})
                    await websocket.close()
                    return
                role = 'player'
                identifier = participant.id

            elif data.get('type') == 'identify_observer':
                role = 'observer'
                identifier = conn_id

            else:
                await websocket.send_json({'type': 'error', 'message': 'Invalid identification'})
                await websocket.close()
                return

            hub.register(room, conn_id, websocket, role, identifier)
            logger.info(f"🔌 WebSocket connected: role={role}, session={room}")
            log_game_event("ws_connected", session_code=room, data={"role": role, "conn_id": conn_id})

            # Send current session state
            state = views.snapshot(session, include_answer_key=(role == 'host'))
            await websocket.send_json({'type': 'session_state', 'state': state.model_dump(mode="json")})

            # Clients only listen after identification
            while True:
                await websocket.receive_json()

        except asyncio.TimeoutError:
            await websocket.close(code=4008, reason="Identification timeout")
        except WebSocketDisconnect:
            pass
        except GameError as e:
            logger.info(f"🔌 WebSocket for session {room} closed: {e.message}")
        except Exception as e:
            logger.error(f"🔌 WebSocket error for session {room}: {e}", exc_info=True)
        finally:
            if hub.unregister(room, conn_id) is not None:
                logger.info(f"🔌 WebSocket disconnected: role={role}, session={room}")
                log_game_event("ws_disconnected", session_code=room, data={"role": role, "conn_id": conn_id})

                # A dropped connection is not a leave: the player stays in the waiting set
                if role == 'player' and identifier:
                    await hub.publish(room, {'type': 'player_disconnected', 'playerId': identifier}, host_only=True)

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "ok"}

    # --- Polling Fallback Endpoints (for networks where WebSockets are blocked) ---

    @app.get("/api/session/{code}/state", response_model=SessionSnapshot)
    async def get_session_state(
        code: str,
        player_id: Optional[str] = None,
        x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token"),
    ):
        """Get current session state (polling fallback for WebSocket)"""
        if x_host_token:
            await require_host(code, x_host_token)
            return host_snapshot(await coordinator.get_session(code))
        session = await coordinator.get_session(code)
        if player_id and player_id not in session.participants:
            raise Forbidden("Player not found in this session")
        return views.snapshot(session)

    @app.get("/api/session/{code}/events")
    async def get_session_events(
        code: str,
        since_id: int = 0,
        x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token"),
    ):
        """Get events since a given event ID (long-polling fallback for WebSocket)"""
        is_host = False
        if x_host_token:
            await require_host(code, x_host_token)
            is_host = True
        session = await coordinator.get_session(code)
        events, last_id = hub.events_since(session.room_code, since_id, include_host_only=is_host)
        return {'events': events, 'lastEventId': last_id}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    print(f"\n🎮 QuizRoom Server")
    print(f"   Quizzes: {app.state.settings.quiz_dir or 'in-memory (none loaded)'}")
    print(f"   URL: http://localhost:8000\n")
    uvicorn.run(app, host="0.0.0.0", port=8000)
