"""
Game coordinator
================
Command handlers for live sessions. This is the single writer for every
session it serves:

  1. look the session up by room code
  2. take that session's lock (sessions never share one)
  3. load a fresh copy, apply the command through the domain modules,
     write it back against the version it was loaded at
  4. on ``ConcurrencyConflict`` start over from step 3, up to
     ``settings.commit_attempts`` times
  5. after the write has committed, publish the new snapshot

Time-based reveal is decided here from ``question_started_at`` on the server
clock. A per-session asyncio task fires at the deadline, and every command and
read also checks the deadline, so a late or lost timer cannot hold a question
open.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional, TypeVar

import anticheat
import ledger
import participants
import session_machine
import views
from broadcast import Broadcaster, message
from errors import ConcurrencyConflict, Forbidden, GameError, InvalidPhase
from export import ReportRow, build_report
from logger import get_logger, log_game_event
from models import (
    Answer, AnswerResult, Choice, Participant, ScoreConfig, Session, SessionStatus,
    ViolationOutcome, ViolationType,
    generate_room_code, generate_session_id, generate_token,
)
from quiz_provider import QuizProvider, validate_questions
from settings import Settings
from store import SessionStore

logger = get_logger("QuizRoom.coordinator")

T = TypeVar("T")

# apply(session, now) -> (result, changed)
Command = Callable[[Session, float], "tuple[T, bool]"]


class GameCoordinator:
    def __init__(
        self,
        store: SessionStore,
        quizzes: QuizProvider,
        broadcaster: Broadcaster,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        rng=None,
    ):
        self.store = store
        self.quizzes = quizzes
        self.broadcaster = broadcaster
        self.settings = settings or Settings()
        self.clock = clock
        self.rng = rng
        self._locks: dict[str, asyncio.Lock] = {}
        # reveal timers keyed by (session id, question index)
        self._timers: dict[tuple[str, int], asyncio.Task] = {}
        # last version this coordinator committed per session
        self._committed: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    async def _mutate(
        self, room_code: str, command: str, apply: Command, lazy_reveal: bool = True
    ) -> tuple[Session, Any]:
        """Serialized read-modify-write with bounded retry on stale writes"""
        if lazy_reveal:
            # Close an overdue question before the command sees the session
            found = await self.get_session(room_code)
        else:
            found = await self.store.get_by_code(room_code)
        attempts = self.settings.commit_attempts

        async with self._lock_for(found.id):
            for attempt in range(1, attempts + 1):
                session = await self.store.get(found.id)
                result, changed = apply(session, self.clock())
                if not changed:
                    return session, result
                try:
                    saved = await self.store.update(session, expected_version=session.version)
                    self._committed[saved.id] = saved.version
                    return saved, result
                except ConcurrencyConflict as e:
                    logger.warning(
                        f"⚠️  {command} conflict on {session.room_code} "
                        f"(attempt {attempt}/{attempts}): {e.message}"
                    )
                    if attempt == attempts:
                        log_game_event("commit_conflict", session_code=session.room_code, data={
                            "command": command,
                            "attempts": attempts,
                        })
                        raise ConcurrencyConflict(
                            "The game is busy right now, please try again",
                            extra={"command": command},
                        ) from e
        raise AssertionError("unreachable")

    async def _publish(self, session: Session, kind: str, host_only: bool = False, **payload: Any) -> None:
        if session.version < self._committed.get(session.id, session.version):
            # A later command already published newer state for this room
            logger.debug(f"🔕 Dropped stale '{kind}' for {session.room_code} (v{session.version})")
            return
        # State is already committed; a broadcast failure is logged, never raised
        try:
            state = views.snapshot(session).model_dump(mode="json")
            await self.broadcaster.publish(
                session.room_code,
                message(kind, state=state, **payload),
                host_only=host_only,
            )
        except Exception:
            logger.error(f"🔌 Broadcast '{kind}' failed for {session.room_code}", exc_info=True)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def allocate_room_code(self) -> str:
        for _ in range(self.settings.room_code_attempts):
            code = generate_room_code(rng=self.rng)
            if not await self.store.is_code_active(code):
                return code
        raise ConcurrencyConflict("Could not allocate a free room code, please try again")

    async def create_session(
        self,
        quiz_id: str,
        host_id: Optional[str] = None,
        timer_enabled: Optional[bool] = None,
        timer_seconds: Optional[int] = None,
        base_points: Optional[float] = None,
        max_bonus: Optional[float] = None,
        max_violations: Optional[int] = None,
    ) -> Session:
        """Start hosting a quiz: snapshot its questions and mint a room code"""
        quiz = await self.quizzes.get_quiz(quiz_id)
        questions = await self.quizzes.get_questions(quiz_id)
        problem = validate_questions(questions)
        if problem:
            raise InvalidPhase(problem)

        seconds = quiz.timerSeconds if timer_seconds is None else self.settings.clamp_timer(timer_seconds)
        config = ScoreConfig(
            basePoints=self.settings.base_points if base_points is None else base_points,
            maxBonus=self.settings.max_bonus if max_bonus is None else max_bonus,
            timerEnabled=quiz.timerEnabled if timer_enabled is None else timer_enabled,
            timerSeconds=seconds,
        )

        for attempt in range(1, self.settings.commit_attempts + 1):
            session = Session(
                id=generate_session_id(),
                quiz_id=quiz_id,
                room_code=await self.allocate_room_code(),
                host_token=generate_token(),
                questions=questions,
                score_config=config,
                max_violations=max_violations or self.settings.max_violations,
                host_id=host_id,
                created_at=self.clock(),
            )
            try:
                created = await self.store.create(session)
                break
            except ConcurrencyConflict:
                # Another host grabbed the same code between check and insert
                if attempt == self.settings.commit_attempts:
                    raise
        else:
            raise AssertionError("unreachable")

        logger.info(
            f"🆕 Session created: {created.room_code} quiz={quiz_id} "
            f"({created.total_questions} questions, timer={config.timerEnabled}/{config.timerSeconds}s)"
        )
        log_game_event("session_created", session_code=created.room_code, data={
            "session_id": created.id,
            "quiz_id": quiz_id,
            "question_count": created.total_questions,
            "timer_enabled": config.timerEnabled,
            "timer_seconds": config.timerSeconds,
            "base_points": config.basePoints,
            "max_bonus": config.maxBonus,
        })
        return created

    async def authorize_host(self, room_code: str, host_token: Optional[str]) -> Session:
        session = await self.store.get_by_code(room_code)
        if not host_token or session.host_token != host_token:
            raise Forbidden("Invalid host token")
        return session

    async def get_session(self, room_code: str) -> Session:
        """Current state; applies a due time-based reveal first"""
        session = await self.store.get_by_code(room_code)
        if session_machine.auto_reveal_reason(session, self.clock()) is not None:
            session = await self.auto_reveal(session.room_code, session.current_question_index)
        return session

    async def start(self, room_code: str) -> Session:
        def apply(session: Session, now: float):
            session_machine.start(session, now)
            return None, True

        session, _ = await self._mutate(room_code, "start", apply)
        logger.info(
            f"🚀 Game started: session {session.room_code}, {session.total_questions} questions, "
            f"{len(session.active_participants())} players"
        )
        log_game_event("game_started", session_code=session.room_code, data={
            "question_count": session.total_questions,
            "player_count": len(session.active_participants()),
        })
        self._schedule_reveal(session)
        await self._publish(session, "question_started", questionIndex=0)
        return session

    async def reveal(self, room_code: str) -> Session:
        """Manual reveal by the host"""
        def apply(session: Session, now: float):
            session_machine.reveal(session)
            return None, True

        session, _ = await self._mutate(room_code, "reveal", apply)
        await self._after_reveal(session, "manual")
        return session

    async def auto_reveal(self, room_code: str, expected_index: int) -> Session:
        """Reveal ``expected_index`` if a reveal condition holds; otherwise no-op"""
        def apply(session: Session, now: float):
            reason = session_machine.auto_reveal_reason(session, now)
            if reason is None or session.current_question_index != expected_index:
                return None, False
            return reason, session_machine.reveal(session, expected_index)

        session, reason = await self._mutate(room_code, "auto_reveal", apply, lazy_reveal=False)
        if reason is not None:
            await self._after_reveal(session, reason)
        return session

    async def _after_reveal(self, session: Session, reason: str) -> None:
        self._cancel_timer(session.id, session.current_question_index)
        stats = views.question_stats(session, session.current_question_index)
        logger.info(
            f"🏁 Question {session.current_question_index + 1} revealed in {session.room_code} "
            f"({reason}, {stats.answeredCount}/{stats.totalPlayers} answered)"
        )
        log_game_event("question_revealed", session_code=session.room_code, data={
            "question_index": session.current_question_index,
            "reason": reason,
            "answered": stats.answeredCount,
            "players": stats.totalPlayers,
        })
        await self._publish(session, "revealed", questionIndex=session.current_question_index, reason=reason)

    async def next_question(self, room_code: str) -> Session:
        def apply(session: Session, now: float):
            return session_machine.advance(session, now), True

        session, status = await self._mutate(room_code, "next", apply)
        if status == SessionStatus.ENDED:
            await self._after_end(session, "completed")
            return session

        logger.info(
            f"⏭️ Next question: session {session.room_code}, "
            f"Q{session.current_question_index + 1}/{session.total_questions}"
        )
        log_game_event("next_question", session_code=session.room_code, data={
            "question_index": session.current_question_index,
            "total_questions": session.total_questions,
        })
        self._schedule_reveal(session)
        await self._publish(session, "question_started", questionIndex=session.current_question_index)
        return session

    async def end(self, room_code: str) -> Session:
        """Host ends the game early"""
        def apply(session: Session, now: float):
            session_machine.end(session, now)
            return None, True

        session, _ = await self._mutate(room_code, "end", apply)
        await self._after_end(session, "host_ended")
        return session

    async def _after_end(self, session: Session, reason: str) -> None:
        self._cancel_timer(session.id)
        board = views.leaderboard(session, limit=3)
        logger.info(f"🏆 Game ended: session {session.room_code} ({reason})")
        log_game_event("game_ended", session_code=session.room_code, data={
            "reason": reason,
            "question_index": session.current_question_index,
            "player_count": len(session.participants),
            "podium": [{"id": e.id, "score": e.score} for e in board.entries],
        })
        await self._publish(session, "game_ended", reason=reason)

    async def teardown(self, room_code: str) -> None:
        """Destroy the session with its participants and ledger.

        Called by the surrounding workflow once it has captured any export.
        """
        found = await self.store.get_by_code(room_code)
        async with self._lock_for(found.id):
            self._cancel_timer(found.id)
            await self.store.delete(found.id)
        self._locks.pop(found.id, None)
        self._committed.pop(found.id, None)

        try:
            await self.broadcaster.publish(found.room_code, message("session_closed", roomCode=found.room_code))
            await self.broadcaster.close_room(found.room_code)
        except Exception:
            logger.error(f"🔌 Closing room {found.room_code} failed", exc_info=True)

        logger.info(f"🗑️ Session torn down: {found.room_code}")
        log_game_event("session_torn_down", session_code=found.room_code, data={
            "session_id": found.id,
            "participants": len(found.participants),
            "answers": len(found.answers),
        })

    # ------------------------------------------------------------------
    # Participant commands
    # ------------------------------------------------------------------

    async def join(self, room_code: str, name: str, email: str) -> tuple[Participant, bool]:
        def apply(session: Session, now: float):
            before = {pid: p.status for pid, p in session.participants.items()}
            participant, created = participants.join(session, name, email, now)
            # A rejoin of an active member changes nothing
            changed = created or before.get(participant.id) != participant.status
            return (participant, created), changed

        session, (participant, created) = await self._mutate(room_code, "join", apply)
        if created:
            logger.info(
                f"👤 Player joined: {participant.name} -> session {session.room_code} "
                f"(total={len(session.participants)})"
            )
            log_game_event("player_joined", session_code=session.room_code, player_id=participant.id, data={
                "name": participant.name,
                "player_count": len(session.participants),
            })
            await self._publish(session, "player_joined", playerId=participant.id)
        else:
            log_game_event("player_rejoined", session_code=session.room_code, player_id=participant.id)
            await self._publish(session, "player_rejoined", playerId=participant.id)
        return participant, created

    async def leave(self, room_code: str, participant_id: str) -> Session:
        def apply(session: Session, now: float):
            before = session.participants.get(participant_id)
            before_status = before.status if before else None
            participant = participants.mark_left(session, participant_id)
            reason = self._reveal_if_complete(session, now)
            return reason, participant.status != before_status or reason is not None

        session, reason = await self._mutate(room_code, "leave", apply)
        log_game_event("player_left", session_code=session.room_code, player_id=participant_id)
        await self._publish(session, "player_left", playerId=participant_id)
        if reason:
            await self._after_reveal(session, reason)
        return session

    async def kick(self, room_code: str, participant_id: str, reason: str = "Removed by host") -> Session:
        def apply(session: Session, now: float):
            kicked = participants.kick(session, participant_id, reason)
            revealed = self._reveal_if_complete(session, now) if kicked else None
            return (kicked, revealed), kicked

        session, (kicked, revealed) = await self._mutate(room_code, "kick", apply)
        if kicked:
            logger.info(f"🚫 Player kicked: {participant_id} from {session.room_code} ({reason})")
            log_game_event("player_kicked", session_code=session.room_code, player_id=participant_id, data={
                "reason": reason,
            })
            await self._publish(session, "player_kicked", playerId=participant_id, reason=reason)
            if revealed:
                await self._after_reveal(session, revealed)
        return session

    async def report_violation(
        self, room_code: str, participant_id: str, violation_type: ViolationType
    ) -> ViolationOutcome:
        def apply(session: Session, now: float):
            outcome = anticheat.report_violation(
                session, participant_id, violation_type, session.max_violations
            )
            revealed = self._reveal_if_complete(session, now) if outcome.kicked else None
            return (outcome, revealed), not outcome.alreadyInactive

        session, (outcome, revealed) = await self._mutate(room_code, "violation", apply)
        log_game_event("violation_reported", session_code=session.room_code, player_id=participant_id, data={
            "violation_type": violation_type.value,
            "violation_count": outcome.violationCount,
            "kicked": outcome.kicked,
            "ignored": outcome.alreadyInactive,
        })
        if outcome.alreadyInactive:
            return outcome

        await self._publish(
            session, "violation_reported", host_only=True,
            playerId=participant_id, violationType=violation_type.value, count=outcome.violationCount,
        )
        if outcome.kicked:
            logger.info(
                f"🚫 Player auto-kicked: {participant_id} from {session.room_code} "
                f"after {outcome.violationCount} violations"
            )
            await self._publish(session, "player_kicked", playerId=participant_id, reason=anticheat.ANTI_CHEAT_KICK_REASON)
            if revealed:
                await self._after_reveal(session, revealed)
        return outcome

    async def submit_answer(
        self,
        room_code: str,
        participant_id: str,
        question_index: int,
        choice: Choice,
        time_taken_ms: Optional[int] = None,
    ) -> AnswerResult:
        def apply(session: Session, now: float):
            # A late answer closes the question instead of scoring
            if session_machine.time_expired(session, now):
                session_machine.reveal(session, session.current_question_index)
                return (None, "time_elapsed"), True
            result = ledger.submit(session, participant_id, question_index, choice, time_taken_ms, now)
            return (result, self._reveal_if_complete(session, now)), True

        session, (result, revealed) = await self._mutate(room_code, "answer", apply)

        if result is None:
            await self._after_reveal(session, revealed)
            raise InvalidPhase("Time is up for this question", extra={"currentQuestionIndex": question_index})

        log_game_event("answer_submitted", session_code=session.room_code, player_id=participant_id, data={
            "question_index": question_index,
            "choice": choice.value,
            "correct": result.isCorrect,
            "time_taken_ms": result.timeTakenMs,
            "points": result.pointsEarned,
        })
        await self._publish(
            session, "answer_received", host_only=True,
            playerId=participant_id, questionIndex=question_index,
        )
        await self._publish(session, "leaderboard_update")
        if revealed:
            await self._after_reveal(session, revealed)
            result.correctChoice = session.questions[question_index].correctChoice
        return result

    @staticmethod
    def _reveal_if_complete(session: Session, now: float) -> Optional[str]:
        reason = session_machine.auto_reveal_reason(session, now)
        if reason and session_machine.reveal(session, session.current_question_index):
            return reason
        return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def answers_for(self, room_code: str, participant_id: str) -> list[Answer]:
        session = await self.get_session(room_code)
        return ledger.by_participant(session, participant_id)

    async def export_report(self, room_code: str) -> list[ReportRow]:
        session = await self.get_session(room_code)
        return build_report(session)

    async def sessions_for_quiz(self, quiz_id: str) -> list[Session]:
        return await self.store.list_by_quiz(quiz_id)

    # ------------------------------------------------------------------
    # Server-side reveal timer
    # ------------------------------------------------------------------

    def _schedule_reveal(self, session: Session) -> None:
        self._cancel_timer(session.id)
        deadline = session_machine.reveal_deadline(session)
        if deadline is None or not self.settings.enable_timers:
            return
        task = asyncio.create_task(
            self._reveal_when_due(session.room_code, session.current_question_index, deadline)
        )
        self._timers[(session.id, session.current_question_index)] = task
        logger.debug(
            f"⏱️ Reveal timer set: {session.room_code} Q{session.current_question_index + 1} "
            f"in {max(0.0, deadline - self.clock()):.1f}s"
        )

    async def _reveal_when_due(self, room_code: str, question_index: int, deadline: float) -> None:
        # Re-check the wall clock: the event loop's timer may wake a little early
        while (remaining := deadline - self.clock()) > 0:
            await asyncio.sleep(remaining)
        try:
            await self.auto_reveal(room_code, question_index)
        except GameError as e:
            logger.debug(f"⏱️ Reveal timer for {room_code} Q{question_index + 1} skipped: {e}")

    def _cancel_timer(self, session_id: str, question_index: Optional[int] = None) -> None:
        """Cancel the reveal timer of one question, or every timer of the session"""
        keys = [
            key for key in self._timers
            if key[0] == session_id and (question_index is None or key[1] == question_index)
        ]
        for key in keys:
            task = self._timers.pop(key)
            if task is not asyncio.current_task():
                task.cancel()

    async def shutdown(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
