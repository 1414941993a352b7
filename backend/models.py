from pydantic import BaseModel, Field
from typing import Optional
from dataclasses import dataclass, field
from enum import Enum
import secrets


class SessionStatus(str, Enum):
    WAITING = 'waiting'
    QUESTION = 'question'
    RESULTS = 'results'
    ENDED = 'ended'


class ParticipantStatus(str, Enum):
    ACTIVE = 'active'
    LEFT = 'left'
    KICKED = 'kicked'


class Choice(str, Enum):
    A = 'A'
    B = 'B'
    C = 'C'
    D = 'D'


CHOICES: tuple[Choice, ...] = (Choice.A, Choice.B, Choice.C, Choice.D)


class ViolationType(str, Enum):
    TAB_SWITCH = 'tab_switch'
    FULLSCREEN_EXIT = 'fullscreen_exit'
    COPY_ATTEMPT = 'copy_attempt'
    DEVTOOLS_OPEN = 'devtools_open'


ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ROOM_CODE_LENGTH = 6
ANTI_CHEAT_KICK_REASON = 'Anti-cheat violations'


# --- Quiz definitions (owned by the quiz provider) ---

class QuestionDefinition(BaseModel):
    id: str
    text: str
    options: dict[Choice, str]  # exactly A-D
    correctChoice: Choice
    difficulty: Optional[str] = None

    def option(self, choice: Choice) -> str:
        return self.options[choice]


class QuizDefinition(BaseModel):
    id: str
    title: str
    timerEnabled: bool = False
    timerSeconds: int = 30
    totalQuestions: int = 0


class ScoreConfig(BaseModel):
    basePoints: float = 10
    maxBonus: float = 2
    timerEnabled: bool = False
    timerSeconds: int = 30


class ScoreResult(BaseModel):
    points: float = 0.0
    base: float = 0.0
    speedBonus: float = 0.0


# --- Session members ---

class Participant(BaseModel):
    id: str
    name: str
    email: str
    status: ParticipantStatus = ParticipantStatus.ACTIVE
    score: float = 0.0
    joinedAt: float
    joinSeq: int = 0
    answersCount: int = 0
    kickReason: Optional[str] = None
    violationCount: int = 0
    violations: dict[ViolationType, int] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == ParticipantStatus.ACTIVE


class Answer(BaseModel):
    participantId: str
    questionIndex: int
    choice: Choice
    isCorrect: bool
    timeTakenMs: int
    pointsEarned: float
    speedBonus: float = 0.0
    answeredAt: float


class AnswerResult(BaseModel):
    questionIndex: int
    choice: Choice
    isCorrect: bool
    pointsEarned: float
    speedBonus: float = 0.0
    timeTakenMs: int
    totalScore: float
    correctChoice: Optional[Choice] = None  # only once the question is revealed


class ViolationOutcome(BaseModel):
    participantId: str
    violationCount: int
    kicked: bool
    alreadyInactive: bool = False


# --- Derived views ---

class LeaderboardEntry(BaseModel):
    id: str
    name: str
    score: float
    rank: int
    status: ParticipantStatus
    answersCount: int
    correctAnswers: int


class Leaderboard(BaseModel):
    entries: list[LeaderboardEntry]
    total: int


class QuestionStats(BaseModel):
    questionIndex: int
    totalPlayers: int
    answeredCount: int
    distribution: dict[Choice, int]  # Count per option


class AnswerStatus(BaseModel):
    answered: list[str]  # Participant IDs who answered
    waiting: list[str]   # Active participant IDs who haven't answered


class QuestionView(BaseModel):
    id: str
    text: str
    options: dict[Choice, str]
    correctChoice: Optional[Choice] = None
    difficulty: Optional[str] = None


class SessionSnapshot(BaseModel):
    id: str
    quizId: str
    roomCode: str
    status: SessionStatus
    currentQuestionIndex: int
    totalQuestions: int
    questionStartedAt: Optional[float] = None
    revealDeadline: Optional[float] = None
    endedAt: Optional[float] = None
    version: int
    settings: ScoreConfig
    maxViolations: int
    participants: list[Participant]
    leaderboard: Leaderboard
    currentQuestion: Optional[QuestionView] = None
    answerStatus: Optional[AnswerStatus] = None
    stats: Optional[QuestionStats] = None


# --- Aggregate ---

@dataclass
class Session:
    id: str
    quiz_id: str
    room_code: str
    host_token: str
    questions: list[QuestionDefinition] = field(default_factory=list)
    score_config: ScoreConfig = field(default_factory=ScoreConfig)
    max_violations: int = 3
    host_id: Optional[str] = None
    status: SessionStatus = SessionStatus.WAITING
    current_question_index: int = 0
    question_started_at: Optional[float] = None
    ended_at: Optional[float] = None
    created_at: float = 0.0
    version: int = 0
    participants: dict[str, Participant] = field(default_factory=dict)  # id -> Participant
    answers: dict[tuple[str, int], Answer] = field(default_factory=dict)  # (participant, question) -> Answer

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def is_ended(self) -> bool:
        return self.status == SessionStatus.ENDED

    @property
    def current_question(self) -> Optional[QuestionDefinition]:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    def active_participants(self) -> list[Participant]:
        return [p for p in self.participants.values() if p.is_active]

    def find_by_email(self, email: str) -> Optional[Participant]:
        key = normalize_email(email)
        for p in self.participants.values():
            if p.email == key:
                return p
        return None

    def has_answered(self, participant_id: str, question_index: int) -> bool:
        return (participant_id, question_index) in self.answers


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_room_code(length: int = ROOM_CODE_LENGTH, rng=None) -> str:
    """Generate a room code from the unambiguous alphabet (no 0, 1, I, O)"""
    rng = rng or secrets.SystemRandom()
    return ''.join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def generate_token() -> str:
    """Generate a secure random token"""
    return secrets.token_urlsafe(32)


def generate_participant_id() -> str:
    """Generate a participant ID"""
    return secrets.token_urlsafe(16)


def generate_session_id() -> str:
    return secrets.token_hex(16)
